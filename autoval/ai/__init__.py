"""AI modules for merchant analysis."""

from .llm_client import LLMClient
from .merchant import MerchantAnalyzer

__all__ = ["LLMClient", "MerchantAnalyzer"]
