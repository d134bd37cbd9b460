"""
Pydantic models for Autoval.
All data contracts are defined here for strict validation.
"""

from .criteria import SearchCriteria, SearchRequest
from .analysis import ClientProfile, MerchantAIResult, EnrichmentOutcome
from .listing import RawSourceResult, NormalizedListing, FieldQuality
from .scoring import MarketStats, ScoreBreakdown, ScoredListing
from .response import SourceReport, SearchResponse

__all__ = [
    # Criteria
    "SearchCriteria",
    "SearchRequest",
    # Analysis
    "ClientProfile",
    "MerchantAIResult",
    "EnrichmentOutcome",
    # Listing
    "RawSourceResult",
    "NormalizedListing",
    "FieldQuality",
    # Scoring
    "MarketStats",
    "ScoreBreakdown",
    "ScoredListing",
    # Response
    "SourceReport",
    "SearchResponse",
]
