"""Autoval - multi-source used-car search with scoring and merchant analysis."""

__version__ = "0.1.0"
