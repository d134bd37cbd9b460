"""
Admission gates: rate limiting and quota accounting.
"""

from .rate_limiter import RateLimiter, RateDecision, InMemoryRateLimitStore
from .quota import QuotaLedger, Reservation, InMemoryQuotaStore

__all__ = [
    "RateLimiter",
    "RateDecision",
    "InMemoryRateLimitStore",
    "QuotaLedger",
    "Reservation",
    "InMemoryQuotaStore",
]
