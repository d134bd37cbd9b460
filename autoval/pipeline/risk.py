"""
Risk detection: informational red flags on a listing.
Flags never change the score; they are shown and forwarded to the analyzer.
"""
import re

from ..models.listing import NormalizedListing
from ..models.scoring import MarketStats


# Scam and pressure language seen on French listings
SUSPICIOUS_PATTERNS = [
    r"\burgent\b",
    r"\bcash\b",
    r"\bvirement\b",
    r"\bétranger\b",
    r"\bdépart\b",
    r"\bdéménagement\b",
    r"\bdivorce\b",
    r"\bhéritage\b",
    r"\bdécès\b",
    r"\bmandat\s*cash\b",
    r"\bwestern\s*union\b",
]

PROFESSIONAL_PATTERNS = [
    r"\bconcession(naire)?\b",
    r"\bgarage\b",
    r"\bprofessionnel\b",
]

MAX_KM_PER_YEAR = 30_000
LOW_KM_PER_YEAR = 5_000
LOW_KM_MIN_AGE = 3
# Tukey fence below q1
OUTLIER_IQR_FACTOR = 1.5


def detect_risk_flags(
    listing: NormalizedListing,
    stats: MarketStats,
    reference_year: int,
) -> list[str]:
    """
    Args:
        listing: Normalized listing
        stats: Comp stats for the listing
        reference_year: Year ages are computed against

    Returns:
        Sorted list of flag names
    """
    flags = set()

    if listing.price is not None and stats.is_sufficient and stats.iqr > 0:
        if listing.price < stats.q1 - OUTLIER_IQR_FACTOR * stats.iqr:
            flags.add("price_suspect")

    if listing.mileage is not None and listing.year is not None:
        age = reference_year - listing.year
        km_per_year = listing.mileage / max(age, 1)
        if km_per_year > MAX_KM_PER_YEAR:
            flags.add("mileage_incoherent")
        elif km_per_year < LOW_KM_PER_YEAR and age > LOW_KM_MIN_AGE:
            flags.add("mileage_suspect")

    title = (listing.title or "").lower()
    if any(re.search(pattern, title) for pattern in SUSPICIOUS_PATTERNS):
        flags.add("suspicious_text")

    if listing.seller_type == "professional" or any(
        re.search(pattern, title) for pattern in PROFESSIONAL_PATTERNS
    ):
        flags.add("professional_seller")

    return sorted(flags)
