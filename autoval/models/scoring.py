"""
Scoring models - market stats, score breakdowns, and ranked results.
"""
from typing import Optional

from pydantic import BaseModel, Field

from .listing import NormalizedListing


class MarketStats(BaseModel):
    """Statistics for a comparison group (comps)."""
    median: float = Field(description="Median price in the group")
    iqr: float = Field(description="Interquartile range")
    q1: float = Field(description="25th percentile")
    q3: float = Field(description="75th percentile")
    min_price: float
    max_price: float
    n: int = Field(description="Number of listings in group")

    # Metadata about the comp group
    comp_key: Optional[str] = Field(default=None, description="Key used for grouping")
    relaxation_level: int = Field(
        default=0,
        description="How many times grouping was relaxed to get enough comps"
    )
    is_sufficient: bool = Field(
        default=True,
        description="Whether we have enough comps for reliable stats"
    )

    @classmethod
    def empty(cls) -> "MarketStats":
        return cls(
            median=0, iqr=0, q1=0, q3=0,
            min_price=0, max_price=0, n=0,
            comp_key="none",
            is_sufficient=False,
        )


class PriceScore(BaseModel):
    """Score component based on price vs market."""
    score: float = Field(ge=0, le=100)
    asking_price: Optional[float] = None
    expected_price: Optional[float] = Field(default=None, description="Based on comps median")
    deal_delta_percent: Optional[float] = Field(
        default=None,
        description="Positive = below market, negative = above",
    )
    explanation: str


class MatchScore(BaseModel):
    """Score component based on closeness to the search criteria."""
    score: float = Field(ge=0, le=100)
    dimensions: dict[str, float] = Field(
        default_factory=dict,
        description="Per-criterion sub-score (year, mileage, fuel_type, ...)",
    )
    unknown: list[str] = Field(default_factory=list, description="Criteria the listing gave no data for")
    explanation: str


class CompletenessScore(BaseModel):
    """Score component based on how many fields were parsed."""
    score: float = Field(ge=0, le=100)
    missing_fields: list[str] = Field(default_factory=list)
    explanation: str


class ScoreBreakdown(BaseModel):
    """Complete scoring breakdown for a listing."""
    total: float = Field(ge=0, le=100, description="Final weighted score")

    price: PriceScore
    match: MatchScore
    completeness: CompletenessScore

    # Weights used
    price_weight: float
    match_weight: float
    completeness_weight: float

    summary_explanation: str = Field(description="One-line summary of why this score")


class ScoredListing(BaseModel):
    """A normalized listing with its score, breakdown and rank."""
    rank: int = 0
    listing: NormalizedListing
    score: float
    breakdown: ScoreBreakdown
    market_stats: Optional[MarketStats] = None
    risk_flags: list[str] = Field(default_factory=list)

    @property
    def is_good_deal(self) -> bool:
        delta = self.breakdown.price.deal_delta_percent
        return delta is not None and delta > 10
