"""
Scoring engine - deterministic scoring with transparent breakdown.
"""
import logging
from typing import Optional

from ..config import ScoringWeights
from ..models.criteria import SearchCriteria
from ..models.listing import NormalizedListing
from ..models.scoring import (
    CompletenessScore,
    MarketStats,
    MatchScore,
    PriceScore,
    ScoreBreakdown,
    ScoredListing,
)
from .comps import MarketBaseline
from .risk import detect_risk_flags


logger = logging.getLogger(__name__)

# Price competitiveness: at the median = neutral, +/- this many percent = 100 / 0
PRICE_NEUTRAL_SCORE = 50.0
PRICE_FULL_SCALE_PERCENT = 30.0
# Listing gave no data for a criterion the caller set
MISSING_FIELD_SCORE = 25.0
# No criterion dimension applies
NEUTRAL_MATCH_SCORE = 50.0
# Year at the edge of the requested range (center scores 100)
YEAR_EDGE_SCORE = 50.0
# Mileage scale when the caller set no cap
MILEAGE_REFERENCE_KM = 200_000
# Deal delta that counts as a good or bad price in explanations
NOTABLE_DELTA_PERCENT = 10.0


class ScoringEngine:
    """
    Deterministic scoring engine with transparent breakdown.
    All scores are 0-100, higher is better. score() is a pure function of
    (listing, criteria, baseline).
    """

    def __init__(self, weights: Optional[ScoringWeights] = None):
        weights = weights or ScoringWeights()
        self.price_weight = weights.price_weight
        self.match_weight = weights.match_weight
        self.completeness_weight = weights.completeness_weight

    def score(
        self,
        listing: NormalizedListing,
        criteria: SearchCriteria,
        baseline: MarketBaseline,
    ) -> ScoredListing:
        """
        Calculate full scoring breakdown for a listing.

        Args:
            listing: The listing to score
            criteria: Validated search criteria
            baseline: Market baseline for this run

        Returns:
            ScoredListing with rank 0 (assigned by rank())
        """
        stats = baseline.stats_for(listing)

        price_score = self._calculate_price_score(listing, stats)
        match_score = self._calculate_match_score(listing, criteria, baseline.reference_year)
        completeness_score = self._calculate_completeness_score(listing)

        # Weighted total
        total = (
            price_score.score * self.price_weight
            + match_score.score * self.match_weight
            + completeness_score.score * self.completeness_weight
        )
        total = round(min(max(total, 0.0), 100.0), 2)

        breakdown = ScoreBreakdown(
            total=total,
            price=price_score,
            match=match_score,
            completeness=completeness_score,
            price_weight=self.price_weight,
            match_weight=self.match_weight,
            completeness_weight=self.completeness_weight,
            summary_explanation=self._build_summary(price_score, match_score, completeness_score),
        )

        return ScoredListing(
            listing=listing,
            score=total,
            breakdown=breakdown,
            market_stats=stats,
            risk_flags=detect_risk_flags(listing, stats, baseline.reference_year),
        )

    def _calculate_price_score(self, listing: NormalizedListing, stats: MarketStats) -> PriceScore:
        """Price vs comps median."""
        if listing.price is None:
            return PriceScore(
                score=MISSING_FIELD_SCORE,
                expected_price=stats.median if stats.is_sufficient else None,
                explanation="Price unknown",
            )
        if not stats.is_sufficient or stats.median <= 0:
            return PriceScore(
                score=PRICE_NEUTRAL_SCORE,  # Neutral if no comparison possible
                asking_price=listing.price,
                expected_price=stats.median if stats.is_sufficient else None,
                explanation="Not enough comparable listings for a price verdict",
            )

        expected = stats.median
        # Positive = below market = good deal
        delta_percent = (expected - listing.price) / expected * 100

        score = PRICE_NEUTRAL_SCORE + delta_percent * (100 - PRICE_NEUTRAL_SCORE) / PRICE_FULL_SCALE_PERCENT
        score = max(0.0, min(100.0, score))

        if delta_percent > NOTABLE_DELTA_PERCENT:
            explanation = f"Good price, {abs(delta_percent):.0f}% below market"
        elif delta_percent < -NOTABLE_DELTA_PERCENT:
            explanation = f"High price, {abs(delta_percent):.0f}% above market"
        else:
            explanation = "Market price"

        return PriceScore(
            score=round(score, 2),
            asking_price=listing.price,
            expected_price=expected,
            deal_delta_percent=round(delta_percent, 1),
            explanation=explanation,
        )

    def _calculate_match_score(
        self,
        listing: NormalizedListing,
        criteria: SearchCriteria,
        reference_year: int,
    ) -> MatchScore:
        """Closeness to the requested criteria, averaged over the dimensions that apply."""
        dimensions: dict[str, float] = {}
        unknown: list[str] = []

        def missing(name: str) -> None:
            dimensions[name] = MISSING_FIELD_SCORE
            unknown.append(name)

        if criteria.min_price is not None or criteria.max_price is not None:
            if listing.price is None:
                missing("budget")
            else:
                low = criteria.min_price if criteria.min_price is not None else 0
                high = criteria.max_price if criteria.max_price is not None else float("inf")
                dimensions["budget"] = 100.0 if low <= listing.price <= high else 0.0

        if criteria.min_year is not None or criteria.max_year is not None:
            if listing.year is None:
                missing("year")
            else:
                dimensions["year"] = self._year_score(listing.year, criteria, reference_year)

        if listing.mileage is None:
            missing("mileage")
        else:
            cap = criteria.max_mileage if criteria.max_mileage is not None else MILEAGE_REFERENCE_KM
            if listing.mileage > cap:
                dimensions["mileage"] = 0.0
            elif cap == 0:
                dimensions["mileage"] = 100.0
            else:
                dimensions["mileage"] = max(0.0, 100.0 * (1 - listing.mileage / cap))

        for name, wanted, actual in (
            ("fuel_type", criteria.fuel_type, listing.fuel_type),
            ("gearbox", criteria.gearbox, listing.gearbox),
            ("seller_type", criteria.seller_type, listing.seller_type),
        ):
            if wanted == "any":
                continue
            if actual is None:
                missing(name)
            else:
                dimensions[name] = 100.0 if actual == wanted else 0.0

        if dimensions:
            score = sum(dimensions.values()) / len(dimensions)
        else:
            score = NEUTRAL_MATCH_SCORE

        matched = [name for name, value in dimensions.items() if value >= 100.0]
        if unknown:
            explanation = f"Unknown: {', '.join(unknown)}"
        elif matched and len(matched) == len(dimensions):
            explanation = "Matches all criteria"
        else:
            explanation = f"Matches {len(matched)}/{len(dimensions)} criteria fully"

        dimensions = {name: round(value, 2) for name, value in dimensions.items()}
        return MatchScore(
            score=round(score, 2),
            dimensions=dimensions,
            unknown=unknown,
            explanation=explanation,
        )

    def _year_score(self, year: int, criteria: SearchCriteria, reference_year: int) -> float:
        """100 at the center of the requested range, YEAR_EDGE_SCORE at its edges, 0 outside."""
        low = criteria.min_year
        high = criteria.max_year

        if low is not None and year < low:
            return 0.0
        if high is not None and year > high:
            return 0.0
        if low is None:
            # Only an upper bound: any year below it fits
            return 100.0
        if high is None:
            # Open-ended range runs up to the current model year
            high = max(low, reference_year)

        half_span = (high - low) / 2
        if half_span <= 0:
            return 100.0
        center = (low + high) / 2
        distance = min(abs(year - center) / half_span, 1.0)
        return 100.0 - (100.0 - YEAR_EDGE_SCORE) * distance

    def _calculate_completeness_score(self, listing: NormalizedListing) -> CompletenessScore:
        missing_fields = listing.missing_fields
        if missing_fields:
            explanation = f"Missing: {', '.join(missing_fields)}"
        else:
            explanation = "Complete listing"
        return CompletenessScore(
            score=round(listing.completeness * 100, 2),
            missing_fields=missing_fields,
            explanation=explanation,
        )

    def _build_summary(
        self,
        price_score: PriceScore,
        match_score: MatchScore,
        completeness_score: CompletenessScore,
    ) -> str:
        """Build one-line summary explanation."""
        parts = [price_score.explanation, match_score.explanation]
        if completeness_score.missing_fields:
            parts.append(completeness_score.explanation)
        return " | ".join(parts)

    def rank(self, scored: list[ScoredListing]) -> list[ScoredListing]:
        """
        Stable sort by descending score and assign ranks from 1. Input
        order (source priority, then fetch order) breaks ties.
        """
        ordered = sorted(scored, key=lambda s: -s.score)
        return [s.model_copy(update={"rank": position}) for position, s in enumerate(ordered, start=1)]

    def score_and_rank(
        self,
        listings: list[NormalizedListing],
        criteria: SearchCriteria,
        baseline: MarketBaseline,
    ) -> list[ScoredListing]:
        scored = [self.score(listing, criteria, baseline) for listing in listings]
        ranked = self.rank(scored)
        logger.info(f"Scored and ranked {len(ranked)} listings")
        return ranked
