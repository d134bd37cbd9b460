"""
Comps calculator - market baseline from comparable listings of the same run.
"""
import logging
from datetime import date
from typing import Callable, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

from ..models.listing import NormalizedListing
from ..models.scoring import MarketStats


logger = logging.getLogger(__name__)

# Model years either side of the target that still count as comparable
YEAR_BAND = 2


def _brand(listing: NormalizedListing) -> Optional[str]:
    if listing.brand:
        return listing.brand.strip().lower()
    if listing.title:
        words = listing.title.split()
        return words[0].lower() if words else None
    return None


def _model(listing: NormalizedListing) -> Optional[str]:
    return listing.model.strip().lower() if listing.model else None


class MarketBaseline(BaseModel):
    """
    Per-listing market stats for one run, keyed by (source id, native id).
    Frozen once built so scoring stays a pure function of it.
    """
    model_config = ConfigDict(frozen=True)

    reference_year: int
    market: MarketStats = Field(default_factory=MarketStats.empty)
    stats: dict[str, MarketStats] = Field(default_factory=dict)

    @staticmethod
    def key_for(listing: NormalizedListing) -> str:
        return f"{listing.source_id}:{listing.native_id}"

    def stats_for(self, listing: NormalizedListing) -> MarketStats:
        return self.stats.get(self.key_for(listing), MarketStats.empty())


class CompsCalculator:
    """
    Calculates market statistics for comparable listing groups.
    Supports relaxation when groups are too small.
    """

    def __init__(self, min_comps: int = 3):
        """
        Args:
            min_comps: Minimum number of comps for reliable stats
        """
        self.min_comps = min_comps

    def calculate(self, listings: list[NormalizedListing]) -> MarketStats:
        """Median, quartiles and IQR of the listings' prices."""
        prices = [l.price for l in listings if l.price is not None and l.price > 0]
        if not prices:
            return MarketStats.empty()

        prices_array = np.array(prices, dtype=float)
        q1 = float(np.percentile(prices_array, 25))
        q3 = float(np.percentile(prices_array, 75))

        return MarketStats(
            median=float(np.median(prices_array)),
            iqr=q3 - q1,
            q1=q1,
            q3=q3,
            min_price=float(np.min(prices_array)),
            max_price=float(np.max(prices_array)),
            n=len(prices),
            is_sufficient=len(prices) >= self.min_comps,
        )

    def _relaxation_levels(
        self, target: NormalizedListing
    ) -> list[tuple[str, Callable[[NormalizedListing], bool]]]:
        """Comp groups from tightest to loosest; levels the target cannot key on are skipped."""
        brand, model, year = _brand(target), _model(target), target.year
        levels = []

        if brand and model and year is not None:
            levels.append((
                f"brand={brand}|model={model}|year={year - YEAR_BAND}-{year + YEAR_BAND}",
                lambda l: _brand(l) == brand and _model(l) == model
                and l.year is not None and abs(l.year - year) <= YEAR_BAND,
            ))
        if brand and model:
            levels.append((f"brand={brand}|model={model}", lambda l: _brand(l) == brand and _model(l) == model))
        if brand:
            levels.append((f"brand={brand}", lambda l: _brand(l) == brand))
        return levels

    def find_comps(
        self,
        target: NormalizedListing,
        all_listings: list[NormalizedListing],
    ) -> tuple[list[NormalizedListing], MarketStats]:
        """
        Find comparable listings for a target and calculate stats.
        Uses progressive relaxation; the target never counts as its own comp.

        Returns:
            Tuple of (comp_listings, market_stats)
        """
        others = [
            l for l in all_listings
            if l.dedup_key != target.dedup_key and l.price is not None
        ]

        for relaxation, (comp_key, matches) in enumerate(self._relaxation_levels(target)):
            comps = [l for l in others if matches(l)]
            if len(comps) >= self.min_comps:
                stats = self.calculate(comps)
                stats.relaxation_level = relaxation
                stats.comp_key = comp_key
                return comps, stats

        # No sufficient group - use everything in the run
        stats = self.calculate(others)
        stats.relaxation_level = len(self._relaxation_levels(target))
        stats.comp_key = "all"
        return others, stats

    def build_baseline(
        self,
        listings: list[NormalizedListing],
        reference_year: Optional[int] = None,
    ) -> MarketBaseline:
        """Compute comps for every listing once, for the whole run."""
        stats = {}
        for listing in listings:
            _, listing_stats = self.find_comps(listing, listings)
            stats[MarketBaseline.key_for(listing)] = listing_stats

        market = self.calculate(listings)
        market.comp_key = "all"
        logger.info(
            f"Baseline built for {len(listings)} listings "
            f"(market median {market.median:.0f}, n={market.n})"
        )
        return MarketBaseline(
            reference_year=reference_year or date.today().year,
            market=market,
            stats=stats,
        )
