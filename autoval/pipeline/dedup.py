"""
Deduplication - collapse repeated records and the same car seen on two sites.
"""
import hashlib
import logging
import re
from typing import Callable, Optional

from ..models.listing import NormalizedListing


logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")


def fingerprint(listing: NormalizedListing) -> Optional[str]:
    """
    Physical-car fingerprint: identity words, price, year, and mileage
    rounded to 1000 km. None when any component is unknown.
    """
    if listing.price is None or listing.year is None or listing.mileage is None:
        return None

    if listing.brand and listing.model:
        identity = f"{listing.brand} {listing.model}"
    else:
        identity = listing.title or ""
    tokens = sorted(set(_TOKEN.findall(identity.lower())))
    if not tokens:
        return None

    key = f"{' '.join(tokens)}|{int(listing.price)}|{listing.year}|{listing.mileage // 1000}"
    return hashlib.md5(key.encode("utf-8")).hexdigest()


class Deduplicator:
    """
    Keeps one record per (source id, native id), then one record per
    fingerprint across sources.

    Winner: more field-complete, then more recently fetched, then higher
    static source priority.
    """

    def __init__(self, source_rank: Callable[[str], int]):
        self.source_rank = source_rank

    def _preference(self, listing: NormalizedListing) -> tuple:
        return (listing.completeness, listing.fetched_at, -self.source_rank(listing.source_id))

    def _better(self, challenger: NormalizedListing, incumbent: NormalizedListing) -> bool:
        return self._preference(challenger) > self._preference(incumbent)

    def deduplicate(self, listings: list[NormalizedListing]) -> list[NormalizedListing]:
        """Returns the surviving listings ordered by source priority, then fetch order."""
        by_key: dict[tuple[str, str], NormalizedListing] = {}
        for listing in listings:
            current = by_key.get(listing.dedup_key)
            if current is None or self._better(listing, current):
                by_key[listing.dedup_key] = listing

        survivors: list[NormalizedListing] = []
        by_fingerprint: dict[str, int] = {}
        for listing in self._ordered(by_key.values()):
            fp = fingerprint(listing)
            if fp is None:
                survivors.append(listing)
                continue

            index = by_fingerprint.get(fp)
            if index is None:
                by_fingerprint[fp] = len(survivors)
                survivors.append(listing)
                continue

            incumbent = survivors[index]
            if incumbent.source_id == listing.source_id:
                # Two ads from one site are two ads
                survivors.append(listing)
            elif self._better(listing, incumbent):
                survivors[index] = listing

        removed = len(listings) - len(survivors)
        if removed:
            logger.info(f"Deduplication removed {removed} listings")
        return self._ordered(survivors)

    def _ordered(self, listings) -> list[NormalizedListing]:
        return sorted(listings, key=lambda l: (self.source_rank(l.source_id), l.fetch_order))
