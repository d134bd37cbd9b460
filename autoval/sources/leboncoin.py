"""
LeBonCoin adapter - search page through the fetcher, ads from __NEXT_DATA__.
"""
import logging
from typing import Any, Optional
from urllib.parse import urlencode

from ..errors import SourceFetchError
from ..models.criteria import SearchCriteria
from .base import SourceAdapter, dig, extract_script_json
from .fetcher import ZenRowsFetcher


logger = logging.getLogger(__name__)

BASE_URL = "https://www.leboncoin.fr"
NEXT_DATA_PATTERN = r'<script[^>]*id=["\']__NEXT_DATA__["\'][^>]*>(.*?)</script>'

# Vehicle category on the search page
CARS_CATEGORY = "2"

FUEL_CODES = {"essence": "1", "diesel": "2", "electric": "4", "hybrid": "6"}
GEARBOX_CODES = {"manual": "1", "automatic": "2"}
SELLER_CODES = {"professional": "pro", "private": "private"}


class LeboncoinAdapter(SourceAdapter):
    """Reference adapter for leboncoin.fr vehicle listings."""

    source_id = "leboncoin"

    def __init__(self, fetcher: Optional[ZenRowsFetcher] = None, max_results: int = 100):
        self.fetcher = fetcher or ZenRowsFetcher()
        self.max_results = max_results

    def build_search_url(self, criteria: SearchCriteria) -> str:
        """Translate criteria into search page query parameters."""
        params = {"category": CARS_CATEGORY, "text": criteria.search_text}

        if criteria.min_price is not None or criteria.max_price is not None:
            low = criteria.min_price if criteria.min_price is not None else "min"
            high = criteria.max_price if criteria.max_price is not None else "max"
            params["price"] = f"{low}-{high}"
        if criteria.max_mileage is not None:
            params["mileage"] = f"min-{criteria.max_mileage}"
        if criteria.min_year is not None or criteria.max_year is not None:
            low = criteria.min_year if criteria.min_year is not None else "min"
            high = criteria.max_year if criteria.max_year is not None else "max"
            params["regdate"] = f"{low}-{high}"
        if criteria.fuel_type in FUEL_CODES:
            params["fuel"] = FUEL_CODES[criteria.fuel_type]
        if criteria.gearbox in GEARBOX_CODES:
            params["gearbox"] = GEARBOX_CODES[criteria.gearbox]
        if criteria.seller_type in SELLER_CODES:
            params["owner_type"] = SELLER_CODES[criteria.seller_type]
        if criteria.zip_code:
            location = criteria.zip_code
            if criteria.radius_km:
                location = f"{location}__{criteria.radius_km * 1000}"
            params["locations"] = location

        return f"{BASE_URL}/recherche?{urlencode(params)}"

    def fetch_records(self, criteria: SearchCriteria, budget_seconds: float) -> list[dict[str, Any]]:
        url = self.build_search_url(criteria)
        logger.info(f"Searching leboncoin: {url}")

        html = self.fetcher.fetch_html(self.source_id, url, budget_seconds)
        data = extract_script_json(html, NEXT_DATA_PATTERN)
        if data is None:
            raise SourceFetchError(self.source_id, "__NEXT_DATA__ not found in page")

        ads = dig(data, "props", "pageProps", "searchData", "ads", default=[])
        return [self.map_ad(ad) for ad in ads[: self.max_results] if isinstance(ad, dict)]

    def map_ad(self, ad: dict[str, Any]) -> dict[str, Any]:
        """Map one LeBonCoin ad onto canonical raw keys, values untouched."""
        attributes = _attributes_by_key(ad.get("attributes"))
        ad_id = ad.get("list_id") or ad.get("id")
        price = ad.get("price")
        if isinstance(price, list):
            price = price[0] if price else None

        return {
            "id": ad_id,
            "title": ad.get("subject") or ad.get("title"),
            "brand": attributes.get("brand"),
            "model": attributes.get("model"),
            "price": price,
            "year": attributes.get("regdate") or attributes.get("year"),
            "mileage": attributes.get("mileage"),
            "fuel": attributes.get("fuel"),
            "gearbox": attributes.get("gearbox"),
            "seller_type": ad.get("owner", {}).get("type") if isinstance(ad.get("owner"), dict) else None,
            "zip_code": dig(ad, "location", "zipcode"),
            "city": dig(ad, "location", "city") or dig(ad, "location", "city_label"),
            "lat": dig(ad, "location", "lat"),
            "lon": dig(ad, "location", "lng"),
            "url": ad.get("url") or (f"{BASE_URL}/ad/voitures/{ad_id}" if ad_id else None),
            "image_url": dig(ad, "images", "urls_thumb", 0) or dig(ad, "images", "urls_large", 0),
            "first_seen": ad.get("first_publication_date"),
        }


def _attributes_by_key(attributes: Any) -> dict[str, Any]:
    """
    LeBonCoin ships attributes either as a dict or as a list of
    {key, value, value_label}; flatten to key -> label (or value).
    """
    if isinstance(attributes, dict):
        return attributes
    flat = {}
    for item in attributes or []:
        if isinstance(item, dict) and item.get("key"):
            flat[item["key"]] = item.get("value_label") or item.get("value")
    return flat
