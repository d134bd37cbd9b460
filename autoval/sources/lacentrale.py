"""
LaCentrale adapter - listing page through the fetcher, ads from __INITIAL_STATE__.
"""
import logging
from typing import Any, Optional
from urllib.parse import urlencode

from ..errors import SourceFetchError
from ..models.criteria import SearchCriteria
from .base import SourceAdapter, dig, extract_script_json
from .fetcher import ZenRowsFetcher


logger = logging.getLogger(__name__)

BASE_URL = "https://www.lacentrale.fr"
INITIAL_STATE_PATTERN = r"window\.__INITIAL_STATE__\s*=\s*(\{.+?\});\s*</script>"

# Where the ad array has been seen inside the state blob
AD_PATHS = (
    ("ads",),
    ("listings",),
    ("vehicles",),
    ("data", "ads"),
    ("data", "listings"),
    ("searchResults", "ads"),
    ("search", "results", "listings"),
)

FUEL_CODES = {"essence": "ess", "diesel": "dies", "electric": "elec", "hybrid": "hyb"}
GEARBOX_CODES = {"manual": "MANUAL", "automatic": "AUTO"}
SELLER_CODES = {"professional": "PRO", "private": "PART"}


class LacentraleAdapter(SourceAdapter):
    """Reference adapter for lacentrale.fr used-car listings."""

    source_id = "lacentrale"

    def __init__(self, fetcher: Optional[ZenRowsFetcher] = None, max_results: int = 100):
        self.fetcher = fetcher or ZenRowsFetcher()
        self.max_results = max_results

    def build_search_url(self, criteria: SearchCriteria) -> str:
        make_model = criteria.brand.upper()
        if criteria.model:
            make_model = f"{make_model}:{criteria.model.upper()}"

        params: dict[str, Any] = {"makesModelsCommercialNames": make_model}
        if criteria.min_price is not None:
            params["priceMin"] = criteria.min_price
        if criteria.max_price is not None:
            params["priceMax"] = criteria.max_price
        if criteria.max_mileage is not None:
            params["mileageMax"] = criteria.max_mileage
        if criteria.min_year is not None:
            params["yearMin"] = criteria.min_year
        if criteria.max_year is not None:
            params["yearMax"] = criteria.max_year
        if criteria.fuel_type in FUEL_CODES:
            params["energies"] = FUEL_CODES[criteria.fuel_type]
        if criteria.gearbox in GEARBOX_CODES:
            params["gearbox"] = GEARBOX_CODES[criteria.gearbox]
        if criteria.seller_type in SELLER_CODES:
            params["customerType"] = SELLER_CODES[criteria.seller_type]
        if criteria.zip_code:
            params["zipCode"] = criteria.zip_code
            if criteria.radius_km:
                params["distance"] = criteria.radius_km

        return f"{BASE_URL}/listing?{urlencode(params)}"

    def fetch_records(self, criteria: SearchCriteria, budget_seconds: float) -> list[dict[str, Any]]:
        url = self.build_search_url(criteria)
        logger.info(f"Searching lacentrale: {url}")

        html = self.fetcher.fetch_html(self.source_id, url, budget_seconds)
        state = extract_script_json(html, INITIAL_STATE_PATTERN)
        if state is None:
            raise SourceFetchError(self.source_id, "__INITIAL_STATE__ not found in page")

        ads: list = []
        for path in AD_PATHS:
            found = dig(state, *path)
            if isinstance(found, list):
                ads = found
                break
        return [self.map_ad(ad) for ad in ads[: self.max_results] if isinstance(ad, dict)]

    def map_ad(self, ad: dict[str, Any]) -> dict[str, Any]:
        """Map one LaCentrale ad onto canonical raw keys, values untouched."""
        vehicle = ad.get("vehicle") if isinstance(ad.get("vehicle"), dict) else ad
        ad_id = ad.get("id") or ad.get("adId") or ad.get("listId")

        url = ad.get("url") or ad.get("link")
        if url:
            url = str(url).split("#")[0].split("?")[0]
            if not url.startswith("http"):
                url = f"{BASE_URL}/{url.lstrip('/')}"
        elif ad_id:
            url = f"{BASE_URL}/auto-occasion-annonce-{ad_id}.html"

        return {
            "id": ad_id,
            "title": ad.get("title") or ad.get("name") or ad.get("label"),
            "brand": vehicle.get("make") or vehicle.get("brand"),
            "model": vehicle.get("model") or vehicle.get("commercialName"),
            "price": ad.get("price") or ad.get("priceEur"),
            "year": vehicle.get("year") or vehicle.get("registrationYear"),
            "mileage": vehicle.get("mileage") or vehicle.get("km"),
            "fuel": vehicle.get("energy") or vehicle.get("fuel"),
            "gearbox": vehicle.get("gearbox") or vehicle.get("transmission"),
            "seller_type": ad.get("customerType") or ad.get("sellerType"),
            "zip_code": dig(ad, "location", "zipCode") or ad.get("zipCode"),
            "city": dig(ad, "location", "city") or ad.get("city"),
            "lat": dig(ad, "location", "latitude"),
            "lon": dig(ad, "location", "longitude"),
            "url": url,
            "image_url": dig(ad, "photos", 0) or ad.get("image"),
            "first_seen": ad.get("firstOnlineDate") or ad.get("publicationDate"),
        }
