"""
Normalizer - maps adapter records into the canonical NormalizedListing.

Field-level tolerance: an unparseable or implausible field is marked
missing/invalid and left as None, the rest of the record is kept. Records
with neither price nor year are dropped.
"""
import hashlib
import logging
import math
import re
from datetime import date, datetime
from typing import Any, Iterator, Optional

from ..models.listing import FieldQuality, NormalizedListing, RawSourceResult


logger = logging.getLogger(__name__)

MAX_PLAUSIBLE_PRICE = 1_000_000
MAX_PLAUSIBLE_MILEAGE = 1_000_000
MIN_PLAUSIBLE_YEAR = 1900

FUEL_VOCABULARY = {
    "essence": "essence",
    "petrol": "essence",
    "gasoline": "essence",
    "ess": "essence",
    "diesel": "diesel",
    "gazole": "diesel",
    "gasoil": "diesel",
    "dies": "diesel",
    "hybride": "hybrid",
    "hybrid": "hybrid",
    "hyb": "hybrid",
    "hybride rechargeable": "hybrid",
    "électrique": "electric",
    "electrique": "electric",
    "electric": "electric",
    "elec": "electric",
}
GEARBOX_VOCABULARY = {
    "manuelle": "manual",
    "manual": "manual",
    "mécanique": "manual",
    "automatique": "automatic",
    "automatic": "automatic",
    "auto": "automatic",
}
SELLER_VOCABULARY = {
    "pro": "professional",
    "professionnel": "professional",
    "professional": "professional",
    "part": "private",
    "particulier": "private",
    "private": "private",
}

# Regular, no-break, narrow no-break and thin spaces used as thousands separators
_SPACES = re.compile(r"\s+")
_NUMBER = re.compile(r"\d+(?:[.,]\d+)*")
_YEAR = re.compile(r"\b(19\d{2}|20\d{2}|2100)\b")


def _finite(value: Any) -> Optional[float]:
    """NaN, infinities and oversized ints (all accepted by json.loads) count as unparseable."""
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def parse_french_number(value: Any) -> Optional[float]:
    """
    Parse numbers as written on French listings.

    "8 000 €" -> 8000, "216 515 km" -> 216515, "139,000" -> 139000,
    "139,5" -> 139.5, "12.500" -> 12500. Returns None when nothing numeric.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _finite(value)
    if not isinstance(value, str):
        return None

    match = _NUMBER.search(_SPACES.sub("", value))
    if not match:
        return None
    text = match.group(0)

    # A single separator followed by exactly three digits groups thousands
    groups = re.split(r"[.,]", text)
    if len(groups) > 1 and all(len(g) == 3 for g in groups[1:]):
        return _finite(float("".join(groups)))

    head, sep, tail = text.rpartition(",") if "," in text else text.rpartition(".")
    if not sep:
        return _finite(float(text))
    head = re.sub(r"[.,]", "", head)
    return _finite(float(f"{head}.{tail}"))


def parse_year(value: Any) -> Optional[int]:
    """Year from an int, "2016", "année 2016", "03/2016" or an ISO date."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (datetime, date)):
        return value.year
    if isinstance(value, (int, float)):
        return int(value) if _finite(value) is not None else None
    if isinstance(value, str):
        match = _YEAR.search(value)
        if match:
            return int(match.group(1))
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def parse_coordinate(value: Any) -> Optional[float]:
    """Signed decimal degrees; comma or dot as decimal separator."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return _finite(float(str(value).strip().replace(",", ".")))
    except ValueError:
        return None


def map_vocabulary(value: Any, vocabulary: dict[str, str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return vocabulary.get(value.strip().lower())


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _hash(*parts: Any) -> str:
    joined = "|".join("" if p is None else str(p) for p in parts)
    return hashlib.md5(joined.encode("utf-8")).hexdigest()[:16]


class Normalizer:
    """
    Turns RawSourceResults into NormalizedListings.
    Pure given the same raw result and reference year.
    """

    def __init__(self, reference_year: Optional[int] = None):
        self.reference_year = reference_year or date.today().year

    def normalize(self, raw: RawSourceResult) -> Iterator[NormalizedListing]:
        """
        Lazily yield normalized listings from one raw result.
        Failed results yield nothing.
        """
        if not raw.ok:
            return

        dropped = 0
        for position, record in enumerate(raw.records):
            listing = self.normalize_record(raw.source_id, record, position, raw.fetched_at)
            if listing is None:
                dropped += 1
                continue
            yield listing

        if dropped:
            logger.info(f"{raw.source_id}: dropped {dropped} unusable records")

    def normalize_record(
        self,
        source_id: str,
        record: dict[str, Any],
        position: int,
        fetched_at: datetime,
    ) -> Optional[NormalizedListing]:
        """Normalize one record, or None when it cannot be scored."""
        quality: dict[str, FieldQuality] = {}

        price = self._bounded_number(
            record.get("price"), "price", quality, lambda p: 0 < p <= MAX_PLAUSIBLE_PRICE
        )
        mileage = self._bounded_number(
            record.get("mileage"), "mileage", quality, lambda m: 0 <= m <= MAX_PLAUSIBLE_MILEAGE
        )
        year = self._year(record.get("year"), quality)

        if price is None and year is None:
            return None

        title = _text(record.get("title"))
        url = _text(record.get("url"))
        quality["title"] = FieldQuality.PARSED if title else FieldQuality.MISSING
        quality["url"] = FieldQuality.PARSED if url else FieldQuality.MISSING

        fuel_type = self._choice(record.get("fuel"), FUEL_VOCABULARY, "fuel_type", quality)
        gearbox = self._choice(record.get("gearbox"), GEARBOX_VOCABULARY, "gearbox", quality)
        seller_type = self._choice(record.get("seller_type"), SELLER_VOCABULARY, "seller_type", quality)

        zip_code = _text(record.get("zip_code"))
        city = _text(record.get("city"))
        latitude = parse_coordinate(record.get("lat"))
        longitude = parse_coordinate(record.get("lon"))
        has_location = bool(zip_code) or (latitude is not None and longitude is not None)
        quality["location"] = FieldQuality.PARSED if has_location else FieldQuality.MISSING

        native_id = _text(record.get("id"))
        if native_id is None:
            native_id = _hash(url) if url else _hash(title, price, year, mileage)

        return NormalizedListing(
            source_id=source_id,
            native_id=native_id,
            title=title,
            brand=_text(record.get("brand")),
            model=_text(record.get("model")),
            price=price,
            year=year,
            mileage=int(mileage) if mileage is not None else None,
            fuel_type=fuel_type,
            gearbox=gearbox,
            seller_type=seller_type,
            zip_code=zip_code,
            city=city,
            latitude=latitude,
            longitude=longitude,
            url=url,
            image_url=_text(record.get("image_url")),
            first_seen=parse_timestamp(record.get("first_seen")),
            fetched_at=fetched_at,
            fetch_order=position,
            field_quality=quality,
        )

    def _bounded_number(self, value, field, quality, plausible) -> Optional[float]:
        if value is None or (isinstance(value, str) and not value.strip()):
            quality[field] = FieldQuality.MISSING
            return None
        number = parse_french_number(value)
        if number is None or not plausible(number):
            quality[field] = FieldQuality.INVALID
            return None
        quality[field] = FieldQuality.PARSED
        return number

    def _year(self, value, quality) -> Optional[int]:
        if value is None or (isinstance(value, str) and not value.strip()):
            quality["year"] = FieldQuality.MISSING
            return None
        year = parse_year(value)
        if year is None or not MIN_PLAUSIBLE_YEAR <= year <= self.reference_year + 1:
            quality["year"] = FieldQuality.INVALID
            return None
        quality["year"] = FieldQuality.PARSED
        return year

    def _choice(self, value, vocabulary, field, quality) -> Optional[str]:
        if value is None or (isinstance(value, str) and not value.strip()):
            quality[field] = FieldQuality.MISSING
            return None
        mapped = map_vocabulary(value, vocabulary)
        quality[field] = FieldQuality.PARSED if mapped else FieldQuality.INVALID
        return mapped
