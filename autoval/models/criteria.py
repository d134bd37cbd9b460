"""
Search criteria models - the immutable filter descriptor every component reads.
"""
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..errors import Violation
from .analysis import ClientProfile


FuelType = Literal["essence", "diesel", "hybrid", "electric", "any"]
Gearbox = Literal["manual", "automatic", "any"]
SellerType = Literal["professional", "private", "any"]

MAX_PRICE_CEILING = 1_000_000
MIN_YEAR = 1900
MAX_YEAR = 2100
MAX_RADIUS_KM = 500

# Accepted spellings for enum inputs, mapped to their canonical value
FUEL_SYNONYMS = {
    "petrol": "essence",
    "gasoline": "essence",
    "gazole": "diesel",
    "hybride": "hybrid",
    "electrique": "electric",
    "électrique": "electric",
}
GEARBOX_SYNONYMS = {
    "manuelle": "manual",
    "automatique": "automatic",
    "auto": "automatic",
}
SELLER_SYNONYMS = {
    "pro": "professional",
    "professionnel": "professional",
    "particulier": "private",
}


def _canonical_choice(value: Any, synonyms: dict[str, str]) -> Any:
    if value is None:
        return "any"
    if isinstance(value, str):
        cleaned = value.strip().lower()
        if not cleaned:
            return "any"
        return synonyms.get(cleaned, cleaned)
    return value


def _as_number(value: Any) -> Optional[float]:
    """Best-effort numeric view of a raw value, None when it is not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def cross_field_violations(values: Mapping[str, Any]) -> list[Violation]:
    """
    Range checks that involve two fields. Works on snake_case keys and
    tolerates junk values so it can run next to per-field validation.
    """
    violations = []

    min_price = _as_number(values.get("min_price"))
    max_price = _as_number(values.get("max_price"))
    if min_price is not None and max_price is not None and min_price > max_price:
        violations.append(Violation(field="min_price", message="min_price must not exceed max_price"))

    min_year = _as_number(values.get("min_year"))
    max_year = _as_number(values.get("max_year"))
    if min_year is not None and max_year is not None and min_year > max_year:
        violations.append(Violation(field="min_year", message="min_year must not exceed max_year"))

    radius = values.get("radius_km")
    zip_code = values.get("zip_code")
    if radius is not None and not (isinstance(zip_code, str) and zip_code.strip()):
        violations.append(Violation(field="radius_km", message="radius_km requires a zip_code"))

    return violations


class SearchCriteria(BaseModel):
    """
    Validated vehicle search criteria. Frozen: once built it is a read-only
    filter descriptor for adapters, scoring and analysis.
    """
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    brand: str = Field(min_length=1, max_length=100)
    model: Optional[str] = Field(default=None, max_length=100)
    min_price: Optional[int] = Field(default=None, ge=0, le=MAX_PRICE_CEILING)
    max_price: Optional[int] = Field(default=None, ge=0, le=MAX_PRICE_CEILING)
    fuel_type: FuelType = "any"
    min_year: Optional[int] = Field(default=None, ge=MIN_YEAR, le=MAX_YEAR)
    max_year: Optional[int] = Field(default=None, ge=MIN_YEAR, le=MAX_YEAR)
    max_mileage: Optional[int] = Field(default=None, ge=0)
    gearbox: Gearbox = "any"
    seller_type: SellerType = "any"
    zip_code: Optional[str] = Field(default=None, max_length=10)
    radius_km: Optional[int] = Field(default=None, ge=0, le=MAX_RADIUS_KM)
    body_type: Optional[str] = Field(default=None, max_length=50)

    @field_validator("model", "zip_code", "body_type", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("fuel_type", mode="before")
    @classmethod
    def _canonical_fuel(cls, v: Any) -> Any:
        return _canonical_choice(v, FUEL_SYNONYMS)

    @field_validator("gearbox", mode="before")
    @classmethod
    def _canonical_gearbox(cls, v: Any) -> Any:
        return _canonical_choice(v, GEARBOX_SYNONYMS)

    @field_validator("seller_type", mode="before")
    @classmethod
    def _canonical_seller(cls, v: Any) -> Any:
        return _canonical_choice(v, SELLER_SYNONYMS)

    @model_validator(mode="after")
    def _check_ranges(self) -> "SearchCriteria":
        violations = cross_field_violations(self.model_dump())
        if violations:
            raise ValueError("; ".join(v.message for v in violations))
        return self

    @property
    def search_text(self) -> str:
        """Brand and model joined, as typed into marketplace search boxes."""
        return " ".join(part for part in (self.brand, self.model) if part)


class SearchRequest(BaseModel):
    """
    Inbound search request. Criteria stay raw here so the validator can
    report every violation at once.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    criteria: dict[str, Any]
    client_profile: Optional[ClientProfile] = None
    request_enrichment: bool = False

