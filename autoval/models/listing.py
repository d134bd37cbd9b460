"""
Listing models - raw source payloads and the canonical normalized listing.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


SourceStatus = Literal["ok", "timeout", "error"]


class RawSourceResult(BaseModel):
    """
    Outcome of one adapter invocation. Records keep source values unparsed
    but under canonical keys (id, title, price, year, mileage, fuel, ...);
    the normalizer does the parsing.
    """
    source_id: str
    status: SourceStatus
    records: list[dict[str, Any]] = Field(default_factory=list)
    latency_ms: int = 0
    fetched_at: datetime = Field(default_factory=datetime.now)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def failure(
        cls,
        source_id: str,
        status: SourceStatus,
        error: str,
        latency_ms: int = 0,
    ) -> "RawSourceResult":
        """Build a failed result with no records."""
        return cls(source_id=source_id, status=status, error=error, latency_ms=latency_ms)


class FieldQuality(str, Enum):
    """How a listing field came out of normalization."""
    PARSED = "parsed"
    MISSING = "missing"
    INVALID = "invalid"


# Fields whose parse quality is tracked and counted for completeness
TRACKED_FIELDS = (
    "title",
    "price",
    "year",
    "mileage",
    "fuel_type",
    "gearbox",
    "seller_type",
    "location",
    "url",
)


class NormalizedListing(BaseModel):
    """
    Canonical listing shape shared by every source.
    price, year and mileage are either a parsed number or None; field_quality
    says whether None means missing or unparseable, so a zero mileage is
    never confused with an unknown one.
    """
    source_id: str
    native_id: str
    title: Optional[str] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    price: Optional[float] = Field(default=None, description="EUR")
    year: Optional[int] = None
    mileage: Optional[int] = Field(default=None, description="km")
    fuel_type: Optional[str] = None
    gearbox: Optional[str] = None
    seller_type: Optional[str] = None
    zip_code: Optional[str] = None
    city: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    first_seen: Optional[datetime] = None
    fetched_at: datetime = Field(default_factory=datetime.now)
    fetch_order: int = Field(default=0, description="Position in the source's raw result")
    field_quality: dict[str, FieldQuality] = Field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.source_id, self.native_id)

    def has(self, field: str) -> bool:
        """Whether a tracked field was successfully parsed."""
        return self.field_quality.get(field) == FieldQuality.PARSED

    @property
    def completeness(self) -> float:
        """Share of tracked fields that were parsed, 0..1."""
        parsed = sum(1 for field in TRACKED_FIELDS if self.has(field))
        return parsed / len(TRACKED_FIELDS)

    @property
    def missing_fields(self) -> list[str]:
        return [field for field in TRACKED_FIELDS if not self.has(field)]
