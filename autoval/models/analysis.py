"""
Merchant analysis models - caller profile in, AI verdict out.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ClientProfile(BaseModel):
    """
    Caller-supplied context for the merchant analysis. Passed through to
    the prompt as-is; only the shape is checked.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    budget: Optional[float] = None
    budget_flexibility: Optional[str] = Field(default=None, description="e.g. 'strict', '+10%'")
    urgency: Optional[str] = Field(default=None, description="e.g. 'this week', 'no rush'")
    negotiation_style: Optional[str] = Field(default=None, description="e.g. 'firm', 'friendly'")
    preferences: dict[str, Any] = Field(default_factory=dict)
    location: Optional[dict[str, Any]] = None


class MerchantAIResult(BaseModel):
    """Structured verdict returned by the merchant analyzer."""
    recommendations: list[str] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    negotiation_angle: Optional[str] = Field(
        default=None,
        description="How to approach the seller on price",
    )
    risk_level: Literal["low", "medium", "high"] = "medium"
    risk_flags: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0, le=1, description="Analyzer self-reported confidence")


class EnrichmentOutcome(BaseModel):
    """
    Tagged result of the optional enrichment step: either the analysis is
    present, or it is absent with a reason.
    """
    status: Literal["not_requested", "present", "absent"] = "not_requested"
    reason: Optional[str] = Field(
        default=None,
        description="Why the analysis is absent: not_configured, no_listings, timeout, error, invalid_response or low_confidence",
    )

    @property
    def degraded(self) -> bool:
        """Enrichment was asked for but did not make it into the response."""
        return self.status == "absent"
