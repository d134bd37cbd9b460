"""
Response models - what a completed search run returns.
"""
from typing import Any, Optional

from pydantic import BaseModel, Field

from .analysis import EnrichmentOutcome, MerchantAIResult
from .listing import SourceStatus
from .scoring import ScoredListing


class SourceReport(BaseModel):
    """Per-source diagnostics for one run."""
    source_id: str
    status: SourceStatus
    record_count: int = 0
    latency_ms: int = 0
    message: Optional[str] = None


class SearchResponse(BaseModel):
    """
    Ranked listings plus per-source status and the optional analysis.
    Partial source failure is not an error: it only shows in source_status.
    """
    run_id: str
    listings: list[ScoredListing] = Field(default_factory=list)
    source_status: dict[str, SourceStatus] = Field(default_factory=dict)
    source_reports: list[SourceReport] = Field(default_factory=list)
    merchant_analysis: Optional[MerchantAIResult] = None
    enrichment: EnrichmentOutcome = Field(default_factory=EnrichmentOutcome)
    candidates_normalized: int = 0

    @property
    def degraded(self) -> bool:
        return self.enrichment.degraded

    def to_payload(self) -> dict[str, Any]:
        """Outbound JSON shape."""
        payload = {
            "runId": self.run_id,
            "listings": [scored.model_dump(mode="json") for scored in self.listings],
            "sourceStatus": dict(self.source_status),
            "sourceReports": [report.model_dump(mode="json") for report in self.source_reports],
            "degraded": self.degraded,
            "enrichment": self.enrichment.model_dump(mode="json"),
        }
        if self.merchant_analysis is not None:
            payload["merchantAnalysis"] = self.merchant_analysis.model_dump(mode="json")
        return payload
