"""
Request/response surface - inbound payload in, outbound dict out.
"""
import asyncio
import logging
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from .ai.merchant import MerchantAnalyzer
from .config import Config, get_config
from .errors import AutovalError, CriteriaValidationError, Violation
from .gating.quota import QuotaLedger
from .gating.rate_limiter import RateLimiter
from .models.criteria import SearchRequest
from .pipeline.orchestrator import SearchOrchestrator
from .sources import build_adapters


logger = logging.getLogger(__name__)


def error_payload(error: AutovalError) -> dict[str, Any]:
    """Machine-readable error body, with the retry/quota hints lifted to the top level."""
    payload = error.to_dict()
    payload["status_code"] = error.status_code
    for attr in ("retry_after", "action", "unlimited"):
        if hasattr(error, attr):
            payload[attr] = getattr(error, attr)
    return payload


class SearchService:
    """
    Entry point used by the HTTP layer or the CLI. Identity and the
    unlimited flag come from the external auth collaborator.
    """

    def __init__(self, orchestrator: SearchOrchestrator):
        self.orchestrator = orchestrator

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "SearchService":
        """Wire the production components from configuration."""
        config = config or get_config()
        analyzer = MerchantAnalyzer(timeout=config.orchestrator.analysis_timeout_seconds)
        orchestrator = SearchOrchestrator(
            adapters=build_adapters(config.sources),
            rate_limiter=RateLimiter(config.rate_limits.rules),
            quota_ledger=QuotaLedger(config=config.quotas),
            analyzer=analyzer,
            config=config,
        )
        return cls(orchestrator)

    async def handle_async(
        self,
        identity: str,
        payload: Mapping[str, Any],
        unlimited: bool = False,
    ) -> dict[str, Any]:
        try:
            request = SearchRequest.model_validate(payload)
        except ValidationError as e:
            violations = [
                Violation(field=".".join(str(part) for part in item["loc"]) or "request", message=item["msg"])
                for item in e.errors()
            ]
            return error_payload(CriteriaValidationError(violations))

        try:
            response = await self.orchestrator.run(identity, request, unlimited=unlimited)
        except AutovalError as e:
            logger.info(f"Search for {identity} failed: {e.code}")
            return error_payload(e)

        return response.to_payload()

    def handle(
        self,
        identity: str,
        payload: Mapping[str, Any],
        unlimited: bool = False,
    ) -> dict[str, Any]:
        """
        Run a search and return the outbound dict: listings, sourceStatus,
        merchantAnalysis (only when an analysis is attached), degraded,
        enrichment; or an error dict carrying
        reason and, where relevant, retry_after / action / unlimited.
        """
        return asyncio.run(self.handle_async(identity, payload, unlimited=unlimited))
