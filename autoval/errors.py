"""
Exception hierarchy for the search core.

    AutovalError (base)
    ├── CriteriaValidationError
    ├── RateLimited
    ├── QuotaExhausted
    ├── AllSourcesUnavailable
    ├── SourceFetchError
    │   └── AntiBotChallenge
    └── AIAnalysisError

Gating errors (validation, rate limit, quota) abort a run before any source
is contacted. Source and AI errors are contained by the orchestrator and
only show up as per-source status or as a degraded enrichment.
"""
from typing import Any, Optional

from pydantic import BaseModel


class Violation(BaseModel):
    """A single rejected criteria field."""
    field: str
    message: str


class AutovalError(Exception):
    """
    Base exception for all search core errors.

    Attributes:
        message: Human-readable error message
        detail: Optional dict with additional error context
        status_code: Suggested HTTP status code
        code: Machine-readable reason
    """

    code = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[dict[str, Any]] = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.detail = detail
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "reason": self.code,
            "message": self.message,
        }
        if self.detail:
            result["detail"] = self.detail
        return result


class CriteriaValidationError(AutovalError):
    """Raised when search criteria violate one or more constraints."""

    code = "validation_error"

    def __init__(self, violations: list[Violation]):
        self.violations = violations
        fields = ", ".join(v.field for v in violations)
        super().__init__(
            f"Invalid search criteria: {fields}",
            detail={"violations": [v.model_dump() for v in violations]},
            status_code=400,
        )


class RateLimited(AutovalError):
    """Raised when an identity exceeds the request-frequency cap for an action."""

    code = "rate_limited"

    def __init__(self, action: str, retry_after: float):
        self.action = action
        self.retry_after = retry_after
        super().__init__(
            f"Too many {action} requests, retry in {retry_after:.0f}s",
            detail={"action": action, "retry_after": retry_after},
            status_code=429,
        )


class QuotaExhausted(AutovalError):
    """Raised when the user has no remaining allowance for an action."""

    code = "quota_exhausted"

    def __init__(self, action: str, unlimited: bool = False):
        self.action = action
        self.unlimited = unlimited
        super().__init__(
            f"No remaining {action} quota",
            detail={"action": action, "unlimited": unlimited},
            status_code=402,
        )


class AllSourcesUnavailable(AutovalError):
    """Raised when every source adapter failed or timed out."""

    code = "all_sources_unavailable"

    def __init__(self, source_status: dict[str, str]):
        self.source_status = source_status
        super().__init__(
            "No marketplace source returned results",
            detail={"source_status": source_status},
            status_code=503,
        )


class SourceFetchError(AutovalError):
    """Raised inside an adapter when its upstream cannot be fetched."""

    code = "source_error"

    def __init__(self, source_id: str, message: str, *, status: Optional[int] = None):
        self.source_id = source_id
        self.status = status
        super().__init__(f"{source_id}: {message}", detail={"status": status}, status_code=502)


class AntiBotChallenge(SourceFetchError):
    """The upstream answered with a block page or challenge instead of content."""

    code = "anti_bot_challenge"


class AIAnalysisError(AutovalError):
    """Raised by the merchant analyzer when inference fails or returns garbage."""

    code = "ai_analysis_error"

    def __init__(self, message: str, *, reason: str = "error"):
        self.reason = reason
        super().__init__(message, detail={"reason": reason}, status_code=502)
