"""
Configuration and environment handling for Autoval.
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables
load_dotenv()


class OpenAIConfig(BaseModel):
    """OpenAI API configuration."""
    api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    model: str = Field(default_factory=lambda: os.getenv("OPENAI_MODEL", "gpt-4o-mini"))
    max_tokens: int = Field(default=1000)
    temperature: float = Field(default=0.3)


class ZenRowsConfig(BaseModel):
    """Page fetch provider configuration (anti-bot proxy)."""
    api_key: str = Field(default_factory=lambda: os.getenv("ZENROWS_API_KEY", ""))
    base_url: str = Field(default="https://api.zenrows.com/v1/")
    premium_proxy: bool = Field(default=True)
    proxy_country: str = Field(default="fr")
    max_attempts: int = Field(default=2, description="Initial call plus one retry")
    backoff_seconds: float = Field(default=1.0)
    retryable_statuses: list[int] = Field(default_factory=lambda: [403, 422, 429, 500, 502, 503])


class RateLimitRule(BaseModel):
    """A named request-frequency cap: max_requests per rolling window."""
    max_requests: int = Field(ge=1)
    window_seconds: float = Field(gt=0)


class RateLimitConfig(BaseModel):
    """Named rate-limit definitions keyed by action type."""
    rules: dict[str, RateLimitRule] = Field(default_factory=lambda: {
        "search": RateLimitRule(
            max_requests=int(os.getenv("RATE_LIMIT_SEARCH_MAX", "10")),
            window_seconds=float(os.getenv("RATE_LIMIT_SEARCH_WINDOW", "60")),
        ),
        "analysis": RateLimitRule(
            max_requests=int(os.getenv("RATE_LIMIT_ANALYSIS_MAX", "5")),
            window_seconds=float(os.getenv("RATE_LIMIT_ANALYSIS_WINDOW", "60")),
        ),
    })


class QuotaConfig(BaseModel):
    """Default allowances for identities the ledger store has never seen."""
    default_allowance: dict[str, int] = Field(default_factory=lambda: {
        "search": int(os.getenv("QUOTA_DEFAULT_SEARCH", "5")),
        "analysis": int(os.getenv("QUOTA_DEFAULT_ANALYSIS", "2")),
    })
    unlimited_identities: set[str] = Field(default_factory=lambda: {
        user_id.strip()
        for user_id in os.getenv("QUOTA_UNLIMITED_USERS", "").split(",")
        if user_id.strip()
    })


class SourcesConfig(BaseModel):
    """Which marketplace sources run, and their static priority (first = highest)."""
    enabled: list[str] = Field(default_factory=lambda: [
        s.strip() for s in os.getenv("AUTOVAL_SOURCES", "leboncoin,lacentrale").split(",") if s.strip()
    ])
    priority: list[str] = Field(default_factory=lambda: ["leboncoin", "lacentrale"])
    max_results_per_source: int = Field(default=100)

    def rank_of(self, source_id: str) -> int:
        """Position of a source in the priority order (unknown sources rank last)."""
        try:
            return self.priority.index(source_id)
        except ValueError:
            return len(self.priority)


class ScoringWeights(BaseModel):
    """
    Weights of the scoring dimensions. They must sum to 1 so the total
    stays on the same 0-100 scale as the sub-scores.
    """
    price_weight: float = Field(default=0.40, ge=0, le=1)
    match_weight: float = Field(default=0.40, ge=0, le=1)
    completeness_weight: float = Field(default=0.20, ge=0, le=1)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "ScoringWeights":
        total = self.price_weight + self.match_weight + self.completeness_weight
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1.0, got {total:.3f}")
        return self


class OrchestratorConfig(BaseModel):
    """Per-run budgets for the search orchestrator."""
    run_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AUTOVAL_RUN_TIMEOUT", "25")),
        gt=0,
    )
    analysis_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AUTOVAL_ANALYSIS_TIMEOUT", "20")),
        gt=0,
    )
    analysis_top_n: int = Field(default=10, description="Top listings sent to the merchant analyzer")
    min_analysis_confidence: float = Field(default=0.3, ge=0, le=1)
    min_comps: int = Field(default=3, description="Minimum comps for a reliable baseline")


class Config(BaseModel):
    """Main configuration."""
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    zenrows: ZenRowsConfig = Field(default_factory=ZenRowsConfig)
    rate_limits: RateLimitConfig = Field(default_factory=RateLimitConfig)
    quotas: QuotaConfig = Field(default_factory=QuotaConfig)
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    scoring: ScoringWeights = Field(default_factory=ScoringWeights)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)

    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


# Singleton config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create the singleton config instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for scripts and services."""
    logging.basicConfig(
        level=getattr(logging, (level or get_config().log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
