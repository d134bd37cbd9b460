"""
Shared fakes and fixtures. No test touches the network.
"""
import asyncio
from typing import Any, Optional

import pytest

from autoval.config import (
    Config,
    OpenAIConfig,
    OrchestratorConfig,
    QuotaConfig,
    RateLimitConfig,
    RateLimitRule,
    SourcesConfig,
    ZenRowsConfig,
)
from autoval.errors import AIAnalysisError
from autoval.gating.quota import InMemoryQuotaStore, QuotaLedger
from autoval.gating.rate_limiter import RateLimiter
from autoval.models.analysis import MerchantAIResult
from autoval.models.listing import RawSourceResult
from autoval.sources.base import SourceAdapter


REFERENCE_YEAR = 2024


class FakeAdapter(SourceAdapter):
    """Returns canned records through the real fetch() wrapper."""

    def __init__(self, source_id: str, records: list[dict[str, Any]], error: Optional[Exception] = None):
        self.source_id = source_id
        self.records = records
        self.error = error
        self.calls = 0

    def fetch_records(self, criteria, budget_seconds):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [dict(record) for record in self.records]


class HangingAdapter(SourceAdapter):
    """Never answers before the deadline."""

    def __init__(self, source_id: str, delay: float = 30.0):
        self.source_id = source_id
        self.delay = delay
        self.calls = 0

    def fetch_records(self, criteria, budget_seconds):
        raise AssertionError("fetch() is overridden")

    async def fetch(self, criteria, deadline) -> RawSourceResult:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return RawSourceResult(source_id=self.source_id, status="ok", records=[])


class FakeAnalyzer:
    """Analyzer double: returns a result, raises, or sleeps past the deadline."""

    def __init__(
        self,
        result: Optional[MerchantAIResult] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        available: bool = True,
    ):
        self.result = result
        self.error = error
        self.delay = delay
        self.available = available
        self.calls: list[dict[str, Any]] = []

    def is_available(self) -> bool:
        return self.available

    async def analyze(self, listings, criteria, profile=None) -> MerchantAIResult:
        self.calls.append({"listings": listings, "criteria": criteria, "profile": profile})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.result is None:
            raise AIAnalysisError("no canned result")
        return self.result


def car(
    native_id: str,
    price: Any,
    year: Any,
    mileage: Any,
    title: str = "Peugeot 308 1.2 PureTech",
    **extra: Any,
) -> dict[str, Any]:
    """A raw record with canonical keys, every field present unless overridden."""
    record = {
        "id": native_id,
        "title": title,
        "brand": "Peugeot",
        "model": "308",
        "price": price,
        "year": year,
        "mileage": mileage,
        "fuel": "Essence",
        "gearbox": "Manuelle",
        "seller_type": "particulier",
        "zip_code": "75011",
        "city": "Paris",
        "url": f"https://example.test/ad/{native_id}",
    }
    record.update(extra)
    return record


@pytest.fixture
def config() -> Config:
    """Deterministic config with short budgets."""
    return Config(
        openai=OpenAIConfig(api_key=""),
        zenrows=ZenRowsConfig(api_key="", backoff_seconds=0),
        rate_limits=RateLimitConfig(rules={
            "search": RateLimitRule(max_requests=10, window_seconds=60),
            "analysis": RateLimitRule(max_requests=5, window_seconds=60),
        }),
        quotas=QuotaConfig(default_allowance={"search": 5, "analysis": 2}, unlimited_identities={"admin"}),
        sources=SourcesConfig(enabled=["A", "B", "C"], priority=["A", "B", "C"]),
        orchestrator=OrchestratorConfig(
            run_timeout_seconds=0.5,
            analysis_timeout_seconds=0.2,
            min_comps=3,
        ),
    )


@pytest.fixture
def quota_ledger(config) -> QuotaLedger:
    return QuotaLedger(store=InMemoryQuotaStore(config.quotas.default_allowance), config=config.quotas)


@pytest.fixture
def rate_limiter(config) -> RateLimiter:
    return RateLimiter(config.rate_limits.rules)


@pytest.fixture
def analysis_result() -> MerchantAIResult:
    return MerchantAIResult(
        recommendations=["Call the seller of listing #1 first"],
        insights=["Prices cluster around 12 000 EUR"],
        negotiation_angle="Point at the mileage to ask for 5% off",
        risk_level="low",
        risk_flags=[],
        confidence=0.8,
    )
