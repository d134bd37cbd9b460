"""
Tests for the search orchestrator: fan-out, partial failure, gating and
enrichment degradation. Adapters and the analyzer are fakes.
"""
import asyncio

import pytest

from autoval.config import RateLimitRule
from autoval.errors import (
    AIAnalysisError,
    AllSourcesUnavailable,
    CriteriaValidationError,
    QuotaExhausted,
    RateLimited,
)
from autoval.gating.rate_limiter import RateLimiter
from autoval.models.analysis import ClientProfile
from autoval.pipeline.orchestrator import SearchOrchestrator

from .conftest import REFERENCE_YEAR, FakeAdapter, FakeAnalyzer, HangingAdapter, car


CRITERIA = {"brand": "Peugeot", "maxPrice": 15000, "minYear": 2015}

SOURCE_A = [
    car("a1", "9 800 €", "2016", "120 000 km"),
    car("a2", "10 500 €", "2017", "98 000 km"),
    car("a3", "12 000 €", "2018", "75 000 km"),
    car("a4", "13 200 €", "2019", "52 000 km"),
    car("a5", "14 500 €", "2020", "31 000 km"),
]

SOURCE_C = [
    car("c1", 11500, 2018, 70000),
    car("c2", 11500, 2018, None),
]


def _run(coro):
    return asyncio.run(coro)


@pytest.fixture
def make_orchestrator(config, quota_ledger, rate_limiter):
    def _make(adapters, analyzer=None, limiter=None):
        return SearchOrchestrator(
            adapters=adapters,
            rate_limiter=limiter or rate_limiter,
            quota_ledger=quota_ledger,
            analyzer=analyzer,
            config=config,
            reference_year=REFERENCE_YEAR,
        )
    return _make


class TestFanOut:
    """Tests for parallel collection and partial failure."""

    def test_end_to_end_with_one_source_timing_out(self, make_orchestrator, quota_ledger):
        orchestrator = make_orchestrator([
            FakeAdapter("A", SOURCE_A),
            HangingAdapter("B"),
            FakeAdapter("C", SOURCE_C),
        ])

        response = _run(orchestrator.search("alice", CRITERIA))

        assert response.source_status == {"A": "ok", "B": "timeout", "C": "ok"}
        assert response.candidates_normalized == 7
        assert len(response.listings) == 7
        assert [s.rank for s in response.listings] == list(range(1, 8))
        scores = [s.score for s in response.listings]
        assert scores == sorted(scores, reverse=True)

        by_id = {s.listing.native_id: s for s in response.listings}
        assert by_id["c2"].score < by_id["c1"].score
        assert "mileage" in by_id["c2"].breakdown.match.unknown

        assert quota_ledger.remaining("alice", "search") == 4
        assert response.merchant_analysis is None
        assert response.enrichment.status == "not_requested"
        assert response.degraded is False

    def test_non_finite_year_does_not_abort_run(self, make_orchestrator):
        orchestrator = make_orchestrator([FakeAdapter("A", SOURCE_A + [car("x", 9000, float("inf"), 40000)])])

        response = _run(orchestrator.search("alice", {"brand": "Peugeot"}))

        assert response.source_status == {"A": "ok"}
        assert len(response.listings) == 6
        by_id = {s.listing.native_id: s for s in response.listings}
        assert by_id["x"].listing.year is None

    def test_source_reports_carry_diagnostics(self, make_orchestrator):
        orchestrator = make_orchestrator([
            FakeAdapter("A", SOURCE_A),
            FakeAdapter("C", [], error=RuntimeError("HTTP 503")),
        ])

        response = _run(orchestrator.search("alice", CRITERIA))

        reports = {r.source_id: r for r in response.source_reports}
        assert reports["A"].status == "ok"
        assert reports["A"].record_count == 5
        assert reports["C"].status == "error"
        assert "503" in reports["C"].message

    def test_partial_success_charges_once(self, make_orchestrator, quota_ledger):
        orchestrator = make_orchestrator([
            FakeAdapter("A", [], error=RuntimeError("blocked")),
            FakeAdapter("C", SOURCE_C),
        ])

        response = _run(orchestrator.search("alice", CRITERIA))

        assert response.source_status == {"A": "error", "C": "ok"}
        assert quota_ledger.remaining("alice", "search") == 4

    def test_ok_source_with_no_results_still_succeeds(self, make_orchestrator, quota_ledger):
        orchestrator = make_orchestrator([FakeAdapter("A", [])])

        response = _run(orchestrator.search("alice", CRITERIA))

        assert response.listings == []
        assert quota_ledger.remaining("alice", "search") == 4

    def test_all_sources_failing_is_not_charged(self, make_orchestrator, quota_ledger):
        orchestrator = make_orchestrator([
            FakeAdapter("A", [], error=RuntimeError("blocked")),
            HangingAdapter("B"),
        ])

        with pytest.raises(AllSourcesUnavailable) as exc_info:
            _run(orchestrator.search("alice", CRITERIA))

        assert exc_info.value.source_status == {"A": "error", "B": "timeout"}
        assert quota_ledger.remaining("alice", "search") == 5
        assert quota_ledger.store.snapshot("alice", "search").held == 0

    def test_cross_source_duplicates_collapse(self, make_orchestrator):
        orchestrator = make_orchestrator([
            FakeAdapter("A", [car("a1", 12000, 2018, 75000)]),
            FakeAdapter("C", [car("zz-9", 12000, 2018, 75400, gearbox=None, url="https://example.test/other")]),
        ])

        response = _run(orchestrator.search("alice", CRITERIA))

        assert response.candidates_normalized == 2
        assert [(s.listing.source_id, s.listing.native_id) for s in response.listings] == [("A", "a1")]


class TestGating:
    """Tests for validation, quota and rate-limit gating."""

    def test_invalid_criteria_touch_nothing(self, make_orchestrator, quota_ledger, rate_limiter):
        adapter = FakeAdapter("A", SOURCE_A)
        orchestrator = make_orchestrator([adapter])

        with pytest.raises(CriteriaValidationError):
            _run(orchestrator.search("alice", {"maxPrice": -1}))

        assert adapter.calls == 0
        assert rate_limiter.usage("alice", "search") == 0
        assert quota_ledger.store.snapshot("alice", "search").held == 0

    def test_quota_exhausted_before_any_fetch(self, make_orchestrator, quota_ledger, rate_limiter):
        quota_ledger.store.set_remaining("alice", "search", 0)
        adapter = FakeAdapter("A", SOURCE_A)
        orchestrator = make_orchestrator([adapter])

        with pytest.raises(QuotaExhausted) as exc_info:
            _run(orchestrator.search("alice", CRITERIA))

        assert exc_info.value.action == "search"
        assert adapter.calls == 0
        assert rate_limiter.usage("alice", "search") == 0

    def test_unlimited_identity_bypasses_quota(self, make_orchestrator, quota_ledger):
        quota_ledger.store.set_remaining("bob", "search", 0)
        orchestrator = make_orchestrator([FakeAdapter("A", SOURCE_A)])

        response = _run(orchestrator.search("bob", CRITERIA, unlimited=True))

        assert len(response.listings) == 5
        assert quota_ledger.store.snapshot("bob", "search").remaining == 0

    def test_rate_limited_run_releases_quota(self, make_orchestrator, quota_ledger):
        limiter = RateLimiter({
            "search": RateLimitRule(max_requests=1, window_seconds=60),
            "analysis": RateLimitRule(max_requests=5, window_seconds=60),
        })
        adapter = FakeAdapter("A", SOURCE_A)
        orchestrator = make_orchestrator([adapter], limiter=limiter)

        _run(orchestrator.search("alice", CRITERIA))
        with pytest.raises(RateLimited) as exc_info:
            _run(orchestrator.search("alice", CRITERIA))

        assert exc_info.value.action == "search"
        assert exc_info.value.retry_after > 0
        assert adapter.calls == 1
        assert quota_ledger.remaining("alice", "search") == 4
        assert quota_ledger.store.snapshot("alice", "search").held == 0

    def test_analysis_denial_rolls_back_search_gate(self, make_orchestrator, quota_ledger, rate_limiter):
        quota_ledger.store.set_remaining("alice", "analysis", 0)
        adapter = FakeAdapter("A", SOURCE_A)
        orchestrator = make_orchestrator([adapter], analyzer=FakeAnalyzer())

        with pytest.raises(QuotaExhausted) as exc_info:
            _run(orchestrator.search("alice", CRITERIA, request_enrichment=True))

        assert exc_info.value.action == "analysis"
        assert adapter.calls == 0
        assert rate_limiter.usage("alice", "search") == 0
        assert quota_ledger.store.snapshot("alice", "search").held == 0
        assert quota_ledger.remaining("alice", "search") == 5

    def test_concurrent_runs_cannot_overspend(self, make_orchestrator, quota_ledger):
        quota_ledger.store.set_remaining("alice", "search", 1)
        orchestrator = make_orchestrator([FakeAdapter("A", SOURCE_A)])

        async def both():
            return await asyncio.gather(
                orchestrator.search("alice", CRITERIA),
                orchestrator.search("alice", CRITERIA),
                return_exceptions=True,
            )

        outcomes = _run(both())

        assert sum(isinstance(o, QuotaExhausted) for o in outcomes) == 1
        assert quota_ledger.remaining("alice", "search") == 0


class TestEnrichment:
    """Tests for the optional merchant analysis step."""

    def test_analysis_attached_and_charged(self, make_orchestrator, quota_ledger, analysis_result):
        analyzer = FakeAnalyzer(result=analysis_result)
        orchestrator = make_orchestrator([FakeAdapter("A", SOURCE_A)], analyzer=analyzer)
        profile = ClientProfile(budget=14000, urgency="this week")

        response = _run(orchestrator.search("alice", CRITERIA, client_profile=profile, request_enrichment=True))

        assert response.merchant_analysis == analysis_result
        assert response.enrichment.status == "present"
        assert response.degraded is False
        assert analyzer.calls[0]["profile"] == profile
        assert len(analyzer.calls[0]["listings"]) == 5
        assert quota_ledger.remaining("alice", "analysis") == 1

    def test_analysis_timeout_degrades(self, make_orchestrator, quota_ledger, analysis_result):
        analyzer = FakeAnalyzer(result=analysis_result, delay=2.0)
        orchestrator = make_orchestrator([FakeAdapter("A", SOURCE_A)], analyzer=analyzer)

        response = _run(orchestrator.search("alice", CRITERIA, request_enrichment=True))

        assert response.degraded is True
        assert response.enrichment.reason == "timeout"
        assert response.merchant_analysis is None
        assert len(response.listings) == 5
        assert quota_ledger.remaining("alice", "analysis") == 2
        assert quota_ledger.store.snapshot("alice", "analysis").held == 0
        assert quota_ledger.remaining("alice", "search") == 4

    def test_low_confidence_is_discarded(self, make_orchestrator, quota_ledger, analysis_result):
        weak = analysis_result.model_copy(update={"confidence": 0.1})
        orchestrator = make_orchestrator([FakeAdapter("A", SOURCE_A)], analyzer=FakeAnalyzer(result=weak))

        response = _run(orchestrator.search("alice", CRITERIA, request_enrichment=True))

        assert response.merchant_analysis is None
        assert response.enrichment.reason == "low_confidence"
        assert quota_ledger.remaining("alice", "analysis") == 2

    def test_invalid_analysis_payload_degrades(self, make_orchestrator):
        analyzer = FakeAnalyzer(error=AIAnalysisError("garbage", reason="invalid_response"))
        orchestrator = make_orchestrator([FakeAdapter("A", SOURCE_A)], analyzer=analyzer)

        response = _run(orchestrator.search("alice", CRITERIA, request_enrichment=True))

        assert response.degraded is True
        assert response.enrichment.reason == "invalid_response"

    def test_unconfigured_analyzer_degrades(self, make_orchestrator, quota_ledger):
        orchestrator = make_orchestrator([FakeAdapter("A", SOURCE_A)], analyzer=FakeAnalyzer(available=False))

        response = _run(orchestrator.search("alice", CRITERIA, request_enrichment=True))

        assert response.enrichment.reason == "not_configured"
        assert len(response.listings) == 5
        assert quota_ledger.remaining("alice", "analysis") == 2

    def test_no_listings_skips_analysis(self, make_orchestrator, analysis_result):
        analyzer = FakeAnalyzer(result=analysis_result)
        orchestrator = make_orchestrator([FakeAdapter("A", [])], analyzer=analyzer)

        response = _run(orchestrator.search("alice", CRITERIA, request_enrichment=True))

        assert response.enrichment.reason == "no_listings"
        assert analyzer.calls == []

    def test_enrichment_not_requested_not_gated(self, make_orchestrator, quota_ledger, analysis_result):
        quota_ledger.store.set_remaining("alice", "analysis", 0)
        analyzer = FakeAnalyzer(result=analysis_result)
        orchestrator = make_orchestrator([FakeAdapter("A", SOURCE_A)], analyzer=analyzer)

        response = _run(orchestrator.search("alice", CRITERIA))

        assert len(response.listings) == 5
        assert analyzer.calls == []
