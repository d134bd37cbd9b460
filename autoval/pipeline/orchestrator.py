"""
Search orchestrator - gates, fans out to sources, and runs the pipeline.

    Idle -> Gated -> Dispatching -> Collecting -> Normalizing -> Scoring
         -> (AnalyzingAI) -> Completed | Failed
"""
import asyncio
import logging
import time
import uuid
from datetime import date
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from ..ai.merchant import MerchantAnalyzer
from ..config import Config, get_config
from ..errors import AIAnalysisError, AllSourcesUnavailable, RateLimited
from ..gating.quota import QuotaLedger, Reservation
from ..gating.rate_limiter import RateDecision, RateLimiter
from ..models.analysis import ClientProfile, EnrichmentOutcome, MerchantAIResult
from ..models.criteria import SearchCriteria, SearchRequest
from ..models.listing import RawSourceResult
from ..models.response import SearchResponse, SourceReport
from ..models.scoring import ScoredListing
from ..sources.base import SourceAdapter
from .comps import CompsCalculator
from .dedup import Deduplicator
from .normalizer import Normalizer
from .scoring import ScoringEngine
from .validator import CriteriaValidator


logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "Idle"
    GATED = "Gated"
    DISPATCHING = "Dispatching"
    COLLECTING = "Collecting"
    NORMALIZING = "Normalizing"
    SCORING = "Scoring"
    ANALYZING_AI = "AnalyzingAI"
    COMPLETED = "Completed"
    FAILED = "Failed"


class SearchRun:
    """Bookkeeping for one orchestration run: id, state trail, held reservations."""

    def __init__(self, identity: str):
        self.run_id = uuid.uuid4().hex[:8]
        self.identity = identity
        self.states: list[RunState] = [RunState.IDLE]
        self.reservations: list[Reservation] = []
        self.rate_hits: list[RateDecision] = []

    @property
    def state(self) -> RunState:
        return self.states[-1]

    def transition(self, state: RunState, detail: str = "") -> None:
        self.states.append(state)
        suffix = f" ({detail})" if detail else ""
        logger.info(f"Run {self.run_id}: {state.value}{suffix}")

    def reservation_for(self, action: str) -> Optional[Reservation]:
        return next((r for r in self.reservations if r.action == action), None)


class SearchOrchestrator:
    """
    Coordinates one search: gate, parallel fetch under a deadline, normalize,
    deduplicate, score, optionally analyze, assemble.
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        rate_limiter: Optional[RateLimiter] = None,
        quota_ledger: Optional[QuotaLedger] = None,
        analyzer: Optional[MerchantAnalyzer] = None,
        config: Optional[Config] = None,
        reference_year: Optional[int] = None,
    ):
        self.config = config or get_config()
        self.adapters = list(adapters)
        self.rate_limiter = rate_limiter or RateLimiter(self.config.rate_limits.rules)
        self.quota_ledger = quota_ledger or QuotaLedger(config=self.config.quotas)
        self.analyzer = analyzer
        self.reference_year = reference_year

        self.validator = CriteriaValidator()
        self.deduplicator = Deduplicator(self.config.sources.rank_of)
        self.comps = CompsCalculator(min_comps=self.config.orchestrator.min_comps)
        self.scorer = ScoringEngine(self.config.scoring)

    async def search(
        self,
        identity: str,
        criteria: Mapping[str, Any],
        client_profile: Optional[ClientProfile] = None,
        request_enrichment: bool = False,
        unlimited: bool = False,
    ) -> SearchResponse:
        """Convenience wrapper building the SearchRequest."""
        request = SearchRequest(
            criteria=dict(criteria),
            client_profile=client_profile,
            request_enrichment=request_enrichment,
        )
        return await self.run(identity, request, unlimited=unlimited)

    async def run(
        self,
        identity: str,
        request: SearchRequest,
        unlimited: bool = False,
    ) -> SearchResponse:
        """
        Execute one search run.

        Args:
            identity: Authenticated user id
            request: Inbound request (raw criteria, profile, enrichment flag)
            unlimited: Identity is admin/unlimited tier per the auth collaborator

        Raises:
            CriteriaValidationError: Bad criteria, nothing else touched
            RateLimited: Frequency cap hit, quota untouched
            QuotaExhausted: No search (or analysis) allowance left
            AllSourcesUnavailable: Every source failed or timed out
        """
        run = SearchRun(identity)
        logger.info(f"Run {run.run_id}: starting for {identity}")

        try:
            criteria = self.validator.validate(request.criteria)
        except Exception:
            run.transition(RunState.FAILED, "validation")
            raise

        try:
            self._gate(run, request.request_enrichment, unlimited)
        except Exception:
            run.transition(RunState.FAILED, "gating")
            raise
        run.transition(RunState.GATED)

        try:
            return await self._execute(run, criteria, request)
        except BaseException:
            # Whatever went wrong after gating, nothing is charged
            for reservation in run.reservations:
                self.quota_ledger.release(reservation)
            if run.state != RunState.FAILED:
                run.transition(RunState.FAILED)
            raise

    def _gate(self, run: SearchRun, wants_enrichment: bool, unlimited: bool) -> None:
        """
        Reserve quota and take rate-limit slots for the run. On any denial,
        everything taken so far is given back before the error propagates.
        """
        actions = ["search", "analysis"] if wants_enrichment else ["search"]
        try:
            for action in actions:
                run.reservations.append(
                    self.quota_ledger.reserve(run.identity, action, unlimited=unlimited)
                )
                decision = self.rate_limiter.allow(run.identity, action)
                if not decision.allowed:
                    raise RateLimited(action, decision.retry_after)
                run.rate_hits.append(decision)
        except Exception as e:
            for reservation in run.reservations:
                self.quota_ledger.release(reservation)
            for decision in run.rate_hits:
                self.rate_limiter.undo(run.identity, decision)
            run.reservations.clear()
            logger.info(f"Run {run.run_id}: gate denied: {e}")
            raise

    async def _execute(
        self,
        run: SearchRun,
        criteria: SearchCriteria,
        request: SearchRequest,
    ) -> SearchResponse:
        results = await self._collect(run, criteria)

        source_status = {r.source_id: r.status for r in results}
        reports = [
            SourceReport(
                source_id=r.source_id,
                status=r.status,
                record_count=len(r.records),
                latency_ms=r.latency_ms,
                message=r.error,
            )
            for r in results
        ]

        if not any(r.ok for r in results):
            run.transition(RunState.FAILED, "all sources unavailable")
            raise AllSourcesUnavailable(source_status)

        run.transition(RunState.NORMALIZING)
        reference_year = self.reference_year or date.today().year
        normalizer = Normalizer(reference_year=reference_year)
        normalized = [listing for result in results for listing in normalizer.normalize(result)]
        listings = self.deduplicator.deduplicate(normalized)

        run.transition(RunState.SCORING, f"{len(listings)} listings")
        baseline = self.comps.build_baseline(listings, reference_year=reference_year)
        ranked = self.scorer.score_and_rank(listings, criteria, baseline)

        self.quota_ledger.commit(run.reservation_for("search"))

        merchant_analysis = None
        enrichment = EnrichmentOutcome()
        if request.request_enrichment:
            run.transition(RunState.ANALYZING_AI)
            merchant_analysis, enrichment = await self._enrich(run, ranked, criteria, request.client_profile)

        run.transition(RunState.COMPLETED)
        return SearchResponse(
            run_id=run.run_id,
            listings=ranked,
            source_status=source_status,
            source_reports=reports,
            merchant_analysis=merchant_analysis,
            enrichment=enrichment,
            candidates_normalized=len(normalized),
        )

    async def _collect(self, run: SearchRun, criteria: SearchCriteria) -> list[RawSourceResult]:
        """Run every adapter concurrently; whatever is pending at the deadline is a timeout."""
        run.transition(RunState.DISPATCHING, f"{len(self.adapters)} sources")
        if not self.adapters:
            run.transition(RunState.COLLECTING)
            return []

        deadline = time.monotonic() + self.config.orchestrator.run_timeout_seconds
        tasks = {
            asyncio.create_task(adapter.fetch(criteria, deadline), name=adapter.source_id): adapter
            for adapter in self.adapters
        }

        run.transition(RunState.COLLECTING)
        done, pending = await asyncio.wait(tasks, timeout=max(deadline - time.monotonic(), 0))

        for task in pending:
            task.cancel()

        results: list[RawSourceResult] = []
        for task, adapter in tasks.items():
            if task in pending:
                result = RawSourceResult.failure(adapter.source_id, "timeout", "deadline exceeded")
            else:
                try:
                    result = task.result()
                except Exception as e:
                    logger.warning(f"{adapter.source_id}: adapter raised: {e}")
                    result = RawSourceResult.failure(adapter.source_id, "error", str(e))
            logger.info(
                f"Run {run.run_id}: {result.source_id} -> {result.status} "
                f"({len(result.records)} records, {result.latency_ms}ms)"
            )
            results.append(result)

        return results

    async def _enrich(
        self,
        run: SearchRun,
        ranked: list[ScoredListing],
        criteria: SearchCriteria,
        profile: Optional[ClientProfile],
    ) -> tuple[Optional[MerchantAIResult], EnrichmentOutcome]:
        """Awaited-or-timed-out analysis; never raises."""
        reservation = run.reservation_for("analysis")
        settings = self.config.orchestrator

        result, reason = None, None
        if self.analyzer is None or not self.analyzer.is_available():
            reason = "not_configured"
        elif not ranked:
            reason = "no_listings"
        else:
            try:
                result = await asyncio.wait_for(
                    self.analyzer.analyze(ranked[: settings.analysis_top_n], criteria, profile),
                    timeout=settings.analysis_timeout_seconds,
                )
            except asyncio.TimeoutError:
                reason = "timeout"
            except AIAnalysisError as e:
                reason = e.reason
            except Exception as e:
                logger.warning(f"Run {run.run_id}: analyzer crashed: {e}")
                reason = "error"

        if result is not None and result.confidence < settings.min_analysis_confidence:
            logger.info(f"Run {run.run_id}: analysis confidence {result.confidence:.2f} below floor")
            result, reason = None, "low_confidence"

        if result is None:
            logger.warning(f"Run {run.run_id}: enrichment degraded ({reason})")
            self.quota_ledger.release(reservation)
            return None, EnrichmentOutcome(status="absent", reason=reason)

        self.quota_ledger.commit(reservation)
        return result, EnrichmentOutcome(status="present")
