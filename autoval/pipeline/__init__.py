"""Pipeline modules for search runs."""

from .validator import CriteriaValidator
from .normalizer import Normalizer
from .dedup import Deduplicator
from .comps import CompsCalculator, MarketBaseline
from .scoring import ScoringEngine
from .orchestrator import SearchOrchestrator, RunState

__all__ = [
    "CriteriaValidator",
    "Normalizer",
    "Deduplicator",
    "CompsCalculator",
    "MarketBaseline",
    "ScoringEngine",
    "SearchOrchestrator",
    "RunState",
]
