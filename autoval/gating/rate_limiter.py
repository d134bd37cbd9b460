"""
Rate limiter - per-identity, per-action sliding window admission.
"""
import logging
import threading
import time
from collections import defaultdict, deque
from typing import Callable, Optional

from pydantic import BaseModel

from ..config import RateLimitRule, get_config


logger = logging.getLogger(__name__)


class RateDecision(BaseModel):
    """Outcome of one admission check."""
    action: str
    allowed: bool
    retry_after: float = 0.0
    # Timestamp registered for an admitted hit, needed to undo it
    hit_at: Optional[float] = None


class InMemoryRateLimitStore:
    """
    Sliding log of admitted hits per (identity, action).

    check-and-register happens under one lock, so concurrent callers for
    the same key can never both take the last free slot.
    """

    def __init__(self):
        self._hits: dict[tuple[str, str], deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(
        self,
        key: tuple[str, str],
        max_requests: int,
        window_seconds: float,
        now: float,
    ) -> tuple[bool, float]:
        """
        Register a hit if the window has room.

        Returns:
            (admitted, retry_after_seconds)
        """
        with self._lock:
            log = self._hits[key]
            while log and log[0] <= now - window_seconds:
                log.popleft()

            if len(log) < max_requests:
                log.append(now)
                return True, 0.0

            retry_after = log[0] + window_seconds - now
            return False, max(retry_after, 0.0)

    def undo(self, key: tuple[str, str], hit_at: float) -> None:
        """Remove one previously registered hit."""
        with self._lock:
            log = self._hits.get(key)
            if log and hit_at in log:
                log.remove(hit_at)

    def count(self, key: tuple[str, str], window_seconds: float, now: float) -> int:
        with self._lock:
            return sum(1 for ts in self._hits.get(key, ()) if ts > now - window_seconds)


class RateLimiter:
    """
    Applies the named rate-limit rules (one per action type) to identities.
    """

    def __init__(
        self,
        rules: Optional[dict[str, RateLimitRule]] = None,
        store: Optional[InMemoryRateLimitStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rules = rules if rules is not None else get_config().rate_limits.rules
        self.store = store or InMemoryRateLimitStore()
        self.clock = clock

    def allow(self, identity: str, action: str) -> RateDecision:
        """
        Atomically check and register one request.

        Raises:
            KeyError: If no rule is configured for the action
        """
        rule = self.rules[action]
        now = self.clock()
        admitted, retry_after = self.store.hit(
            (identity, action), rule.max_requests, rule.window_seconds, now
        )

        if not admitted:
            logger.info(f"Rate limit hit for {identity}/{action}, retry in {retry_after:.1f}s")
            return RateDecision(action=action, allowed=False, retry_after=round(retry_after, 3))

        return RateDecision(action=action, allowed=True, hit_at=now)

    def undo(self, identity: str, decision: RateDecision) -> None:
        """Give back a slot taken by an admitted decision (used when a later gate denies)."""
        if decision.allowed and decision.hit_at is not None:
            self.store.undo((identity, decision.action), decision.hit_at)

    def usage(self, identity: str, action: str) -> int:
        """Number of hits currently counted in the window."""
        rule = self.rules[action]
        return self.store.count((identity, action), rule.window_seconds, self.clock())
