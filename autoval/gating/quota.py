"""
Quota ledger - reserve, then commit or release, per-user action allowances.
"""
import logging
import threading
import uuid
from typing import Optional

from pydantic import BaseModel, Field

from ..config import QuotaConfig, get_config
from ..errors import QuotaExhausted


logger = logging.getLogger(__name__)


class Reservation(BaseModel):
    """A held quota slot. Settled exactly once, by commit or release."""
    reservation_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    user_id: str
    action: str
    unlimited: bool = False


class QuotaState(BaseModel):
    """Remaining allowance and in-flight holds for one (user, action)."""
    remaining: int
    held: int = 0

    @property
    def available(self) -> int:
        return self.remaining - self.held


class InMemoryQuotaStore:
    """
    Quota counters keyed by (user_id, action).

    Every mutation runs under one lock, so reserving the last slot is a
    single check-and-update.
    """

    def __init__(self, default_allowance: Optional[dict[str, int]] = None):
        self.default_allowance = default_allowance or {}
        self._states: dict[tuple[str, str], QuotaState] = {}
        self._lock = threading.Lock()

    def _state(self, user_id: str, action: str) -> QuotaState:
        key = (user_id, action)
        if key not in self._states:
            self._states[key] = QuotaState(remaining=self.default_allowance.get(action, 0))
        return self._states[key]

    def set_remaining(self, user_id: str, action: str, remaining: int) -> None:
        with self._lock:
            self._state(user_id, action).remaining = remaining

    def snapshot(self, user_id: str, action: str) -> QuotaState:
        with self._lock:
            return self._state(user_id, action).model_copy()

    def try_hold(self, user_id: str, action: str) -> bool:
        with self._lock:
            state = self._state(user_id, action)
            if state.available <= 0:
                return False
            state.held += 1
            return True

    def settle(self, user_id: str, action: str, consume: bool) -> None:
        """Drop a hold, consuming the slot when `consume` is set."""
        with self._lock:
            state = self._state(user_id, action)
            state.held = max(state.held - 1, 0)
            if consume:
                state.remaining = max(state.remaining - 1, 0)


class QuotaLedger:
    """
    Billable-action ledger. A slot is reserved before expensive work starts
    and only committed when the work produced something.
    """

    def __init__(
        self,
        store: Optional[InMemoryQuotaStore] = None,
        config: Optional[QuotaConfig] = None,
    ):
        self.config = config or get_config().quotas
        self.store = store or InMemoryQuotaStore(self.config.default_allowance)
        self._open: set[str] = set()
        self._lock = threading.Lock()

    def is_unlimited(self, user_id: str) -> bool:
        return user_id in self.config.unlimited_identities

    def reserve(self, user_id: str, action: str, unlimited: bool = False) -> Reservation:
        """
        Hold one slot for the action.

        Args:
            user_id: Quota owner
            action: "search" or "analysis"
            unlimited: Caller-asserted override (admin/unlimited tier)

        Raises:
            QuotaExhausted: If no slot is available
        """
        if unlimited or self.is_unlimited(user_id):
            reservation = Reservation(user_id=user_id, action=action, unlimited=True)
        else:
            if not self.store.try_hold(user_id, action):
                logger.info(f"Quota exhausted for {user_id}/{action}")
                raise QuotaExhausted(action, unlimited=False)
            reservation = Reservation(user_id=user_id, action=action)

        with self._lock:
            self._open.add(reservation.reservation_id)
        return reservation

    def _close(self, reservation: Reservation) -> bool:
        with self._lock:
            if reservation.reservation_id not in self._open:
                return False
            self._open.discard(reservation.reservation_id)
            return True

    def commit(self, reservation: Reservation) -> bool:
        """Charge the reserved slot. Returns False if already settled."""
        if not self._close(reservation):
            return False
        if not reservation.unlimited:
            self.store.settle(reservation.user_id, reservation.action, consume=True)
        logger.debug(f"Committed {reservation.action} quota for {reservation.user_id}")
        return True

    def release(self, reservation: Reservation) -> bool:
        """Give the reserved slot back uncharged. Returns False if already settled."""
        if not self._close(reservation):
            return False
        if not reservation.unlimited:
            self.store.settle(reservation.user_id, reservation.action, consume=False)
        logger.debug(f"Released {reservation.action} quota for {reservation.user_id}")
        return True

    def remaining(self, user_id: str, action: str) -> Optional[int]:
        """Committed remaining allowance, None for unlimited identities."""
        if self.is_unlimited(user_id):
            return None
        return self.store.snapshot(user_id, action).remaining
