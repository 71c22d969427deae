"""
Admission control for reactive events.

Five checks run in a fixed order and the first failure wins:

1. per-(event, button) cooldown
2. global lock armed by the last success
3. response budget, refilled in whole units
4. suppression window against recently answered signatures
5. whether the display can be interrupted right now

State only changes on success (record_success) and when refilling, so a
denied event leaves no trace apart from the counters.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from ..core.service_config import RateLimitConfig
from ..core.types import DenyReason

logger = logging.getLogger(__name__)

Signature = Tuple[str, Optional[str]]


@dataclass
class AdmissionDecision:
    admitted: bool
    reason: Optional[DenyReason] = None

    def __bool__(self) -> bool:
        return self.admitted


@dataclass
class PendingEvent:
    """A reactive event waiting for the display to become interruptible."""
    kind: str
    data: Dict[str, Any]
    queued_at: float
    expires_at: float


@dataclass
class RateLimiterState:
    budget: int
    last_refill: float
    cooldowns: Dict[Signature, float] = field(default_factory=dict)
    global_lock_until: float = 0.0
    recent: deque = field(default_factory=deque)
    pending: Optional[PendingEvent] = None


class RateLimiter:
    """The 5-layer admission policy plus its one-slot retry queue."""

    def __init__(self, config: Optional[RateLimitConfig] = None,
                 clock: Callable[[], float] = time.monotonic,
                 can_interrupt: Callable[[], bool] = lambda: True):
        self.config = config or RateLimitConfig()
        self.clock = clock
        self.can_interrupt = can_interrupt

        self._state = RateLimiterState(
            budget=self.config.budget_max,
            last_refill=self.clock(),
            recent=deque(maxlen=self.config.recent_size),
        )

        self.stats = {
            "checks": 0,
            "admitted": 0,
            "denied": 0,
            "queued": 0,
            "pending_expired": 0,
            "pending_drained": 0,
        }

    @property
    def budget(self) -> int:
        return self._state.budget

    @property
    def pending(self) -> Optional[PendingEvent]:
        return self._state.pending

    @staticmethod
    def signature(kind: str, data: Optional[Mapping[str, Any]] = None) -> Signature:
        button = (data or {}).get("button")
        return kind, str(button) if button is not None else None

    def cooldown_for(self, kind: str) -> float:
        return self.config.cooldowns.get(kind, self.config.default_cooldown)

    def refill(self, now: Optional[float] = None) -> int:
        """Return whole budget units for every refill interval elapsed."""
        now = self.clock() if now is None else now
        state = self._state
        elapsed = now - state.last_refill
        units = int(elapsed // self.config.refill_interval)
        if units <= 0:
            return 0

        # Keep the partial interval so refills stay on a fixed cadence
        state.last_refill = now - (elapsed % self.config.refill_interval)
        before = state.budget
        state.budget = min(self.config.budget_max, state.budget + units)
        if state.budget != before:
            logger.debug(f"Budget refilled {before} -> {state.budget}")
        return state.budget - before

    def check(self, kind: str, data: Optional[Mapping[str, Any]] = None) -> AdmissionDecision:
        """Run the five checks in order; no state changes except refill."""
        now = self.clock()
        self.refill(now)
        self.stats["checks"] += 1

        state = self._state
        signature = self.signature(kind, data)
        reason = None

        if now < state.cooldowns.get(signature, 0.0):
            reason = DenyReason.EVENT_COOLDOWN
        elif now < state.global_lock_until:
            reason = DenyReason.GLOBAL_LOCK
        elif state.budget <= 0:
            reason = DenyReason.BUDGET_EXHAUSTED
        elif any(sig == signature and now - at < self.config.suppression_window
                 for sig, at in state.recent):
            reason = DenyReason.RECENT_SUPPRESSION
        elif not self.can_interrupt():
            reason = DenyReason.FSM_BUSY

        if reason is not None:
            self.stats["denied"] += 1
            logger.debug(f"Denied {kind} (button={signature[1]}): {reason.value}")
            return AdmissionDecision(False, reason)

        return AdmissionDecision(True)

    def record_success(self, kind: str, data: Optional[Mapping[str, Any]] = None) -> None:
        """Apply cooldown, spend budget, remember the signature, arm the global lock."""
        now = self.clock()
        state = self._state
        signature = self.signature(kind, data)

        state.cooldowns[signature] = now + self.cooldown_for(kind)
        state.budget = max(0, state.budget - 1)
        state.recent.append((signature, now))
        state.global_lock_until = now + self.config.global_lock

        self.stats["admitted"] += 1
        logger.debug(f"Admitted {kind} (button={signature[1]}), budget now {state.budget}")

    def is_queueable(self, kind: str) -> bool:
        return kind in self.config.queueable

    def queue_pending(self, kind: str, data: Optional[Mapping[str, Any]] = None) -> bool:
        """Hold a busy-denied event for a short retry; newer replaces older."""
        if not self.is_queueable(kind):
            return False

        now = self.clock()
        self._state.pending = PendingEvent(
            kind=kind,
            data=dict(data or {}),
            queued_at=now,
            expires_at=now + self.config.pending_ttl,
        )
        self.stats["queued"] += 1
        logger.debug(f"Queued {kind} for retry ({self.config.pending_ttl}s TTL)")
        return True

    def take_pending(self) -> Optional[PendingEvent]:
        """
        Hand back the queued event if it is still fresh and the display is
        interruptible. Expired events are dropped and counted as misses.
        """
        pending = self._state.pending
        if pending is None:
            return None

        if self.clock() > pending.expires_at:
            self._state.pending = None
            self.stats["pending_expired"] += 1
            logger.debug(f"Queued {pending.kind} expired")
            return None

        if not self.can_interrupt():
            return None

        self._state.pending = None
        self.stats["pending_drained"] += 1
        return pending

    def thresholds(self) -> Dict[str, Any]:
        """The policy's tuning values."""
        return {
            "budget_max": self.config.budget_max,
            "refill_interval": self.config.refill_interval,
            "recent_size": self.config.recent_size,
            "suppression_window": self.config.suppression_window,
            "global_lock": self.config.global_lock,
            "default_cooldown": self.config.default_cooldown,
            "cooldowns": dict(self.config.cooldowns),
            "pending_ttl": self.config.pending_ttl,
            "queueable": list(self.config.queueable),
        }

    def get_stats(self) -> Dict[str, Any]:
        now = self.clock()
        return {
            **self.stats,
            "budget": self._state.budget,
            "global_lock_remaining": max(0.0, self._state.global_lock_until - now),
            "active_cooldowns": sum(1 for until in self._state.cooldowns.values() if until > now),
            "recent": len(self._state.recent),
            "has_pending": self._state.pending is not None,
        }
