"""
Sequence coordination.

A non-reentrant lock that protects a multi-line display from being cut
into, plus a single slot for a deferred "mind wants to speak" request
that is replayed shortly after the lock is released.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

from ..core.event_bus import EventBus, EventType
from ..core.service_config import SequenceConfig
from ..core.types import DenyReason, SequenceOwner

logger = logging.getLogger(__name__)


class SequenceLockError(RuntimeError):
    """Raised when locking a sequence that is already locked."""


@dataclass
class SlotDecision:
    allowed: bool
    reason: Optional[str] = None
    locked_by: Optional[SequenceOwner] = None
    should_defer: bool = False


@dataclass
class DeferredRequest:
    data: Dict[str, Any]
    deferred_at: float


@dataclass
class SequenceLock:
    locked: bool = False
    sequence_id: int = 0
    owner: Optional[SequenceOwner] = None
    length: int = 0
    started_at: Optional[float] = None
    deferred: Optional[DeferredRequest] = None
    stats: Dict[str, int] = field(default_factory=lambda: {
        "sequences": 0,
        "denied": 0,
        "deferred": 0,
        "flushed": 0,
        "expired": 0,
    })


class SequenceCoordinator:
    """Mutual exclusion for multi-line output."""

    def __init__(self, on_flush: Callable[[Dict[str, Any]], Any],
                 is_page_hidden: Callable[[], bool] = lambda: False,
                 config: Optional[SequenceConfig] = None,
                 clock: Callable[[], float] = time.monotonic,
                 event_bus: Optional[EventBus] = None):
        """
        Args:
            on_flush: Receives a deferred request's payload when it is replayed
            is_page_hidden: Flushes are skipped while this returns True
            config: Grace period and deferred-request TTL
            clock: Time source (seconds)
            event_bus: Optional bus for lock/unlock observations
        """
        self.on_flush = on_flush
        self.is_page_hidden = is_page_hidden
        self.config = config or SequenceConfig()
        self.clock = clock
        self.event_bus = event_bus

        self._lock = SequenceLock()
        self._flush_handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_locked(self) -> bool:
        return self._lock.locked

    @property
    def sequence_id(self) -> int:
        return self._lock.sequence_id

    @property
    def owner(self) -> Optional[SequenceOwner]:
        return self._lock.owner if self._lock.locked else None

    @property
    def deferred(self) -> Optional[DeferredRequest]:
        return self._lock.deferred

    def request_text_slot(self, source: Union[SequenceOwner, str]) -> SlotDecision:
        """Ask whether `source` may put text on screen now."""
        source = SequenceOwner(source)
        if not self._lock.locked:
            return SlotDecision(allowed=True)

        self._lock.stats["denied"] += 1
        logger.debug(f"Text slot for {source.value} denied, sequence {self._lock.sequence_id} "
                     f"held by {self._lock.owner.value}")
        return SlotDecision(
            allowed=False,
            reason=DenyReason.SEQUENCE_LOCKED.value,
            locked_by=self._lock.owner,
            should_defer=source is SequenceOwner.MIND,
        )

    def lock_for_sequence(self, length: int, owner: Union[SequenceOwner, str]) -> int:
        """
        Lock for a multi-line sequence.

        Returns:
            The new sequence id

        Raises:
            SequenceLockError: if a sequence is already locked
        """
        owner = SequenceOwner(owner)
        if self._lock.locked:
            raise SequenceLockError(
                f"Sequence {self._lock.sequence_id} already locked by {self._lock.owner.value}; "
                f"{owner.value} tried to lock a {length}-line sequence"
            )

        self._lock.locked = True
        self._lock.sequence_id += 1
        self._lock.owner = owner
        self._lock.length = length
        self._lock.started_at = self.clock()
        self._lock.stats["sequences"] += 1

        logger.debug(f"Locked sequence {self._lock.sequence_id} ({length} lines) for {owner.value}")
        if self.event_bus:
            self.event_bus.publish(EventType.SEQUENCE_LOCKED, {
                "sequence_id": self._lock.sequence_id,
                "owner": owner.value,
                "length": length,
            }, source="sequence_coordinator")
        return self._lock.sequence_id

    def unlock_sequence(self) -> None:
        """Release the lock and schedule a flush of any deferred request."""
        if not self._lock.locked:
            return

        held_for = self.clock() - (self._lock.started_at or self.clock())
        logger.debug(f"Unlocked sequence {self._lock.sequence_id} after {held_for:.1f}s")

        self._lock.locked = False
        self._lock.owner = None
        self._lock.length = 0
        self._lock.started_at = None

        if self.event_bus:
            self.event_bus.publish(EventType.SEQUENCE_UNLOCKED, {
                "sequence_id": self._lock.sequence_id,
            }, source="sequence_coordinator")

        if self._lock.deferred is not None:
            self._cancel_flush()
            loop = asyncio.get_running_loop()
            self._flush_handle = loop.call_later(self.config.grace_period, self._flush_deferred)

    def defer_mind_request(self, data: Optional[Dict[str, Any]] = None) -> None:
        """Hold one mind request until the lock is released; newer replaces older."""
        if self._lock.deferred is not None:
            logger.debug("Replacing previously deferred mind request")
        self._lock.deferred = DeferredRequest(data=dict(data or {}), deferred_at=self.clock())
        self._lock.stats["deferred"] += 1

    def _flush_deferred(self) -> None:
        self._flush_handle = None
        request = self._lock.deferred

        if request is None:
            return
        if self._lock.locked:
            # A new sequence started during the grace period; wait for its unlock
            logger.debug("Deferred flush skipped, new sequence is active")
            return
        if self.is_page_hidden():
            logger.debug("Deferred flush skipped, page hidden")
            self._lock.deferred = None
            return

        self._lock.deferred = None
        age = self.clock() - request.deferred_at
        if age > self.config.deferred_ttl:
            self._lock.stats["expired"] += 1
            logger.debug(f"Dropping deferred mind request, {age:.1f}s old")
            return

        self._lock.stats["flushed"] += 1
        self.on_flush(request.data)

    def _cancel_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def reset(self) -> None:
        """Drop the lock, the deferred request and any pending flush."""
        self._cancel_flush()
        self._lock.deferred = None
        if self._lock.locked:
            logger.debug(f"Abandoning sequence {self._lock.sequence_id}")
            self._lock.locked = False
            self._lock.owner = None
            self._lock.length = 0
            self._lock.started_at = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._lock.stats,
            "locked": self._lock.locked,
            "sequence_id": self._lock.sequence_id,
            "owner": self.owner.value if self.owner else None,
            "has_deferred": self._lock.deferred is not None,
        }
