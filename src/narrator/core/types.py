"""
Core Types for the Narrator

Shared type definitions used across all modules.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class Emotion(Enum):
    """Emotions the narrator can be in."""
    NEUTRAL = "neutral"
    CURIOUS = "curious"
    ANALYTICAL = "analytical"
    AMUSED = "amused"
    CONCERNED = "concerned"
    CONTEMPLATIVE = "contemplative"
    EXCITED = "excited"
    BORED = "bored"
    SURPRISED = "surprised"

    @classmethod
    def parse(cls, value: Any) -> Optional["Emotion"]:
        """Parse an emotion name case-insensitively, None if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class Tone(Enum):
    """Delivery tone of a line, used by the animator to adjust pacing."""
    NEUTRAL = "neutral"
    WHISPER = "whisper"
    OMINOUS = "ominous"
    WRY = "wry"
    DEADPAN = "deadpan"
    CLINICAL = "clinical"
    WARM = "warm"
    CONCERNED = "concerned"
    SURPRISED = "surprised"

    @classmethod
    def parse(cls, value: Any, default: "Tone" = None) -> "Tone":
        """Parse a tone name; unknown values fall back to the default."""
        if default is None:
            default = cls.NEUTRAL
        if value is None:
            return default
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown tone '{value}', using {default.value}")
            return default


class SequenceOwner(Enum):
    """Who holds the sequence lock, or who is asking for a text slot."""
    AMBIENT = "ambient"
    MIND = "mind"
    INTERACTION = "interaction"


class DenyReason(str, Enum):
    """Reason codes for routing outcomes that did not produce text."""
    EVENT_COOLDOWN = "event_cooldown"
    GLOBAL_LOCK = "global_lock"
    BUDGET_EXHAUSTED = "budget_exhausted"
    RECENT_SUPPRESSION = "recent_suppression"
    FSM_BUSY = "fsm_busy"
    SEQUENCE_LOCKED = "sequence_locked"
    NO_CONTENT = "no_content"
    STALE_TEXT_COMPLETE = "stale_text_complete"
    MIND_SUPPRESSED = "mind_suppressed"
    PAGE_HIDDEN = "page_hidden"
    NOT_RUNNING = "not_running"
    PENDING_PROCESSED_INSTEAD = "pending_processed_instead"
    UNKNOWN_EVENT = "unknown_event"


@dataclass
class RouteResult:
    """Outcome of routing one event through the EventRouter."""
    kind: str
    handled: bool = True
    responded: bool = False
    reason: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def denied(self) -> bool:
        return self.reason is not None and not self.responded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "handled": self.handled,
            "responded": self.responded,
            "reason": self.reason,
            "data": self.data,
        }
