"""
Event vocabulary consumed by the router.
"""

from enum import Enum
from typing import Optional, Union


class EventCategory(Enum):
    """How the router treats an event kind."""
    SYSTEM = "system"        # unthrottled lifecycle and scheduling events
    REACTIVE = "reactive"    # may produce an immediate response, rate limited
    OBSERVED = "observed"    # only feeds the emotion engine


class EventKind(Enum):
    """Every event the router accepts."""

    # System
    AMBIENT_CYCLE_READY = "ambient_cycle_ready"
    TEXT_COMPLETE = "text_complete"
    PAGE_LOADED = "page_loaded"
    PAGE_VISIBLE = "page_visible"
    PAGE_HIDDEN = "page_hidden"
    USER_IDLE = "user_idle"
    USER_RETURNED = "user_returned"
    MIND_WANTS_TO_SPEAK = "mind_wants_to_speak"

    # Reactive
    BUTTON_HESITATION = "button_hesitation"
    STATE_RESET = "state_reset"
    SLIDER_EXPLORATION = "slider_exploration"
    PRESET_BROWSING = "preset_browsing"
    ORIENTATION_ADJUSTMENT = "orientation_adjustment"

    # Observed
    COLLISION = "collision"
    EJECTION = "ejection"
    STABLE = "stable"
    ZOOM = "zoom"
    DRAG = "drag"
    SIM_IDLE = "sim_idle"
    MODE_CHANGED = "mode_changed"
    PRESET_CHANGED = "preset_changed"
    RENDER_COMPLETED = "render_completed"
    IMMEDIATE_RESPONSE = "immediate_response"

    @property
    def category(self) -> EventCategory:
        return _CATEGORIES[self]

    @classmethod
    def parse(cls, value: Union["EventKind", str]) -> Optional["EventKind"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


SYSTEM_EVENTS = frozenset({
    EventKind.AMBIENT_CYCLE_READY,
    EventKind.TEXT_COMPLETE,
    EventKind.PAGE_LOADED,
    EventKind.PAGE_VISIBLE,
    EventKind.PAGE_HIDDEN,
    EventKind.USER_IDLE,
    EventKind.USER_RETURNED,
    EventKind.MIND_WANTS_TO_SPEAK,
})

REACTIVE_EVENTS = frozenset({
    EventKind.BUTTON_HESITATION,
    EventKind.STATE_RESET,
    EventKind.SLIDER_EXPLORATION,
    EventKind.PRESET_BROWSING,
    EventKind.ORIENTATION_ADJUSTMENT,
})

OBSERVED_EVENTS = frozenset(EventKind) - SYSTEM_EVENTS - REACTIVE_EVENTS

_CATEGORIES = {
    **{kind: EventCategory.SYSTEM for kind in SYSTEM_EVENTS},
    **{kind: EventCategory.REACTIVE for kind in REACTIVE_EVENTS},
    **{kind: EventCategory.OBSERVED for kind in OBSERVED_EVENTS},
}

# Names the emotion engine understands for observed events
MIND_EVENT_NAMES = {
    EventKind.SIM_IDLE: "idle",
    EventKind.USER_IDLE: "idle",
}


def mind_event_name(kind: EventKind) -> str:
    return MIND_EVENT_NAMES.get(kind, kind.value)
