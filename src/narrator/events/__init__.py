"""
Events Package

Event vocabulary, admission control and the central router.
"""

from .kinds import (
    OBSERVED_EVENTS,
    REACTIVE_EVENTS,
    SYSTEM_EVENTS,
    EventCategory,
    EventKind,
    mind_event_name,
)
from .rate_limiter import AdmissionDecision, PendingEvent, RateLimiter
from .router import EventRouter, SessionFlags, SessionMetrics, length_multiplier

__all__ = [
    'OBSERVED_EVENTS',
    'REACTIVE_EVENTS',
    'SYSTEM_EVENTS',
    'EventCategory',
    'EventKind',
    'mind_event_name',
    'AdmissionDecision',
    'PendingEvent',
    'RateLimiter',
    'EventRouter',
    'SessionFlags',
    'SessionMetrics',
    'length_multiplier',
]
