"""
Central event dispatch.

System events drive scheduling and session flags without admission
control. Reactive events pass the rate limiter's five checks before the
narrator answers them immediately. Observed events only feed the mind.
Every outcome is returned as a RouteResult; denials are never raised.
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Mapping, Optional, Union

from ..content.model import Selection
from ..content.selector import ContentSelector
from ..coordination.sequence import SequenceCoordinator
from ..core.event_bus import EventBus, EventType
from ..core.sampling import clamp
from ..core.service_config import SchedulerConfig
from ..core.types import DenyReason, RouteResult, SequenceOwner
from ..mind.emotion_engine import EmotionEngine
from .kinds import EventCategory, EventKind, mind_event_name
from .rate_limiter import RateLimiter

if TYPE_CHECKING:
    from ..orchestrator.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

# Reactive events the mind also learns from
MIND_OBSERVED_REACTIVE = frozenset({EventKind.SLIDER_EXPLORATION, EventKind.PRESET_BROWSING})


def length_multiplier(text_length: int) -> float:
    """Longer text just shown means a longer pause before the next one."""
    if text_length < 20:
        return 0.8
    if text_length < 50:
        return 1.0
    if text_length < 100:
        return 1.2
    if text_length < 200:
        return 1.5
    return 1.8


@dataclass
class SessionFlags:
    page_hidden: bool = False
    user_idle: bool = False
    has_rendered: bool = False


@dataclass
class SessionMetrics:
    start_time: float
    session_phase: str = "loading"
    total_events: int = 0
    shown_ambient: int = 0
    shown_immediate: int = 0
    blocked_responses: int = 0
    block_reason_counts: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


class EventRouter:
    """Routes every incoming event to exactly one handler."""

    def __init__(self, orchestrator: "Orchestrator", mind: EmotionEngine, selector: ContentSelector,
                 rate_limiter: RateLimiter, coordinator: SequenceCoordinator,
                 config: Optional[SchedulerConfig] = None, event_bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.orchestrator = orchestrator
        self.mind = mind
        self.selector = selector
        self.rate_limiter = rate_limiter
        self.coordinator = coordinator
        self.config = config or SchedulerConfig()
        self.event_bus = event_bus
        self.clock = clock

        self.flags = SessionFlags()
        self.metrics = SessionMetrics(start_time=clock())

        system_handlers = {
            EventKind.AMBIENT_CYCLE_READY: self._on_ambient_cycle_ready,
            EventKind.TEXT_COMPLETE: self._on_text_complete,
            EventKind.PAGE_LOADED: self._on_page_loaded,
            EventKind.PAGE_VISIBLE: self._on_page_visible,
            EventKind.PAGE_HIDDEN: self._on_page_hidden,
            EventKind.USER_IDLE: self._on_user_idle,
            EventKind.USER_RETURNED: self._on_user_returned,
            EventKind.MIND_WANTS_TO_SPEAK: self._on_mind_wants_to_speak,
        }
        category_handlers = {
            EventCategory.REACTIVE: self._on_reactive,
            EventCategory.OBSERVED: self._on_observed,
        }

        self._handlers: Dict[EventKind, Callable[[EventKind, Dict[str, Any]], RouteResult]] = {}
        for kind in EventKind:
            handler = system_handlers.get(kind) or category_handlers.get(kind.category)
            if handler is not None:
                self._handlers[kind] = handler

        missing = set(EventKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for event kinds: {sorted(k.value for k in missing)}")

        self.mind.add_speak_listener(self._on_speak_request)

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def route(self, kind: Union[EventKind, str], data: Optional[Mapping[str, Any]] = None) -> RouteResult:
        """Dispatch one event and report what happened."""
        event_kind = EventKind.parse(kind)
        if event_kind is None:
            logger.debug(f"Ignoring unknown event '{kind}'")
            return RouteResult(kind=str(kind), handled=False, reason=DenyReason.UNKNOWN_EVENT.value)

        self.metrics.total_events += 1
        return self._handlers[event_kind](event_kind, dict(data or {}))

    # ------------------------------------------------------------------
    # System events
    # ------------------------------------------------------------------

    def _on_ambient_cycle_ready(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        if not self.orchestrator.running:
            return self._result(kind, DenyReason.NOT_RUNNING)
        if self.flags.page_hidden:
            return self._result(kind, DenyReason.PAGE_HIDDEN)

        self.mind.tick()

        if self.mind.should_suppress_ambient():
            self.orchestrator.schedule_ambient(self.config.mind_suppressed_retry, "mind_suppressed")
            return self._result(kind, DenyReason.MIND_SUPPRESSED)

        slot = self.coordinator.request_text_slot(SequenceOwner.AMBIENT)
        if not slot.allowed:
            return self._result(kind, DenyReason.SEQUENCE_LOCKED)

        if not self.orchestrator.select_and_show_ambient():
            return self._result(kind, DenyReason.NO_CONTENT)

        self.metrics.shown_ambient += 1
        return RouteResult(kind=kind.value, responded=True, data={"token": self.orchestrator.text_token})

    def _on_text_complete(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        token = data.get("token")
        if token != self.orchestrator.text_token:
            logger.debug(f"Stale text_complete (token {token}, current {self.orchestrator.text_token})")
            return self._result(kind, DenyReason.STALE_TEXT_COMPLETE)

        delay = self.next_ambient_delay(
            data.get("text_length", self.orchestrator.last_text_length),
            data.get("themes", self.orchestrator.last_themes),
        )
        self.orchestrator.schedule_ambient(delay, "text_complete")
        return RouteResult(kind=kind.value, data={"delay": delay})

    def _on_page_loaded(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        self.metrics.session_phase = "active"
        return RouteResult(kind=kind.value)

    def _on_page_visible(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        self.flags.page_hidden = False
        self.mind.observe(kind.value, data)
        self.orchestrator.schedule_ambient(self.config.page_visible_delay, "page_visible")
        return RouteResult(kind=kind.value)

    def _on_page_hidden(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        self.flags.page_hidden = True
        self.orchestrator.cancel_ambient("page_hidden")
        return RouteResult(kind=kind.value)

    def _on_user_idle(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        self.flags.user_idle = True
        self.mind.observe(mind_event_name(kind), data)
        return RouteResult(kind=kind.value)

    def _on_user_returned(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        self.flags.user_idle = False
        self.mind.observe(kind.value, data)
        return RouteResult(kind=kind.value)

    def _on_mind_wants_to_speak(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        slot = self.coordinator.request_text_slot(SequenceOwner.MIND)
        if not slot.allowed:
            if slot.should_defer:
                self.coordinator.defer_mind_request(data)
            return self._result(kind, DenyReason.SEQUENCE_LOCKED, deferred=slot.should_defer)

        if self.flags.page_hidden:
            return self._result(kind, DenyReason.PAGE_HIDDEN)

        self.orchestrator.cancel_ambient("mind_wants_to_speak")
        self.orchestrator.schedule_ambient(self.config.mind_speak_delay, "mind_wants_to_speak")
        return RouteResult(kind=kind.value, data={"delay": self.config.mind_speak_delay})

    def _on_speak_request(self, request: Dict[str, Any]) -> None:
        self.route(EventKind.MIND_WANTS_TO_SPEAK, request)

    # ------------------------------------------------------------------
    # Observed events
    # ------------------------------------------------------------------

    def _on_observed(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        if kind is EventKind.RENDER_COMPLETED:
            self.flags.has_rendered = True

        new_emotion = self.mind.observe(mind_event_name(kind), data)
        result = RouteResult(kind=kind.value)
        if new_emotion is not None:
            result.data["emotion"] = new_emotion.value
        return result

    # ------------------------------------------------------------------
    # Reactive events
    # ------------------------------------------------------------------

    def _on_reactive(self, kind: EventKind, data: Dict[str, Any]) -> RouteResult:
        # A queued event gets first claim on a freshly interruptible display
        pending = self.rate_limiter.take_pending()
        if pending is not None:
            logger.debug(f"Retrying queued {pending.kind} before {kind.value}")
            retried = self._admit_and_respond(EventKind(pending.kind), pending.data, allow_queue=False)
            if retried.responded:
                self._observe_reactive(kind, data)
                return RouteResult(kind=kind.value, reason=DenyReason.PENDING_PROCESSED_INSTEAD.value,
                                   data={"pending": pending.kind})

        self._observe_reactive(kind, data)
        return self._admit_and_respond(kind, data, allow_queue=True)

    def _observe_reactive(self, kind: EventKind, data: Dict[str, Any]) -> None:
        if kind in MIND_OBSERVED_REACTIVE:
            self.mind.observe(kind.value, data)

    def _admit_and_respond(self, kind: EventKind, data: Dict[str, Any], allow_queue: bool) -> RouteResult:
        decision = self.rate_limiter.check(kind.value, data)
        if not decision:
            result = self._block(kind, decision.reason, data)
            if (allow_queue and decision.reason is DenyReason.FSM_BUSY
                    and self.rate_limiter.queue_pending(kind.value, data)):
                result.data["queued"] = True
            return result

        slot = self.coordinator.request_text_slot(SequenceOwner.INTERACTION)
        if not slot.allowed:
            return self._block(kind, DenyReason.SEQUENCE_LOCKED, data)

        selection = self.selector.select_immediate(
            kind.value,
            self.mind.emotion,
            button=data.get("button"),
            slider=data.get("slider"),
            select=data.get("select"),
            state_refs=self.orchestrator.state_refs(data),
        )
        if selection is None:
            return self._block(kind, DenyReason.NO_CONTENT, data)

        if not self.orchestrator.show_immediate(selection, self.config.immediate_display,
                                                self.config.immediate_idle):
            return self._block(kind, DenyReason.FSM_BUSY, data)

        self.rate_limiter.record_success(kind.value, data)
        self.metrics.shown_immediate += 1

        if selection.reflect_pull:
            self.mind.reflect(selection.reflect_pull, selection.themes)

        self._emit_immediate_response(kind, data, selection)

        return RouteResult(kind=kind.value, responded=True, data={
            "token": self.orchestrator.text_token,
            "text": [line.text for line in selection.lines],
        })

    def _emit_immediate_response(self, kind: EventKind, data: Dict[str, Any], selection: Selection) -> None:
        payload = {
            "original_event": kind.value,
            "tone": selection.tone.value,
            "button": data.get("button"),
        }
        if self.event_bus:
            self.event_bus.publish(EventType.IMMEDIATE_RESPONSE, {
                **payload,
                "text": [line.text for line in selection.lines],
            }, source="event_router")
        self.route(EventKind.IMMEDIATE_RESPONSE, payload)

    def _block(self, kind: EventKind, reason: DenyReason, data: Dict[str, Any]) -> RouteResult:
        self.metrics.blocked_responses += 1
        self.metrics.block_reason_counts[reason.value] += 1
        if self.event_bus:
            self.event_bus.publish(EventType.RESPONSE_BLOCKED, {
                "event": kind.value,
                "reason": reason.value,
                "button": data.get("button"),
            }, source="event_router")
        return self._result(kind, reason)

    @staticmethod
    def _result(kind: EventKind, reason: DenyReason, **data) -> RouteResult:
        return RouteResult(kind=kind.value, reason=reason.value, data=data)

    # ------------------------------------------------------------------
    # Scheduling policy
    # ------------------------------------------------------------------

    def theme_floor(self, themes: Iterable[str]) -> float:
        floors = [self.config.theme_floors.get(str(t).lower(), self.config.default_theme_floor) for t in themes]
        return max(floors, default=self.config.default_theme_floor)

    def next_ambient_delay(self, text_length: int, themes: Iterable[str]) -> float:
        """
        Seconds until the next ambient line.

        Base idle from the current emotion, nudged by the mind's wish to
        speak sooner or later (damped), stretched for long text, floored
        per theme and clamped to the scheduler band.
        """
        emotion, intensity = self.mind.emotion, self.mind.intensity
        idle = self.selector.idle_time(emotion, intensity, self.config.base_idle)

        mind_multiplier = self.mind.ambient_delay_multiplier()
        damped = 1.0 + (mind_multiplier - 1.0) * self.config.mind_multiplier_damping

        delay = max(self.theme_floor(themes), idle * damped * length_multiplier(text_length))
        return clamp(delay, self.config.min_delay, self.config.max_delay)

    # ------------------------------------------------------------------
    # Instrumentation
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        metrics = self.metrics
        return {
            "session_phase": metrics.session_phase,
            "uptime": self.clock() - metrics.start_time,
            "total_events": metrics.total_events,
            "shown_ambient": metrics.shown_ambient,
            "shown_immediate": metrics.shown_immediate,
            "blocked_responses": metrics.blocked_responses,
            "missed_responses": self.rate_limiter.stats["pending_expired"],
            "block_reason_counts": dict(metrics.block_reason_counts),
            "flags": {
                "page_hidden": self.flags.page_hidden,
                "user_idle": self.flags.user_idle,
                "has_rendered": self.flags.has_rendered,
            },
            "rate_limiter": self.rate_limiter.get_stats(),
        }
