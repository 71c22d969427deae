"""
Narrator Orchestrator

Wires the mind, content selector, display state machine, sequence
coordinator, rate limiter and event router together, and owns the single
ambient timer.

This orchestrator:
- Schedules ambient lines (one timer at most, cleared before every set)
- Plays single and multi-line entries through the display state machine
- Answers reactive events immediately when the router admits them
- Ignores completions from superseded text via a monotonically rising token
- Publishes observations on an optional event bus
"""

import asyncio
import logging
import random
import time
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Union

from ..content.loader import ContentLibrary
from ..content.model import Selection
from ..content.selector import WELCOME_MODE, ContentSelector
from ..content.templates import build_state_refs
from ..coordination.sequence import SequenceCoordinator
from ..core.config import NarratorConfig
from ..core.event_bus import EventBus, EventType
from ..core.sampling import weighted_choice
from ..core.types import RouteResult, SequenceOwner
from ..display.animation import TextAnimator
from ..display.state_machine import DisplayRequest, DisplayStateMachine
from ..events.kinds import EventKind
from ..events.rate_limiter import RateLimiter
from ..events.router import EventRouter
from ..mind.emotion_engine import EmotionEngine

logger = logging.getLogger(__name__)

ModeProvider = Callable[[], Union[None, str, Sequence[str]]]
StateProvider = Callable[[], Mapping[str, Any]]


class Orchestrator:
    """Event-driven narrator: decides what to say and when."""

    def __init__(self, library: ContentLibrary, animator: TextAnimator,
                 config: Optional[NarratorConfig] = None,
                 mode_provider: Optional[ModeProvider] = None,
                 state_provider: Optional[StateProvider] = None,
                 event_bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.monotonic,
                 rng: Optional[random.Random] = None,
                 mind: Optional[EmotionEngine] = None):
        """
        Build the narrator.

        Args:
            library: Loaded content corpus
            animator: Renders typing and deletion
            config: Narrator configuration; defaults when omitted
            mode_provider: Returns the current application mode, or several
                candidate modes to be weighted by the mind
            state_provider: Returns the application state used to fill
                \\ref{} placeholders
            event_bus: Optional bus for observations
            clock: Time source (seconds)
            rng: Shared random source
            mind: Pre-built emotion engine
        """
        self.config = config or NarratorConfig()
        self.clock = clock
        self.rng = rng or random.Random()
        self.event_bus = event_bus
        self.mode_provider = mode_provider or (lambda: None)
        self.state_provider = state_provider or (lambda: {})

        self.mind = mind or EmotionEngine(self.config.emotion, clock=clock, rng=self.rng, event_bus=event_bus)
        self.selector = ContentSelector(library, self.config.selector, rng=self.rng)
        self.display = DisplayStateMachine(animator, self.config.display, rng=self.rng)
        self.coordinator = SequenceCoordinator(
            on_flush=self._on_deferred_flush,
            is_page_hidden=lambda: self.page_hidden,
            config=self.config.sequence,
            clock=clock,
            event_bus=event_bus,
        )
        self.rate_limiter = RateLimiter(self.config.rate_limit, clock=clock,
                                        can_interrupt=self.display.can_interrupt)
        self.router = EventRouter(
            self, self.mind, self.selector, self.rate_limiter, self.coordinator,
            config=self.config.scheduler, event_bus=event_bus, clock=clock,
        )

        self.running = False
        self.text_token = 0
        self.ambient_timer: Optional[asyncio.TimerHandle] = None
        self.ambient_reason: Optional[str] = None
        self.last_text_length = 0
        self.last_themes = frozenset()

        self._locked_token: Optional[int] = None
        self._last_manual_interrupt: Optional[float] = None

        self.stats = {
            "ambient_scheduled": 0,
            "entries_shown": 0,
            "lines_shown": 0,
            "lines_skipped": 0,
            "stale_callbacks": 0,
            "manual_interrupts": 0,
        }

    @property
    def scheduler(self):
        return self.config.scheduler

    @property
    def page_hidden(self) -> bool:
        return self.router.flags.page_hidden

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start narrating; must be called from a running event loop."""
        if self.running:
            logger.warning("Narrator already running")
            return

        self.running = True
        logger.info(f"Narrator started, {self.mind.emotion.value} at {self.mind.intensity:.2f}")
        if self.event_bus:
            self.event_bus.publish(EventType.SYSTEM_STARTED, {
                "emotion": self.mind.emotion.value,
                "library": self.selector.library.get_stats(),
            }, source="orchestrator")

        self.schedule_ambient(self.scheduler.startup_delay, "startup")

    def stop(self) -> None:
        """Stop narrating and drop everything in flight."""
        if not self.running:
            return

        self.running = False
        self.cancel_ambient("stop")
        self.text_token += 1
        self._locked_token = None
        self.display.stop()
        self.coordinator.reset()

        logger.info("Narrator stopped")
        if self.event_bus:
            self.event_bus.publish(EventType.SYSTEM_STOPPED, self.get_stats(), source="orchestrator")

    def route(self, kind: Union[EventKind, str], data: Optional[Mapping[str, Any]] = None) -> RouteResult:
        """Feed an application event to the narrator."""
        return self.router.route(kind, data)

    # ------------------------------------------------------------------
    # Ambient timer
    # ------------------------------------------------------------------

    def schedule_ambient(self, delay: float, reason: str) -> bool:
        """
        Arm the ambient timer, replacing any armed one.

        Returns:
            True if a timer was armed
        """
        self.cancel_ambient()

        if not self.running:
            logger.debug(f"Not scheduling ambient ({reason}): not running")
            return False
        if self.page_hidden:
            logger.debug(f"Not scheduling ambient ({reason}): page hidden")
            return False

        loop = asyncio.get_running_loop()
        self.ambient_timer = loop.call_later(delay, self._on_ambient_timer)
        self.ambient_reason = reason
        self.stats["ambient_scheduled"] += 1
        logger.debug(f"Next ambient line in {delay:.1f}s ({reason})")

        if self.event_bus:
            self.event_bus.publish(EventType.AMBIENT_SCHEDULED, {
                "delay": delay,
                "reason": reason,
            }, source="orchestrator")
        return True

    def cancel_ambient(self, reason: Optional[str] = None) -> None:
        if self.ambient_timer is None:
            return
        self.ambient_timer.cancel()
        self.ambient_timer = None
        self.ambient_reason = None
        if reason:
            logger.debug(f"Ambient timer cancelled ({reason})")

    def _on_ambient_timer(self) -> None:
        self.ambient_timer = None
        self.ambient_reason = None
        self.route(EventKind.AMBIENT_CYCLE_READY)

    def _on_deferred_flush(self, data: Dict[str, Any]) -> None:
        self.route(EventKind.MIND_WANTS_TO_SPEAK, {**data, "deferred": True})

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def current_mode(self) -> Optional[str]:
        """The application mode, choosing among candidates by the mind's taste."""
        modes = self.mode_provider()
        if modes is None or isinstance(modes, str):
            return modes

        modes = list(modes)
        if not modes:
            return None
        choice = weighted_choice([(mode, self.mind.mode_weight(mode)) for mode in modes], self.rng)
        return choice if choice is not None else modes[0]

    def state_refs(self, event_data: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return build_state_refs(self.state_provider(), event_data)

    def select_and_show_ambient(self) -> bool:
        """
        Choose an ambient (or welcome) entry and start showing it.

        With nothing to show, retries after a fixed delay.
        """
        if not self.running:
            return False

        emotion, intensity = self.mind.emotion, self.mind.intensity
        mode = WELCOME_MODE if self.selector.is_first_selection else self.current_mode()
        selection = self.selector.select(mode, self.mind.preferred_themes(), emotion, intensity,
                                         self.state_refs())
        if selection is None:
            logger.debug("Nothing to say yet")
            self.schedule_ambient(self.scheduler.no_selection_retry, "no_selection")
            return False

        self.mind.reflect(selection.reflect_pull, selection.themes)

        # The reflection may have moved the mood; time the line by the new one
        emotion, intensity = self.mind.emotion, self.mind.intensity
        display_time = self.selector.display_time(emotion, intensity, selection.text_length)
        idle_time = self.selector.idle_time(emotion, intensity, self.scheduler.line_idle_base)
        self.show_lines(selection, display_time, idle_time, SequenceOwner.AMBIENT)
        return True

    def show_immediate(self, selection: Selection, display_time: float, idle_time: float) -> bool:
        """Cut in with a response. Fails if the display cannot be interrupted."""
        if not self.display.interrupt():
            return False

        self.cancel_ambient("immediate_response")
        self.show_lines(selection, display_time, idle_time, SequenceOwner.INTERACTION)
        return True

    def show_lines(self, selection: Selection, display_time: float, idle_time: float,
                   owner: SequenceOwner) -> int:
        """
        Play every line of an entry in order.

        Multi-line entries hold the sequence lock until their last line
        completes. Returns the text token of this entry.
        """
        self.text_token += 1
        token = self.text_token
        self.last_text_length = selection.text_length
        self.last_themes = selection.themes

        if selection.is_multi_line:
            self.coordinator.lock_for_sequence(len(selection.lines), owner)
            self._locked_token = token

        self.stats["entries_shown"] += 1
        if self.event_bus:
            self.event_bus.publish(EventType.TEXT_SHOWN, {
                "token": token,
                "source": selection.source,
                "owner": owner.value,
                "lines": [line.text for line in selection.lines],
                "tone": selection.tone.value,
                "themes": sorted(selection.themes),
            }, source="orchestrator")

        self._show_line(selection, 0, token, display_time, idle_time)
        return token

    def _show_line(self, selection: Selection, index: int, token: int,
                   display_time: float, idle_time: float) -> None:
        if token != self.text_token:
            self.stats["stale_callbacks"] += 1
            return

        lines = selection.lines
        line = lines[index]
        is_last = index == len(lines) - 1

        if not self.selector.roll_rarity(line):
            self.stats["lines_skipped"] += 1
            if not selection.is_multi_line:
                logger.debug("Rarity roll failed, skipping entry")
                self._finish(selection, token)
            elif is_last:
                self._finish(selection, token)
            else:
                self._show_line(selection, index + 1, token, display_time, idle_time)
            return

        if is_last:
            line_idle = idle_time
        else:
            line_idle = self.rng.uniform(self.scheduler.line_gap_min, self.scheduler.line_gap_max)

        def on_complete() -> None:
            if token != self.text_token:
                self.stats["stale_callbacks"] += 1
                logger.debug(f"Ignoring completion of superseded text {token}")
                return
            if is_last:
                self._finish(selection, token)
            else:
                self._show_line(selection, index + 1, token, display_time, idle_time)

        request = DisplayRequest(
            display_time=display_time * line.duration_mult,
            idle_time=line_idle,
            on_complete=on_complete,
            emotion=self.mind.emotion,
            intensity=self.mind.intensity,
            tone=line.tone or selection.tone,
            themes=selection.themes,
        )
        self.stats["lines_shown"] += 1
        self.display.process_line(line.text, request)

    def _finish(self, selection: Selection, token: int) -> None:
        self._release_sequence(token)

        if self.event_bus:
            self.event_bus.publish(EventType.TEXT_COMPLETED, {
                "token": token,
                "source": selection.source,
            }, source="orchestrator")

        self.route(EventKind.TEXT_COMPLETE, {
            "type": selection.source,
            "token": token,
            "text_length": selection.text_length,
            "themes": sorted(selection.themes),
        })

    def _release_sequence(self, token: Optional[int] = None) -> None:
        if self._locked_token is None:
            return
        if token is not None and token != self._locked_token:
            return
        self._locked_token = None
        self.coordinator.unlock_sequence()

    # ------------------------------------------------------------------
    # Manual control
    # ------------------------------------------------------------------

    def interrupt(self) -> bool:
        """
        Cut the current text short and schedule a fresh ambient line.

        Rate limited by its own cooldown and only possible while the
        display is interruptible.
        """
        now = self.clock()
        if (self._last_manual_interrupt is not None
                and now - self._last_manual_interrupt < self.scheduler.interrupt_cooldown):
            logger.debug("Manual interrupt on cooldown")
            return False
        if not self.display.interrupt():
            return False

        self._last_manual_interrupt = now
        self.stats["manual_interrupts"] += 1
        self.text_token += 1
        self._release_sequence()
        self.schedule_ambient(self.scheduler.min_delay, "interrupted")
        return True

    # ------------------------------------------------------------------
    # Instrumentation
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "running": self.running,
            "text_token": self.text_token,
            "ambient_armed": self.ambient_timer is not None,
            "ambient_reason": self.ambient_reason,
            "mind": self.mind.get_stats(),
            "selector": self.selector.get_stats(),
            "display": self.display.get_stats(),
            "sequence": self.coordinator.get_stats(),
            "router": self.router.get_stats(),
        }


def build_orchestrator(animator: TextAnimator, config: Optional[NarratorConfig] = None,
                       library: Optional[ContentLibrary] = None, **kwargs) -> Orchestrator:
    """Build an orchestrator, loading content from the configured directory if not given."""
    config = config or NarratorConfig()
    if library is None:
        library = ContentLibrary.load(config.content_dir)
    return Orchestrator(library, animator, config, **kwargs)
