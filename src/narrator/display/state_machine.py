"""
Display state machine for one line of animated text.

IDLE -> TYPING -> DISPLAY -> DELETING -> IDLE, driven by a single asyncio
task per line. Every line gets a new generation number and cancellation
token; a superseded task can never complete.
"""

import asyncio
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional

from ..core.service_config import DisplayConfig
from ..core.types import Emotion, Tone
from .animation import AnimationStyle, CancellationToken, TextAnimator, strip_pauses

logger = logging.getLogger(__name__)


class DisplayState(Enum):
    """States of the line display cycle."""
    IDLE = "idle"
    TYPING = "typing"
    DISPLAY = "display"
    DELETING = "deleting"


INTERRUPTIBLE_STATES = frozenset({DisplayState.IDLE, DisplayState.DISPLAY})


@dataclass
class DisplayRequest:
    """How to show one line, and who to tell when it is done."""
    display_time: float
    idle_time: float
    on_complete: Optional[Callable[[], Any]] = None
    emotion: Emotion = Emotion.NEUTRAL
    intensity: float = 0.5
    tone: Tone = Tone.NEUTRAL
    themes: FrozenSet[str] = field(default_factory=frozenset)

    def style(self) -> AnimationStyle:
        return AnimationStyle(
            emotion=self.emotion,
            intensity=self.intensity,
            tone=self.tone,
            themes=frozenset(self.themes),
        )


class DisplayStateMachine:
    """Drives an animator through the display cycle for one line at a time."""

    def __init__(self, animator: TextAnimator, config: Optional[DisplayConfig] = None,
                 rng: Optional[random.Random] = None):
        self.animator = animator
        self.config = config or DisplayConfig()
        self.rng = rng or random.Random()

        self.state = DisplayState.IDLE
        self.generation = 0
        self.visible_text = ""

        self._task: Optional[asyncio.Task] = None
        self._token: Optional[CancellationToken] = None
        self._first_line = True
        self._completed_generation = 0

        self.state_history: deque = deque(maxlen=50)
        self.stats = {
            "lines_started": 0,
            "lines_completed": 0,
            "lines_superseded": 0,
            "interrupts": 0,
            "interrupts_rejected": 0,
            "animation_errors": 0,
        }

    def can_interrupt(self) -> bool:
        """True only while idle or holding a fully typed line."""
        return self.state in INTERRUPTIBLE_STATES

    def interrupt(self) -> bool:
        """
        Stop whatever is in flight and return to IDLE.

        Only succeeds from IDLE or DISPLAY; other states are left untouched.
        """
        if not self.can_interrupt():
            self.stats["interrupts_rejected"] += 1
            logger.debug(f"Interrupt rejected in state {self.state.value}")
            return False

        self._cancel_pending()
        self._set_state(DisplayState.IDLE)
        self.stats["interrupts"] += 1
        return True

    def stop(self) -> None:
        """Cancel unconditionally and clear the line; used on shutdown."""
        self._cancel_pending()
        self.visible_text = ""
        self._set_state(DisplayState.IDLE)

    def process_line(self, text: str, request: DisplayRequest) -> int:
        """
        Show a line, superseding anything in flight.

        Returns:
            The generation number of this line
        """
        if self._cancel_pending():
            self.stats["lines_superseded"] += 1

        self.generation += 1
        generation = self.generation
        first_line = self._first_line
        self._first_line = False

        token = CancellationToken()
        self._token = token
        self._task = asyncio.get_running_loop().create_task(
            self._run(text, request, generation, token, first_line)
        )
        self.stats["lines_started"] += 1
        return generation

    # The display collaborator contract
    show_text = process_line

    async def _run(self, text: str, request: DisplayRequest, generation: int,
                   token: CancellationToken, first_line: bool) -> None:
        style = request.style()
        try:
            if first_line:
                # Contemplate before speaking for the first time
                delay = self.rng.uniform(self.config.first_line_delay_min, self.config.first_line_delay_max)
                await asyncio.sleep(delay)
                token.check()
            elif self.visible_text:
                self._set_state(DisplayState.DELETING)
                await self.animator.delete_text(self.visible_text, token, style)
                self.visible_text = ""

            self._set_state(DisplayState.TYPING)
            self.visible_text = strip_pauses(text)
            await self.animator.type_text(text, token, style)

            self._set_state(DisplayState.DISPLAY)
            await asyncio.sleep(request.display_time)
            token.check()

            self._set_state(DisplayState.DELETING)
            await self.animator.delete_text(self.visible_text, token, style)
            self.visible_text = ""

            self._set_state(DisplayState.IDLE)
            await asyncio.sleep(request.idle_time)
            token.check()
        except asyncio.CancelledError:
            logger.debug(f"Line {generation} cancelled")
            return
        except Exception as e:
            logger.error(f"Animation failed for line {generation}: {e}", exc_info=True)
            self.stats["animation_errors"] += 1
            if generation != self.generation:
                return
            self.visible_text = ""
            self._set_state(DisplayState.IDLE)

        self._complete(generation, request)

    def _complete(self, generation: int, request: DisplayRequest) -> None:
        if generation != self.generation or generation <= self._completed_generation:
            logger.debug(f"Ignoring stale completion for line {generation}")
            return

        self._completed_generation = generation
        self._task = None
        self._token = None
        self.stats["lines_completed"] += 1

        if request.on_complete is None:
            return
        try:
            request.on_complete()
        except Exception as e:
            logger.error(f"Error in display completion callback: {e}", exc_info=True)

    def _cancel_pending(self) -> bool:
        """Cancel the in-flight line, if any. Returns True if one was running."""
        running = self._task is not None and not self._task.done()
        if self._token is not None:
            self._token.cancel()
        if running:
            self._task.cancel()
        self._task = None
        self._token = None
        return running

    def _set_state(self, state: DisplayState) -> None:
        if state is not self.state:
            self.state_history.append((self.state.value, state.value))
            self.state = state

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "state": self.state.value,
            "generation": self.generation,
            "visible_text": self.visible_text,
            "can_interrupt": self.can_interrupt(),
        }
