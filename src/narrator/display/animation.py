"""
Character-level text animation.

The display state machine only needs two coroutines from an animator:
type a line in and delete it again. Both take a CancellationToken that is
checked before every step, so an interrupt takes effect at the next
character.
"""

import asyncio
import logging
import random
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from ..core.sampling import clamp
from ..core.types import Emotion, Tone

logger = logging.getLogger(__name__)

PAUSE_PATTERN = re.compile(r'(?<!\\)\\pause\{(\d+)\}')
ESCAPED_PAUSE = '\\\\pause{'

# Seconds
PAUSE_DIRECTIVE_BOUNDS = (0.05, 5.0)
SPEED_BOUNDS = (0.04, 0.2)
HESITATION_BOUNDS = (0.08, 0.8)

PUNCTUATION = frozenset(".,;:!?")


def speed_bounds() -> Dict[str, Tuple[float, float]]:
    """Timing bounds the animator clamps to, in seconds."""
    return {
        "char_delay": SPEED_BOUNDS,
        "hesitation": HESITATION_BOUNDS,
        "pause_directive": PAUSE_DIRECTIVE_BOUNDS,
    }


def parse_pauses(text: str) -> List[Tuple[str, float]]:
    """
    Split text on pause directives.

    Returns (segment, pause_after_seconds) pairs. Back-to-back directives
    merge into one pause; each pause is clamped to 50 ms - 5 s.
    """
    segments: List[Tuple[str, float]] = []
    position = 0
    pending_text = ""
    pending_pause = 0.0

    for match in PAUSE_PATTERN.finditer(text):
        between = text[position:match.start()]
        if between and pending_pause:
            segments.append((pending_text, pending_pause))
            pending_text, pending_pause = "", 0.0
        pending_text += between
        pending_pause += int(match.group(1)) / 1000.0
        position = match.end()

    tail = text[position:]
    if pending_pause:
        segments.append((pending_text, pending_pause))
        pending_text = ""
    pending_text += tail
    if pending_text or not segments:
        segments.append((pending_text, 0.0))

    low, high = PAUSE_DIRECTIVE_BOUNDS
    return [
        (segment.replace(ESCAPED_PAUSE, '\\pause{'), clamp(pause, low, high) if pause else 0.0)
        for segment, pause in segments
    ]


def strip_pauses(text: str) -> str:
    """The text as it ends up on screen."""
    return "".join(segment for segment, _ in parse_pauses(text))


class CancellationToken:
    """Cooperative cancellation flag polled by animations."""

    def __init__(self):
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def check(self) -> None:
        """Raise CancelledError if cancellation was requested."""
        if self.cancelled:
            raise asyncio.CancelledError()


@dataclass(frozen=True)
class AnimationStyle:
    """Emotional parameters handed to the animator with each line."""
    emotion: Emotion = Emotion.NEUTRAL
    intensity: float = 0.5
    tone: Tone = Tone.NEUTRAL
    themes: FrozenSet[str] = field(default_factory=frozenset)


class TextAnimator(ABC):
    """Abstract base class for text animators."""

    @abstractmethod
    async def type_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        """Reveal text; return once it is fully shown."""

    @abstractmethod
    async def delete_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        """Remove previously typed text; return once the line is empty."""


@dataclass(frozen=True)
class TypingParams:
    base_speed: float
    pause_chance: float
    pause_duration: float


@dataclass(frozen=True)
class DeletionParams:
    char_rate: float
    initial_delay: float


def typing_params(emotion: Emotion, intensity: float) -> TypingParams:
    """Per-character speed and hesitation for an emotion (seconds)."""
    i = clamp(intensity, 0.0, 1.0)
    table = {
        Emotion.BORED: (0.120 + (1 - i) * 0.080, 0.3, 0.400 + (1 - i) * 0.300),
        Emotion.EXCITED: (0.030 - i * 0.010, 0.05, 0.100),
        Emotion.CONCERNED: (0.080 + (1 - i) * 0.040, 0.2, 0.300 + i * 0.200),
        Emotion.SURPRISED: (0.035 - i * 0.010, 0.15, 0.200),
        Emotion.AMUSED: (0.055, 0.12, 0.250),
        Emotion.ANALYTICAL: (0.060, 0.15, 0.300),
        Emotion.CONTEMPLATIVE: (0.090 + (1 - i) * 0.060, 0.25, 0.350 + (1 - i) * 0.250),
        Emotion.CURIOUS: (0.050, 0.12, 0.220),
    }
    return TypingParams(*table.get(emotion, (0.050, 0.1, 0.200)))


def deletion_params(emotion: Emotion, intensity: float) -> DeletionParams:
    """Per-character deletion rate and initial delay (seconds)."""
    i = clamp(intensity, 0.0, 1.0)
    table = {
        Emotion.BORED: (0.080 + (1 - i) * 0.060, 0.500 + (1 - i) * 0.300),
        Emotion.EXCITED: (0.025 - i * 0.010, 0.100 - i * 0.030),
        Emotion.CONCERNED: (0.070 + (1 - i) * 0.040, 0.400 + (1 - i) * 0.200),
        Emotion.SURPRISED: (0.035 - i * 0.010, 0.150 - i * 0.050),
        Emotion.AMUSED: (0.040, 0.200),
        Emotion.ANALYTICAL: (0.050, 0.300),
        Emotion.CONTEMPLATIVE: (0.065 + (1 - i) * 0.035, 0.400 + (1 - i) * 0.300),
        Emotion.CURIOUS: (0.045, 0.250),
    }
    return DeletionParams(*table.get(emotion, (0.050, 0.300)))


# Added to the per-character delay, seconds
TONE_SPEED_ADJUSTMENTS: Dict[Tone, Tuple[float, float]] = {
    Tone.WHISPER: (0.015, 0.030),
    Tone.OMINOUS: (0.010, 0.025),
    Tone.WRY: (-0.008, 0.0),
    Tone.DEADPAN: (-0.012, -0.005),
    Tone.CLINICAL: (-0.008, 0.0),
    Tone.WARM: (0.003, 0.012),
    Tone.CONCERNED: (-0.005, 0.008),
    Tone.SURPRISED: (-0.010, -0.003),
}


class PacedTextAnimator(TextAnimator):
    """
    Types and deletes text one character at a time, paced by emotion and
    tone, and reports what is visible through `on_render`.
    """

    def __init__(self, on_render: Optional[Callable[[str], None]] = None,
                 rng: Optional[random.Random] = None, time_scale: float = 1.0):
        self.on_render = on_render or (lambda visible: None)
        self.rng = rng or random.Random()
        self.time_scale = time_scale

    def char_delay(self, char: str, style: AnimationStyle) -> float:
        params = typing_params(style.emotion, style.intensity)
        delay = params.base_speed

        low, high = TONE_SPEED_ADJUSTMENTS.get(style.tone, (0.0, 0.0))
        if high > low:
            delay += self.rng.uniform(low, high)
        delay = clamp(delay, *SPEED_BOUNDS)

        if char in PUNCTUATION and self.rng.random() < params.pause_chance:
            delay += clamp(params.pause_duration * self.rng.uniform(0.7, 1.3), *HESITATION_BOUNDS)

        return delay * self.time_scale

    async def type_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        visible = ""
        for segment, pause in parse_pauses(text):
            for char in segment:
                token.check()
                visible += char
                self.on_render(visible)
                await asyncio.sleep(self.char_delay(char, style))
            if pause:
                token.check()
                await asyncio.sleep(pause * self.time_scale)
        token.check()

    async def delete_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        params = deletion_params(style.emotion, style.intensity)
        visible = text

        token.check()
        await asyncio.sleep(max(0.0, params.initial_delay) * self.time_scale)

        while visible:
            token.check()
            visible = visible[:-1]
            self.on_render(visible)
            await asyncio.sleep(max(0.005, params.char_rate) * self.time_scale)
        token.check()
