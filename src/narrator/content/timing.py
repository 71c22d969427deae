"""
Emotion-shaped display and idle durations (seconds).
"""

import random
from dataclasses import dataclass
from typing import Dict, Tuple

from ..core.sampling import clamp
from ..core.types import Emotion


@dataclass(frozen=True)
class TimingProfile:
    """Multiplier and random variation range for one emotion."""
    multiplier: float
    variation: Tuple[float, float]

    def sample(self, rng: random.Random) -> float:
        low, high = self.variation
        return self.multiplier * rng.uniform(low, high)


IDLE_PROFILES: Dict[Emotion, TimingProfile] = {
    Emotion.BORED: TimingProfile(1.5, (1.2, 2.0)),
    Emotion.EXCITED: TimingProfile(0.5, (0.3, 0.8)),
    Emotion.SURPRISED: TimingProfile(0.7, (0.5, 0.9)),
    Emotion.ANALYTICAL: TimingProfile(1.2, (0.8, 1.5)),
    Emotion.CONTEMPLATIVE: TimingProfile(1.5, (1.1, 2.0)),
    Emotion.CONCERNED: TimingProfile(1.0, (0.7, 1.3)),
    Emotion.AMUSED: TimingProfile(1.0, (0.7, 1.3)),
    Emotion.CURIOUS: TimingProfile(0.9, (0.6, 1.2)),
    Emotion.NEUTRAL: TimingProfile(1.1, (0.9, 1.4)),
}

DISPLAY_PROFILES: Dict[Emotion, TimingProfile] = {
    Emotion.BORED: TimingProfile(0.6, (0.4, 0.8)),
    Emotion.EXCITED: TimingProfile(0.6, (0.4, 0.8)),
    Emotion.SURPRISED: TimingProfile(0.7, (0.5, 0.9)),
    Emotion.ANALYTICAL: TimingProfile(1.3, (1.0, 1.6)),
    Emotion.CONTEMPLATIVE: TimingProfile(1.5, (1.2, 1.8)),
    Emotion.CONCERNED: TimingProfile(1.0, (0.8, 1.2)),
    Emotion.AMUSED: TimingProfile(1.0, (0.6, 1.4)),
    Emotion.CURIOUS: TimingProfile(1.0, (0.8, 1.2)),
    Emotion.NEUTRAL: TimingProfile(1.0, (0.9, 1.1)),
}


def idle_time(emotion: Emotion, intensity: float, base: float, rng: random.Random) -> float:
    """Pause after a line, stretched for bored/contemplative moods and shortened for excited ones."""
    profile = IDLE_PROFILES.get(emotion, IDLE_PROFILES[Emotion.NEUTRAL])
    multiplier = profile.multiplier

    # Extremes of intensity push the two energetic poles further apart
    if emotion is Emotion.BORED and intensity < 0.2:
        multiplier = 2.2
    elif emotion is Emotion.EXCITED and intensity > 0.8:
        multiplier = 0.35

    low, high = profile.variation
    variation = rng.uniform(low, high)
    intensity_factor = 0.7 + 0.6 * clamp(intensity, 0.0, 1.0)

    return base * multiplier * variation * intensity_factor


def display_length_factor(text_length: int) -> float:
    """1.0 up to 50 characters, rising linearly to 2.0 at 300."""
    return 1.0 + min(1.0, max(0, text_length - 50) / 250.0)


def display_time(emotion: Emotion, text_length: int, rng: random.Random,
                 base_min: float = 2.0, base_max: float = 10.0,
                 floor: float = 1.5, ceiling: float = 15.0) -> float:
    """How long a fully typed line stays on screen."""
    profile = DISPLAY_PROFILES.get(emotion, DISPLAY_PROFILES[Emotion.NEUTRAL])
    base = rng.uniform(base_min, base_max)
    held = clamp(base * profile.sample(rng), floor, ceiling)
    return held * display_length_factor(text_length)
