"""
Shared fixtures for the narrator tests.
"""

import asyncio
import random
import sys
from pathlib import Path
from typing import List

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from narrator.content.loader import ContentLibrary
from narrator.core.config import NarratorConfig
from narrator.core.service_config import DisplayConfig, SchedulerConfig, SequenceConfig
from narrator.core.types import Emotion
from narrator.display.animation import AnimationStyle, CancellationToken, TextAnimator
from narrator.mind.emotion_engine import EmotionEngine
from narrator.orchestrator import Orchestrator


class FakeClock:
    """Manually advanced time source (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class InstantAnimator(TextAnimator):
    """Types and deletes without delay, recording what it was asked to do."""

    def __init__(self):
        self.typed: List[str] = []
        self.deleted: List[str] = []
        self.styles: List[AnimationStyle] = []

    async def type_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        token.check()
        self.typed.append(text)
        self.styles.append(style)
        await asyncio.sleep(0)
        token.check()

    async def delete_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        token.check()
        self.deleted.append(text)
        await asyncio.sleep(0)
        token.check()


class GatedAnimator(TextAnimator):
    """Blocks inside typing and deleting until the test opens the gate."""

    def __init__(self):
        self.typing = asyncio.Event()
        self.deleting = asyncio.Event()
        self.typing_gate = asyncio.Event()
        self.deleting_gate = asyncio.Event()
        self.typed: List[str] = []

    async def type_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        self.typed.append(text)
        self.typing.set()
        await self.typing_gate.wait()
        token.check()

    async def delete_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        self.deleting.set()
        await self.deleting_gate.wait()
        token.check()


class FailingAnimator(TextAnimator):
    """Raises from typing, like a terminal that has gone away."""

    def __init__(self):
        self.attempts = 0

    async def type_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        self.attempts += 1
        raise RuntimeError("render failed")

    async def delete_text(self, text: str, token: CancellationToken, style: AnimationStyle) -> None:
        token.check()


async def wait_until(predicate, timeout: float = 1.0, interval: float = 0.005) -> bool:
    """Poll the loop until predicate() is true or the timeout passes."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def instant_animator():
    return InstantAnimator()


@pytest.fixture
def sample_library():
    """A small corpus covering welcome, ambient and interaction pools."""
    return ContentLibrary.from_documents(
        welcome=[{
            "_context": {"when": "welcome", "what": "welcome"},
            "lines": [{"lines": ["Hello there."], "themes": ["presence"]}],
        }],
        ambient=[
            {
                "_context": {"when": "any", "what": "any"},
                "lines": [
                    {"lines": ["First general line."], "themes": ["observation"]},
                    {"lines": ["Second general line."], "themes": ["waiting"]},
                    {"lines": ["Third general line."], "themes": ["time"]},
                    {"lines": ["Fourth general line."], "themes": ["observation"]},
                ],
            },
            {
                "_context": {"when": "any", "what": "collision"},
                "lines": [{"lines": ["Bodies collided."], "themes": ["chaos"]}],
            },
        ],
        interactions=[
            {
                "_context": {"event": "*"},
                "lines": [{"lines": ["Generic reply."]}],
            },
            {
                "_context": {"event": "button_hesitation", "button": "reset"},
                "lines": [{"lines": ["Reset reply."]}],
            },
            {
                "_context": {"event": "slider_exploration", "slider": "gravity"},
                "lines": [{"lines": ["Gravity is now \\ref{new_value|fixed1}."]}],
            },
        ],
    )


def make_orchestrator(library, animator, clock, emotion=None, intensity=0.5, seed=7, event_bus=None,
                      **scheduler):
    """An orchestrator with no first-line delay, a short grace period and a settled mind."""
    config = NarratorConfig(
        display=DisplayConfig(first_line_delay_min=0.0, first_line_delay_max=0.0),
        sequence=SequenceConfig(grace_period=0.01),
        scheduler=SchedulerConfig(**scheduler),
    )
    rng = random.Random(seed)
    mind = EmotionEngine(config.emotion, clock=clock, rng=rng,
                         initial_emotion=emotion or Emotion.NEUTRAL, initial_intensity=intensity)
    return Orchestrator(library, animator, config, event_bus=event_bus, clock=clock, rng=rng, mind=mind)
