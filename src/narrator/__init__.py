"""
Narrator

An emotional companion that types short lines of commentary about what the
user is doing, driven by an emotion engine and a curated content corpus.
"""

from .content import ContentLibrary, ContentSelector
from .core import EventBus, EventType, NarratorConfig, load_config
from .core.types import DenyReason, Emotion, RouteResult, Tone
from .display import DisplayStateMachine, PacedTextAnimator, TextAnimator
from .events import EventKind, EventRouter, RateLimiter
from .mind import EmotionEngine
from .orchestrator import Orchestrator, build_orchestrator

__version__ = "1.0.0"

__all__ = [
    'ContentLibrary',
    'ContentSelector',
    'EventBus',
    'EventType',
    'NarratorConfig',
    'load_config',
    'DenyReason',
    'Emotion',
    'RouteResult',
    'Tone',
    'DisplayStateMachine',
    'PacedTextAnimator',
    'TextAnimator',
    'EventKind',
    'EventRouter',
    'RateLimiter',
    'EmotionEngine',
    'Orchestrator',
    'build_orchestrator',
]
