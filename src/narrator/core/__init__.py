"""
Core Package

Core infrastructure for the narrator:
- event_bus: Observation pub/sub bus
- config / service_config: Configuration management
- types: Shared type definitions
- sampling: Weighted random choice
"""

from .event_bus import Event, EventBus, EventType
from .config import ConfigManager, NarratorConfig, load_config
from .service_config import (
    DisplayConfig,
    EmotionConfig,
    RateLimitConfig,
    SchedulerConfig,
    SelectorConfig,
    SequenceConfig,
)
from .types import DenyReason, Emotion, RouteResult, SequenceOwner, Tone
from .sampling import clamp, weighted_choice

__all__ = [
    # Event bus
    'Event',
    'EventBus',
    'EventType',
    # Config
    'ConfigManager',
    'NarratorConfig',
    'load_config',
    'DisplayConfig',
    'EmotionConfig',
    'RateLimitConfig',
    'SchedulerConfig',
    'SelectorConfig',
    'SequenceConfig',
    # Types
    'DenyReason',
    'Emotion',
    'RouteResult',
    'SequenceOwner',
    'Tone',
    # Sampling
    'clamp',
    'weighted_choice',
]
