"""
Content Package

The narrator's corpus and how lines are chosen from it:
- model: Entries, lines and interaction contexts
- loader: Reading a content directory into pools
- selector: Context/theme/recency filtering and weighted selection
- templates: State references inside lines
- timing: Emotion-shaped display and idle durations
"""

from .loader import ContentLibrary
from .model import (
    ContentEntry,
    ContentError,
    InteractionContext,
    InteractionFile,
    Line,
    Selection,
)
from .selector import ContentSelector, RecencyBuffer, effective_weight
from .templates import build_state_refs, format_value, render

__all__ = [
    'ContentLibrary',
    'ContentEntry',
    'ContentError',
    'InteractionContext',
    'InteractionFile',
    'Line',
    'Selection',
    'ContentSelector',
    'RecencyBuffer',
    'effective_weight',
    'build_state_refs',
    'format_value',
    'render',
]
