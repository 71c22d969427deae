"""
Display Package

Line display state machine and the text animators it drives.
"""

from .animation import (
    AnimationStyle,
    CancellationToken,
    PacedTextAnimator,
    TextAnimator,
    parse_pauses,
    speed_bounds,
    strip_pauses,
)
from .state_machine import DisplayRequest, DisplayState, DisplayStateMachine

__all__ = [
    'AnimationStyle',
    'CancellationToken',
    'PacedTextAnimator',
    'TextAnimator',
    'parse_pauses',
    'speed_bounds',
    'strip_pauses',
    'DisplayRequest',
    'DisplayState',
    'DisplayStateMachine',
]
