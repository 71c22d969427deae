"""
Mind Package

The narrator's emotional state and its graph-based transitions.
"""

from .emotion_engine import EmotionalState, EmotionEngine
from .graph import EmotionGraph, PersonalityTraits

__all__ = ['EmotionEngine', 'EmotionalState', 'EmotionGraph', 'PersonalityTraits']
