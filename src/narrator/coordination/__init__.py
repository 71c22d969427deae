"""
Coordination Package

Mutual exclusion for multi-line output sequences.
"""

from .sequence import DeferredRequest, SequenceCoordinator, SequenceLockError, SlotDecision

__all__ = ['SequenceCoordinator', 'SequenceLockError', 'SlotDecision', 'DeferredRequest']
