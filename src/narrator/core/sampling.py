"""
Weighted random sampling shared by the emotion engine and content selector.
"""

import random
from typing import Optional, Sequence, Tuple, TypeVar

T = TypeVar('T')


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def weighted_choice(choices: Sequence[Tuple[T, float]],
                    rng: random.Random) -> Optional[T]:
    """
    Pick one item from (item, weight) pairs.

    Draws uniformly from [0, total) and subtracts weights until the
    remainder drops to zero or below. Negative weights count as zero.

    Returns:
        The chosen item, None when the total weight is not positive.
    """
    total = sum(max(0.0, weight) for _, weight in choices)
    if total <= 0:
        return None

    remaining = rng.random() * total
    last = None
    for item, weight in choices:
        if weight <= 0:
            continue
        last = item
        remaining -= weight
        if remaining <= 0:
            return item

    # Float drift can leave a sliver of weight unspent
    return last

