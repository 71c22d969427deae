"""
The emotion graph: who can follow whom, how strongly, and what pushes it.

All tables here are immutable for a session. Trait-scaled weights are
resolved against a PersonalityTraits instance when candidates are built.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from ..core.types import Emotion

E = Emotion
ALL_EMOTIONS = frozenset(Emotion)


@dataclass(frozen=True)
class PersonalityTraits:
    """Trait vector that scales event-driven and drift transitions."""
    curiosity: float = 0.7
    patience: float = 0.4
    playfulness: float = 0.6
    caution: float = 0.5
    philosophy: float = 0.6
    coherence: float = 0.35

    @classmethod
    def from_dict(cls, overrides: Optional[Mapping[str, Any]]) -> "PersonalityTraits":
        known = {f.name for f in fields(cls)}
        return cls(**{k: float(v) for k, v in (overrides or {}).items() if k in known})

    def factor(self, trait: Optional[str], inverse: bool = False) -> float:
        if trait is None:
            return 1.0
        value = getattr(self, trait)
        return 1.0 - value if inverse else value


@dataclass(frozen=True)
class Reaction:
    """A candidate transition from any of `sources` to `target`."""
    sources: FrozenSet[Emotion]
    target: Emotion
    weight: float
    trait: Optional[str] = None
    inverse: bool = False
    # Minimum seconds in the current emotion (drift rules only)
    min_dwell: Optional[float] = None

    def weighted(self, traits: PersonalityTraits) -> float:
        return self.weight * traits.factor(self.trait, self.inverse)


def _r(sources, target, weight, trait=None, inverse=False, min_dwell=None) -> Reaction:
    if isinstance(sources, Emotion):
        sources = {sources}
    return Reaction(frozenset(sources), target, weight, trait, inverse, min_dwell)


EDGES: Dict[Emotion, Dict[Emotion, float]] = {
    E.NEUTRAL: {
        E.CURIOUS: 0.15, E.ANALYTICAL: 0.15, E.CONTEMPLATIVE: 0.15, E.CONCERNED: 0.15,
        E.EXCITED: 0.10, E.AMUSED: 0.10, E.BORED: 0.10, E.SURPRISED: 0.10,
    },
    E.CURIOUS: {E.NEUTRAL: 0.05, E.EXCITED: 0.4, E.ANALYTICAL: 0.3, E.CONTEMPLATIVE: 0.2, E.AMUSED: 0.1},
    E.EXCITED: {E.NEUTRAL: 0.05, E.AMUSED: 0.35, E.CURIOUS: 0.3, E.SURPRISED: 0.25, E.CONTEMPLATIVE: 0.1},
    E.AMUSED: {E.NEUTRAL: 0.05, E.CONTEMPLATIVE: 0.4, E.CURIOUS: 0.3, E.BORED: 0.2, E.ANALYTICAL: 0.1},
    E.CONTEMPLATIVE: {E.NEUTRAL: 0.05, E.CURIOUS: 0.3, E.ANALYTICAL: 0.3, E.BORED: 0.25, E.CONCERNED: 0.15},
    E.ANALYTICAL: {E.NEUTRAL: 0.05, E.CONTEMPLATIVE: 0.35, E.CURIOUS: 0.3, E.BORED: 0.2, E.CONCERNED: 0.15},
    E.BORED: {E.NEUTRAL: 0.05, E.CURIOUS: 0.4, E.CONTEMPLATIVE: 0.3, E.ANALYTICAL: 0.2, E.AMUSED: 0.1},
    E.CONCERNED: {
        E.NEUTRAL: 0.05, E.ANALYTICAL: 0.35, E.CONTEMPLATIVE: 0.25, E.CURIOUS: 0.2,
        E.SURPRISED: 0.1, E.AMUSED: 0.1,
    },
    E.SURPRISED: {E.NEUTRAL: 0.05, E.CURIOUS: 0.35, E.AMUSED: 0.3, E.CONCERNED: 0.2, E.EXCITED: 0.15},
}

# Pressure needed before reflection may traverse the graph ("emotional mass")
THRESHOLDS: Dict[Emotion, float] = {
    E.NEUTRAL: 1.0,
    E.CURIOUS: 1.0,
    E.ANALYTICAL: 1.2,
    E.AMUSED: 0.9,
    E.CONCERNED: 1.1,
    E.CONTEMPLATIVE: 1.3,
    E.EXCITED: 0.85,
    E.BORED: 0.95,
    E.SURPRISED: 0.75,
}

EVENT_REACTIONS: Dict[str, List[Reaction]] = {
    "collision": [
        _r({E.CURIOUS, E.ANALYTICAL}, E.EXCITED, 0.6, "playfulness"),
        _r({E.CURIOUS, E.ANALYTICAL}, E.SURPRISED, 0.4),
        _r({E.CONTEMPLATIVE, E.BORED}, E.AMUSED, 0.7, "playfulness"),
        _r({E.CONTEMPLATIVE, E.BORED}, E.SURPRISED, 0.3),
        _r(E.EXCITED, E.AMUSED, 0.5),
    ],
    "ejection": [
        _r({E.CURIOUS, E.ANALYTICAL}, E.CONCERNED, 0.6, "caution"),
        _r({E.CURIOUS, E.ANALYTICAL}, E.SURPRISED, 0.4),
        _r(E.AMUSED, E.CONCERNED, 0.5, "caution"),
        _r(E.AMUSED, E.CONTEMPLATIVE, 0.3),
        _r(E.EXCITED, E.SURPRISED, 0.6),
    ],
    "stable": [
        _r(E.CONCERNED, E.CONTEMPLATIVE, 0.6, "philosophy"),
        _r(E.CONCERNED, E.ANALYTICAL, 0.4),
        _r({E.EXCITED, E.SURPRISED}, E.CONTEMPLATIVE, 0.5, "philosophy"),
        _r(E.AMUSED, E.BORED, 0.3, "patience", inverse=True),
    ],
    "zoom": [
        _r(E.BORED, E.CURIOUS, 0.8, "curiosity"),
        _r(E.CONTEMPLATIVE, E.CURIOUS, 0.4, "curiosity"),
    ],
    "drag": [
        _r(E.BORED, E.CURIOUS, 0.8, "curiosity"),
        _r(E.CONTEMPLATIVE, E.CURIOUS, 0.4, "curiosity"),
    ],
    # Only after a long enough idle period (checked by the engine)
    "idle": [
        _r(ALL_EMOTIONS - {E.BORED}, E.BORED, 0.6, "patience", inverse=True),
        _r(ALL_EMOTIONS - {E.BORED}, E.CONTEMPLATIVE, 0.4, "philosophy"),
    ],
}

DRIFT_REACTIONS: List[Reaction] = [
    _r({E.EXCITED, E.SURPRISED}, E.CONTEMPLATIVE, 0.3, "philosophy"),
    _r({E.EXCITED, E.SURPRISED}, E.CURIOUS, 0.2, "curiosity"),
    _r(E.CONCERNED, E.ANALYTICAL, 0.3),
    _r(E.CONCERNED, E.CONTEMPLATIVE, 0.2, "philosophy"),
    _r(E.AMUSED, E.BORED, 0.2, "patience", inverse=True),
    _r(E.AMUSED, E.CURIOUS, 0.2, "curiosity"),
    _r(E.CONTEMPLATIVE, E.CURIOUS, 0.15, "curiosity", min_dwell=90.0),
    _r(E.BORED, E.CURIOUS, 0.25, "curiosity", min_dwell=60.0),
]

# Additive intensity boost for high-salience events
SALIENCE_BOOSTS: Dict[str, float] = {
    "collision": 0.35,
    "ejection": 0.35,
    "stable": 0.12,
    "zoom": 0.18,
    "drag": 0.18,
}

# Intensity band an emotion is entered with
TRANSITION_INTENSITY: Dict[Emotion, Tuple[float, float]] = {
    E.NEUTRAL: (0.2, 0.4),
    E.SURPRISED: (0.8, 1.0),
    E.EXCITED: (0.8, 1.0),
    E.CONTEMPLATIVE: (0.4, 0.7),
    E.ANALYTICAL: (0.4, 0.7),
}
DEFAULT_TRANSITION_INTENSITY = (0.5, 0.8)

# Session start: one of these emotions with an intensity in its band
STARTING_BANDS: Dict[Emotion, Tuple[float, float]] = {
    E.NEUTRAL: (0.1, 0.4),
    E.CURIOUS: (0.4, 0.7),
    E.CONTEMPLATIVE: (0.3, 0.6),
    E.BORED: (0.2, 0.4),
    E.ANALYTICAL: (0.4, 0.7),
}


class EmotionGraph:
    """Adjacency, thresholds and traits for one session."""

    def __init__(self, traits: Optional[PersonalityTraits] = None,
                 edges: Optional[Dict[Emotion, Dict[Emotion, float]]] = None,
                 thresholds: Optional[Mapping[Emotion, float]] = None):
        self.traits = traits or PersonalityTraits()
        self._edges = edges or EDGES
        self._thresholds = {**THRESHOLDS, **(thresholds or {})}

    @classmethod
    def from_overrides(cls, traits: Optional[Mapping[str, Any]] = None,
                       thresholds: Optional[Mapping[str, Any]] = None) -> "EmotionGraph":
        """Build a graph from config-style string-keyed overrides."""
        parsed = {}
        for name, value in (thresholds or {}).items():
            emotion = Emotion.parse(name)
            if emotion is not None:
                parsed[emotion] = float(value)
        return cls(traits=PersonalityTraits.from_dict(traits), thresholds=parsed)

    def edges_from(self, emotion: Emotion) -> Dict[Emotion, float]:
        return dict(self._edges.get(emotion, {}))

    def threshold(self, emotion: Emotion) -> float:
        return self._thresholds.get(emotion, 1.0)

    def event_candidates(self, event_type: str, current: Emotion) -> List[Tuple[Emotion, float]]:
        return [
            (reaction.target, reaction.weighted(self.traits))
            for reaction in EVENT_REACTIONS.get(event_type, [])
            if current in reaction.sources
        ]

    def drift_candidates(self, current: Emotion, dwell: float,
                         default_dwell: float) -> List[Tuple[Emotion, float]]:
        return [
            (reaction.target, reaction.weighted(self.traits))
            for reaction in DRIFT_REACTIONS
            if current in reaction.sources
            and dwell >= (reaction.min_dwell if reaction.min_dwell is not None else default_dwell)
        ]
