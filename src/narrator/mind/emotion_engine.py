"""
Emotion engine for the narrator.

Holds the current emotion, its intensity and the transition pressure
built up by reflecting on shown content. Transitions come from three
independent triggers (event reactions, time-based drift and content
reflection) that all share one cooldown.
"""

import logging
import random
import time
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..content.selector import PREFERRED_THEMES
from ..core.event_bus import EventBus, EventType
from ..core.sampling import clamp, weighted_choice
from ..core.service_config import EmotionConfig
from ..core.types import Emotion
from .graph import (
    DEFAULT_TRANSITION_INTENSITY,
    SALIENCE_BOOSTS,
    STARTING_BANDS,
    TRANSITION_INTENSITY,
    EmotionGraph,
)

logger = logging.getLogger(__name__)

# Intensity within this distance of the floor counts as "at the floor"
FLOOR_BAND = 0.02

# Event-driven arrivals in these emotions ask for an early ambient line
SPEAK_EMOTIONS = frozenset({Emotion.EXCITED, Emotion.SURPRISED})

INTERRUPTING_EVENTS = frozenset({"collision", "ejection"})

MAX_CONSECUTIVE_VETOES = 2

MODE_WEIGHTS: Dict[Emotion, Dict[str, float]] = {
    Emotion.NEUTRAL: {"event": 1.0, "phase": 1.0, "diffusion": 1.0, "stable": 1.0,
                      "collision": 1.0, "ejection": 1.0, "idle": 1.2},
    Emotion.CURIOUS: {"event": 2.0, "phase": 1.5, "diffusion": 1.2, "stable": 0.8},
    Emotion.ANALYTICAL: {"phase": 2.0, "event": 1.5, "stable": 1.3, "diffusion": 0.9},
    Emotion.AMUSED: {"diffusion": 2.0, "event": 1.5, "collision": 1.8, "ejection": 1.6},
    Emotion.CONCERNED: {"collision": 2.0, "ejection": 1.8, "event": 1.3, "stable": 0.7},
    Emotion.CONTEMPLATIVE: {"stable": 2.0, "phase": 1.5, "idle": 1.8, "event": 0.8},
    Emotion.EXCITED: {"event": 2.0, "collision": 1.7, "diffusion": 1.5, "stable": 0.6},
    Emotion.BORED: {"idle": 2.5, "stable": 1.5, "event": 0.5, "diffusion": 0.6},
    Emotion.SURPRISED: {"collision": 2.5, "ejection": 2.0, "event": 1.5, "stable": 0.5},
}

# < 1 speaks sooner, > 1 waits longer
AMBIENT_DELAY_MULTIPLIERS: Dict[Emotion, float] = {
    Emotion.EXCITED: 0.6,
    Emotion.SURPRISED: 0.7,
    Emotion.CURIOUS: 0.85,
    Emotion.AMUSED: 0.9,
    Emotion.CONCERNED: 0.95,
    Emotion.NEUTRAL: 1.0,
    Emotion.ANALYTICAL: 1.1,
    Emotion.CONTEMPLATIVE: 1.3,
    Emotion.BORED: 1.4,
}


@dataclass
class EmotionalState:
    """Snapshot of the engine's emotional state."""
    emotion: Emotion
    intensity: float
    emotion_start_time: float
    transition_pressure: float = 0.0
    next_transition_allowed_at: float = 0.0

    def copy(self) -> "EmotionalState":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "emotion": self.emotion.value,
            "intensity": round(self.intensity, 3),
            "emotion_start_time": self.emotion_start_time,
            "transition_pressure": round(self.transition_pressure, 3),
            "next_transition_allowed_at": self.next_transition_allowed_at,
        }


@dataclass
class ObservedEvent:
    type: str
    data: Dict[str, Any]
    timestamp: float
    emotion: Emotion


class EmotionEngine:
    """The narrator's mind: emotional state and its transitions."""

    def __init__(self, config: Optional[EmotionConfig] = None, graph: Optional[EmotionGraph] = None,
                 clock: Callable[[], float] = time.monotonic, rng: Optional[random.Random] = None,
                 event_bus: Optional[EventBus] = None, initial_emotion: Optional[Emotion] = None,
                 initial_intensity: Optional[float] = None):
        self.config = config or EmotionConfig()
        self.graph = graph or EmotionGraph.from_overrides(self.config.traits, self.config.thresholds)
        self.clock = clock
        self.rng = rng or random.Random()
        self.event_bus = event_bus

        now = self.clock()
        emotion = initial_emotion or self.rng.choice(list(STARTING_BANDS))
        if initial_intensity is None:
            low, high = STARTING_BANDS.get(emotion, DEFAULT_TRANSITION_INTENSITY)
            initial_intensity = self.rng.uniform(low, high)

        self._state = EmotionalState(
            emotion=emotion,
            intensity=self._clamp_intensity(initial_intensity),
            emotion_start_time=now,
            next_transition_allowed_at=now,
        )
        self._last_decay = now
        self._last_reflection: Optional[float] = None
        self._floor_since: Optional[float] = None
        if self._state.intensity <= self.config.intensity_floor + FLOOR_BAND:
            self._floor_since = now
        self._consecutive_vetoes = 0

        self.recent_events: deque = deque(maxlen=self.config.memory_size)
        self.transition_history: deque = deque(maxlen=20)
        self._speak_listeners: List[Callable[[Dict[str, Any]], Any]] = []

        self.stats = {
            "events_observed": 0,
            "transitions": 0,
            "reflections": 0,
            "random_perturbations": 0,
            "ambient_vetoes": 0,
            "speak_requests": 0,
        }

        logger.info(f"Emotion engine started {emotion.value} at intensity {self._state.intensity:.2f}")

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> EmotionalState:
        return self._state.copy()

    @property
    def emotion(self) -> Emotion:
        return self._state.emotion

    @property
    def intensity(self) -> float:
        return self._state.intensity

    @property
    def transition_pressure(self) -> float:
        return self._state.transition_pressure

    def dwell_time(self) -> float:
        """Seconds spent in the current emotion."""
        return self.clock() - self._state.emotion_start_time

    def in_cooldown(self, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        return now < self._state.next_transition_allowed_at

    def add_speak_listener(self, listener: Callable[[Dict[str, Any]], Any]) -> None:
        """Register a callback for 'wants to speak' requests."""
        self._speak_listeners.append(listener)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def observe(self, event_type: str, data: Optional[Mapping[str, Any]] = None) -> Optional[Emotion]:
        """
        Feed an application event to the mind.

        Args:
            event_type: Event name such as 'collision' or 'idle'
            data: Event payload; 'idle' reads 'duration' in seconds

        Returns:
            The new emotion if the event caused a transition
        """
        now = self.clock()
        data = dict(data or {})
        self.recent_events.append(ObservedEvent(event_type, data, now, self._state.emotion))
        self.stats["events_observed"] += 1

        self._update_intensity(now)
        boost = SALIENCE_BOOSTS.get(event_type)
        if boost:
            self._set_intensity(self._state.intensity + boost, now)

        faded = self._check_floor_fade(now)
        if faded is not None:
            return faded

        if self.in_cooldown(now):
            return None

        if event_type == "idle" and float(data.get("duration", 0.0)) < self.config.idle_reaction_after:
            candidates = []
        else:
            candidates = self.graph.event_candidates(event_type, self._state.emotion)

        if not candidates:
            return self._drift(now)

        target = weighted_choice(candidates, self.rng)
        if target is None or target == self._state.emotion:
            return None

        if not self._transition_to(target, f"event:{event_type}", now):
            return None

        if target in SPEAK_EMOTIONS:
            self._request_speak(f"event:{event_type}")
        return target

    def tick(self) -> Optional[Emotion]:
        """Apply decay, floor fade and drift without an external event."""
        now = self.clock()
        self._update_intensity(now)

        faded = self._check_floor_fade(now)
        if faded is not None:
            return faded

        if self.in_cooldown(now):
            return None
        return self._drift(now)

    def reflect(self, reflect_pull: Optional[Mapping[str, float]] = None,
                themes: Optional[Iterable[str]] = None) -> Optional[Emotion]:
        """
        Let just-shown content push on the emotional state.

        Args:
            reflect_pull: Emotion name -> pull weight declared by the content
            themes: Themes of the content (recorded only)

        Returns:
            The new emotion if the reflection caused a transition
        """
        now = self.clock()
        if self._last_reflection is not None and now - self._last_reflection < self.config.reflection_spacing:
            return None
        self._last_reflection = now

        if now - self._state.emotion_start_time < self.config.reflection_dwell:
            return None

        self._update_intensity(now)
        self.stats["reflections"] += 1

        pull = {str(k).lower(): float(v) for k, v in (reflect_pull or {}).items()}
        avg_pull = sum(pull.values()) / len(pull) if pull else 1.0
        state = self._state

        intensity_multiplier = 1.0 + 0.3 * state.intensity
        noise = (self.rng.random() - 0.5) * 0.1
        pressure = state.transition_pressure
        pressure += self.graph.traits.coherence * (avg_pull / 3.0) * intensity_multiplier + noise
        pressure *= 0.97 * (1.0 - 0.2 * state.intensity)
        state.transition_pressure = max(0.0, pressure)

        self._set_intensity(state.intensity + (avg_pull / 3.5 - state.intensity) * 0.15, now)

        logger.debug(f"Reflected on content (themes={sorted(themes or [])}): "
                     f"pressure={state.transition_pressure:.3f} intensity={state.intensity:.2f}")

        if self.in_cooldown(now):
            return None
        if state.transition_pressure < self.graph.threshold(state.emotion):
            return None

        if self.rng.random() < self.config.random_perturbation:
            kick = self.rng.choice(list(Emotion))
            if kick != state.emotion and self._transition_to(kick, "perturbation", now):
                self.stats["random_perturbations"] += 1
                return kick

        candidates = []
        for target, weight in self.graph.edges_from(state.emotion).items():
            weight *= pull.get(target.value, 1.0)
            if target is Emotion.NEUTRAL:
                # Engaged states resist idling out
                weight *= 1.0 - 0.5 * state.intensity
            candidates.append((target, weight))

        target = weighted_choice(candidates, self.rng)
        if target is not None and target != state.emotion and self._transition_to(target, "reflection", now):
            return target

        state.transition_pressure *= 0.5
        return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _drift(self, now: float) -> Optional[Emotion]:
        dwell = now - self._state.emotion_start_time
        candidates = self.graph.drift_candidates(self._state.emotion, dwell, self.config.drift_dwell)
        if not candidates:
            return None

        target = weighted_choice(candidates, self.rng)
        if target is None or target == self._state.emotion:
            return None
        return target if self._transition_to(target, "drift", now) else None

    def _transition_to(self, target: Emotion, reason: str, now: float) -> bool:
        """The only place the emotion changes; enforces the shared cooldown."""
        state = self._state
        if now < state.next_transition_allowed_at:
            logger.debug(f"Transition to {target.value} blocked by cooldown ({reason})")
            return False

        previous = state.emotion
        low, high = TRANSITION_INTENSITY.get(target, DEFAULT_TRANSITION_INTENSITY)

        state.emotion = target
        state.emotion_start_time = now
        state.transition_pressure = 0.0
        state.next_transition_allowed_at = now + self.config.min_transition_interval
        self._set_intensity(self.rng.uniform(low, high), now)

        self.stats["transitions"] += 1
        self.transition_history.append({
            "from": previous.value,
            "to": target.value,
            "reason": reason,
            "timestamp": now,
        })
        logger.info(f"Emotion {previous.value} -> {target.value} ({reason}), "
                    f"intensity {state.intensity:.2f}")

        if self.event_bus:
            self.event_bus.publish(EventType.EMOTION_CHANGED, {
                "previous": previous.value,
                "emotion": target.value,
                "intensity": state.intensity,
                "reason": reason,
            }, source="emotion_engine")
        return True

    def _update_intensity(self, now: float) -> None:
        elapsed = now - self._last_decay
        steps = int(elapsed // self.config.decay_interval) if self.config.decay_interval > 0 else 0
        if steps > 0:
            self._last_decay += steps * self.config.decay_interval
            self._set_intensity(self._state.intensity - steps * self.config.decay_amount, now)

    def _set_intensity(self, value: float, now: float) -> None:
        self._state.intensity = self._clamp_intensity(value)
        if self._state.intensity <= self.config.intensity_floor + FLOOR_BAND:
            if self._floor_since is None:
                self._floor_since = now
        else:
            self._floor_since = None

    def _clamp_intensity(self, value: float) -> float:
        return clamp(value, self.config.intensity_floor, 1.0)

    def _check_floor_fade(self, now: float) -> Optional[Emotion]:
        if self._state.emotion is Emotion.NEUTRAL or self._floor_since is None:
            return None
        if now - self._floor_since < self.config.floor_fade_after:
            return None
        if self._transition_to(Emotion.NEUTRAL, "faded", now):
            return Emotion.NEUTRAL
        return None

    def _request_speak(self, reason: str) -> None:
        self.stats["speak_requests"] += 1
        request = {
            "emotion": self._state.emotion.value,
            "intensity": self._state.intensity,
            "reason": reason,
        }
        for listener in list(self._speak_listeners):
            listener(request)

    # ------------------------------------------------------------------
    # Advice for the rest of the system
    # ------------------------------------------------------------------

    def preferred_themes(self) -> List[str]:
        return sorted(PREFERRED_THEMES.get(self._state.emotion, frozenset()))

    def mode_weight(self, mode: str) -> float:
        return MODE_WEIGHTS.get(self._state.emotion, {}).get(mode, 1.0)

    def should_interrupt(self, event_type: str) -> bool:
        """Whether an event is significant enough to cut into current text."""
        if event_type not in INTERRUPTING_EVENTS:
            return False
        return self.rng.random() < self._state.intensity * 0.4

    def should_suppress_ambient(self) -> bool:
        """
        Veto the next ambient line.

        A listless BORED mind or a deeply CONTEMPLATIVE one sometimes keeps
        quiet, but never more than a couple of cycles in a row.
        """
        state = self._state
        veto = False
        if state.emotion is Emotion.BORED and state.intensity < 0.25:
            veto = self.rng.random() < 0.35
        elif state.emotion is Emotion.CONTEMPLATIVE and state.intensity > 0.8:
            veto = self.rng.random() < 0.2

        if veto and self._consecutive_vetoes >= MAX_CONSECUTIVE_VETOES:
            veto = False

        self._consecutive_vetoes = self._consecutive_vetoes + 1 if veto else 0
        if veto:
            self.stats["ambient_vetoes"] += 1
        return veto

    def ambient_delay_multiplier(self) -> float:
        """How much sooner (< 1) or later (> 1) the mind wants to speak."""
        base = AMBIENT_DELAY_MULTIPLIERS.get(self._state.emotion, 1.0)
        return 1.0 + (base - 1.0) * (0.5 + 0.5 * self._state.intensity)

    def recent_activity_summary(self) -> str:
        recent_types = [event.type for event in list(self.recent_events)[-5:]]
        if not recent_types:
            return "just started"
        if recent_types.count("collision") >= 3:
            return "frequent collisions"
        if recent_types.count("ejection") >= 2:
            return "multiple ejections"
        if recent_types.count("idle") >= 3:
            return "extended idleness"
        return "mixed activity"

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "state": self._state.to_dict(),
            "dwell_time": self.dwell_time(),
            "recent_activity": self.recent_activity_summary(),
            "recent_transitions": list(self.transition_history)[-5:],
        }
