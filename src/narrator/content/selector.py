"""
Content selection.

Picks ambient, welcome and immediate (interaction) content by context
match, theme overlap and recency, then draws a weighted random entry
whose weights express the entry's emotional bias in proportion to the
current intensity.
"""

import logging
import random
from collections import deque
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence

from ..core.sampling import clamp, weighted_choice
from ..core.service_config import SelectorConfig
from ..core.types import Emotion
from . import timing
from .loader import ContentLibrary
from .model import WILDCARD, ContentEntry, InteractionFile, Line, Selection, normalize_mode
from .templates import render

logger = logging.getLogger(__name__)

# Modes whose 'what' tag must match exactly
INTERACTIVE_MODES = frozenset({"collision", "ejection", "stable", "zoom", "drag", "render", "idle"})

WELCOME_MODE = "welcome"

PREFERRED_THEMES: Dict[Emotion, FrozenSet[str]] = {
    Emotion.CURIOUS: frozenset({"mystery", "discovery"}),
    Emotion.ANALYTICAL: frozenset({"precision", "mathematics"}),
    Emotion.CONTEMPLATIVE: frozenset({"philosophy", "meaning"}),
    Emotion.EXCITED: frozenset({"chaos", "energy"}),
    Emotion.AMUSED: frozenset({"humor", "irony"}),
    Emotion.CONCERNED: frozenset({"stability", "boundary"}),
    Emotion.SURPRISED: frozenset({"unexpected", "paradox"}),
    Emotion.BORED: frozenset({"monotony", "waiting"}),
    Emotion.NEUTRAL: frozenset(),
}


def effective_weight(entry: ContentEntry, emotion: Emotion, intensity: float) -> float:
    """
    Bias expressed in proportion to intensity.

    At intensity 0 every entry weighs 1; at intensity 1 the declared bias
    is used as-is.
    """
    intensity = clamp(intensity, 0.0, 1.0)
    return max(0.0, 1.0 + (entry.bias(emotion) - 1.0) * intensity)


class RecencyBuffer:
    """Recently shown ambient indices, sized to at most half the pool."""

    def __init__(self, buffer_size: int, pool_size: int):
        self.capacity = max(0, min(buffer_size, pool_size // 2))
        self._items: deque = deque(maxlen=self.capacity)

    def __contains__(self, index: int) -> bool:
        return index in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, index: int) -> None:
        if self.capacity:
            self._items.append(index)

    def clear(self) -> None:
        self._items.clear()

    def snapshot(self) -> List[int]:
        return list(self._items)


class ContentSelector:
    """Owns the corpus and all content selection policy."""

    def __init__(self, library: ContentLibrary, config: Optional[SelectorConfig] = None,
                 rng: Optional[random.Random] = None):
        self.library = library
        self.config = config or SelectorConfig()
        self.rng = rng or random.Random()

        self.recent = RecencyBuffer(self.config.buffer_size, len(library.ambient))
        self._first_selection = True

        self.stats = {
            "ambient_selections": 0,
            "welcome_selections": 0,
            "immediate_selections": 0,
            "empty_selections": 0,
            "relaxations": 0,
        }

    @property
    def is_first_selection(self) -> bool:
        return self._first_selection

    # ------------------------------------------------------------------
    # Ambient / welcome
    # ------------------------------------------------------------------

    def select(self, mode: Optional[str], themes: Optional[Iterable[str]], emotion: Emotion,
               intensity: float, state_refs: Optional[Mapping[str, Any]] = None) -> Optional[Selection]:
        """
        Select ambient content for the current mode and mood.

        The first call ever draws from the welcome pool instead. Returns
        None only when there is nothing to draw from.
        """
        wanted = frozenset(t.lower() for t in (themes or ())) | PREFERRED_THEMES.get(emotion, frozenset())
        mode = normalize_mode(mode)

        if self._first_selection:
            self._first_selection = False
            welcome = self._select_welcome(wanted, emotion, intensity)
            if welcome is not None:
                self.stats["welcome_selections"] += 1
                return self._render(welcome, state_refs, "welcome")

        index = self._select_ambient_index(mode, wanted, emotion, intensity)
        if index is None:
            self.stats["empty_selections"] += 1
            logger.debug(f"No ambient content for mode='{mode}'")
            return None

        self.recent.add(index)
        self.stats["ambient_selections"] += 1
        return self._render(self.library.ambient[index], state_refs, "ambient")

    def _select_welcome(self, themes: FrozenSet[str], emotion: Emotion,
                        intensity: float) -> Optional[ContentEntry]:
        pool = self.library.welcome
        if not pool:
            return None

        matching = [e for e in pool if self._theme_matches(e, themes)]
        candidates = matching or list(pool)
        return self._weighted_entry(candidates, emotion, intensity)

    def _select_ambient_index(self, mode: str, themes: FrozenSet[str], emotion: Emotion,
                              intensity: float) -> Optional[int]:
        pool = self.library.ambient
        if not pool:
            return None

        context = [i for i, e in enumerate(pool) if self._context_matches(e, mode)]

        candidates = [i for i in context if i not in self.recent and self._theme_matches(pool[i], themes)]
        if not candidates:
            self.stats["relaxations"] += 1
            candidates = [i for i in context if i not in self.recent]
        if not candidates:
            logger.debug("Recency buffer exhausted the candidates, clearing it")
            self.recent.clear()
            candidates = context
        if not candidates:
            candidates = list(range(len(pool)))

        choice = weighted_choice(
            [(i, effective_weight(pool[i], emotion, intensity)) for i in candidates],
            self.rng,
        )
        return choice if choice is not None else candidates[0]

    # ------------------------------------------------------------------
    # Immediate (interaction) responses
    # ------------------------------------------------------------------

    def select_immediate(self, event: str, emotion: Emotion, button: Optional[str] = None,
                         slider: Optional[str] = None, select: Optional[str] = None,
                         state_refs: Optional[Mapping[str, Any]] = None) -> Optional[Selection]:
        """Pick a response to a reactive event, falling back to the generic file."""
        interaction_file = self._find_interaction_file(event, button, slider, select)
        if interaction_file is None:
            logger.debug(f"No interaction content for event='{event}' button={button}")
            return None

        weighted = [(entry, max(0.0, entry.bias(emotion))) for entry in interaction_file.entries]
        candidates = [(entry, weight) for entry, weight in weighted if weight > 0]
        if not candidates:
            return None

        entry = weighted_choice(candidates, self.rng) or candidates[0][0]
        self.stats["immediate_selections"] += 1
        return self._render(entry, state_refs, "interaction")

    def _find_interaction_file(self, event: str, button: Optional[str], slider: Optional[str],
                               select: Optional[str]) -> Optional[InteractionFile]:
        for interaction_file in self.library.interactions:
            if interaction_file.context.is_fallback:
                continue
            if interaction_file.context.matches(event, button, slider, select):
                return interaction_file
        return self.library.fallback

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _theme_matches(entry: ContentEntry, themes: FrozenSet[str]) -> bool:
        return not themes or bool(entry.themes & themes)

    @staticmethod
    def _context_matches(entry: ContentEntry, mode: str) -> bool:
        when_ok = not entry.when or WILDCARD in entry.when or not mode or mode in entry.when
        if mode == WELCOME_MODE:
            what_ok = WELCOME_MODE in entry.what
        elif mode in INTERACTIVE_MODES:
            what_ok = mode in entry.what
        else:
            what_ok = not entry.what or WILDCARD in entry.what or not mode or mode in entry.what
        return when_ok and what_ok

    def _weighted_entry(self, entries: Sequence[ContentEntry], emotion: Emotion,
                        intensity: float) -> Optional[ContentEntry]:
        if not entries:
            return None
        choice = weighted_choice([(e, effective_weight(e, emotion, intensity)) for e in entries], self.rng)
        return choice if choice is not None else entries[0]

    @staticmethod
    def _render(entry: ContentEntry, state_refs: Optional[Mapping[str, Any]], source: str) -> Selection:
        lines = tuple(line.with_text(render(line.text, state_refs)) for line in entry.lines)
        return Selection(entry=entry, lines=lines, source=source)

    def roll_rarity(self, line: Line) -> bool:
        """True if the line should be shown this time."""
        return line.rarity >= 1.0 or self.rng.random() <= line.rarity

    def preferred_themes(self, emotion: Emotion) -> FrozenSet[str]:
        return PREFERRED_THEMES.get(emotion, frozenset())

    # ------------------------------------------------------------------
    # Timing
    # ------------------------------------------------------------------

    def display_time(self, emotion: Emotion, intensity: float, text_length: int) -> float:
        return timing.display_time(
            emotion, text_length, self.rng,
            base_min=self.config.display_min,
            base_max=self.config.display_max,
            floor=self.config.display_floor,
            ceiling=self.config.display_ceiling,
        )

    def idle_time(self, emotion: Emotion, intensity: float, base: float) -> float:
        return timing.idle_time(emotion, intensity, base, self.rng)

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self.stats,
            "is_first_selection": self._first_selection,
            "recency_capacity": self.recent.capacity,
            "recent": self.recent.snapshot(),
            "library": self.library.get_stats(),
        }
