"""
Content data model.

A content file is ``{"_context": {...}, "lines": [entry, ...]}`` where each
entry carries its own lines plus selection metadata. Everything here is
immutable after load.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

from ..core.types import Emotion, Tone

logger = logging.getLogger(__name__)

WILDCARD = "any"
_WILDCARD_ALIASES = {"*", "any"}


class ContentError(ValueError):
    """A content entry or file that cannot be used."""


def normalize_tag(value: Any) -> str:
    tag = str(value).strip().lower()
    return WILDCARD if tag in _WILDCARD_ALIASES else tag


def normalize_tags(raw: Any) -> FrozenSet[str]:
    """Normalize a tag or list of tags; wildcards collapse to 'any'."""
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple, set, frozenset)):
        raise ContentError(f"Expected a tag or list of tags, got {type(raw).__name__}")
    return frozenset(normalize_tag(tag) for tag in raw if str(tag).strip())


def normalize_mode(mode: Optional[str]) -> str:
    """Lowercase a mode name and collapse ' + ' separators to '+'."""
    if not mode:
        return ""
    return re.sub(r"\s*\+\s*", "+", str(mode).strip().lower())


def _parse_weights(raw: Any, name: str) -> Dict[str, float]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ContentError(f"'{name}' must be a mapping of emotion to weight")
    weights = {}
    for key, value in raw.items():
        try:
            weights[str(key).strip().lower()] = float(value)
        except (TypeError, ValueError):
            raise ContentError(f"'{name}' weight for '{key}' is not a number: {value!r}")
    return weights


@dataclass(frozen=True)
class Line:
    """One line of text with optional per-line overrides."""
    text: str
    rarity: float = 1.0
    tone: Optional[Tone] = None
    duration_mult: float = 1.0

    @classmethod
    def from_raw(cls, raw: Any) -> "Line":
        if isinstance(raw, str):
            if not raw.strip():
                raise ContentError("Empty line")
            return cls(text=raw)

        if isinstance(raw, Mapping):
            text = raw.get("t", raw.get("text"))
            if not isinstance(text, str) or not text.strip():
                raise ContentError(f"Line object without text: {raw!r}")
            try:
                rarity = float(raw.get("rarity", 1.0))
                duration_mult = float(raw.get("duration_mult", 1.0))
            except (TypeError, ValueError):
                raise ContentError(f"Line object with non-numeric rarity/duration_mult: {raw!r}")
            tone = Tone.parse(raw["tone"]) if raw.get("tone") is not None else None
            return cls(
                text=text,
                rarity=max(0.0, min(1.0, rarity)),
                tone=tone,
                duration_mult=max(0.0, duration_mult),
            )

        raise ContentError(f"Unsupported line type: {type(raw).__name__}")

    def with_text(self, text: str) -> "Line":
        return Line(text=text, rarity=self.rarity, tone=self.tone, duration_mult=self.duration_mult)


@dataclass(frozen=True)
class ContentEntry:
    """A selectable unit of content: one or more lines plus metadata."""
    lines: Tuple[Line, ...]
    select_bias: Dict[str, float] = field(default_factory=dict, hash=False)
    reflect_pull: Dict[str, float] = field(default_factory=dict, hash=False)
    tone: Tone = Tone.NEUTRAL
    themes: FrozenSet[str] = frozenset()
    when: FrozenSet[str] = frozenset()
    what: FrozenSet[str] = frozenset()

    @classmethod
    def from_raw(cls, raw: Any, context: Optional[Mapping[str, Any]] = None) -> "ContentEntry":
        """
        Parse one entry. The file-level context supplies when/what unless
        the entry declares its own.

        Raises:
            ContentError: if the entry has no usable lines or bad metadata
        """
        context = context or {}
        if isinstance(raw, str):
            raw = {"lines": [raw]}
        if not isinstance(raw, Mapping):
            raise ContentError(f"Entry must be an object, got {type(raw).__name__}")

        raw_lines = raw.get("lines")
        if isinstance(raw_lines, (str, Mapping)):
            raw_lines = [raw_lines]
        if not raw_lines:
            raise ContentError("Entry has no lines")

        lines = tuple(Line.from_raw(line) for line in raw_lines)

        return cls(
            lines=lines,
            select_bias=_parse_weights(raw.get("select_bias"), "select_bias"),
            reflect_pull=_parse_weights(raw.get("reflect_pull"), "reflect_pull"),
            tone=Tone.parse(raw.get("tone")),
            themes=normalize_tags(raw.get("themes")),
            when=normalize_tags(raw.get("when", context.get("when"))),
            what=normalize_tags(raw.get("what", context.get("what"))),
        )

    def bias(self, emotion: Emotion) -> float:
        """Declared selection bias for an emotion (1.0 when absent)."""
        return self.select_bias.get(emotion.value, 1.0)

    def pull(self, emotion: Emotion) -> float:
        """Declared reflection pull toward an emotion (1.0 when absent)."""
        return self.reflect_pull.get(emotion.value, 1.0)

    @property
    def text_length(self) -> int:
        return sum(len(line.text) for line in self.lines)


@dataclass(frozen=True)
class InteractionContext:
    """The event/control an interaction file responds to."""
    event: str = WILDCARD
    button: Optional[str] = None
    slider: Optional[str] = None
    select: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Optional[Mapping[str, Any]]) -> "InteractionContext":
        raw = raw or {}

        def _opt(key):
            value = raw.get(key)
            return normalize_tag(value) if value is not None else None

        return cls(
            event=normalize_tag(raw.get("event", WILDCARD)),
            button=_opt("button"),
            slider=_opt("slider"),
            select=_opt("select"),
        )

    @staticmethod
    def _field_matches(declared: Optional[str], requested: Optional[str]) -> bool:
        if declared is None or declared == WILDCARD:
            return True
        return requested is not None and normalize_tag(requested) == declared

    def matches(self, event: str, button: Optional[str] = None,
                slider: Optional[str] = None, select: Optional[str] = None) -> bool:
        """Exact or wildcard match on every field the file declares."""
        return (self._field_matches(self.event, event)
                and self._field_matches(self.button, button)
                and self._field_matches(self.slider, slider)
                and self._field_matches(self.select, select))

    @property
    def is_fallback(self) -> bool:
        """True for the generic file that answers any event."""
        return self.event == WILDCARD and not self.specificity

    @property
    def specificity(self) -> int:
        declared = (self.event, self.button, self.slider, self.select)
        return sum(1 for value in declared if value is not None and value != WILDCARD)


@dataclass(frozen=True)
class InteractionFile:
    """Entries that answer one interaction context."""
    name: str
    context: InteractionContext
    entries: Tuple[ContentEntry, ...]


@dataclass(frozen=True)
class Selection:
    """A chosen entry with its lines rendered against the state snapshot."""
    entry: ContentEntry
    lines: Tuple[Line, ...]
    source: str

    @property
    def tone(self) -> Tone:
        return self.entry.tone

    @property
    def themes(self) -> FrozenSet[str]:
        return self.entry.themes

    @property
    def reflect_pull(self) -> Dict[str, float]:
        return self.entry.reflect_pull

    @property
    def text_length(self) -> int:
        return sum(len(line.text) for line in self.lines)

    @property
    def is_multi_line(self) -> bool:
        return len(self.lines) > 1


def parse_entries(raw_entries: Iterable[Any], context: Optional[Mapping[str, Any]],
                  source: str) -> Tuple[ContentEntry, ...]:
    """Parse a list of raw entries, skipping invalid ones with a warning."""
    entries = []
    for index, raw in enumerate(raw_entries or []):
        try:
            entries.append(ContentEntry.from_raw(raw, context))
        except ContentError as e:
            logger.warning(f"Skipping invalid entry {index} in {source}: {e}")
    return tuple(entries)
