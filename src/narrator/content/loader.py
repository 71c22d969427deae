"""
Content library loading.

Reads a content directory into three disjoint, read-only pools:

    <root>/ambient/*.json          ambient pool
    <root>/lifecycle/welcome.json  welcome pool
    <root>/lifecycle/idle.json     ambient pool
    <root>/interactions/**/*.json  interaction files (context-indexed)

Bad files and bad entries are skipped with a warning; loading never raises
because of content.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Tuple, Union

from .model import (
    ContentEntry,
    InteractionContext,
    InteractionFile,
    parse_entries,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentLibrary:
    """The loaded corpus."""
    welcome: Tuple[ContentEntry, ...] = ()
    ambient: Tuple[ContentEntry, ...] = ()
    interactions: Tuple[InteractionFile, ...] = ()

    @property
    def fallback(self) -> Optional[InteractionFile]:
        """The generic interaction file answering any event."""
        for interaction in self.interactions:
            if interaction.context.is_fallback:
                return interaction
        return None

    def get_stats(self):
        return {
            "welcome": len(self.welcome),
            "ambient": len(self.ambient),
            "interaction_files": len(self.interactions),
            "interaction_entries": sum(len(f.entries) for f in self.interactions),
            "has_fallback": self.fallback is not None,
        }

    @classmethod
    def empty(cls) -> "ContentLibrary":
        return cls()

    @classmethod
    def from_documents(cls, welcome: Iterable[Mapping[str, Any]] = (),
                       ambient: Iterable[Mapping[str, Any]] = (),
                       interactions: Iterable[Mapping[str, Any]] = ()) -> "ContentLibrary":
        """Build a library from already-parsed content documents."""
        welcome_entries: List[ContentEntry] = []
        ambient_entries: List[ContentEntry] = []
        interaction_files: List[InteractionFile] = []

        for index, document in enumerate(welcome):
            welcome_entries.extend(_document_entries(document, f"welcome[{index}]"))

        for index, document in enumerate(ambient):
            ambient_entries.extend(_ambient_entries(document, f"ambient[{index}]"))

        for index, document in enumerate(interactions):
            interaction_file = _interaction_file(document, f"interactions[{index}]")
            if interaction_file:
                interaction_files.append(interaction_file)

        return cls(
            welcome=tuple(welcome_entries),
            ambient=tuple(ambient_entries),
            interactions=_order_by_specificity(interaction_files),
        )

    @classmethod
    def load(cls, root: Union[str, Path]) -> "ContentLibrary":
        """Load a content directory."""
        root = Path(root)
        if not root.is_dir():
            logger.warning(f"Content directory not found: {root}, using empty library")
            return cls.empty()

        welcome: List[ContentEntry] = []
        ambient: List[ContentEntry] = []
        interactions: List[InteractionFile] = []

        for path in sorted((root / "ambient").glob("*.json")):
            document = _read_json(path)
            if document is not None:
                ambient.extend(_ambient_entries(document, str(path)))

        welcome_doc = _read_json(root / "lifecycle" / "welcome.json")
        if welcome_doc is not None:
            welcome.extend(_document_entries(welcome_doc, "lifecycle/welcome.json"))

        idle_doc = _read_json(root / "lifecycle" / "idle.json")
        if idle_doc is not None:
            ambient.extend(_ambient_entries(idle_doc, "lifecycle/idle.json"))

        for path in sorted((root / "interactions").rglob("*.json")):
            document = _read_json(path)
            if document is None:
                continue
            interaction_file = _interaction_file(document, str(path.relative_to(root)))
            if interaction_file:
                interactions.append(interaction_file)

        library = cls(
            welcome=tuple(welcome),
            ambient=tuple(ambient),
            interactions=_order_by_specificity(interactions),
        )
        logger.info(f"Loaded content from {root}: {library.get_stats()}")
        return library


def _read_json(path: Path) -> Optional[Mapping[str, Any]]:
    if not path.exists():
        logger.debug(f"Content file not found: {path}")
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Skipping unreadable content file {path}: {e}")
        return None
    if not isinstance(document, Mapping):
        logger.warning(f"Skipping content file {path}: top level must be an object")
        return None
    return document


def _document_entries(document: Mapping[str, Any], source: str) -> Tuple[ContentEntry, ...]:
    context = document.get("_context") or {}
    if not isinstance(context, Mapping):
        logger.warning(f"Ignoring non-object _context in {source}")
        context = {}
    return parse_entries(document.get("lines") or [], context, source)


def _ambient_entries(document: Mapping[str, Any], source: str) -> List[ContentEntry]:
    entries = []
    for entry in _document_entries(document, source):
        # Welcome lines belong to the welcome pool only
        if "welcome" in entry.when:
            logger.warning(f"Skipping welcome-tagged entry in ambient content {source}")
            continue
        entries.append(entry)
    return entries


def _interaction_file(document: Mapping[str, Any], source: str) -> Optional[InteractionFile]:
    context_raw = document.get("_context") or {}
    if not isinstance(context_raw, Mapping):
        logger.warning(f"Skipping interaction file {source}: _context must be an object")
        return None

    entries = parse_entries(document.get("lines") or [], context_raw, source)
    if not entries:
        logger.warning(f"Skipping interaction file {source}: no valid entries")
        return None

    return InteractionFile(
        name=source,
        context=InteractionContext.from_raw(context_raw),
        entries=entries,
    )


def _order_by_specificity(files: List[InteractionFile]) -> Tuple[InteractionFile, ...]:
    # Stable sort keeps load order among equally specific files
    return tuple(sorted(files, key=lambda f: -f.context.specificity))
