"""
Template references.

Lines may embed ``\\ref{key}`` or ``\\ref{key|formatter}``; references are
resolved against a snapshot of application state taken at selection time.
An escaped ``\\\\ref{`` renders as a literal ``\\ref{``.
"""

import logging
import math
import re
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

REF_PATTERN = re.compile(r'(?<!\\)\\ref\{([^}]+)\}')
ESCAPED_REF = '\\\\ref{'
PLACEHOLDER = '?'


def _round_half_up(value: float) -> int:
    # Half-up rounding, so 2.5 -> 3
    return int(math.floor(value + 0.5))


def _fixed(digits: int):
    return lambda value: f"{float(value):.{digits}f}"


FORMATTERS = {
    "int": lambda value: str(_round_half_up(float(value))),
    "fixed1": _fixed(1),
    "fixed2": _fixed(2),
    "fixed3": _fixed(3),
    "fixed4": _fixed(4),
    "sci": lambda value: f"{float(value):.2e}",
    "percent": lambda value: f"{_round_half_up(float(value) * 100)}%",
    "upper": lambda value: str(value).upper(),
    "lower": lambda value: str(value).lower(),
}


def format_value(value: Any, formatter: Optional[str]) -> str:
    """Apply a named formatter; unknown or failing formatters give the placeholder."""
    if not formatter:
        return str(value)

    formatter_fn = FORMATTERS.get(formatter)
    if formatter_fn is None:
        logger.warning(f"Unknown template formatter '{formatter}'")
        return PLACEHOLDER

    try:
        return formatter_fn(value)
    except (TypeError, ValueError) as e:
        logger.warning(f"Formatter '{formatter}' failed on {value!r}: {e}")
        return PLACEHOLDER


def render(text: str, refs: Optional[Mapping[str, Any]]) -> str:
    """Resolve every reference in text against refs."""
    refs = refs or {}

    def _replace(match) -> str:
        key, _, formatter = match.group(1).partition('|')
        key = key.strip()
        if key not in refs or refs[key] is None:
            logger.warning(f"Unknown template reference '{key}'")
            return PLACEHOLDER
        return format_value(refs[key], formatter.strip() or None)

    rendered = REF_PATTERN.sub(_replace, text)
    return rendered.replace(ESCAPED_REF, '\\ref{')


def has_refs(text: str) -> bool:
    return REF_PATTERN.search(text) is not None


def build_state_refs(app_state: Optional[Mapping[str, Any]] = None,
                     event_data: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Snapshot of values templates may reference.

    Application state comes first; values derived from the triggering
    event (new/old value, delta, control names) override it.
    """
    refs: Dict[str, Any] = dict(app_state or {})
    if not event_data:
        return refs

    new_value = event_data.get("new_value", event_data.get("value"))
    old_value = event_data.get("old_value")
    if new_value is not None:
        refs["new_value"] = new_value
    if old_value is not None:
        refs["old_value"] = old_value
    if isinstance(new_value, (int, float)) and isinstance(old_value, (int, float)):
        refs["delta"] = new_value - old_value

    for key in ("slider", "select", "button"):
        if event_data.get(key) is not None:
            refs[f"{key}_name"] = event_data[key]

    return refs
