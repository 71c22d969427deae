"""
Component Configuration Loader.

Provides utilities for loading component configuration from YAML files.
- One config file (config/narrator.yaml), one section per component
- Merges file config with code defaults
- Environment variables can override config file values
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Type, TypeVar
from dataclasses import dataclass, field, fields
import yaml

logger = logging.getLogger(__name__)

# Type variable for generic config loading
T = TypeVar('T')

CONFIG_NAME = 'narrator'


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_dir = os.getenv('CONFIG_DIR', 'config')

    config_path = Path(config_dir)
    if not config_path.is_absolute():
        # Relative to project root (parent of src/)
        project_root = Path(__file__).parent.parent.parent.parent
        config_path = project_root / config_dir

    return config_path


def load_yaml_config(config_name: str) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Args:
        config_name: Name of the config file (without .yaml extension)

    Returns:
        Dictionary with configuration values, empty dict if file not found
    """
    config_file = get_config_dir() / f"{config_name}.yaml"

    if not config_file.exists():
        logger.debug(f"Config file not found: {config_file}, using defaults")
        return {}

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {config_file}")
            return config
    except yaml.YAMLError as e:
        logger.error(f"Error parsing config file {config_file}: {e}")
        return {}
    except OSError as e:
        logger.error(f"Error loading config file {config_file}: {e}")
        return {}


def merge_configs(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two configuration dictionaries.

    Args:
        defaults: Default configuration values
        overrides: Override values (from file or environment)

    Returns:
        Merged configuration dictionary
    """
    result = defaults.copy()

    for key, value in overrides.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


def apply_env_overrides(config: Dict[str, Any], prefix: str) -> Dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Environment variables should be named: {PREFIX}_{KEY} (uppercase)
    Nested keys use double underscore: {PREFIX}_{SECTION}__{KEY}

    Args:
        config: Configuration dictionary to update
        prefix: Environment variable prefix (e.g., 'RATE_LIMIT', 'EMOTION')

    Returns:
        Updated configuration dictionary
    """
    result = config.copy()
    prefix_upper = prefix.upper()

    for env_key, env_value in os.environ.items():
        if not env_key.startswith(f"{prefix_upper}_"):
            continue

        key_part = env_key[len(prefix_upper) + 1:]

        if '__' in key_part:
            parts = key_part.lower().split('__')
            current = result
            for part in parts[:-1]:
                if not isinstance(current.get(part), dict):
                    current[part] = {}
                else:
                    current[part] = dict(current[part])
                current = current[part]
            current[parts[-1]] = _parse_env_value(env_value)
        else:
            result[key_part.lower()] = _parse_env_value(env_value)

    return result


def _parse_env_value(value: str) -> Any:
    """Parse an environment variable value to the appropriate type."""
    if value.lower() in ('true', 'false'):
        return value.lower() == 'true'

    if value.lower() in ('null', 'none', ''):
        return None

    try:
        return int(value)
    except ValueError:
        pass

    try:
        return float(value)
    except ValueError:
        pass

    # List (comma-separated)
    if ',' in value and not value.startswith('['):
        return [v.strip() for v in value.split(',')]

    return value


def load_file_config() -> Dict[str, Any]:
    """narrator.yaml with an optional, untracked narrator.local.yaml merged over it."""
    return merge_configs(load_yaml_config(CONFIG_NAME), load_yaml_config(f"{CONFIG_NAME}.local"))


def _from_section(cls: Type[T], section: Dict[str, Any]) -> T:
    """Build a config dataclass from a dict, ignoring unknown keys."""
    known = {f.name for f in fields(cls)}
    unknown = set(section) - known
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    kwargs = {key: value for key, value in section.items() if key in known and value is not None}
    return cls(**kwargs)


def _load_section(cls: Type[T], section_name: str, prefix: str) -> T:
    file_config = load_file_config().get(section_name) or {}
    config = apply_env_overrides(file_config, prefix)
    return _from_section(cls, config)


@dataclass
class EmotionConfig:
    """Configuration for the EmotionEngine."""
    # Transition gating
    min_transition_interval: float = 15.0

    # Intensity dynamics
    intensity_floor: float = 0.1
    decay_amount: float = 0.015
    decay_interval: float = 8.0
    floor_fade_after: float = 45.0

    # Reflection
    reflection_dwell: float = 20.0
    reflection_spacing: float = 3.0
    random_perturbation: float = 0.15

    # Drift and idle reactions
    drift_dwell: float = 45.0
    idle_reaction_after: float = 30.0

    memory_size: int = 20

    # Personality; missing traits keep their defaults
    traits: Dict[str, float] = field(default_factory=dict)
    # Per-emotion pressure threshold overrides
    thresholds: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EmotionConfig':
        return _from_section(cls, data)

    @classmethod
    def load(cls) -> 'EmotionConfig':
        """Load emotion configuration from file and environment."""
        return _load_section(cls, 'emotion', 'EMOTION')


@dataclass
class SelectorConfig:
    """Configuration for the ContentSelector."""
    buffer_size: int = 32

    # Display time base range and hard bounds (seconds)
    display_min: float = 2.0
    display_max: float = 10.0
    display_floor: float = 1.5
    display_ceiling: float = 15.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SelectorConfig':
        return _from_section(cls, data)

    @classmethod
    def load(cls) -> 'SelectorConfig':
        """Load selector configuration from file and environment."""
        return _load_section(cls, 'selector', 'SELECTOR')


@dataclass
class RateLimitConfig:
    """Configuration for reactive event admission control."""
    budget_max: int = 3
    refill_interval: float = 45.0

    recent_size: int = 5
    suppression_window: float = 60.0

    global_lock: float = 8.0

    default_cooldown: float = 15.0
    cooldowns: Dict[str, float] = field(default_factory=lambda: {
        "button_hesitation": 15.0,
        "state_reset": 20.0,
        "slider_exploration": 25.0,
        "preset_browsing": 25.0,
        "orientation_adjustment": 25.0,
    })

    # One-slot retry queue for events denied because the display was busy
    pending_ttl: float = 2.0
    queueable: List[str] = field(default_factory=lambda: [
        "button_hesitation",
        "slider_exploration",
        "preset_browsing",
    ])

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RateLimitConfig':
        return _from_section(cls, data)

    @classmethod
    def load(cls) -> 'RateLimitConfig':
        """Load rate limit configuration from file and environment."""
        return _load_section(cls, 'rate_limit', 'RATE_LIMIT')


@dataclass
class SequenceConfig:
    """Configuration for the SequenceCoordinator."""
    grace_period: float = 0.2
    deferred_ttl: float = 5.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SequenceConfig':
        return _from_section(cls, data)

    @classmethod
    def load(cls) -> 'SequenceConfig':
        """Load sequence configuration from file and environment."""
        return _load_section(cls, 'sequence', 'SEQUENCE')


@dataclass
class DisplayConfig:
    """Configuration for the DisplayStateMachine."""
    # "Contemplation" before the very first line
    first_line_delay_min: float = 3.0
    first_line_delay_max: float = 5.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DisplayConfig':
        return _from_section(cls, data)

    @classmethod
    def load(cls) -> 'DisplayConfig':
        """Load display configuration from file and environment."""
        return _load_section(cls, 'display', 'DISPLAY')


@dataclass
class SchedulerConfig:
    """Configuration for ambient scheduling in the Orchestrator and router."""
    startup_delay: float = 0.0
    base_idle: float = 5.0
    min_delay: float = 3.0
    max_delay: float = 30.0
    mind_multiplier_damping: float = 0.75

    # Retry and reschedule delays
    no_selection_retry: float = 5.0
    mind_suppressed_retry: float = 3.0
    page_visible_delay: float = 2.0
    mind_speak_delay: float = 0.5

    # Base for the pause after the last line of an entry
    line_idle_base: float = 1.5

    # Immediate responses
    immediate_display: float = 3.0
    immediate_idle: float = 2.0

    # Gap between lines of a multi-line entry
    line_gap_min: float = 0.5
    line_gap_max: float = 1.0

    interrupt_cooldown: float = 10.0

    default_theme_floor: float = 3.0
    theme_floors: Dict[str, float] = field(default_factory=lambda: {
        "mathematical": 3.5,
        "existential": 4.0,
        "dark": 4.0,
        "infohazard": 3.5,
        "boundary": 3.5,
        "observational": 3.0,
        "amused": 3.0,
    })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SchedulerConfig':
        return _from_section(cls, data)

    @classmethod
    def load(cls) -> 'SchedulerConfig':
        """Load scheduler configuration from file and environment."""
        return _load_section(cls, 'scheduler', 'SCHEDULER')
