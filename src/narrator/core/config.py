"""
Configuration management for the narrator.

Configuration hierarchy:
1. Code defaults (dataclasses below)
2. config/narrator.yaml - one section per component
3. .env file and environment variables - runtime overrides
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

from .service_config import (
    DisplayConfig,
    EmotionConfig,
    RateLimitConfig,
    SchedulerConfig,
    SelectorConfig,
    SequenceConfig,
    apply_env_overrides,
    load_file_config,
)

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class NarratorConfig:
    """Main configuration for the narrator."""

    # Core settings
    name: str = "Narrator"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # Component configurations
    emotion: EmotionConfig = field(default_factory=EmotionConfig)
    selector: SelectorConfig = field(default_factory=SelectorConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    sequence: SequenceConfig = field(default_factory=SequenceConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)

    # Paths
    content_dir: Path = Path(__file__).parent.parent / "data" / "content"
    logs_dir: Path = Path("logs")

    def __post_init__(self):
        self.content_dir = Path(self.content_dir)
        self.logs_dir = Path(self.logs_dir)


class ConfigManager:
    """Manages configuration loading and validation."""

    # Flat env vars mapped onto dotted config paths
    ENV_MAPPINGS = {
        "NARRATOR_NAME": "name",
        "NARRATOR_DEBUG": "debug",
        "NARRATOR_LOG_LEVEL": "log_level",
        "NARRATOR_CONTENT_DIR": "content_dir",
        "NARRATOR_LOGS_DIR": "logs_dir",
        "NARRATOR_BUFFER_SIZE": "selector.buffer_size",
        "NARRATOR_BUDGET_MAX": "rate_limit.budget_max",
        "NARRATOR_GLOBAL_LOCK": "rate_limit.global_lock",
        "NARRATOR_MIN_TRANSITION_INTERVAL": "emotion.min_transition_interval",
    }

    SECTIONS = {
        "emotion": (EmotionConfig, "EMOTION"),
        "selector": (SelectorConfig, "SELECTOR"),
        "rate_limit": (RateLimitConfig, "RATE_LIMIT"),
        "sequence": (SequenceConfig, "SEQUENCE"),
        "display": (DisplayConfig, "DISPLAY"),
        "scheduler": (SchedulerConfig, "SCHEDULER"),
    }

    def __init__(self, env_file: Optional[Path] = None):
        self._load_env_file(env_file)

        self.config: Optional[NarratorConfig] = None
        self._env_overrides: Dict[str, str] = {}

    def _load_env_file(self, env_file: Optional[Path]) -> None:
        """Load environment variables from .env file."""
        candidates = [env_file] if env_file else [Path.cwd() / '.env', Path.cwd().parent / '.env']

        for candidate in candidates:
            if candidate and candidate.exists():
                load_dotenv(candidate)
                logger.info(f"Loaded environment variables from {candidate}")
                return

        logger.info("No .env file found. Using system environment variables or defaults.")

    def load_config(self) -> NarratorConfig:
        """Load configuration from YAML and environment variables."""
        config_data = load_file_config()
        config_data = self._apply_env_overrides(config_data)

        self.config = self._create_config_object(config_data)
        self._validate_config(self.config)

        logger.info(f"Configuration loaded ({len(self._env_overrides)} environment overrides)")
        return self.config

    def _apply_env_overrides(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Apply environment variable overrides to configuration."""
        config_data = dict(config_data)

        for section, (_, prefix) in self.SECTIONS.items():
            section_data = config_data.get(section) or {}
            config_data[section] = apply_env_overrides(section_data, prefix)

        for env_var, config_path in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config_data, config_path, env_value)
                self._env_overrides[env_var] = env_value

        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: str) -> None:
        """Set a nested value using a dotted path, coercing the string value."""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert_value(value)

    def _convert_value(self, value: str) -> Any:
        """Convert a string value to the appropriate type."""
        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        return value

    def _create_config_object(self, config_data: Dict[str, Any]) -> NarratorConfig:
        """Create the NarratorConfig from merged data."""
        kwargs: Dict[str, Any] = {}

        for key in ("name", "version", "debug", "log_level", "content_dir", "logs_dir"):
            if config_data.get(key) is not None:
                kwargs[key] = config_data[key]

        for section, (config_cls, _) in self.SECTIONS.items():
            kwargs[section] = config_cls.from_dict(config_data.get(section) or {})

        return NarratorConfig(**kwargs)

    def _validate_config(self, config: NarratorConfig) -> None:
        """Validate configuration, raising ValueError listing every problem."""
        errors: List[str] = []

        if str(config.log_level).upper() not in LOG_LEVELS:
            errors.append(f"Invalid log level: {config.log_level}")

        if config.emotion.min_transition_interval < 0:
            errors.append("emotion.min_transition_interval must be >= 0")
        if not 0 < config.emotion.intensity_floor < 1:
            errors.append("emotion.intensity_floor must be in (0, 1)")

        if config.selector.buffer_size < 0:
            errors.append("selector.buffer_size must be >= 0")
        if config.selector.display_min > config.selector.display_max:
            errors.append("selector.display_min must not exceed selector.display_max")

        if config.rate_limit.budget_max < 1:
            errors.append("rate_limit.budget_max must be >= 1")
        if config.rate_limit.refill_interval <= 0:
            errors.append("rate_limit.refill_interval must be > 0")
        if config.rate_limit.recent_size < 1:
            errors.append("rate_limit.recent_size must be >= 1")

        if config.scheduler.min_delay > config.scheduler.max_delay:
            errors.append("scheduler.min_delay must not exceed scheduler.max_delay")
        if config.display.first_line_delay_min > config.display.first_line_delay_max:
            errors.append("display.first_line_delay_min must not exceed display.first_line_delay_max")

        if errors:
            error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)

    def get_env_overrides(self) -> Dict[str, str]:
        """Environment variables that were applied during the last load."""
        return dict(self._env_overrides)


def load_config(env_file: Optional[Path] = None) -> NarratorConfig:
    """Load configuration with a fresh ConfigManager."""
    return ConfigManager(env_file).load_config()
