"""
Configuration management and loading.

Handles application settings read from an optional YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..core.aggregator import SESSION_GAP
from ..core.pricing_resolver import DEFAULT_FETCH_TIMEOUT, LITELLM_PRICING_URL, PRICING_REFRESH_INTERVAL
from ..ingest.pipeline import ROLLING_FETCH_DAYS
from ..ingest.scanner import LOG_EXTENSION
from ..storage.db import DEFAULT_DB_PATH

DEFAULT_LOG_ROOT = "~/.claude"
DEFAULT_PRICING_CACHE_PATH = "~/.cache/claude-watch/pricing.json"


@dataclass(frozen=True)
class Settings:
    """Complete application configuration."""
    log_root: Path = field(default_factory=lambda: Path(DEFAULT_LOG_ROOT).expanduser())
    log_extension: str = LOG_EXTENSION
    pricing_url: str = LITELLM_PRICING_URL
    pricing_cache_path: Path = field(default_factory=lambda: Path(DEFAULT_PRICING_CACHE_PATH).expanduser())
    pricing_refresh_hours: float = PRICING_REFRESH_INTERVAL.total_seconds() / 3600
    pricing_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT
    session_gap_hours: float = SESSION_GAP.total_seconds() / 3600
    rolling_fetch_days: int = ROLLING_FETCH_DAYS
    db_path: Path = field(default_factory=lambda: Path(DEFAULT_DB_PATH).expanduser())

    def __post_init__(self):
        """Validate setting values."""
        if not self.log_extension.startswith("."):
            raise ValueError("log_extension must start with '.'")
        if not self.pricing_url.startswith(("http://", "https://")):
            raise ValueError("pricing_url must be an http(s) URL")
        if self.pricing_refresh_hours <= 0:
            raise ValueError("pricing_refresh_hours must be > 0")
        if self.pricing_timeout_seconds <= 0:
            raise ValueError("pricing_timeout_seconds must be > 0")
        if self.session_gap_hours <= 0:
            raise ValueError("session_gap_hours must be > 0")
        if self.rolling_fetch_days < 1:
            raise ValueError("rolling_fetch_days must be >= 1")


_PATH_KEYS = {"log_root", "pricing_cache_path", "db_path"}
_STR_KEYS = {"log_extension", "pricing_url"}
_FLOAT_KEYS = {"pricing_refresh_hours", "pricing_timeout_seconds", "session_gap_hours"}
_INT_KEYS = {"rolling_fetch_days"}


def load_settings(path: Optional[str] = None) -> Settings:
    """Load and validate settings from a YAML file.

    Every key is optional; missing keys keep their defaults. Unknown keys and
    wrongly typed values are rejected so that a typo never silently falls
    back to a default.

    Args:
        path: Path to YAML settings file, or None for defaults

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If the settings file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If the configuration is invalid
    """
    if path is None:
        return Settings()

    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in settings file {path}: {e}")

    if raw_config is None:
        return Settings()
    if not isinstance(raw_config, dict):
        raise ValueError("Settings file must contain a mapping")

    allowed_keys = _PATH_KEYS | _STR_KEYS | _FLOAT_KEYS | _INT_KEYS
    unknown_keys = set(raw_config.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    values: Dict[str, Any] = {}
    for key, value in raw_config.items():
        values[key] = _coerce(key, value)
    return Settings(**values)


def _coerce(key: str, value: Any) -> Any:
    """Validate the type of one setting and convert it.

    Raises:
        ValueError: If the value has the wrong type
    """
    if key in _PATH_KEYS or key in _STR_KEYS:
        if not isinstance(value, str) or not value:
            raise ValueError(f"'{key}' must be a non-empty string")
        return Path(value).expanduser() if key in _PATH_KEYS else value
    if key in _INT_KEYS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{key}' must be an integer")
        return value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' must be a number")
    return float(value)
