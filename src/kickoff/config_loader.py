"""Configuration loader and validator."""

import logging
from pathlib import Path
from typing import Any

import yaml

from kickoff.errors import ValidationError
from kickoff.models import TournamentStatus
from kickoff.validation import validate_tournament_config

DEFAULT_DATABASE = ".kickoff/kickoff.sqlite"
DEFAULT_LOG_LEVEL = "INFO"

TOURNAMENT_DEFAULT_KEYS = (
    "type",
    "teams_per_group",
    "teams_advancing_per_group",
    "allow_third_place_teams",
    "third_place_playoff",
)


class ConfigError(Exception):
    """Configuration validation error."""

    pass


def load_config(path: str) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        path: Path to YAML config file

    Returns:
        Dictionary with configuration values

    Raises:
        ConfigError: If file not found or invalid YAML
    """
    config_file = Path(path)

    if not config_file.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        with open(config_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}")

    if config is None:
        raise ConfigError("Config file is empty")

    if not isinstance(config, dict):
        raise ConfigError("Config file must contain a mapping")

    return config


def _validate_defaults(defaults: Any) -> dict[str, Any]:
    if not isinstance(defaults, dict):
        raise ConfigError("defaults must be a dictionary")

    unknown = set(defaults) - set(TOURNAMENT_DEFAULT_KEYS)
    if unknown:
        raise ConfigError(f"Unknown keys in defaults: {', '.join(sorted(unknown))}")

    try:
        validate_tournament_config(**defaults)
    except ValidationError as e:
        raise ConfigError(f"Invalid tournament defaults: {e}")

    # Keep only what was given so per-type defaults still apply
    return dict(defaults)


def _validate_cache(cache: Any) -> dict[str, Any]:
    if not isinstance(cache, dict):
        raise ConfigError("cache must be a dictionary")

    enabled = cache.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigError("cache.enabled must be true or false")

    ttl_seconds = {}
    for status, ttl in (cache.get("ttl_seconds") or {}).items():
        try:
            status = TournamentStatus(status)
        except ValueError:
            raise ConfigError(f"cache.ttl_seconds: unknown tournament status '{status}'")
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl < 0:
            raise ConfigError(f"cache.ttl_seconds.{status.value} must be a non-negative number")
        ttl_seconds[status] = ttl

    return {"enabled": enabled, "ttl_seconds": ttl_seconds}


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate configuration values.

    Args:
        config: Configuration dictionary

    Returns:
        Validated and normalized configuration

    Raises:
        ConfigError: If validation fails
    """
    validated = {}

    # Database path (optional)
    database = config.get("database", DEFAULT_DATABASE)
    if not isinstance(database, str) or not database.strip():
        raise ConfigError("database must be a non-empty path")
    validated["database"] = database

    # Log level (optional, default INFO)
    log_level = str(config.get("log_level", DEFAULT_LOG_LEVEL)).upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigError(f"log_level must be a logging level name, got '{log_level}'")
    validated["log_level"] = log_level

    # Random seed (optional; without it group draws are not reproducible)
    random_seed = config.get("random_seed")
    if random_seed is not None and (isinstance(random_seed, bool) or not isinstance(random_seed, int)):
        raise ConfigError("random_seed must be an integer")
    validated["random_seed"] = random_seed

    validated["defaults"] = _validate_defaults(config.get("defaults") or {})
    validated["cache"] = _validate_cache(config.get("cache") or {})

    return validated


def default_config() -> dict[str, Any]:
    """Configuration used when no config file is given."""
    return validate_config({})


def load_and_validate_config(path: str) -> dict[str, Any]:
    """Load and validate configuration in one step.

    Args:
        path: Path to YAML config file

    Returns:
        Validated configuration dictionary

    Raises:
        ConfigError: If loading or validation fails
    """
    config = load_config(path)
    return validate_config(config)
