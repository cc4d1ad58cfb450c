"""YAML configuration loading for the action agent.

The config file is resolved in this order:
1. An explicit path passed by the caller
2. ACTION_AGENT_CONFIG_PATH
3. config/config.yaml, relative to the working directory

Only the last one may be absent, in which case every section takes its
defaults. A file that exists is parsed with yaml.safe_load and validated
against AppConfig; problems are reported per field so they can be fixed
without reading a traceback.

Usage:
    from action_agent.config import get_config

    config = get_config()
    model = config.models.extraction
"""

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from action_agent.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from action_agent.core.errors import ConfigLoadError, ConfigValidationError
from action_agent.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "ACTION_AGENT_CONFIG_PATH"

# Readable templates for the pydantic error types people hit most often
_ERROR_TEMPLATES = {
    "missing": "'{loc}' is required",
    "extra_forbidden": "'{loc}' is not a known setting",
    "string_type": "'{loc}' must be a string",
    "int_type": "'{loc}' must be an integer",
    "int_parsing": "'{loc}' must be an integer",
    "bool_type": "'{loc}' must be true or false",
    "list_type": "'{loc}' must be a list",
}

_lock = threading.Lock()
_cached: AppConfig | None = None


@dataclass(frozen=True, slots=True)
class _ConfigSource:
    path: Path
    required: bool


def _resolve_source(path: Path | None) -> _ConfigSource:
    if path is not None:
        return _ConfigSource(path, required=True)
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return _ConfigSource(Path(env_path), required=True)
    return _ConfigSource(DEFAULT_CONFIG_PATH, required=False)


def _describe_errors(error: ValidationError) -> str:
    """One line per failing field, e.g. "  - 'models.max_tokens' must be an integer"."""
    lines = []
    for err in error.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "<root>"
        template = _ERROR_TEMPLATES.get(err["type"])
        detail = template.format(loc=loc) if template else f"'{loc}': {err['msg']}"
        lines.append(f"  - {detail}")
    return "\n".join(lines)


def _read_mapping(path: Path) -> dict[str, Any]:
    """Parse `path` as a YAML mapping. An empty file is an empty mapping.

    Raises:
        ConfigLoadError: If the file is missing, unreadable, not YAML, or
            not a mapping at the top level
    """
    if not path.is_file():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            "Copy config/config.yaml.example there, or unset "
            f"{CONFIG_PATH_ENV} to run with defaults."
        )

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigLoadError(f"Cannot read configuration file {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"{path} must contain a YAML mapping at the top level, "
            f"found {type(data).__name__}"
        )
    return data


def _build_config(data: dict[str, Any], path: Path) -> AppConfig:
    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Invalid configuration in {path}:\n{_describe_errors(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"{path} declares schema_version {config.schema_version}, which is newer than "
            f"the supported version {CURRENT_SCHEMA_VERSION}. Upgrade action-agent."
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Read and validate the configuration, bypassing the cache.

    Args:
        path: Config file to read; see the module docstring for the fallbacks

    Returns:
        Validated AppConfig

    Raises:
        ConfigLoadError: If a required file is missing or unparseable
        ConfigValidationError: If the content fails validation
    """
    source = _resolve_source(path)

    if not source.required and not source.path.exists():
        logger.info("config_defaults_used", path=str(source.path))
        return AppConfig()

    config = _build_config(_read_mapping(source.path), source.path)
    logger.info(
        "config_loaded",
        path=str(source.path),
        schema_version=config.schema_version,
        model=config.models.extraction,
        zero_score_keywords=len(config.extraction.zero_score_keywords),
    )
    return config


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use.

    Shared by the uvicorn event loop and the APScheduler thread.
    """
    global _cached

    with _lock:
        if _cached is None:
            _cached = load_config()
        return _cached


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file without touching the cached configuration.

    Returns:
        (is_valid, human-readable summary or error)
    """
    try:
        config = load_config(path)
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"

    extraction = config.extraction
    summary = [
        f"Configuration valid (schema version {config.schema_version})",
        f"  - model: {config.models.extraction}",
        f"  - {len(extraction.zero_score_keywords)} zero-score keywords",
        f"  - {len(extraction.promotional_keywords)} promotional markers",
        f"  - {len(extraction.finance_keywords)} finance terms",
        f"  - database: {config.database.path}",
    ]
    return True, "\n".join(summary)


def reset_config() -> None:
    """Drop the cached configuration (tests)."""
    global _cached
    with _lock:
        _cached = None
