"""Load TallyConfig from YAML, with ${VAR} expansion and TALLY_* overrides."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from tally.config.schema import TallyConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS = [
    Path("tally.yaml"),
    Path("~/.tally/config.yaml").expanduser(),
]

# Environment variables that win over the file, keyed to their config path.
ENV_OVERRIDES: dict[str, tuple[str, ...]] = {
    "TALLY_BASE_CURRENCY": ("base_currency",),
    "TALLY_DATABASE": ("database", "path"),
    "TALLY_OVERLAP_POLICY": ("runner", "overlap_policy"),
}

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")


def _expand_env_vars(value: Any) -> Any:
    """Substitute ${VAR} in every string of a parsed YAML tree."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    for var, keys in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if not value:
            continue
        section = raw
        for key in keys[:-1]:
            if not isinstance(section.get(key), dict):
                section[key] = {}
            section = section[key]
        section[keys[-1]] = value
        logger.debug("%s overrides %s", var, ".".join(keys))
    return raw


def _find_config_file(explicit_path: str | Path | None = None) -> Path | None:
    if explicit_path is not None:
        path = Path(explicit_path).expanduser()
        if path.exists():
            return path
        logger.warning("Config file not found: %s", path)
        return None

    return next((p for p in DEFAULT_CONFIG_PATHS if p.exists()), None)


def load_config(path: str | Path | None = None) -> TallyConfig:
    """Load and validate configuration.

    The file is *path* if given, else the first of ./tally.yaml and
    ~/.tally/config.yaml that exists; with none, every setting takes its
    default. TALLY_BASE_CURRENCY, TALLY_DATABASE and TALLY_OVERLAP_POLICY
    override the file.

    Raises:
        ValueError: the file's top level is not a mapping.
        pydantic.ValidationError: a setting is out of range.
    """
    config_path = _find_config_file(path)

    raw: Any = {}
    if config_path is not None:
        logger.info("Loading config from %s", config_path)
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(
                f"{config_path}: expected a mapping at the top level, "
                f"got {type(raw).__name__}"
            )
        raw = _expand_env_vars(raw)
    else:
        logger.info("No config file found, using defaults")

    config = TallyConfig.model_validate(_apply_env_overrides(raw))
    logger.debug(
        "Config loaded: base_currency=%s share_basis=%s database=%s",
        config.base_currency,
        config.aggregation.share_basis,
        config.database.path,
    )
    return config


def resolve_path(path_str: str) -> Path:
    """Resolve a path from config, expanding ~ and making absolute."""
    return Path(path_str).expanduser().resolve()
