"""Persisted refminer settings in a TOML file."""

from __future__ import annotations

import logging
from typing import Any, Dict

import toml

from .config import BASE_DIR, DiffSettings

logger = logging.getLogger(__name__)

CONFIG_FILE = BASE_DIR / "config.toml"
SECTION = "diff"


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return toml.load(f)
    except toml.TomlDecodeError as exc:
        logger.warning("Ignoring malformed config file %s: %s", CONFIG_FILE, exc)
        return {}


def _save_full_config(data: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(CONFIG_FILE, "w") as f:
            toml.dump(data, f)
        return True
    except OSError as exc:
        logger.warning("Could not write config file %s: %s", CONFIG_FILE, exc)
        return False


def load_config() -> Dict[str, Any]:
    """Load the ``[diff]`` section.

    Returns:
        The raw key/value pairs of the section, empty when the file or the
        section does not exist.
    """
    return dict(load_full_config().get(SECTION, {}))


def load_settings(**overrides: Any) -> DiffSettings:
    """Effective settings: defaults, then config file, then *overrides*.

    ``None`` overrides are ignored so CLI options can be passed through
    unconditionally.
    """
    return DiffSettings.from_mapping(load_config()).with_overrides(**overrides)


def save_setting(name: str, value: str) -> bool:
    """Persist one setting into the ``[diff]`` section.

    Args:
        name: Field name of :class:`DiffSettings`
        value: Raw value as typed on the command line

    Returns:
        True if saved successfully.

    Raises:
        ValueError: unknown setting or a value the settings reject.
    """
    if name not in DiffSettings.__dataclass_fields__:
        raise ValueError(f"Unknown setting '{name}'")
    section = load_config()
    section[name] = value
    # Validate the merged section before anything touches the file.
    validated = DiffSettings.from_mapping(section)
    section[name] = getattr(validated, name)
    if section[name] is None:
        section.pop(name)

    data = load_full_config()
    data[SECTION] = section
    return _save_full_config(data)


def clear_settings() -> bool:
    """Remove the ``[diff]`` section, resetting to defaults."""
    data = load_full_config()
    data.pop(SECTION, None)
    return _save_full_config(data)
