"""
exthost Configuration - TOML-based loader settings.

Example settings file::

    [extensions]
    init_timeout = 10.0
    manifest_filename = "requirejs-config.json"
    main_module = "main"
    disabled_marker = ".disabled"

Example usage:
    from exthost.config import load_settings

    settings = load_settings(Path("config/exthost.toml"))
    loader = ExtensionLoader.from_settings(settings)
"""

from dataclasses import asdict, dataclass
from pathlib import Path

from exthost.config.schema import SettingField, ValidationError, validate_settings
from exthost.config.toml_handler import (
    TOMLError,
    read_toml,
    render_settings_toml,
    write_text,
)
from exthost.extension.hooks import DEFAULT_INIT_TIMEOUT
from exthost.extension.manifest import MANIFEST_FILENAME

SECTION = "extensions"

DEFAULT_SETTINGS_FILE = Path("config/exthost.toml")

SCHEMA: dict[str, SettingField] = {
    "init_timeout": SettingField(
        float,
        DEFAULT_INIT_TIMEOUT,
        "Seconds an asynchronous init_extension hook may take",
        min=0.0,
    ),
    "manifest_filename": SettingField(
        str,
        MANIFEST_FILENAME,
        "Module configuration file looked up in each extension directory",
        non_empty=True,
    ),
    "main_module": SettingField(
        str, "main", "Entry point module id of each extension", non_empty=True
    ),
    "disabled_marker": SettingField(
        str,
        ".disabled",
        "Extensions whose directory contains this file are skipped",
        non_empty=True,
    ),
}


class SettingsError(Exception):
    """Base exception for settings errors."""

    pass


@dataclass(frozen=True)
class LoaderSettings:
    """Extension loader settings."""

    init_timeout: float = DEFAULT_INIT_TIMEOUT
    manifest_filename: str = MANIFEST_FILENAME
    main_module: str = "main"
    disabled_marker: str = ".disabled"


def load_settings(path: Path = DEFAULT_SETTINGS_FILE) -> LoaderSettings:
    """
    Load loader settings from a TOML file.

    A missing file, or a file without an ``[extensions]`` table, yields the
    defaults.

    Raises:
        SettingsError: If the file cannot be parsed or a value is invalid
    """
    if not path.exists():
        return LoaderSettings()

    try:
        data = read_toml(path)
    except TOMLError as e:
        raise SettingsError(str(e)) from e

    section = data.get(SECTION, {})
    if not isinstance(section, dict):
        raise SettingsError(f"[{SECTION}] in {path} must be a table")

    try:
        values = validate_settings(section, SCHEMA)
    except ValidationError as e:
        raise SettingsError(f"Invalid settings in {path}: {e}") from e

    return LoaderSettings(**values)


def write_default_settings(
    path: Path, settings: LoaderSettings | None = None
) -> None:
    """
    Write a commented settings file.

    Raises:
        SettingsError: If the file cannot be written
    """
    values = asdict(settings or LoaderSettings())
    try:
        write_text(path, render_settings_toml(SECTION, SCHEMA, values))
    except TOMLError as e:
        raise SettingsError(str(e)) from e


__all__ = [
    "DEFAULT_SETTINGS_FILE",
    "LoaderSettings",
    "SettingsError",
    "load_settings",
    "write_default_settings",
]
