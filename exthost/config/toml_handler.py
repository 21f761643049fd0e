"""
TOML File I/O Handler.

Settings files are parsed with tomllib and generated with tomlkit so the
written file carries a comment per key.
"""

import tomllib
from pathlib import Path
from typing import Any

import tomlkit

from exthost.config.schema import SettingField


class TOMLError(Exception):
    """Base exception for TOML-related errors."""

    pass


def read_toml(file_path: Path) -> dict[str, Any]:
    """
    Read and parse a TOML file.

    Raises:
        TOMLError: If the file cannot be read or parsed
    """
    try:
        with open(file_path, "rb") as f:
            return tomllib.load(f)
    except FileNotFoundError as e:
        raise TOMLError(f"TOML file not found: {file_path}") from e
    except tomllib.TOMLDecodeError as e:
        raise TOMLError(f"Failed to parse TOML file {file_path}: {e}") from e
    except OSError as e:
        raise TOMLError(f"Failed to read TOML file {file_path}: {e}") from e


def render_settings_toml(
    section: str, schema: dict[str, SettingField], values: dict[str, Any]
) -> str:
    """Render one settings table, with each key's description as a comment."""
    doc = tomlkit.document()
    doc.add(tomlkit.comment("exthost extension loader settings"))
    doc.add(tomlkit.nl())

    table = tomlkit.table()
    for name, setting in schema.items():
        if setting.description:
            table.add(tomlkit.comment(setting.description))
        table.add(name, values.get(name, setting.default))
        table.add(tomlkit.nl())

    doc.add(section, table)
    return tomlkit.dumps(doc)


def write_text(file_path: Path, content: str) -> None:
    """
    Write generated TOML to disk, creating parent directories.

    Raises:
        TOMLError: If the file cannot be written
    """
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise TOMLError(f"Failed to write TOML file {file_path}: {e}") from e
