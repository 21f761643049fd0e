"""
extctl init-config command.

Write a commented default settings file.
"""

from pathlib import Path
from typing import Any

from exthost.config import SettingsError, write_default_settings
from extctl.cli import CLIError


def init_config_command(args: Any) -> int:
    """Execute init-config command."""
    path = Path(args.file)
    if path.exists() and not args.force:
        raise CLIError(f"{path} already exists (use --force to overwrite)")

    try:
        write_default_settings(path)
    except SettingsError as e:
        raise CLIError(str(e)) from e

    print(f"Wrote {path}")
    return 0
