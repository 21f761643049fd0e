"""
extctl load command.

Load every extension in a directory and print a summary.
"""

import asyncio
from pathlib import Path
from typing import Any

from exthost.config import DEFAULT_SETTINGS_FILE, SettingsError, load_settings
from exthost.extension.manager import BatchLoadReport, ExtensionLoader
from exthost.extension.hooks import HookError
from extctl.cli import CLIError


def load_command(args: Any) -> int:
    """
    Execute load command.

    Returns:
        0 when every enabled extension loaded, 1 otherwise
    """
    directory = Path(args.directory)
    if not directory.is_dir():
        raise CLIError(f"Not a directory: {directory}")

    config_path = Path(args.config) if args.config else DEFAULT_SETTINGS_FILE
    try:
        settings = load_settings(config_path)
    except SettingsError as e:
        raise CLIError(str(e)) from e

    loader = ExtensionLoader.from_settings(settings)
    if args.timeout is not None:
        try:
            loader.init_timeout = args.timeout
        except HookError as e:
            raise CLIError(str(e)) from e

    try:
        batch = asyncio.run(loader.load_all_extensions(directory))
    finally:
        loader.registry.uninstall()

    print_summary(batch)
    return 0 if batch.ok else 1


def print_summary(batch: BatchLoadReport) -> None:
    """Print one line per extension."""
    for name in batch.loaded:
        print(f"loaded    {name}")
    for name, kind in sorted(batch.failed.items()):
        print(f"failed    {name} ({kind.value})")
    for name in batch.disabled:
        print(f"disabled  {name}")

    print(
        f"\n{len(batch.loaded)} loaded, {len(batch.failed)} failed, "
        f"{len(batch.disabled)} disabled"
    )
