"""
extctl CLI - exthost extension tool.

Usage:
    extctl load <directory> [--timeout S] [--config FILE] [-v]
    extctl init-config <file>
"""

import argparse
import logging
import sys


class CLIError(Exception):
    """Base exception for extctl errors."""

    pass


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        prog="extctl",
        description="Load exthost extensions and manage loader settings",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    commands = parser.add_subparsers(dest="command")

    load = commands.add_parser("load", help="Load every extension in a directory")
    load.add_argument("directory", help="Directory with one sub-directory per extension")
    load.add_argument(
        "--timeout", type=float, default=None, help="Init budget in seconds"
    )
    load.add_argument("--config", default=None, help="Settings TOML file")

    init_config = commands.add_parser(
        "init-config", help="Write a default settings file"
    )
    init_config.add_argument("file", help="Settings TOML file to create")
    init_config.add_argument(
        "--force", action="store_true", help="Overwrite an existing file"
    )

    return parser


def configure_logging(verbose: bool) -> None:
    """Send diagnostics to stderr; progress messages only when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s" if not verbose else "%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point for extctl CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    configure_logging(args.verbose)

    try:
        if args.command == "load":
            from extctl.commands.load import load_command

            return load_command(args)

        elif args.command == "init-config":
            from extctl.commands.init_config import init_config_command

            return init_config_command(args)

    except CLIError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130

    return 1


if __name__ == "__main__":
    sys.exit(main())
