"""Shared fixtures for exthost tests."""

import logging
import textwrap
from pathlib import Path

import pytest

from exthost.extension.manager import ExtensionLoader
from exthost.extension.registry import ResolutionRegistry

DIAGNOSTICS_LOGGER = "exthost.extension.diagnostics"


@pytest.fixture
def registry():
    """Resolution registry whose finder is removed after the test."""
    registry = ResolutionRegistry()
    yield registry
    registry.uninstall()


@pytest.fixture
def loader(registry):
    """Extension loader with a short init budget."""
    return ExtensionLoader(init_timeout=0.5, registry=registry)


@pytest.fixture
def make_extension(tmp_path):
    """
    Factory writing an extension directory.

    Usage: make_extension("Name", {"main.py": "...", "lib/foo.py": "..."})
    """

    def _make(name: str, files: dict[str, str]) -> Path:
        root = tmp_path / name
        root.mkdir(parents=True, exist_ok=True)
        for relative, content in files.items():
            path = root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(textwrap.dedent(content), encoding="utf-8")
        return root

    return _make


@pytest.fixture
def diagnostics(caplog):
    """Return a callable listing the "[Extension]" messages logged so far."""
    caplog.set_level(logging.ERROR, logger=DIAGNOSTICS_LOGGER)

    def _messages() -> list[str]:
        return [
            record.getMessage()
            for record in caplog.records
            if record.name == DIAGNOSTICS_LOGGER
            and record.getMessage().startswith("[Extension]")
        ]

    return _messages
