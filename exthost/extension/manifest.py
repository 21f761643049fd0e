"""
Extension Module Configuration (requirejs-config.json).

This module reads an extension's optional module configuration file and
merges it into the extension's resolution namespace before the main module
is fetched.

Key features:
- Optional file: absence means default resolution
- JSON structure validation for paths, shim and config
- Path aliases confined to the extension directory
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from exthost.extension.descriptor import ExtensionDescriptor
from exthost.extension.registry import (
    ExtensionNamespace,
    RegistryError,
    ResolutionRegistry,
    ShimSpec,
)

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "requirejs-config.json"

KNOWN_KEYS = ("paths", "shim", "config")


class ManifestError(Exception):
    """Base exception for module configuration errors."""

    pass


class ValidationError(ManifestError):
    """Raised when module configuration structure is invalid."""

    pass


@dataclass
class ModuleConfig:
    """
    Parsed module configuration.

    Attributes:
        paths: Module id -> path relative to the extension directory
        shim: Module id -> ShimSpec
        config: Module id -> configuration mapping
        raw_data: Parsed JSON document
    """

    paths: dict[str, str] = field(default_factory=dict)
    shim: dict[str, ShimSpec] = field(default_factory=dict)
    config: dict[str, dict[str, Any]] = field(default_factory=dict)
    raw_data: dict[str, Any] = field(default_factory=dict)


def parse_module_config(manifest_path: Path) -> ModuleConfig:
    """
    Parse a requirejs-config.json file.

    Args:
        manifest_path: Path to the file

    Returns:
        ModuleConfig object

    Raises:
        ManifestError: If the file cannot be read or parsed
        ValidationError: If the structure is invalid
    """
    try:
        text = manifest_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ManifestError(f"File is not valid UTF-8: {e}") from e
    except OSError as e:
        raise ManifestError(f"Failed to read file: {e}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid JSON: {e}") from e

    validate_module_config_structure(data)

    for key in data:
        if key not in KNOWN_KEYS:
            logger.debug("Ignoring unknown key '%s' in %s", key, manifest_path)

    shim = {
        module_id: ShimSpec(
            deps=list(entry.get("deps", [])),
            exports=entry.get("exports"),
        )
        for module_id, entry in data.get("shim", {}).items()
    }

    return ModuleConfig(
        paths=dict(data.get("paths", {})),
        shim=shim,
        config={k: dict(v) for k, v in data.get("config", {}).items()},
        raw_data=data,
    )


def validate_module_config_structure(data: Any) -> None:
    """
    Validate module configuration structure.

    Raises:
        ValidationError: If the structure is invalid
    """
    if not isinstance(data, dict):
        raise ValidationError(
            f"Expected a JSON object, got {type(data).__name__}"
        )

    paths = data.get("paths", {})
    if not isinstance(paths, dict):
        raise ValidationError("'paths' field must be an object")
    for alias, target in paths.items():
        if not alias:
            raise ValidationError("Path alias must be a non-empty string")
        if not isinstance(target, str) or not target:
            raise ValidationError(f"Path for '{alias}' must be a non-empty string")
        _validate_relative_path(alias, target)

    shim = data.get("shim", {})
    if not isinstance(shim, dict):
        raise ValidationError("'shim' field must be an object")
    for module_id, entry in shim.items():
        if not isinstance(entry, dict):
            raise ValidationError(f"Shim for '{module_id}' must be an object")
        deps = entry.get("deps", [])
        if not isinstance(deps, list) or not all(
            isinstance(dep, str) and dep for dep in deps
        ):
            raise ValidationError(f"Shim deps for '{module_id}' must be a list of ids")
        exports = entry.get("exports")
        if exports is not None and (not isinstance(exports, str) or not exports):
            raise ValidationError(f"Shim exports for '{module_id}' must be a string")

    config = data.get("config", {})
    if not isinstance(config, dict):
        raise ValidationError("'config' field must be an object")
    for module_id, values in config.items():
        if not isinstance(values, dict):
            raise ValidationError(f"Config for '{module_id}' must be an object")


def _validate_relative_path(alias: str, target: str) -> None:
    path = PurePosixPath(target)
    if path.is_absolute() or target.startswith("\\") or ":" in target:
        raise ValidationError(f"Path for '{alias}' must be relative: {target}")
    if ".." in path.parts:
        raise ValidationError(
            f"Path for '{alias}' must stay inside the extension: {target}"
        )
    if target.endswith(".py"):
        raise ValidationError(
            f"Path for '{alias}' must not include the .py suffix: {target}"
        )


def find_manifest(
    descriptor: ExtensionDescriptor,
    manifest_path: Path | None = None,
    filename: str = MANIFEST_FILENAME,
) -> Path | None:
    """Return the module configuration file to use, or None if there is none."""
    candidate = manifest_path or descriptor.base_dir / filename
    if candidate.is_file():
        return candidate
    return None


def merge_module_config(
    registry: ResolutionRegistry,
    descriptor: ExtensionDescriptor,
    manifest_path: Path | None = None,
    filename: str = MANIFEST_FILENAME,
) -> ExtensionNamespace:
    """
    Create the extension's namespace and merge its module configuration.

    Args:
        registry: Host resolution registry
        descriptor: Extension being loaded
        manifest_path: Explicit configuration file (default: base_dir/filename)
        filename: Conventional configuration filename

    Returns:
        The extension's namespace

    Raises:
        ManifestError: If the configuration file is present but malformed
    """
    namespace = registry.register(descriptor.name, descriptor.base_dir)

    found = find_manifest(descriptor, manifest_path, filename)
    if found is None:
        logger.debug("No %s for %s; using default resolution", filename, descriptor.name)
        return namespace

    module_config = parse_module_config(found)

    try:
        registry.merge(
            descriptor.name,
            paths=module_config.paths,
            shim=module_config.shim,
            config=module_config.config,
        )
    except RegistryError as e:
        raise ManifestError(str(e)) from e

    logger.debug(
        "Merged %d path(s) and %d shim(s) from %s for %s",
        len(module_config.paths),
        len(module_config.shim),
        found,
        descriptor.name,
    )
    return namespace
