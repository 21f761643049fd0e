"""
Extension Module Resolution Registry.

This module owns the host-level module resolution table.

Key features:
- One import namespace per extension (``exthost_ext_<name>_<hash>``)
- Manifest path aliases, shims and per-module config scoped to that namespace
- Host-level aliases shared by all extensions, never modified by merges
- A ``sys.meta_path`` finder resolving extension module ids to files
"""

import hashlib
import importlib
import importlib.abc
import importlib.machinery
import importlib.util
import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any

logger = logging.getLogger(__name__)

PACKAGE_PREFIX = "exthost_ext_"


class RegistryError(Exception):
    """Base exception for resolution registry errors."""

    pass


class ExtensionModuleNotFound(ModuleNotFoundError):
    """
    Raised when an extension module id resolves to no file.

    ``path`` holds the file the id was expected at and ``name`` the module
    id. ``name`` is never the full import name: ``from . import x`` would
    otherwise turn the error into a generic "cannot import name".
    """

    pass


@dataclass
class ShimSpec:
    """
    Load-order shim for a module.

    Attributes:
        deps: Module ids imported before the shimmed module executes
        exports: Attribute the module must define once executed
    """

    deps: list[str] = field(default_factory=list)
    exports: str | None = None


@dataclass
class ExtensionNamespace:
    """
    Resolution context of one extension.

    Attributes:
        name: Extension name
        package: Import package all of the extension's modules live under
        base_dir: Extension root directory
        paths: Module id -> path relative to base_dir (without ``.py``)
        shim: Module id -> ShimSpec
        config: Module id -> configuration mapping
    """

    name: str
    package: str
    base_dir: Path
    paths: dict[str, str] = field(default_factory=dict)
    shim: dict[str, ShimSpec] = field(default_factory=dict)
    config: dict[str, dict[str, Any]] = field(default_factory=dict)

    def qualify(self, module_id: str) -> str:
        """Return the import name of a module id."""
        return f"{self.package}.{module_id}"

    def module_id(self, fullname: str) -> str:
        """Return the module id of an import name inside this namespace."""
        return fullname[len(self.package) + 1 :]

    def module_path(self, module_id: str) -> Path:
        """Return the file a module id is expected at (it may not exist)."""
        relative = self.paths.get(module_id, module_id.replace(".", "/"))
        return self.base_dir / f"{relative}.py"

    def locate(self, module_id: str) -> tuple[Path, bool] | None:
        """
        Find the file backing a module id.

        Returns:
            (path, is_package) or None if nothing exists. For a directory
            without ``__init__.py`` the directory itself is returned.
        """
        source = self.module_path(module_id)
        if source.is_file():
            return source, False

        directory = source.with_suffix("")
        init_file = directory / "__init__.py"
        if init_file.is_file():
            return init_file, True
        if directory.is_dir():
            return directory, True

        return None

    def require(self, module_id: str) -> ModuleType:
        """Import a module of this extension by id."""
        return importlib.import_module(self.qualify(module_id))

    def module_config(self, module_id: str) -> dict[str, Any]:
        """Return a copy of the configuration declared for a module id."""
        return dict(self.config.get(module_id, {}))


def package_name_for(extension_name: str) -> str:
    """Return the import package name used for an extension."""
    slug = re.sub(r"\W", "_", extension_name).lower()
    digest = hashlib.sha1(extension_name.encode("utf-8")).hexdigest()[:8]
    return f"{PACKAGE_PREFIX}{slug}_{digest}"


class ExtensionSourceLoader(importlib.machinery.SourceFileLoader):
    """Source loader applying an extension's shim and module config."""

    def __init__(
        self, fullname: str, path: str, namespace: ExtensionNamespace, module_id: str
    ):
        super().__init__(fullname, path)
        self.namespace = namespace
        self.module_id = module_id

    def exec_module(self, module: ModuleType) -> None:
        module.require = self.namespace.require
        module.module_config = self.namespace.module_config
        module.__extension_config__ = self.namespace.module_config(self.module_id)

        shim = self.namespace.shim.get(self.module_id)
        if shim is not None:
            for dep in shim.deps:
                self.namespace.require(dep)

        super().exec_module(module)

        if shim is not None and shim.exports and not hasattr(module, shim.exports):
            raise ImportError(
                f"Module {self.module_id} did not define shim export '{shim.exports}'",
                name=self.name,
                path=self.path,
            )


class HostAliasLoader(importlib.abc.Loader):
    """Loader that hands an already importable host module to an extension."""

    def __init__(self, target: str):
        self.target = target

    def create_module(self, spec: importlib.machinery.ModuleSpec) -> None:
        return None

    def exec_module(self, module: ModuleType) -> None:
        # The import system returns whatever sits in sys.modules after exec
        sys.modules[module.__name__] = importlib.import_module(self.target)


class ExtensionFinder(importlib.abc.MetaPathFinder):
    """Meta path finder for modules under extension packages."""

    def __init__(self, registry: "ResolutionRegistry"):
        self._registry = registry

    def find_spec(self, fullname, path, target=None):
        namespace = self._registry.namespace_for_module(fullname)
        if namespace is None:
            return None

        if fullname == namespace.package:
            spec = importlib.machinery.ModuleSpec(fullname, None, is_package=True)
            spec.submodule_search_locations = [str(namespace.base_dir)]
            return spec

        module_id = namespace.module_id(fullname)

        if module_id not in namespace.paths:
            host_target = self._registry.host_aliases.get(module_id)
            if host_target is not None:
                return importlib.machinery.ModuleSpec(
                    fullname, HostAliasLoader(host_target)
                )

        located = namespace.locate(module_id)
        if located is None:
            expected = namespace.module_path(module_id)
            raise ExtensionModuleNotFound(
                f"Module does not exist: {expected}",
                name=module_id,
                path=str(expected),
            )

        file_path, is_package = located
        if file_path.is_dir():
            spec = importlib.machinery.ModuleSpec(fullname, None, is_package=True)
            spec.submodule_search_locations = [str(file_path)]
            return spec

        loader = ExtensionSourceLoader(fullname, str(file_path), namespace, module_id)
        return importlib.util.spec_from_file_location(
            fullname,
            str(file_path),
            loader=loader,
            submodule_search_locations=[str(file_path.parent)] if is_package else None,
        )


class ResolutionRegistry:
    """
    Host-level module resolution table, partitioned per extension.

    Merges are additive: an extension can only add ids to its own namespace.
    Host aliases are shared and only change through add_host_alias().
    """

    def __init__(self):
        self._namespaces: dict[str, ExtensionNamespace] = {}
        self._packages: dict[str, str] = {}  # package -> extension name
        self._host_aliases: dict[str, str] = {}
        self._finder = ExtensionFinder(self)

    @property
    def host_aliases(self) -> dict[str, str]:
        return dict(self._host_aliases)

    def install(self) -> None:
        """Put the finder on sys.meta_path (idempotent)."""
        if self._finder not in sys.meta_path:
            sys.meta_path.insert(0, self._finder)

    def uninstall(self) -> None:
        """Remove the finder and release every namespace."""
        for name in list(self._namespaces):
            self.release(name)
        if self._finder in sys.meta_path:
            sys.meta_path.remove(self._finder)

    def add_host_alias(self, alias: str, module_name: str) -> None:
        """
        Expose a host module to every extension under an alias.

        Raises:
            RegistryError: If the alias is already bound to another module
        """
        existing = self._host_aliases.get(alias)
        if existing is not None and existing != module_name:
            raise RegistryError(
                f"Host alias '{alias}' already maps to '{existing}'"
            )
        self._host_aliases[alias] = module_name

    def register(self, name: str, base_dir: Path) -> ExtensionNamespace:
        """
        Create a fresh namespace for an extension.

        A previous namespace for the same name is released first; other
        extensions are not touched.
        """
        if name in self._namespaces:
            logger.debug("Replacing resolution namespace of %s", name)
            self.release(name)

        namespace = ExtensionNamespace(
            name=name,
            package=package_name_for(name),
            base_dir=base_dir,
        )
        self._namespaces[name] = namespace
        self._packages[namespace.package] = name
        self.install()
        return namespace

    def merge(
        self,
        name: str,
        paths: dict[str, str] | None = None,
        shim: dict[str, ShimSpec] | None = None,
        config: dict[str, dict[str, Any]] | None = None,
    ) -> ExtensionNamespace:
        """
        Add declarations to an extension's namespace.

        The loader merges a manifest once into a fresh namespace. Hosts
        calling merge() again on the same namespace may repeat a declaration
        with the same value, but not change it.

        Raises:
            RegistryError: If the extension is not registered, or an id is
                already declared with a different value
        """
        namespace = self._namespaces.get(name)
        if namespace is None:
            raise RegistryError(f"Extension {name} has no resolution namespace")

        for alias, target in (paths or {}).items():
            _add_unique(namespace.paths, alias, target, f"path alias '{alias}'", name)
            if alias in self._host_aliases:
                logger.debug(
                    "Extension %s alias '%s' shadows host alias inside its namespace",
                    name,
                    alias,
                )
        for module_id, spec in (shim or {}).items():
            _add_unique(namespace.shim, module_id, spec, f"shim '{module_id}'", name)
        for module_id, values in (config or {}).items():
            _add_unique(namespace.config, module_id, values, f"config '{module_id}'", name)

        return namespace

    def get(self, name: str) -> ExtensionNamespace | None:
        return self._namespaces.get(name)

    def namespace_for_module(self, fullname: str) -> ExtensionNamespace | None:
        """Return the namespace an import name belongs to, if any."""
        package = fullname.partition(".")[0]
        name = self._packages.get(package)
        if name is None:
            return None
        return self._namespaces.get(name)

    def release(self, name: str) -> None:
        """Forget an extension's namespace and drop its modules from sys.modules."""
        namespace = self._namespaces.pop(name, None)
        if namespace is None:
            return

        self._packages.pop(namespace.package, None)
        purge_modules(namespace.package)

    def names(self) -> list[str]:
        return list(self._namespaces)


def purge_modules(package: str) -> None:
    """Remove a package and all of its submodules from sys.modules."""
    prefix = f"{package}."
    for module_name in list(sys.modules):
        if module_name == package or module_name.startswith(prefix):
            del sys.modules[module_name]


def _add_unique(table: dict, key: str, value: Any, label: str, name: str) -> None:
    # Only reachable through repeated merge() calls on one namespace
    existing = table.get(key)
    if existing is not None and existing != value:
        raise RegistryError(f"Extension {name} declares {label} twice")
    table[key] = value
