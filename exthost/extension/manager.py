"""
Extension Loader.

This module is the public entry point for loading extensions.

Key features:
- Sequenced load: module config merge -> module fetch -> init hook
- Exactly one terminal state and one diagnostic per load request
- Concurrent, independent loads of different extensions
- Directory-wide loading with disabled-extension markers
- Load / load_failed / disabled listeners
"""

import asyncio
import contextlib
import logging
import warnings
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any

from exthost.config import LoaderSettings
from exthost.extension.descriptor import (
    DEFAULT_MAIN_MODULE,
    ExtensionDescriptor,
    ExtensionState,
    LoadRequest,
)
from exthost.extension.diagnostics import (
    Diagnostic,
    ErrorKind,
    ExtensionError,
    classify_config_error,
    classify_init_outcome,
    classify_load_error,
    report,
)
from exthost.extension.hooks import (
    DEFAULT_INIT_TIMEOUT,
    InitOutcome,
    InitSupervisor,
    find_init_hook,
)
from exthost.extension.loader import LoaderError, load_extension_module
from exthost.extension.manifest import (
    MANIFEST_FILENAME,
    ManifestError,
    merge_module_config,
)
from exthost.extension.registry import ExtensionNamespace, ResolutionRegistry

logger = logging.getLogger(__name__)

EVENT_LOAD = "load"
EVENT_LOAD_FAILED = "load_failed"
EVENT_DISABLED = "disabled"

EVENTS = (EVENT_LOAD, EVENT_LOAD_FAILED, EVENT_DISABLED)


@dataclass
class LoadedExtension:
    """
    A successfully initialized extension.

    Attributes:
        name: Extension name
        descriptor: Descriptor it was loaded from
        module: Executed main module
        namespace: Resolution namespace of its modules
    """

    name: str
    descriptor: ExtensionDescriptor
    module: ModuleType
    namespace: ExtensionNamespace


@dataclass
class BatchLoadReport:
    """Result of loading every extension in a directory."""

    loaded: list[str] = field(default_factory=list)
    failed: dict[str, ErrorKind] = field(default_factory=dict)
    disabled: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class ExtensionLoader:
    """
    Extension lifecycle supervisor.

    Each call to load() owns its own LoadRequest. The resolution registry is
    the only state shared between loads, and it is partitioned per extension.
    A second load for a name that is still loading is not deduplicated; it
    starts a fresh, independent attempt.
    """

    def __init__(
        self,
        *,
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
        registry: ResolutionRegistry | None = None,
        manifest_filename: str = MANIFEST_FILENAME,
        main_module: str = DEFAULT_MAIN_MODULE,
        disabled_marker: str = ".disabled",
    ):
        """
        Initialize ExtensionLoader.

        Args:
            init_timeout: Budget in seconds for asynchronous init hooks
            registry: Host resolution registry (default: a new one)
            manifest_filename: Module configuration filename
            main_module: Default entry point module id
            disabled_marker: File marking an extension directory as disabled
        """
        self._supervisor = InitSupervisor(init_timeout)
        self._registry = registry if registry is not None else ResolutionRegistry()
        self._manifest_filename = manifest_filename
        self._main_module = main_module
        self._disabled_marker = disabled_marker
        self._requests: dict[str, LoadRequest] = {}
        self._extensions: dict[str, LoadedExtension] = {}
        self._listeners: dict[str, list[Callable[..., Any]]] = {
            event: [] for event in EVENTS
        }

    @classmethod
    def from_settings(
        cls, settings: LoaderSettings, registry: ResolutionRegistry | None = None
    ) -> "ExtensionLoader":
        return cls(
            init_timeout=settings.init_timeout,
            registry=registry,
            manifest_filename=settings.manifest_filename,
            main_module=settings.main_module,
            disabled_marker=settings.disabled_marker,
        )

    @property
    def registry(self) -> ResolutionRegistry:
        return self._registry

    @property
    def init_timeout(self) -> float:
        """Budget in seconds applied to init hooks started from now on."""
        return self._supervisor.timeout

    @init_timeout.setter
    def init_timeout(self, seconds: float) -> None:
        self._supervisor.timeout = seconds

    @contextlib.contextmanager
    def override_init_timeout(self, seconds: float) -> Iterator[None]:
        """Temporarily change the init budget. Intended for test harnesses."""
        previous = self.init_timeout
        self.init_timeout = seconds
        try:
            yield
        finally:
            self.init_timeout = previous

    # Listeners
    def add_listener(self, event: str, callback: Callable[..., Any]) -> None:
        """
        Register a listener.

        "load" and "disabled" callbacks receive the extension name;
        "load_failed" callbacks receive the name and the Diagnostic.

        Raises:
            ValueError: If event is unknown
        """
        if event not in self._listeners:
            raise ValueError(f"Unknown extension event: {event}")
        self._listeners[event].append(callback)

    def remove_listener(self, event: str, callback: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def _emit(self, event: str, *args: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception as e:
                warnings.warn(
                    f"Extension '{event}' listener failed: {e}",
                    RuntimeWarning,
                    stacklevel=2,
                )

    # Loading
    async def load_extension(
        self, name: str, config: Any, main_module: str | None = None
    ) -> LoadedExtension:
        """
        Load an extension given a loader-style config.

        Args:
            name: Extension name
            config: Mapping with ``baseUrl``, or the base URL itself
            main_module: Entry point module id (default: loader's main module)

        Raises:
            ExtensionError: If the load fails (one subclass per ErrorKind)
        """
        descriptor = ExtensionDescriptor.from_config(
            name, config, main_module or self._main_module
        )
        return await self.load(descriptor)

    async def load(
        self, descriptor: ExtensionDescriptor, manifest_path: Path | None = None
    ) -> LoadedExtension:
        """
        Load one extension.

        Args:
            descriptor: Extension to load
            manifest_path: Explicit module configuration file

        Returns:
            The loaded extension

        Raises:
            ExtensionError: If the load fails (one subclass per ErrorKind)
        """
        request = LoadRequest(descriptor, manifest_path)
        self._requests[descriptor.name] = request
        self._extensions.pop(descriptor.name, None)

        try:
            return await self._run(request)
        except asyncio.CancelledError:
            if not request.state.is_terminal:
                request.advance(ExtensionState.FAILED)
            raise

    async def _run(self, request: LoadRequest) -> LoadedExtension:
        descriptor = request.descriptor

        request.advance(ExtensionState.CONFIG_MERGING)
        try:
            namespace = merge_module_config(
                self._registry,
                descriptor,
                request.manifest_path,
                self._manifest_filename,
            )
        except ManifestError as e:
            self._registry.release(descriptor.name)
            raise self._fail(
                request,
                classify_config_error(descriptor, self._manifest_filename, str(e)),
            ) from e

        request.advance(ExtensionState.MODULE_FETCHING)
        try:
            module = load_extension_module(namespace, descriptor.main_module)
        except LoaderError as e:
            self._registry.release(descriptor.name)
            raise self._fail(request, classify_load_error(descriptor, str(e))) from e

        if find_init_hook(module) is None:
            outcome = InitOutcome.success()
        else:
            request.advance(ExtensionState.INITIALIZING)
            outcome = await self._supervisor.run(module, descriptor.name)

        request.outcome = outcome
        if not outcome.ok:
            raise self._fail(request, classify_init_outcome(descriptor, outcome))

        request.advance(ExtensionState.READY)
        loaded = LoadedExtension(
            name=descriptor.name,
            descriptor=descriptor,
            module=module,
            namespace=namespace,
        )
        # A newer request for the same name owns the bookkeeping now
        if self._requests.get(descriptor.name) is request:
            self._extensions[descriptor.name] = loaded

        logger.debug("Extension %s ready", descriptor.name)
        self._emit(EVENT_LOAD, descriptor.name)
        return loaded

    def _fail(self, request: LoadRequest, diagnostic: Diagnostic) -> ExtensionError:
        request.diagnostic = diagnostic
        request.advance(ExtensionState.FAILED)
        error = report(diagnostic)
        self._emit(EVENT_LOAD_FAILED, request.name, diagnostic)
        return error

    async def load_all_extensions(self, directory: Path) -> BatchLoadReport:
        """
        Load every extension found directly under a directory.

        Hidden and ``__`` directories are ignored; directories containing the
        disabled marker are skipped. All loads run concurrently and this
        returns once every one of them has settled.

        Args:
            directory: Directory holding one sub-directory per extension

        Returns:
            BatchLoadReport
        """
        batch = BatchLoadReport()
        if not directory.is_dir():
            logger.debug("Extension directory %s does not exist", directory)
            return batch

        candidates = sorted(
            path
            for path in directory.iterdir()
            if path.is_dir()
            and not path.name.startswith(".")
            and not path.name.startswith("__")
        )

        descriptors = []
        for path in candidates:
            if (path / self._disabled_marker).exists():
                batch.disabled.append(path.name)
                self._emit(EVENT_DISABLED, path.name)
                continue
            descriptors.append(
                ExtensionDescriptor(path.name, str(path), self._main_module)
            )

        results = await asyncio.gather(
            *(self.load(descriptor) for descriptor in descriptors),
            return_exceptions=True,
        )

        for descriptor, result in zip(descriptors, results, strict=True):
            if isinstance(result, ExtensionError):
                batch.failed[descriptor.name] = result.kind
            elif isinstance(result, BaseException):
                raise result
            else:
                batch.loaded.append(descriptor.name)

        return batch

    # Queries
    def get_state(self, name: str) -> ExtensionState | None:
        request = self._requests.get(name)
        return request.state if request is not None else None

    def get_request(self, name: str) -> LoadRequest | None:
        return self._requests.get(name)

    def get_extension(self, name: str) -> LoadedExtension | None:
        return self._extensions.get(name)

    def loaded_extensions(self) -> list[str]:
        return list(self._extensions)

    def get_require_context(self, name: str) -> ExtensionNamespace | None:
        """Return the resolution namespace an extension's modules load in."""
        return self._registry.get(name)

    def unload_extension(self, name: str) -> None:
        """
        Forget an extension so it can be loaded again.

        The extension's modules are dropped from sys.modules. Nothing inside
        the extension is called.

        Config and fetch failures release the namespace right away. An init
        failure keeps it, since the executed modules may still settle work
        they started; call this to drop them.
        """
        self._extensions.pop(name, None)
        self._requests.pop(name, None)
        self._registry.release(name)


_default_loader: ExtensionLoader | None = None


def get_default_loader() -> ExtensionLoader:
    """Return the process-wide loader, creating it on first use."""
    global _default_loader
    if _default_loader is None:
        _default_loader = ExtensionLoader()
    return _default_loader


async def load_extension(
    name: str, config: Any, main_module: str = DEFAULT_MAIN_MODULE
) -> LoadedExtension:
    """Load an extension with the process-wide loader."""
    return await get_default_loader().load_extension(name, config, main_module)
