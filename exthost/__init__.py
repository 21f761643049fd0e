"""
exthost - Runtime extension loading for host applications.

Extensions are directories holding a ``main.py`` (and optionally a
``requirejs-config.json``). Loading one merges its module configuration,
executes its main module in a private import namespace and runs its optional
``init_extension`` hook under a time budget.

Example usage:
    import exthost

    loader = exthost.ExtensionLoader(init_timeout=5.0)
    await loader.load_extension("my-ext", {"baseUrl": "extensions/my-ext"})
"""

__version__ = "0.1.0"

from exthost.extension.descriptor import ExtensionDescriptor, ExtensionState
from exthost.extension.diagnostics import (
    ConfigParseError,
    Diagnostic,
    ErrorKind,
    ExtensionError,
    InitFailure,
    ModuleLoadError,
)
from exthost.extension.hooks import InitOutcome, OutcomeKind
from exthost.extension.manager import (
    BatchLoadReport,
    ExtensionLoader,
    LoadedExtension,
    get_default_loader,
    load_extension,
)

__all__ = [
    "__version__",
    "BatchLoadReport",
    "ConfigParseError",
    "Diagnostic",
    "ErrorKind",
    "ExtensionDescriptor",
    "ExtensionError",
    "ExtensionLoader",
    "ExtensionState",
    "InitFailure",
    "InitOutcome",
    "LoadedExtension",
    "ModuleLoadError",
    "OutcomeKind",
    "get_default_loader",
    "load_extension",
]
