"""
Extension Module Fetcher.

This module resolves and executes an extension's main module inside the
extension's resolution namespace.

Key features:
- importlib integration through the registry's meta path finder
- "Module does not exist" reporting with the expected file path
- sys.modules cleanup on failure so a later attempt starts clean
"""

import importlib
import logging
from types import ModuleType

from exthost.extension.hooks import describe_error
from exthost.extension.registry import (
    ExtensionModuleNotFound,
    ExtensionNamespace,
    purge_modules,
)

logger = logging.getLogger(__name__)


class LoaderError(Exception):
    """
    Base exception for module fetch errors.

    Attributes:
        module_path: File (or module name) the failure is about
    """

    def __init__(self, message: str, module_path: str | None = None):
        super().__init__(message)
        self.module_path = module_path


class ModuleNotFound(LoaderError):
    """Raised when the main module or a module it imports does not exist."""

    pass


def load_extension_module(
    namespace: ExtensionNamespace, main_module: str
) -> ModuleType:
    """
    Fetch and execute an extension's main module.

    Args:
        namespace: The extension's resolution namespace (post-merge)
        main_module: Module id of the entry point

    Returns:
        Executed module

    Raises:
        ModuleNotFound: If the main module or one of its imports is missing
        LoaderError: If executing the module fails
    """
    # A bare directory would import as an empty namespace package
    located = namespace.locate(main_module)
    if located is None or located[0].is_dir():
        expected = namespace.module_path(main_module)
        raise ModuleNotFound(f"Module does not exist: {expected}", str(expected))

    fullname = namespace.qualify(main_module)

    try:
        module = importlib.import_module(fullname)
    except ExtensionModuleNotFound as e:
        purge_modules(namespace.package)
        raise ModuleNotFound(str(e), e.path) from e
    except ModuleNotFoundError as e:
        purge_modules(namespace.package)
        missing = e.name or str(e)
        raise ModuleNotFound(f"Module does not exist: {missing}", missing) from e
    except Exception as e:
        purge_modules(namespace.package)
        entry = namespace.module_path(main_module)
        raise LoaderError(
            f"error executing {entry}: {describe_error(e)}", str(entry)
        ) from e

    logger.debug("Fetched %s for %s", fullname, namespace.name)
    return module
