"""
Extension Error Classifier and Reporter.

Every load failure is mapped to exactly one ErrorKind and one diagnostic
string. Diagnostic strings are matched by downstream tooling, so their
wording is fixed.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from exthost.extension.descriptor import ExtensionDescriptor
from exthost.extension.hooks import InitOutcome, OutcomeKind

logger = logging.getLogger(__name__)

TAG = "[Extension]"


class ErrorKind(Enum):
    """Why an extension load failed."""

    CONFIG_PARSE = "config_parse"
    MODULE_LOAD = "module_load"
    INIT_NO_REASON = "init_no_reason"
    INIT_WITH_REASON = "init_with_reason"
    INIT_TIMEOUT = "init_timeout"
    INIT_THROWN = "init_thrown"

    @property
    def is_init_failure(self) -> bool:
        return self.name.startswith("INIT_")


@dataclass(frozen=True)
class Diagnostic:
    """
    Externally visible record of a failed load.

    Attributes:
        kind: Failure kind
        extension_name: Name of the failed extension
        message: Diagnostic string, always starting with "[Extension]"
    """

    kind: ErrorKind
    extension_name: str
    message: str

    def __str__(self) -> str:
        return self.message


class ExtensionError(Exception):
    """Base exception for failed extension loads."""

    def __init__(self, diagnostic: Diagnostic):
        super().__init__(diagnostic.message)
        self.diagnostic = diagnostic

    @property
    def kind(self) -> ErrorKind:
        return self.diagnostic.kind

    @property
    def extension_name(self) -> str:
        return self.diagnostic.extension_name


class ConfigParseError(ExtensionError):
    """Raised when the extension's requirejs-config.json is malformed."""

    pass


class ModuleLoadError(ExtensionError):
    """Raised when the main module or one of its imports cannot be loaded."""

    pass


class InitFailure(ExtensionError):
    """Raised when the init hook fails, raises or times out."""

    pass


_OUTCOME_KINDS = {
    OutcomeKind.FAILURE_NO_REASON: ErrorKind.INIT_NO_REASON,
    OutcomeKind.FAILURE_WITH_REASON: ErrorKind.INIT_WITH_REASON,
    OutcomeKind.TIMEOUT: ErrorKind.INIT_TIMEOUT,
    OutcomeKind.THROWN_ERROR: ErrorKind.INIT_THROWN,
}


def _load_prefix(descriptor: ExtensionDescriptor) -> str:
    return f"{TAG} failed to load {descriptor.name} ({descriptor.base_url})"


def classify_config_error(
    descriptor: ExtensionDescriptor, manifest_filename: str, detail: str
) -> Diagnostic:
    message = f"{_load_prefix(descriptor)} - failed to parse {manifest_filename}"
    if detail:
        message += f": {detail}"
    return Diagnostic(ErrorKind.CONFIG_PARSE, descriptor.name, message)


def classify_load_error(
    descriptor: ExtensionDescriptor, detail: str
) -> Diagnostic:
    return Diagnostic(
        ErrorKind.MODULE_LOAD,
        descriptor.name,
        f"{_load_prefix(descriptor)} - {detail}",
    )


def classify_init_outcome(
    descriptor: ExtensionDescriptor, outcome: InitOutcome
) -> Diagnostic:
    """
    Build the diagnostic for a failed init outcome.

    Raises:
        ValueError: If outcome is a success
    """
    if outcome.ok:
        raise ValueError(f"Init of {descriptor.name} succeeded; nothing to classify")

    name = descriptor.name
    if outcome.kind is OutcomeKind.FAILURE_NO_REASON:
        message = f"{TAG} Error -- failed initExtension for {name}"
    elif outcome.kind is OutcomeKind.FAILURE_WITH_REASON:
        message = f"{TAG} Error -- failed initExtension for {name}: {outcome.detail}"
    elif outcome.kind is OutcomeKind.TIMEOUT:
        message = f"{TAG} Error -- timeout during initExtension for {name}"
    else:
        message = (
            f"{TAG} Error -- error thrown during initExtension for {name}: "
            f"{outcome.detail}"
        )

    return Diagnostic(_OUTCOME_KINDS[outcome.kind], name, message)


def error_for(diagnostic: Diagnostic) -> ExtensionError:
    """Return the exception type matching the diagnostic's kind."""
    if diagnostic.kind is ErrorKind.CONFIG_PARSE:
        return ConfigParseError(diagnostic)
    if diagnostic.kind is ErrorKind.MODULE_LOAD:
        return ModuleLoadError(diagnostic)
    return InitFailure(diagnostic)


def report(diagnostic: Diagnostic) -> ExtensionError:
    """
    Emit a diagnostic on the log sink.

    Returns:
        The exception that rejects the caller's load
    """
    logger.error(diagnostic.message)
    return error_for(diagnostic)
