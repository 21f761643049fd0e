"""
Extension Init Supervisor.

This module runs the optional ``init_extension`` hook of an extension's main
module and decides a single terminal outcome for it.

Key features:
- Uniform handling of sync return values, awaitables and synchronous raises
- Failure sentinels: a hook may return an exception instance instead of raising
- Bounded wall-clock budget for awaitable results
- Late settlements after a timeout are discarded
"""

import asyncio
import functools
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from types import ModuleType
from typing import Any

logger = logging.getLogger(__name__)

INIT_HOOK_NAME = "init_extension"

# Seconds
DEFAULT_INIT_TIMEOUT = 10.0


class HookError(Exception):
    """Base exception for init supervisor errors."""

    pass


class OutcomeKind(Enum):
    """Init outcome enumeration."""

    SUCCESS = "success"
    FAILURE_WITH_REASON = "failure_with_reason"
    FAILURE_NO_REASON = "failure_no_reason"
    TIMEOUT = "timeout"
    THROWN_ERROR = "thrown_error"


@dataclass(frozen=True)
class InitOutcome:
    """
    Terminal result of an init hook.

    Attributes:
        kind: Outcome kind
        detail: Failure reason (FAILURE_WITH_REASON) or "<Type>: <message>"
            description of the raised error (THROWN_ERROR)
    """

    kind: OutcomeKind
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    @classmethod
    def success(cls) -> "InitOutcome":
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def failure(cls, reason: str | None = None) -> "InitOutcome":
        if reason:
            return cls(OutcomeKind.FAILURE_WITH_REASON, reason)
        return cls(OutcomeKind.FAILURE_NO_REASON)

    @classmethod
    def timeout(cls) -> "InitOutcome":
        return cls(OutcomeKind.TIMEOUT)

    @classmethod
    def thrown(cls, error: BaseException) -> "InitOutcome":
        return cls(OutcomeKind.THROWN_ERROR, describe_error(error))


def describe_error(error: BaseException) -> str:
    """Return ``"<Type>: <message>"``, or just the type name when there is no message."""
    message = str(error)
    if message:
        return f"{type(error).__name__}: {message}"
    return type(error).__name__


def find_init_hook(module: ModuleType) -> Any:
    """
    Find the init hook exported by a module.

    Returns:
        The hook callable, or None if the module exports none
    """
    hook = getattr(module, INIT_HOOK_NAME, None)
    if hook is None:
        return None

    if not callable(hook):
        logger.warning(
            "%s.%s is not callable; treating module as having no init hook",
            module.__name__,
            INIT_HOOK_NAME,
        )
        return None

    return hook


def evaluate_value(value: Any) -> InitOutcome:
    """Classify a plain (non-awaitable) hook result."""
    if isinstance(value, BaseException):
        return InitOutcome.failure(str(value) or None)
    return InitOutcome.success()


def _settled_outcome(future: asyncio.Future) -> InitOutcome:
    if future.cancelled():
        return InitOutcome.failure(None)

    error = future.exception()
    if error is not None:
        return InitOutcome.failure(str(error) or None)

    return evaluate_value(future.result())


def _discard_late_settlement(extension_name: str, future: asyncio.Future) -> None:
    if future.cancelled():
        logger.debug("Init of %s cancelled after timeout", extension_name)
        return

    # Retrieve the result so asyncio does not report it as never retrieved
    error = future.exception()
    logger.debug(
        "Ignoring late init settlement for %s (%s)",
        extension_name,
        "rejected" if error is not None else "resolved",
    )


class InitSupervisor:
    """
    Runs init hooks under a time budget.

    The budget applies only when the hook returns an awaitable. A hook that
    returns a plain value or raises is classified immediately.
    """

    def __init__(self, timeout: float = DEFAULT_INIT_TIMEOUT):
        """
        Initialize InitSupervisor.

        Args:
            timeout: Budget in seconds for awaitable hook results

        Raises:
            HookError: If timeout is not positive
        """
        self._timeout = _check_timeout(timeout)

    @property
    def timeout(self) -> float:
        return self._timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        self._timeout = _check_timeout(value)

    async def run(
        self,
        module: ModuleType,
        extension_name: str,
        timeout: float | None = None,
    ) -> InitOutcome:
        """
        Invoke the module's init hook exactly once and classify the result.

        Args:
            module: Executed main module of the extension
            extension_name: Name used in log messages
            timeout: Budget override for this call (default: supervisor budget)

        Returns:
            The terminal InitOutcome
        """
        hook = find_init_hook(module)
        if hook is None:
            return InitOutcome.success()

        budget = self._timeout if timeout is None else _check_timeout(timeout)

        try:
            result = hook()
        except Exception as e:
            return InitOutcome.thrown(e)

        if not inspect.isawaitable(result):
            return evaluate_value(result)

        return await self._race(result, budget, extension_name)

    async def _race(
        self, awaitable: Any, budget: float, extension_name: str
    ) -> InitOutcome:
        future = asyncio.ensure_future(awaitable)
        # Tasks wrapped around coroutines are ours to cancel; futures handed
        # back by the extension are not
        owned = future is not awaitable

        try:
            done, _ = await asyncio.wait({future}, timeout=budget)
        except asyncio.CancelledError:
            if owned:
                future.cancel()
            raise

        if future in done:
            return _settled_outcome(future)

        logger.debug("Init of %s exceeded %.3fs budget", extension_name, budget)
        future.add_done_callback(
            functools.partial(_discard_late_settlement, extension_name)
        )
        if owned:
            future.cancel()

        return InitOutcome.timeout()


def _check_timeout(value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise HookError(f"Init timeout must be a number, got {value!r}")
    if value <= 0:
        raise HookError(f"Init timeout must be positive, got {value}")
    return float(value)
