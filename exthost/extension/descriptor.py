"""
Extension Descriptors and Load Requests.

This module provides the per-load data model.

Key features:
- Immutable extension descriptors (name, base URL, main module)
- Load requests owning exactly one state machine instance
- Forward-only state transitions with a single terminal state
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote, urlparse

if TYPE_CHECKING:
    from exthost.extension.diagnostics import Diagnostic
    from exthost.extension.hooks import InitOutcome

DEFAULT_MAIN_MODULE = "main"


class StateTransitionError(Exception):
    """Raised when a load request is moved backwards or out of a terminal state."""

    pass


class ExtensionState(Enum):
    """Extension load state enumeration (declaration order is the load order)."""

    UNSTARTED = "unstarted"
    CONFIG_MERGING = "config_merging"
    MODULE_FETCHING = "module_fetching"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExtensionState.READY, ExtensionState.FAILED)


_STATE_ORDER = {state: index for index, state in enumerate(ExtensionState)}


@dataclass(frozen=True)
class ExtensionDescriptor:
    """
    Identifies an extension to load.

    Attributes:
        name: Extension name (unique identifier)
        base_url: Extension root directory, as given by the caller
        main_module: Module id of the entry point, relative to base_url
    """

    name: str
    base_url: str
    main_module: str = DEFAULT_MAIN_MODULE

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Extension name must be a non-empty string")
        if not isinstance(self.base_url, str) or not self.base_url:
            raise ValueError(f"Extension {self.name} has no base URL")
        if not isinstance(self.main_module, str) or not self.main_module:
            raise ValueError(f"Extension {self.name} has no main module")

    @property
    def base_dir(self) -> Path:
        """Filesystem directory behind base_url (``file://`` URLs are accepted)."""
        parsed = urlparse(self.base_url)
        if parsed.scheme == "file":
            return Path(unquote(parsed.path))
        return Path(self.base_url)

    @classmethod
    def from_config(
        cls, name: str, config: Any, main_module: str | None = None
    ) -> "ExtensionDescriptor":
        """
        Build a descriptor from a loader-style config.

        Args:
            name: Extension name
            config: Mapping with a ``baseUrl`` (or ``base_url``) key, or the
                base URL itself
            main_module: Entry point module id (default: "main")

        Raises:
            ValueError: If no base URL can be found in config
        """
        if isinstance(config, (str, Path)):
            base_url = str(config)
        else:
            base_url = config.get("baseUrl") or config.get("base_url")
            if base_url is None:
                raise ValueError(f"Extension {name} config has no baseUrl")
            base_url = str(base_url)

        return cls(
            name=name,
            base_url=base_url,
            main_module=main_module or DEFAULT_MAIN_MODULE,
        )


@dataclass
class LoadRequest:
    """
    One load attempt for one extension.

    Attributes:
        descriptor: The extension being loaded
        manifest_path: Explicit manifest location (None: look in base_url)
        state: Current state
        outcome: Terminal init outcome, once the init supervisor has run
        diagnostic: Failure diagnostic if state is FAILED
    """

    descriptor: ExtensionDescriptor
    manifest_path: Path | None = None
    state: ExtensionState = ExtensionState.UNSTARTED
    outcome: "InitOutcome | None" = None
    diagnostic: "Diagnostic | None" = None
    history: list[ExtensionState] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.descriptor.name

    def advance(self, new_state: ExtensionState) -> None:
        """
        Move the request to a later state.

        Raises:
            StateTransitionError: If the request is terminal or new_state is not later
        """
        if self.state.is_terminal:
            raise StateTransitionError(
                f"Extension {self.name} is already {self.state.value}; "
                f"cannot move to {new_state.value}"
            )
        if _STATE_ORDER[new_state] <= _STATE_ORDER[self.state]:
            raise StateTransitionError(
                f"Extension {self.name} cannot move from {self.state.value} "
                f"back to {new_state.value}"
            )
        if new_state is ExtensionState.READY and self.state not in (
            ExtensionState.MODULE_FETCHING,
            ExtensionState.INITIALIZING,
        ):
            raise StateTransitionError(
                f"Extension {self.name} cannot become ready from {self.state.value}"
            )

        self.history.append(self.state)
        self.state = new_state
