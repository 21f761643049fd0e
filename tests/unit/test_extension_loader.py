"""
Tests for the Extension Loader.

This test suite covers:
1. Successful loads (no hook, sync hook, async hook, module config aliases)
2. Init failures (no reason, with reason, async, timeout, raised error)
3. Module fetch and module config failures
4. State tracking and single terminal report
5. Concurrent loads and directory-wide loading
6. Listeners and timeout overrides
"""

import asyncio
import json
import sys

import pytest

from exthost.extension.descriptor import ExtensionDescriptor, ExtensionState
from exthost.extension.diagnostics import (
    ConfigParseError,
    ErrorKind,
    ExtensionError,
    InitFailure,
    ModuleLoadError,
)
from exthost.extension.manager import ExtensionLoader

NO_INIT = {"main.py": "VALUE = 42\n"}

INIT_RESOLVED = {
    "main.py": """
        initialized = []

        def init_extension():
            initialized.append(True)
    """,
}

INIT_RESOLVED_ASYNC = {
    "main.py": """
        import asyncio

        async def init_extension():
            await asyncio.sleep(0.01)
    """,
}

REQUIRE_CONFIG = {
    "requirejs-config.json": json.dumps({"paths": {"foo": "lib/foo"}}),
    "lib/foo.py": """
        def bar():
            return "bar_exported"
    """,
    "main.py": """
        foo = require("foo")
        from .foo import bar

        RESULT = foo.bar()
        SAME = bar is foo.bar
    """,
}

INIT_FAIL = {
    "main.py": """
        def init_extension():
            return Exception()
    """,
}

INIT_FAIL_WITH_ERROR = {
    "main.py": """
        def init_extension():
            return Exception("Didn't work")
    """,
}

INIT_FAIL_WITH_ERROR_ASYNC = {
    "main.py": """
        import asyncio

        async def init_extension():
            await asyncio.sleep(0)
            raise Exception("Didn't work")
    """,
}

INIT_TIMEOUT = {
    "main.py": """
        import asyncio

        async def init_extension():
            await asyncio.sleep(30)
    """,
}

INIT_RUNTIME_ERROR = {
    "main.py": """
        def init_extension():
            return is_not_defined
    """,
}

BAD_REQUIRE = {
    "main.py": """
        require("notdefined")
    """,
}

OPTIONAL_SIBLINGS = {
    "main.py": """
        try:
            from . import optional_speedups
        except ModuleNotFoundError:
            optional_speedups = None

        try:
            from .optional_codec import encode
        except ModuleNotFoundError:
            encode = None
    """,
}

PENDING_INIT = {
    "main.py": """
        import asyncio

        pending = []

        def init_extension():
            future = asyncio.get_running_loop().create_future()
            pending.append(future)
            return future
    """,
}


async def load(loader, make_extension, name, files):
    base = make_extension(name, files)
    return await loader.load_extension(name, {"baseUrl": str(base)}, "main")


class TestSuccessfulLoads:
    """Loads that resolve."""

    @pytest.mark.asyncio
    async def test_load_basic_extension(self, loader, make_extension, diagnostics):
        """An extension without init hook should load."""
        loaded = await load(loader, make_extension, "NoInit", NO_INIT)

        assert loaded.module.VALUE == 42
        assert loader.get_state("NoInit") is ExtensionState.READY
        assert diagnostics() == []

    @pytest.mark.asyncio
    async def test_no_init_skips_initializing_state(self, loader, make_extension):
        """Without a hook the request goes straight from fetching to ready."""
        await load(loader, make_extension, "NoInit", NO_INIT)

        request = loader.get_request("NoInit")
        assert ExtensionState.INITIALIZING not in request.history
        assert request.history[-1] is ExtensionState.MODULE_FETCHING
        assert request.outcome.ok

    @pytest.mark.asyncio
    async def test_load_with_sync_init(self, loader, make_extension, diagnostics):
        """A sync hook returning nothing should resolve the load."""
        loaded = await load(loader, make_extension, "InitResolved", INIT_RESOLVED)

        assert loaded.module.initialized == [True]
        assert diagnostics() == []

    @pytest.mark.asyncio
    async def test_load_with_async_init(self, loader, make_extension, diagnostics):
        """An async hook that completes should resolve the load."""
        await load(loader, make_extension, "InitResolvedAsync", INIT_RESOLVED_ASYNC)

        assert loader.get_state("InitResolvedAsync") is ExtensionState.READY
        assert diagnostics() == []

    @pytest.mark.asyncio
    async def test_load_with_module_config_alias(
        self, loader, make_extension, diagnostics
    ):
        """Aliases from requirejs-config.json should be visible to the main module."""
        loaded = await load(loader, make_extension, "RequireJSConfig", REQUIRE_CONFIG)

        assert loaded.module.RESULT == "bar_exported"
        assert loaded.module.SAME is True
        assert diagnostics() == []

    @pytest.mark.asyncio
    async def test_load_resolves_only_after_deferred_settles(
        self, loader, make_extension
    ):
        """The load should stay pending until the returned future resolves."""
        base = make_extension("Pending", PENDING_INIT)
        task = asyncio.create_task(
            loader.load(ExtensionDescriptor("Pending", str(base)))
        )

        await asyncio.sleep(0.05)
        assert not task.done()
        assert loader.get_state("Pending") is ExtensionState.INITIALIZING

        module = loader.get_require_context("Pending").require("main")
        module.pending[0].set_result(None)

        loaded = await task
        assert loaded.name == "Pending"
        assert loader.get_state("Pending") is ExtensionState.READY

    @pytest.mark.asyncio
    async def test_loaded_extension_is_queryable(self, loader, make_extension):
        """Loaded extensions should be listed and retrievable."""
        await load(loader, make_extension, "NoInit", NO_INIT)

        assert loader.loaded_extensions() == ["NoInit"]
        assert loader.get_extension("NoInit").module.VALUE == 42
        assert loader.get_require_context("NoInit").name == "NoInit"

    @pytest.mark.asyncio
    async def test_guarded_optional_siblings(self, loader, make_extension, diagnostics):
        """Missing siblings guarded by ModuleNotFoundError should not fail the load."""
        loaded = await load(loader, make_extension, "Optional", OPTIONAL_SIBLINGS)

        assert loaded.module.optional_speedups is None
        assert loaded.module.encode is None
        assert loader.get_state("Optional") is ExtensionState.READY
        assert diagnostics() == []


class TestInitFailures:
    """Init hooks that fail."""

    @pytest.mark.asyncio
    async def test_init_fail_without_reason(self, loader, make_extension, diagnostics):
        with pytest.raises(InitFailure) as exc_info:
            await load(loader, make_extension, "InitFail", INIT_FAIL)

        assert exc_info.value.kind is ErrorKind.INIT_NO_REASON
        assert diagnostics() == ["[Extension] Error -- failed initExtension for InitFail"]
        assert loader.get_state("InitFail") is ExtensionState.FAILED

    @pytest.mark.asyncio
    async def test_init_fail_with_reason(self, loader, make_extension, diagnostics):
        with pytest.raises(InitFailure) as exc_info:
            await load(loader, make_extension, "InitFailWithError", INIT_FAIL_WITH_ERROR)

        assert exc_info.value.kind is ErrorKind.INIT_WITH_REASON
        assert diagnostics() == [
            "[Extension] Error -- failed initExtension for InitFailWithError: Didn't work"
        ]

    @pytest.mark.asyncio
    async def test_async_init_fail_with_reason(
        self, loader, make_extension, diagnostics
    ):
        with pytest.raises(InitFailure) as exc_info:
            await load(
                loader,
                make_extension,
                "InitFailWithErrorAsync",
                INIT_FAIL_WITH_ERROR_ASYNC,
            )

        assert exc_info.value.kind is ErrorKind.INIT_WITH_REASON
        assert diagnostics() == [
            "[Extension] Error -- failed initExtension for InitFailWithErrorAsync: "
            "Didn't work"
        ]

    @pytest.mark.asyncio
    async def test_init_timeout(self, loader, make_extension, diagnostics):
        with pytest.raises(InitFailure) as exc_info:
            await load(loader, make_extension, "InitTimeout", INIT_TIMEOUT)

        assert exc_info.value.kind is ErrorKind.INIT_TIMEOUT
        assert diagnostics() == [
            "[Extension] Error -- timeout during initExtension for InitTimeout"
        ]

    @pytest.mark.asyncio
    async def test_init_runtime_error(self, loader, make_extension, diagnostics):
        with pytest.raises(InitFailure) as exc_info:
            await load(loader, make_extension, "InitRuntimeError", INIT_RUNTIME_ERROR)

        assert exc_info.value.kind is ErrorKind.INIT_THROWN
        assert diagnostics() == [
            "[Extension] Error -- error thrown during initExtension for "
            "InitRuntimeError: NameError: name 'is_not_defined' is not defined"
        ]

    @pytest.mark.asyncio
    async def test_late_settlement_after_timeout_is_ignored(
        self, loader, make_extension, diagnostics
    ):
        """Resolving the deferred after a timeout must not report again."""
        loader.init_timeout = 0.05
        base = make_extension("LateInit", PENDING_INIT)

        with pytest.raises(InitFailure):
            await loader.load(ExtensionDescriptor("LateInit", str(base)))

        module = loader.get_require_context("LateInit").require("main")
        future = module.pending[0]
        assert not future.cancelled()

        future.set_exception(RuntimeError("too late"))
        await asyncio.sleep(0.01)

        assert diagnostics() == [
            "[Extension] Error -- timeout during initExtension for LateInit"
        ]
        request = loader.get_request("LateInit")
        assert request.state is ExtensionState.FAILED
        assert request.diagnostic.kind is ErrorKind.INIT_TIMEOUT

    @pytest.mark.asyncio
    async def test_init_failure_keeps_namespace_until_unload(
        self, loader, make_extension
    ):
        with pytest.raises(InitFailure):
            await load(loader, make_extension, "InitFail", INIT_FAIL)

        namespace = loader.get_require_context("InitFail")
        assert namespace is not None
        assert namespace.qualify("main") in sys.modules

        loader.unload_extension("InitFail")

        assert loader.get_require_context("InitFail") is None
        assert namespace.qualify("main") not in sys.modules


class TestLoadFailures:
    """Module fetch and module config failures."""

    @pytest.mark.asyncio
    async def test_bad_require(self, loader, make_extension, diagnostics):
        base = make_extension("BadRequire", BAD_REQUIRE)

        with pytest.raises(ModuleLoadError) as exc_info:
            await loader.load_extension("BadRequire", {"baseUrl": str(base)})

        assert exc_info.value.kind is ErrorKind.MODULE_LOAD
        assert diagnostics() == [
            f"[Extension] failed to load BadRequire ({base}) - "
            f"Module does not exist: {base / 'notdefined.py'}"
        ]

    @pytest.mark.asyncio
    async def test_missing_main_module(self, loader, make_extension, diagnostics):
        base = make_extension("NoMain", {"other.py": "X = 1\n"})

        with pytest.raises(ModuleLoadError):
            await loader.load_extension("NoMain", {"baseUrl": str(base)})

        (message,) = diagnostics()
        assert message.startswith(f"[Extension] failed to load NoMain ({base})")
        assert message.endswith(f"Module does not exist: {base / 'main.py'}")

    @pytest.mark.asyncio
    async def test_main_data_directory_is_not_a_module(
        self, loader, make_extension, diagnostics
    ):
        base = make_extension("DataOnly", {"main/readme.txt": "not code\n"})

        with pytest.raises(ModuleLoadError):
            await loader.load_extension("DataOnly", {"baseUrl": str(base)})

        (message,) = diagnostics()
        assert message.endswith(f"Module does not exist: {base / 'main.py'}")
        assert loader.get_state("DataOnly") is ExtensionState.FAILED

    @pytest.mark.asyncio
    async def test_main_module_raises_while_loading(
        self, loader, make_extension, diagnostics
    ):
        base = make_extension("Explodes", {"main.py": "raise ValueError('boom')\n"})

        with pytest.raises(ModuleLoadError):
            await loader.load_extension("Explodes", {"baseUrl": str(base)})

        (message,) = diagnostics()
        assert message.startswith(f"[Extension] failed to load Explodes ({base}) - ")
        assert str(base / "main.py") in message
        assert "ValueError: boom" in message

    @pytest.mark.asyncio
    async def test_bad_module_config(self, loader, make_extension, diagnostics, tmp_path):
        marker = tmp_path / "main-ran"
        base = make_extension(
            "BadRequireConfig",
            {
                "requirejs-config.json": "{ invalid json",
                "main.py": f"open({str(marker)!r}, 'w').close()\n",
            },
        )

        with pytest.raises(ConfigParseError) as exc_info:
            await loader.load_extension("BadRequireConfig", {"baseUrl": str(base)})

        assert exc_info.value.kind is ErrorKind.CONFIG_PARSE
        (message,) = diagnostics()
        assert message.startswith(
            f"[Extension] failed to load BadRequireConfig ({base}) - "
            "failed to parse requirejs-config.json"
        )
        assert not marker.exists()
        request = loader.get_request("BadRequireConfig")
        assert ExtensionState.MODULE_FETCHING not in request.history
        assert loader.get_require_context("BadRequireConfig") is None

    @pytest.mark.asyncio
    async def test_explicit_manifest_path(self, loader, make_extension, tmp_path):
        """An explicit manifest path should be used instead of the base_url file."""
        base = make_extension(
            "Override",
            {
                "vendor/thing.py": "NAME = 'thing'\n",
                "main.py": "NAME = require('thing').NAME\n",
            },
        )
        manifest = tmp_path / "override.json"
        manifest.write_text(json.dumps({"paths": {"thing": "vendor/thing"}}))

        loaded = await loader.load(ExtensionDescriptor("Override", str(base)), manifest)

        assert loaded.module.NAME == "thing"

    @pytest.mark.asyncio
    async def test_failed_fetch_leaves_no_modules(self, loader, make_extension):
        base = make_extension("BadRequire", BAD_REQUIRE)

        with pytest.raises(ModuleLoadError):
            await loader.load_extension("BadRequire", {"baseUrl": str(base)})

        assert not any(name.startswith("exthost_ext_badrequire") for name in sys.modules)


class TestConcurrency:
    """Independent concurrent loads."""

    @pytest.mark.asyncio
    async def test_concurrent_loads_are_independent(
        self, loader, make_extension, diagnostics
    ):
        good = make_extension("InitResolvedAsync", INIT_RESOLVED_ASYNC)
        slow = make_extension("InitTimeout", INIT_TIMEOUT)

        results = await asyncio.gather(
            loader.load_extension("InitResolvedAsync", {"baseUrl": str(good)}),
            loader.load_extension("InitTimeout", {"baseUrl": str(slow)}),
            return_exceptions=True,
        )

        assert results[0].name == "InitResolvedAsync"
        assert isinstance(results[1], InitFailure)
        assert loader.get_state("InitResolvedAsync") is ExtensionState.READY
        assert loader.get_state("InitTimeout") is ExtensionState.FAILED
        assert diagnostics() == [
            "[Extension] Error -- timeout during initExtension for InitTimeout"
        ]

    @pytest.mark.asyncio
    async def test_same_module_names_do_not_collide(self, loader, make_extension):
        first = make_extension("First", {"util.py": "WHO = 'first'\n", "main.py": "from .util import WHO\n"})
        second = make_extension("Second", {"util.py": "WHO = 'second'\n", "main.py": "from .util import WHO\n"})

        a, b = await asyncio.gather(
            loader.load_extension("First", str(first)),
            loader.load_extension("Second", str(second)),
        )

        assert a.module.WHO == "first"
        assert b.module.WHO == "second"


class TestLoadAll:
    """Directory-wide loading."""

    @pytest.mark.asyncio
    async def test_load_all_extensions(self, loader, make_extension, tmp_path):
        make_extension("NoInit", NO_INIT)
        make_extension("InitFail", INIT_FAIL)
        make_extension("Disabled", {**NO_INIT, ".disabled": ""})
        make_extension(".hidden", NO_INIT)
        make_extension("__pycache__", {})

        batch = await loader.load_all_extensions(tmp_path)

        assert batch.loaded == ["NoInit"]
        assert batch.failed == {"InitFail": ErrorKind.INIT_NO_REASON}
        assert batch.disabled == ["Disabled"]
        assert not batch.ok

    @pytest.mark.asyncio
    async def test_load_all_missing_directory(self, loader, tmp_path):
        batch = await loader.load_all_extensions(tmp_path / "missing")

        assert batch.loaded == [] and batch.failed == {} and batch.ok


class TestListenersAndOverrides:
    """Listeners, timeout override and unloading."""

    @pytest.mark.asyncio
    async def test_listeners_receive_events(self, loader, make_extension, tmp_path):
        events = []
        loader.add_listener("load", lambda name: events.append(("load", name)))
        loader.add_listener(
            "load_failed",
            lambda name, diagnostic: events.append(("load_failed", name, diagnostic.kind)),
        )
        loader.add_listener("disabled", lambda name: events.append(("disabled", name)))

        make_extension("NoInit", NO_INIT)
        make_extension("InitFail", INIT_FAIL)
        make_extension("Off", {**NO_INIT, ".disabled": ""})

        await loader.load_all_extensions(tmp_path)

        assert ("load", "NoInit") in events
        assert ("load_failed", "InitFail", ErrorKind.INIT_NO_REASON) in events
        assert ("disabled", "Off") in events

    @pytest.mark.asyncio
    async def test_failing_listener_warns(self, loader, make_extension):
        def broken(name):
            raise RuntimeError("listener broke")

        loader.add_listener("load", broken)

        with pytest.warns(RuntimeWarning, match="listener broke"):
            await load(loader, make_extension, "NoInit", NO_INIT)

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, loader, make_extension):
        events = []

        def on_load(name):
            events.append(name)

        loader.add_listener("load", on_load)
        loader.remove_listener("load", on_load)
        loader.remove_listener("load", on_load)

        await load(loader, make_extension, "NoInit", NO_INIT)

        assert events == []

    def test_unknown_listener_event(self, loader):
        with pytest.raises(ValueError, match="Unknown extension event"):
            loader.add_listener("exploded", lambda name: None)

    def test_override_init_timeout(self, loader):
        assert loader.init_timeout == 0.5

        with loader.override_init_timeout(0.01):
            assert loader.init_timeout == 0.01

        assert loader.init_timeout == 0.5

    @pytest.mark.asyncio
    async def test_unload_allows_fresh_load(self, loader, make_extension):
        await load(loader, make_extension, "NoInit", NO_INIT)
        package = loader.get_require_context("NoInit").package

        loader.unload_extension("NoInit")

        assert loader.get_state("NoInit") is None
        assert f"{package}.main" not in sys.modules

        await load(loader, make_extension, "NoInit", NO_INIT)
        assert loader.get_state("NoInit") is ExtensionState.READY

    @pytest.mark.asyncio
    async def test_error_carries_diagnostic(self, loader, make_extension):
        with pytest.raises(ExtensionError) as exc_info:
            await load(loader, make_extension, "InitFail", INIT_FAIL)

        error = exc_info.value
        assert error.extension_name == "InitFail"
        assert str(error) == error.diagnostic.message


class TestDefaultLoader:
    """Module-level load_extension."""

    @pytest.mark.asyncio
    async def test_module_level_load_extension(self, make_extension, monkeypatch):
        import exthost
        from exthost.extension import manager

        default = ExtensionLoader(init_timeout=0.5)
        monkeypatch.setattr(manager, "_default_loader", default)
        base = make_extension("NoInit", NO_INIT)

        try:
            loaded = await exthost.load_extension("NoInit", {"baseUrl": str(base)})
            assert loaded.module.VALUE == 42
            assert exthost.get_default_loader() is default
        finally:
            default.registry.uninstall()
