"""
Tests for core/manager.py - Library Manager.

Covers:
- Loader registration and lookup
- Get-or-create for singletons and keyed instances
- Construction failures, contract violations and timeouts
- Fail-fast unload and collect-and-continue shutdown
- Single-flight construction under concurrency
"""
import asyncio

import pytest

from core.errors import (
    LibraryContractError,
    LibraryLoadError,
    LibraryNotFoundError,
    LibraryTeardownError,
)
from core.library import InstallParams, LibraryLoader
from core.manager import DEFAULT_KEY, LibraryManager


# =============================================================================
# Registration and Lookup Tests
# =============================================================================

class TestLoaderRegistration:
    """Tests for loader registration and lookups."""

    def test_loaders_are_named_after_their_key(self, make_factory):
        """Test that registration binds each loader's name."""
        loader = LibraryLoader(make_factory())
        manager = LibraryManager({"db:fake": loader})

        assert loader.name == "db:fake"
        assert manager.get_loader("db:fake") is loader
        assert manager.loaders == ["db:fake"]

    def test_unknown_loader_lookup_returns_none(self):
        """Test that loader lookup never raises."""
        manager = LibraryManager({})

        assert manager.get_loader("db:missing") is None

    def test_empty_cache_reads_return_none(self, make_factory):
        """Test cache reads on a fresh manager."""
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory())})

        assert manager.get_singleton("db:fake") is None
        assert manager.get_instance("db:fake", "sess-1") is None
        assert manager.is_loaded("db:fake") is False
        assert manager.loaded() == []

    def test_cache_reads_never_construct(self, make_factory):
        """Test that get_* does not build anything."""
        factory = make_factory()
        manager = LibraryManager({"db:fake": LibraryLoader(factory)})

        manager.get_singleton("db:fake")
        manager.get_instance("db:fake", "k")

        assert factory.builds == 0


# =============================================================================
# Get-or-create Tests
# =============================================================================

class TestLoad:
    """Tests for load_singleton / load_instance."""

    @pytest.mark.asyncio
    async def test_load_twice_returns_same_instance(self, make_factory):
        """Test that the loader runs once per compound key."""
        factory = make_factory()
        manager = LibraryManager({"db:fake": LibraryLoader(factory)})

        first = await manager.load_singleton("db:fake")
        second = await manager.load_singleton("db:fake")

        assert first is second
        assert factory.builds == 1
        assert manager.get_singleton("db:fake") is first

    @pytest.mark.asyncio
    async def test_load_runs_install_then_connect(self, make_factory, events):
        """Test the construction order for a connector."""
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory())})

        library = await manager.load_singleton("db:fake")

        assert [name for name, _ in events] == ["install", "connect"]
        assert isinstance(library.params, InstallParams)

    @pytest.mark.asyncio
    async def test_plain_library_is_not_connected(self, make_factory, fake_library_cls, events):
        """Test that libraries without the connector capability only install."""
        manager = LibraryManager({"db:plain": LibraryLoader(make_factory(fake_library_cls))})

        await manager.load_singleton("db:plain")

        assert [name for name, _ in events] == ["install"]

    @pytest.mark.asyncio
    async def test_params_ignored_on_cache_hit(self, make_factory):
        """Test that a second load keeps the first instance and its params."""
        factory = make_factory()
        manager = LibraryManager({"db:mongodb": LibraryLoader(factory)})
        params_a = InstallParams(config={"uri": "mongodb://a"})
        params_b = InstallParams(config={"uri": "mongodb://b"})

        first = await manager.load_singleton("db:mongodb", params_a)
        second = await manager.load_singleton("db:mongodb", params_b)

        assert first is second
        assert factory.builds == 1
        assert first.params is params_a

    @pytest.mark.asyncio
    async def test_keyed_instances_are_independent(self, make_factory):
        """Test that distinct keys hold distinct instances."""
        manager = LibraryManager({"kafka:fake": LibraryLoader(make_factory())})

        sess42 = await manager.load_instance("kafka:fake", "sess-42")
        sess43 = await manager.load_instance("kafka:fake", "sess-43")

        assert sess42 is not sess43
        assert manager.loaded() == [("kafka:fake", "sess-42"), ("kafka:fake", "sess-43")]

        await manager.unload_instance("kafka:fake", "sess-42")

        assert manager.get_instance("kafka:fake", "sess-42") is None
        assert manager.get_instance("kafka:fake", "sess-43") is sess43

    @pytest.mark.asyncio
    async def test_singleton_and_keyed_instance_coexist(self, make_factory):
        """Test that the default key is just another instance key."""
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory())})

        singleton = await manager.load_singleton("db:fake")
        keyed = await manager.load_instance("db:fake", "tenant-1")

        assert singleton is not keyed
        assert manager.get_instance("db:fake", DEFAULT_KEY) is singleton

    @pytest.mark.asyncio
    async def test_load_by_loader_object(self, make_factory):
        """Test that a registered loader object can be passed instead of a name."""
        loader = LibraryLoader(make_factory())
        manager = LibraryManager({"db:fake": loader})

        library = await manager.load_singleton(loader)

        assert manager.get_singleton("db:fake") is library

    @pytest.mark.asyncio
    async def test_unknown_loader_name_raises(self):
        """Test that loading an unregistered name fails."""
        manager = LibraryManager({})

        with pytest.raises(LibraryNotFoundError) as exc_info:
            await manager.load_singleton("db:missing")

        assert exc_info.value.library == "db:missing"

    @pytest.mark.asyncio
    async def test_unregistered_loader_object_raises(self, make_factory):
        """Test that a loader from another manager is rejected."""
        stray = LibraryLoader(make_factory(), name="db:fake")
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory())})

        with pytest.raises(LibraryNotFoundError):
            await manager.load_singleton(stray)


# =============================================================================
# Construction Failure Tests
# =============================================================================

class TestLoadFailures:
    """Tests for construction failures."""

    @pytest.mark.asyncio
    async def test_failed_install_leaves_no_entry(self, make_factory):
        """Test that a failing install caches nothing and is retried."""
        factory = make_factory(install_error=RuntimeError("boom"))
        manager = LibraryManager({"db:fake": LibraryLoader(factory)})

        with pytest.raises(LibraryLoadError) as exc_info:
            await manager.load_singleton("db:fake")

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.library == "db:fake"
        assert exc_info.value.key == DEFAULT_KEY
        assert manager.get_singleton("db:fake") is None

        factory.attrs.pop("install_error")
        library = await manager.load_singleton("db:fake")

        assert factory.builds == 2
        assert manager.get_singleton("db:fake") is library

    @pytest.mark.asyncio
    async def test_failed_connect_uninstalls(self, make_factory, events):
        """Test that a half-built connector is uninstalled."""
        factory = make_factory(connect_error=ConnectionError("refused"))
        manager = LibraryManager({"db:fake": LibraryLoader(factory)})

        with pytest.raises(LibraryLoadError):
            await manager.load_singleton("db:fake")

        assert [name for name, _ in events] == ["install", "connect", "uninstall"]
        assert manager.loaded() == []

    @pytest.mark.asyncio
    async def test_rollback_failure_keeps_original_error(self, make_factory):
        """Test that an uninstall failure during rollback is only logged."""
        factory = make_factory(
            connect_error=ConnectionError("refused"),
            uninstall_error=RuntimeError("cleanup"),
        )
        manager = LibraryManager({"db:fake": LibraryLoader(factory)})

        with pytest.raises(LibraryLoadError) as exc_info:
            await manager.load_singleton("db:fake")

        assert isinstance(exc_info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_factory_product_must_be_library(self):
        """Test the contract check on the factory product."""
        manager = LibraryManager({"db:bad": LibraryLoader(lambda: object())})

        with pytest.raises(LibraryContractError) as exc_info:
            await manager.load_singleton("db:bad")

        assert exc_info.value.offending_type is object
        assert manager.loaded() == []

    @pytest.mark.asyncio
    async def test_wrong_params_type_rejected(self, make_factory):
        """Test the contract check on parameter objects."""
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory())})

        with pytest.raises(LibraryContractError):
            await manager.load_singleton("db:fake", {"host": "x"})  # type: ignore[arg-type]

    @pytest.mark.asyncio
    async def test_timeout_is_recoverable_load_error(self, make_factory):
        """Test that a slow connect is bounded by the manager timeout."""
        factory = make_factory(connect_delay=1.0)
        manager = LibraryManager({"db:slow": LibraryLoader(factory)}, timeout=0.05)

        with pytest.raises(LibraryLoadError) as exc_info:
            await manager.load_singleton("db:slow")

        assert exc_info.value.recoverable is True
        assert manager.get_singleton("db:slow") is None

    @pytest.mark.asyncio
    async def test_cancellation_leaves_no_entry(self, make_factory):
        """Test that cancelling a construction caches nothing."""
        factory = make_factory(connect_delay=1.0)
        manager = LibraryManager({"db:slow": LibraryLoader(factory)})

        task = asyncio.create_task(manager.load_singleton("db:slow"))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert manager.get_singleton("db:slow") is None


# =============================================================================
# Concurrency Tests
# =============================================================================

class TestSingleFlight:
    """Tests for per-key serialized construction."""

    @pytest.mark.asyncio
    async def test_concurrent_first_loads_construct_once(self, make_factory):
        """Test that concurrent callers share one construction."""
        factory = make_factory(connect_delay=0.02)
        manager = LibraryManager({"db:fake": LibraryLoader(factory)})

        results = await asyncio.gather(*[manager.load_singleton("db:fake") for _ in range(10)])

        assert factory.builds == 1
        assert all(result is results[0] for result in results)

    @pytest.mark.asyncio
    async def test_different_keys_construct_in_parallel(self, make_factory):
        """Test that distinct keys do not block each other."""
        factory = make_factory(connect_delay=0.02)
        manager = LibraryManager({"kafka:fake": LibraryLoader(factory)})

        results = await asyncio.gather(
            manager.load_instance("kafka:fake", "a"),
            manager.load_instance("kafka:fake", "b"),
        )

        assert factory.builds == 2
        assert results[0] is not results[1]

    @pytest.mark.asyncio
    async def test_load_during_unload_builds_fresh_instance(self, make_factory):
        """Test that a load racing an unload never returns the dying instance."""
        factory = make_factory(disconnect_delay=0.05)
        manager = LibraryManager({"db:slow": LibraryLoader(factory)})
        dying = await manager.load_singleton("db:slow")

        unload = asyncio.create_task(manager.unload_singleton("db:slow"))
        await asyncio.sleep(0.01)
        assert dying.calls("disconnect") == 1

        fresh = await manager.load_singleton("db:slow")

        assert await unload is dying
        assert fresh is not dying
        assert dying.calls("uninstall") == 1
        assert fresh.calls("uninstall") == 0
        assert manager.get_singleton("db:slow") is fresh
        assert factory.builds == 2

    @pytest.mark.asyncio
    async def test_key_locks_released_after_use(self, make_factory):
        """Test that caller-chosen keys leave no lock behind."""
        factory = make_factory()
        failing = make_factory(install_error=RuntimeError("boom"))
        manager = LibraryManager({
            "kafka:fake": LibraryLoader(factory),
            "db:broken": LibraryLoader(failing),
        })

        for i in range(100):
            await manager.load_instance("kafka:fake", f"sess-{i}")
            await manager.unload_instance("kafka:fake", f"sess-{i}")
        with pytest.raises(LibraryLoadError):
            await manager.load_singleton("db:broken")
        await asyncio.gather(*[manager.load_singleton("kafka:fake") for _ in range(5)])

        assert manager.loaded() == [("kafka:fake", DEFAULT_KEY)]
        assert manager._locks == {}


# =============================================================================
# Unload Tests
# =============================================================================

class TestUnload:
    """Tests for fail-fast unload."""

    @pytest.mark.asyncio
    async def test_unload_never_loaded_raises(self, make_factory):
        """Test unloading a missing bucket or key."""
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory())})
        await manager.load_instance("db:fake", "present")

        with pytest.raises(LibraryNotFoundError):
            await manager.unload_singleton("db:other")
        with pytest.raises(LibraryNotFoundError):
            await manager.unload_instance("db:fake", "absent")

        assert manager.loaded() == [("db:fake", "present")]

    @pytest.mark.asyncio
    async def test_unload_plain_library(self, make_factory, fake_library_cls):
        """Test that uninstall runs once and the entry is removed."""
        factory = make_factory(fake_library_cls)
        manager = LibraryManager({"db:plain": LibraryLoader(factory)})
        library = await manager.load_singleton("db:plain")

        unloaded = await manager.unload_singleton("db:plain")

        assert unloaded is library
        assert library.calls("uninstall") == 1
        assert library.calls("disconnect") == 0
        assert manager.get_singleton("db:plain") is None

        again = await manager.load_singleton("db:plain")
        assert again is not library
        assert factory.builds == 2

    @pytest.mark.asyncio
    async def test_unload_connector_disconnects_first(self, make_factory, events):
        """Test teardown order for a connector."""
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory())})
        await manager.load_singleton("db:fake")
        events.clear()

        await manager.unload_singleton("db:fake")

        assert [name for name, _ in events] == ["disconnect", "uninstall"]

    @pytest.mark.asyncio
    async def test_failed_disconnect_keeps_entry(self, make_factory):
        """Test that a disconnect failure skips uninstall and keeps the entry."""
        factory = make_factory(disconnect_error=RuntimeError("socket"))
        manager = LibraryManager({"db:fake": LibraryLoader(factory)})
        library = await manager.load_singleton("db:fake")

        with pytest.raises(LibraryTeardownError) as exc_info:
            await manager.unload_singleton("db:fake")

        assert exc_info.value.stage == "disconnect"
        assert library.calls("uninstall") == 0
        assert manager.get_singleton("db:fake") is library

    @pytest.mark.asyncio
    async def test_failed_uninstall_keeps_entry(self, make_factory):
        """Test that an uninstall failure keeps the entry for a retry."""
        factory = make_factory(uninstall_error=RuntimeError("busy"))
        manager = LibraryManager({"db:fake": LibraryLoader(factory)})
        library = await manager.load_singleton("db:fake")

        with pytest.raises(LibraryTeardownError) as exc_info:
            await manager.unload_singleton("db:fake")

        assert exc_info.value.stage == "uninstall"
        assert manager.get_singleton("db:fake") is library

        library.uninstall_error = None
        await manager.unload_singleton("db:fake")
        assert manager.get_singleton("db:fake") is None

    @pytest.mark.asyncio
    async def test_emptied_bucket_is_removed(self, make_factory):
        """Test that unloading the last key drops the bucket."""
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory())})
        await manager.load_instance("db:fake", "only")

        await manager.unload_instance("db:fake", "only")

        assert "db:fake" not in manager._libraries


# =============================================================================
# Shutdown Tests
# =============================================================================

class TestShutdownAll:
    """Tests for collect-and-continue shutdown."""

    @pytest.mark.asyncio
    async def test_shutdown_continues_past_failures(self, make_factory):
        """Test that every instance is attempted and failures are returned."""
        ok = make_factory()
        bad = make_factory(disconnect_error=RuntimeError("socket"))
        manager = LibraryManager({
            "db:fake": LibraryLoader(ok),
            "cache:fake": LibraryLoader(bad),
        })
        await manager.load_singleton("db:fake")
        await manager.load_instance("db:fake", "tenant-1")
        failing = await manager.load_singleton("cache:fake")

        failures = await manager.shutdown_all()

        assert len(failures) == 1
        assert failures[0].library == "cache:fake"
        assert failures[0].stage == "disconnect"
        assert all(library.calls("disconnect") == 1 for library in ok.created)
        assert failing.calls("disconnect") == 1
        assert manager.loaded() == [("cache:fake", DEFAULT_KEY)]

    @pytest.mark.asyncio
    async def test_shutdown_order_is_most_recent_first(self, make_factory, events):
        """Test that later buckets are torn down before earlier ones."""
        manager = LibraryManager({
            "db:fake": LibraryLoader(make_factory()),
            "cache:fake": LibraryLoader(make_factory()),
        })
        db = await manager.load_singleton("db:fake")
        cache = await manager.load_singleton("cache:fake")
        events.clear()

        await manager.shutdown_all()

        disconnected = [library for name, library in events if name == "disconnect"]
        assert disconnected == [cache, db]

    @pytest.mark.asyncio
    async def test_shutdown_on_empty_manager(self):
        """Test that shutting down nothing is a no-op."""
        manager = LibraryManager({})

        assert await manager.shutdown_all() == []


# =============================================================================
# Typed Accessor Tests
# =============================================================================

class TestRequire:
    """Tests for the typed accessor."""

    @pytest.mark.asyncio
    async def test_require_returns_loaded_instance(self, make_factory, fake_connector_cls):
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory())})
        library = await manager.load_singleton("db:fake")

        assert manager.require("db:fake", fake_connector_cls) is library

    def test_require_missing_raises(self):
        manager = LibraryManager({})

        with pytest.raises(LibraryNotFoundError):
            manager.require("db:fake")

    @pytest.mark.asyncio
    async def test_require_wrong_type_raises(self, make_factory, fake_library_cls):
        manager = LibraryManager({"db:fake": LibraryLoader(make_factory(fake_library_cls))})
        await manager.load_singleton("db:fake")

        with pytest.raises(LibraryContractError) as exc_info:
            manager.require("db:fake", int)

        assert exc_info.value.offending_type is fake_library_cls
