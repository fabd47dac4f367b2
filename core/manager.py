"""
WEBCORE - Library Manager

Registry of pluggable library instances. Each instance lives under a
compound key ``(loader name, instance key)``; the reserved key
``"default"`` holds the singleton of a kind. Instances are built lazily
through their registered ``LibraryLoader`` and cached until they are
unloaded or swept by ``shutdown_all``.

Usage:
    manager = LibraryManager(default_loaders())

    db = await manager.load_singleton("db:postgres", DatabaseParams(config=cfg))
    session = await manager.load_instance("kafka:consumer", "sess-42", params)

    await manager.unload_instance("kafka:consumer", "sess-42")
    failures = await manager.shutdown_all()
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Tuple, Type, TypeVar, Union

from core.errors import (
    LibraryContractError,
    LibraryLoadError,
    LibraryNotFoundError,
    LibraryTeardownError,
)
from core.library import InstallParams, Library, LibraryLoader, is_connector
from observability.logging import get_logger
from observability.tracing import create_span


logger = get_logger("webcore.core.manager")

DEFAULT_KEY = "default"

L = TypeVar("L", bound=Library)
LoaderRef = Union[str, LibraryLoader]


@dataclass
class _KeyLock:
    """Lock of one compound key and the number of tasks holding or awaiting it."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class LibraryManager:
    """
    Lifecycle registry for library singletons and keyed instances.

    Provides:
    - Loader lookup by name
    - Get-or-create with per-key single-flight construction
    - Fail-fast unload of one instance
    - Collect-and-continue shutdown of every instance
    """

    def __init__(
        self,
        loaders: Mapping[str, LibraryLoader],
        *,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            loaders: Mapping of ``"<kind>:<driver>"`` names to loaders. Each
                loader is renamed to its key; a later duplicate key wins.
            timeout: Optional bound in seconds on construction and on
                disconnect.
        """
        self._loaders: Dict[str, LibraryLoader] = {}
        for name, loader in loaders.items():
            loader.set_name(name)
            self._loaders[name] = loader

        self._libraries: Dict[str, Dict[str, Library]] = {}
        self._locks: Dict[Tuple[str, str], _KeyLock] = {}
        self.timeout = timeout

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    @property
    def loaders(self) -> List[str]:
        return list(self._loaders)

    def get_loader(self, name: str) -> Optional[LibraryLoader]:
        return self._loaders.get(name)

    def get_singleton(self, name: str) -> Optional[Library]:
        return self.get_instance(name, DEFAULT_KEY)

    def get_instance(self, name: str, key: str) -> Optional[Library]:
        bucket = self._libraries.get(name)
        if bucket is None:
            return None
        return bucket.get(key)

    def is_loaded(self, name: str, key: str = DEFAULT_KEY) -> bool:
        return self.get_instance(name, key) is not None

    def loaded(self) -> List[Tuple[str, str]]:
        """List the compound keys of every cached instance in load order."""
        return [
            (name, key)
            for name, bucket in self._libraries.items()
            for key in bucket
        ]

    def require(
        self,
        name: str,
        expected_type: Optional[Type[L]] = None,
        key: str = DEFAULT_KEY,
    ) -> L:
        """
        Typed accessor for an instance that must already be loaded.

        Raises:
            LibraryNotFoundError: If nothing is cached under the key.
            LibraryContractError: If the instance is not ``expected_type``.
        """
        library = self.get_instance(name, key)
        if library is None:
            raise LibraryNotFoundError(
                f"Library '{name}' is not loaded under key '{key}'",
                library=name,
                key=key,
            )
        if expected_type is not None and not isinstance(library, expected_type):
            raise LibraryContractError(
                f"Library '{name}' is {type(library).__name__}, "
                f"expected {expected_type.__name__}",
                library=name,
                key=key,
                offending_type=type(library),
            )
        return library  # type: ignore[return-value]

    # -------------------------------------------------------------------------
    # Get-or-create
    # -------------------------------------------------------------------------

    async def load_singleton(
        self,
        loader: LoaderRef,
        params: Optional[InstallParams] = None,
    ) -> Library:
        """Get or create the ``"default"`` instance of a loader."""
        return await self.load(loader, DEFAULT_KEY, params)

    async def load_instance(
        self,
        loader: LoaderRef,
        key: str,
        params: Optional[InstallParams] = None,
    ) -> Library:
        """Get or create the instance of a loader cached under ``key``."""
        return await self.load(loader, key, params)

    async def load(
        self,
        loader: LoaderRef,
        key: str = DEFAULT_KEY,
        params: Optional[InstallParams] = None,
    ) -> Library:
        """
        Get or create one instance.

        A cached instance is returned unchanged and ``params`` is ignored.
        On a miss the loader builds the instance; failures leave no cache
        entry, so the next call builds from scratch.

        Raises:
            LibraryNotFoundError: Unknown or unregistered loader.
            LibraryContractError: Params or product violate the contract.
            LibraryLoadError: Install or connect failed, or timed out.
        """
        resolved = self._resolve_loader(loader)
        name = resolved.name

        # A held key lock means a construction or unload is in flight.
        if (name, key) not in self._locks:
            cached = self.get_instance(name, key)
            if cached is not None:
                self._log_cache_hit(name, key, params)
                return cached

        async with self._locked(name, key):
            cached = self.get_instance(name, key)
            if cached is not None:
                self._log_cache_hit(name, key, params)
                return cached

            library = await self._construct(resolved, key, params)
            self._libraries.setdefault(name, {})[key] = library

        logger.info(
            "Library loaded",
            library=name,
            key=key,
            type=type(library).__name__,
            connector=is_connector(library),
        )
        return library

    def _resolve_loader(self, loader: LoaderRef) -> LibraryLoader:
        if isinstance(loader, LibraryLoader):
            registered = self._loaders.get(loader.name)
            if registered is not loader:
                raise LibraryNotFoundError(
                    f"Loader '{loader.name}' is not registered with this manager",
                    library=loader.name,
                )
            return loader

        registered = self._loaders.get(loader)
        if registered is None:
            raise LibraryNotFoundError(
                f"No loader registered under '{loader}'",
                library=loader,
                suggestions=[f"Registered loaders: {', '.join(sorted(self._loaders))}"],
            )
        return registered

    @asynccontextmanager
    async def _locked(self, name: str, key: str) -> AsyncIterator[None]:
        """Hold the lock of one compound key, dropping it once unused."""
        compound = (name, key)
        entry = self._locks.get(compound)
        if entry is None:
            entry = self._locks[compound] = _KeyLock()

        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[compound]

    def _log_cache_hit(self, name: str, key: str, params: Optional[InstallParams]) -> None:
        if params is not None:
            logger.debug(
                "Library already loaded, construction params ignored",
                library=name,
                key=key,
            )

    async def _construct(
        self,
        loader: LibraryLoader,
        key: str,
        params: Optional[InstallParams],
    ) -> Library:
        attributes = {"library.name": loader.name, "library.key": key}
        with create_span("library.load", attributes=attributes):
            try:
                return await self._bounded(loader.init(params))
            except LibraryContractError:
                raise
            except asyncio.TimeoutError as e:
                raise LibraryLoadError(
                    f"Loading '{loader.name}' [{key}] timed out after {self.timeout}s",
                    library=loader.name,
                    key=key,
                    cause=e,
                    recoverable=True,
                ) from e
            except Exception as e:
                raise LibraryLoadError(
                    f"Loading '{loader.name}' [{key}] failed: {e}",
                    library=loader.name,
                    key=key,
                    cause=e,
                ) from e

    async def _bounded(self, awaitable: Any) -> Any:
        if self.timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, self.timeout)

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def unload_singleton(self, name: str) -> Library:
        return await self.unload_instance(name, DEFAULT_KEY)

    async def unload_instance(self, name: str, key: str) -> Library:
        """
        Disconnect and uninstall one instance, then drop it from the cache.

        Raises:
            LibraryNotFoundError: Nothing is cached under the key.
            LibraryTeardownError: Disconnect or uninstall failed. The entry
                stays cached so the unload can be retried.
        """
        self._ensure_cached(name, key)

        async with self._locked(name, key):
            self._ensure_cached(name, key)
            bucket = self._libraries[name]
            library = bucket[key]

            with create_span("library.unload", attributes={"library.name": name, "library.key": key}):
                await self._teardown(name, key, library)

            del bucket[key]
            if not bucket:
                del self._libraries[name]

        logger.info("Library unloaded", library=name, key=key)
        return library

    def _ensure_cached(self, name: str, key: str) -> None:
        if self.get_instance(name, key) is None:
            raise LibraryNotFoundError(
                f"Library '{name}' is not loaded under key '{key}'",
                library=name,
                key=key,
            )

    async def _teardown(self, name: str, key: str, library: Library) -> None:
        if is_connector(library):
            try:
                await self._bounded(library.disconnect())
            except Exception as e:
                raise LibraryTeardownError(
                    f"Disconnecting '{name}' [{key}] failed: {e}",
                    stage="disconnect",
                    library=name,
                    key=key,
                    cause=e,
                ) from e

        try:
            await library.uninstall()
        except Exception as e:
            raise LibraryTeardownError(
                f"Uninstalling '{name}' [{key}] failed: {e}",
                stage="uninstall",
                library=name,
                key=key,
                cause=e,
            ) from e

    async def shutdown_all(self) -> List[LibraryTeardownError]:
        """
        Tear down every cached instance, most recently loaded kinds first.

        Failures are logged and collected, never raised; failed instances
        stay cached.

        Returns:
            The teardown errors, one per instance that could not be unloaded.
        """
        failures: List[LibraryTeardownError] = []
        targets = [
            (name, key)
            for name in reversed(list(self._libraries))
            for key in reversed(list(self._libraries[name]))
        ]

        logger.info("Shutting down libraries", count=len(targets))

        for name, key in targets:
            try:
                await self.unload_instance(name, key)
            except LibraryNotFoundError:
                continue
            except LibraryTeardownError as e:
                logger.warning(
                    "Library teardown failed",
                    library=name,
                    key=key,
                    stage=e.stage,
                    error=str(e.cause),
                )
                failures.append(e)

        return failures

    def __repr__(self) -> str:
        return (
            f"LibraryManager(loaders={len(self._loaders)}, "
            f"loaded={len(self.loaded())})"
        )
