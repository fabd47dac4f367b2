"""
WEBCORE - Application Context

Holds the configuration and the library manager and materializes the
configured shared libraries (database, cache, pub/sub, authentication)
as singletons at startup. Components that need libraries receive the
context explicitly; there is no process-global accessor.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Tuple

from core.errors import LibraryTeardownError, WebcoreConfigError
from core.library import InstallParams, Library
from core.manager import LibraryManager
from observability.logging import get_logger

if TYPE_CHECKING:
    from config import Config


logger = get_logger("webcore.core.context")


class AppContext:
    """
    Application-wide context shared by modules and libraries.

    Attributes:
        config: The global configuration
        libraries: The library manager for this process
        web: The web application object, when one is attached
    """

    def __init__(
        self,
        config: "Config",
        libraries: LibraryManager,
        web: Any = None,
    ):
        self.config = config
        self.libraries = libraries
        self.web = web
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    def planned_libraries(self) -> List[Tuple[str, Any]]:
        """
        List the singletons ``start`` will load, as ``(loader name, config)``.

        Order matters: the auth chain resolves its store through the
        manager, and modules expect the database before messaging.
        """
        planned: List[Tuple[str, Any]] = []
        config = self.config

        if config.database.enabled:
            planned.append((f"db:{config.database.driver}", config.database))
        if config.redis.enabled:
            planned.append(("cache:redis", config.redis))
        if config.pubsub.enabled:
            planned.append((f"pubsub:{config.pubsub.driver}", config.pubsub))
        if config.auth.enabled:
            planned.append((f"authn:{config.auth.type}", config.auth))

        return planned

    async def start(self) -> None:
        """
        Load every configured library as a singleton.

        All loaders are checked before anything is built. If a load fails
        the libraries loaded so far are shut down and the error propagates.

        Raises:
            WebcoreConfigError: A configured kind has no registered loader.
            LibraryError: A library failed to load.
        """
        planned = self.planned_libraries()

        missing = [name for name, _ in planned if self.libraries.get_loader(name) is None]
        if missing:
            raise WebcoreConfigError(
                f"No loader registered for configured libraries: {', '.join(missing)}",
                config_key=missing[0],
                suggestions=[f"Registered loaders: {', '.join(sorted(self.libraries.loaders))}"],
            )

        logger.info("Starting application context", libraries=[name for name, _ in planned])

        try:
            for name, section in planned:
                await self.libraries.load_singleton(
                    name,
                    InstallParams(context=self, config=section),
                )
        except Exception:
            logger.error("Application context failed to start, releasing libraries")
            await self.libraries.shutdown_all()
            raise

        self._started = True

    def library(self, name: str) -> Optional[Library]:
        """Return the loaded singleton for ``name``, or None."""
        return self.libraries.get_singleton(name)

    async def destroy(self) -> List[LibraryTeardownError]:
        """Shut down every library; failures are logged and returned."""
        failures = await self.libraries.shutdown_all()
        self._started = False
        if failures:
            logger.warning("Application context destroyed with failures", failures=len(failures))
        else:
            logger.info("Application context destroyed")
        return failures
