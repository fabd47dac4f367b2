"""
WEBCORE - Modules

A module is a self-contained feature unit. During ``init`` it resolves
the libraries it needs from the context, wires its handler, service and
repository layers, and exposes an HTTP router.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Iterable, List, Optional, Sequence

from core.errors import WebcoreConfigError

if TYPE_CHECKING:
    from fastapi import APIRouter

    from core.context import AppContext


logger = logging.getLogger("webcore.core.module")


class Module(ABC):
    """Base class for application modules."""

    name: str = ""
    version: str = "0.1.0"

    @abstractmethod
    async def init(self, context: "AppContext") -> None:
        """Resolve libraries and build the module's layers."""
        ...

    def router(self) -> Optional["APIRouter"]:
        """Routes mounted under the API base path, if any."""
        return None

    async def destroy(self) -> None:
        """Release module resources. Libraries are owned by the manager."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, version={self.version!r})"


def check_unique(
    kind: str,
    items: Iterable[Any],
    key: Callable[[Any], str] = lambda item: item.name,
) -> None:
    """
    Reject duplicate registrations.

    Raises:
        WebcoreConfigError: Two items share the same key.
    """
    seen = set()
    for item in items:
        name = key(item)
        if not name:
            raise WebcoreConfigError(f"{kind} {item!r} has no name", config_key=kind)
        if name in seen:
            raise WebcoreConfigError(
                f"{kind} '{name}' is registered more than once",
                config_key=kind,
                actual_value=name,
            )
        seen.add(name)


async def init_modules(modules: Sequence[Module], context: "AppContext") -> None:
    """
    Initialize modules in order.

    If one fails, the modules already initialized are destroyed in reverse
    order before the error propagates.
    """
    check_unique("Module", modules)

    done: List[Module] = []
    for module in modules:
        try:
            await module.init(context)
        except Exception:
            logger.error(f"Module '{module.name}' failed to initialize")
            await destroy_modules(done)
            raise
        done.append(module)
        logger.info(f"Initialized module: {module.name} ({module.version})")


async def destroy_modules(modules: Sequence[Module]) -> List[Exception]:
    """Destroy modules in reverse order, logging and collecting failures."""
    failures: List[Exception] = []
    for module in reversed(modules):
        try:
            await module.destroy()
        except Exception as e:
            logger.warning(f"Module shutdown error ({module.name}): {e}")
            failures.append(e)
    return failures
