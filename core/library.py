"""
WEBCORE - Library and Loader Contracts

A library is any pluggable component with an install/uninstall lifecycle.
Libraries that own an external connection also implement ``Connector``.
A ``LibraryLoader`` is a named factory that builds, installs and connects
one kind of library from a typed parameter object.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional, Type

from core.errors import LibraryContractError

if TYPE_CHECKING:
    from core.context import AppContext


logger = logging.getLogger("webcore.core.library")


class Library(ABC):
    """Base class for every component managed by the library registry."""

    @abstractmethod
    async def install(self, params: "InstallParams") -> None:
        """Prepare the library from its parameters. Must not open connections."""

    @abstractmethod
    async def uninstall(self) -> None:
        """Release everything acquired in ``install``."""


class Connector(ABC):
    """Capability for libraries that hold an external connection."""

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        ...


def is_connector(library: Any) -> bool:
    """Return True if the library carries the connect/disconnect legs."""
    return isinstance(library, Connector)


@dataclass
class InstallParams:
    """
    Construction parameters handed to ``Library.install``.

    ``context`` is the application context, ``config`` the configuration
    section for the library kind. Library kinds that need more inputs
    subclass this with typed fields.
    """

    context: Optional["AppContext"] = None
    config: Any = None


LibraryFactory = Callable[[], Library]


class LibraryLoader:
    """
    Named factory for one kind of library.

    The name is bound by the registry at registration time so that a
    loader is self-describing afterwards.
    """

    def __init__(
        self,
        factory: LibraryFactory,
        params_type: Type[InstallParams] = InstallParams,
        name: Optional[str] = None,
    ):
        self.factory = factory
        self.params_type = params_type
        self._name = name or ""

    def set_name(self, name: str) -> None:
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    async def init(self, params: Optional[InstallParams] = None) -> Library:
        """
        Build a ready-to-use library.

        Runs the factory, then ``install`` and, for connectors, ``connect``.
        If ``connect`` fails the half-built instance is uninstalled before
        the error propagates.

        Raises:
            LibraryContractError: If params are of the wrong type or the
                factory produced something that is not a Library.
        """
        params = self._check_params(params)

        library = self.factory()
        if not isinstance(library, Library):
            raise LibraryContractError(
                f"Loader '{self.name}' produced {type(library).__name__}, "
                f"which does not implement Library",
                library=self.name,
                offending_type=type(library),
            )

        await library.install(params)

        if is_connector(library):
            try:
                await library.connect()
            except BaseException:
                await self._rollback(library)
                raise

        return library

    def _check_params(self, params: Optional[InstallParams]) -> InstallParams:
        if params is None:
            return self.params_type()
        if not isinstance(params, self.params_type):
            raise LibraryContractError(
                f"Loader '{self.name}' expects {self.params_type.__name__}, "
                f"got {type(params).__name__}",
                library=self.name,
                offending_type=type(params),
            )
        return params

    async def _rollback(self, library: Library) -> None:
        try:
            await library.uninstall()
        except Exception as e:
            logger.warning(
                f"Uninstall after failed connect of '{self.name}' also failed: {e}"
            )

    def __repr__(self) -> str:
        return f"LibraryLoader(name={self.name!r}, params={self.params_type.__name__})"
