"""
WEBCORE - Core

The library registry and the contracts it manages:
- Library / Connector / LibraryLoader contracts
- LibraryManager lifecycle registry
- AppContext and the Module convention
- Unified error hierarchy

Usage:
    from core import AppContext, LibraryManager

    manager = LibraryManager(default_loaders(), timeout=30)
    context = AppContext(config, manager)
    await context.start()
"""

from core.errors import (
    ApiErrorCode,
    AuthError,
    ErrorContext,
    ErrorSeverity,
    LibraryContractError,
    LibraryError,
    LibraryLoadError,
    LibraryNotFoundError,
    LibraryTeardownError,
    WebcoreConfigError,
    WebcoreDatabaseError,
    WebcoreError,
)
from core.library import (
    Connector,
    InstallParams,
    Library,
    LibraryLoader,
    is_connector,
)
from core.manager import DEFAULT_KEY, LibraryManager
from core.context import AppContext
from core.module import Module, check_unique, destroy_modules, init_modules

__all__ = [
    # Errors
    "ApiErrorCode",
    "AuthError",
    "ErrorContext",
    "ErrorSeverity",
    "LibraryContractError",
    "LibraryError",
    "LibraryLoadError",
    "LibraryNotFoundError",
    "LibraryTeardownError",
    "WebcoreConfigError",
    "WebcoreDatabaseError",
    "WebcoreError",
    # Contracts
    "Connector",
    "InstallParams",
    "Library",
    "LibraryLoader",
    "is_connector",
    # Registry
    "DEFAULT_KEY",
    "LibraryManager",
    # Application
    "AppContext",
    "Module",
    "check_unique",
    "init_modules",
    "destroy_modules",
]
