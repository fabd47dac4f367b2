"""
WEBCORE - Authentication Chain

Every protected request passes three ordered checks:

1. validator: the request carries a well-formed credential
2. authenticator: the credential resolves to a user in the auth store
3. authorizer: the user's permissions cover the request method and path

The first failure stops the chain with an ``AuthError`` (HTTP 401).
``AuthN`` is a library, registered as ``authn:<validator>``; it resolves
its store through the library manager once, at install time.
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import List, Optional

from fastapi import Request
from opentelemetry import trace

from config import AuthConfig
from core.errors import AuthError, LibraryContractError, WebcoreConfigError
from core.library import InstallParams, Library
from libraries.auth.store import AuthStore, User
from libraries.auth.validators import Credential, KeyValidator
from observability.logging import get_logger

logger = get_logger("webcore.libraries.auth")
tracer = trace.get_tracer(__name__)


def permission_matches(permission: str, method: str, path: str) -> bool:
    """Check a ``"<METHOD> <path glob>"`` permission against a request."""
    perm_method, _, perm_path = permission.strip().partition(" ")
    if not perm_path:
        return False
    if perm_method != "*" and perm_method.upper() != method.upper():
        return False
    return fnmatchcase(path, perm_path.strip())


class Authenticator:
    """Resolves a credential to a user."""

    def __init__(self, store: AuthStore):
        self.store = store

    async def check(self, credential: Credential) -> User:
        if credential.kind == "api_key":
            user = await self.store.find_by_api_key_hash(credential.value)
        elif credential.kind == "subject":
            user = await self.store.find_by_id(credential.value)
        else:
            raise AuthError(f"Unsupported credential kind: {credential.kind}", stage="authenticator")

        if user is None:
            raise AuthError("Unknown credential", stage="authenticator")
        return user


class Authorizer:
    """Checks a user's permissions against method and path."""

    def __init__(self, store: AuthStore):
        self.store = store

    async def check(self, user: User, method: str, path: str) -> None:
        permissions = await self.store.permissions_for(user)
        if not any(permission_matches(p, method, path) for p in permissions):
            raise AuthError(
                f"User {user.id} may not {method} {path}",
                stage="authorizer",
            )


class AuthN(Library):
    """
    Request authentication library and FastAPI dependency.

    Usage:
        authn = manager.require("authn:apikey", AuthN)
        user = await authn(request)
    """

    def __init__(self, validator: Optional[KeyValidator] = None):
        self.validator = validator
        self.config: Optional[AuthConfig] = None
        self.store: Optional[AuthStore] = None
        self.authenticator: Optional[Authenticator] = None
        self.authorizer: Optional[Authorizer] = None
        self.public_paths: List[str] = []

    async def install(self, params: InstallParams) -> None:
        config = params.config
        if not isinstance(config, AuthConfig):
            raise LibraryContractError(
                f"authn expects AuthConfig, got {type(config).__name__}",
                library="authn",
                offending_type=type(config),
            )
        if self.validator is None:
            raise WebcoreConfigError("Authentication needs a key validator", config_key="AUTH_TYPE")
        if config.type != self.validator.name:
            raise WebcoreConfigError(
                f"Auth type '{config.type}' does not match validator '{self.validator.name}'",
                config_key="AUTH_TYPE",
                actual_value=config.type,
            )
        if params.context is None:
            raise WebcoreConfigError("Authentication needs the application context to load its store")

        self.validator.configure(config)

        store_name = f"auth.store:{config.store}"
        store = await params.context.libraries.load_singleton(
            store_name,
            InstallParams(context=params.context, config=config),
        )
        if not isinstance(store, AuthStore):
            raise LibraryContractError(
                f"{store_name} is {type(store).__name__}, not an AuthStore",
                library=store_name,
                offending_type=type(store),
            )

        self.config = config
        self.store = store
        self.authenticator = Authenticator(store)
        self.authorizer = Authorizer(store)
        self.public_paths = list(config.public_paths)

        logger.info("Authentication installed", validator=self.validator.name, store=store_name)

    async def uninstall(self) -> None:
        # The store stays with the library manager.
        self.authenticator = None
        self.authorizer = None
        self.store = None

    def is_public(self, path: str) -> bool:
        return any(fnmatchcase(path, pattern) for pattern in self.public_paths)

    async def check(self, method: str, path: str, request: Request) -> User:
        """Run the chain; raise ``AuthError`` at the first failing step."""
        with tracer.start_as_current_span("auth.check") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.route", path)

            credential = self.validator.validate(request)
            user = await self.authenticator.check(credential)
            await self.authorizer.check(user, method, path)

            span.set_attribute("auth.user_id", user.id)
            return user

    async def __call__(self, request: Request) -> Optional[User]:
        path = request.url.path
        if self.is_public(path):
            return None

        try:
            user = await self.check(request.method, path, request)
        except AuthError as e:
            logger.warning("Request rejected", path=path, method=request.method, stage=e.stage, reason=e.message)
            raise

        request.state.user = user
        return user
