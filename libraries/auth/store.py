"""
WEBCORE - Auth Stores

An auth store resolves identities and their permissions. The YAML store,
registered as ``auth.store:yaml``, reads users and roles from a file:

    roles:
      admin: ["* /**"]
      reader: ["GET /api/**"]
    users:
      - id: alice
        name: Alice
        api_key_hash: 9f86d081...   # or api_key: <plain key>
        roles: [admin]

A permission is ``"<METHOD> <path glob>"``; ``*`` as method matches any.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import yaml

from config import AuthConfig
from core.errors import LibraryContractError, WebcoreConfigError
from core.library import InstallParams, Library
from libraries.auth.validators import hash_api_key

logger = logging.getLogger("webcore.libraries.auth.store")


@dataclass
class User:
    """Authenticated user representation."""

    id: str
    name: Optional[str] = None
    roles: Set[str] = field(default_factory=set)
    metadata: Dict[str, Any] = field(default_factory=dict)
    authenticated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def has_role(self, role: str) -> bool:
        return role in self.roles


class AuthStore(Library):
    """Identity and permission source for the authentication chain."""

    @abstractmethod
    async def find_by_api_key_hash(self, key_hash: str) -> Optional[User]:
        ...

    @abstractmethod
    async def find_by_id(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def permissions_for(self, user: User) -> List[str]:
        ...


class YamlAuthStore(AuthStore):
    """Auth store backed by a YAML file read at install time."""

    def __init__(self):
        self.path: Optional[Path] = None
        self._users: Dict[str, User] = {}
        self._by_key_hash: Dict[str, str] = {}
        self._roles: Dict[str, List[str]] = {}

    async def install(self, params: InstallParams) -> None:
        if not isinstance(params.config, AuthConfig):
            raise LibraryContractError(
                f"auth.store:yaml expects AuthConfig, got {type(params.config).__name__}",
                library="auth.store:yaml",
                offending_type=type(params.config),
            )

        self.path = Path(params.config.store_path)
        if not self.path.is_file():
            raise WebcoreConfigError(
                f"Auth store file not found: {self.path}",
                config_key="AUTH_STORE_PATH",
                actual_value=str(self.path),
            )

        with open(self.path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        self.load(data)
        logger.info(f"Loaded {len(self._users)} users and {len(self._roles)} roles from {self.path}")

    def load(self, data: Dict[str, Any]) -> None:
        """Replace the store contents from a parsed document."""
        if not isinstance(data, dict):
            raise WebcoreConfigError("Auth store document must be a mapping", config_key="AUTH_STORE_PATH")

        roles = data.get("roles") or {}
        self._roles = {str(name): [str(p) for p in perms or []] for name, perms in roles.items()}

        self._users = {}
        self._by_key_hash = {}
        for entry in data.get("users") or []:
            if "id" not in entry:
                raise WebcoreConfigError(f"Auth store user without id: {entry!r}", config_key="users")

            user = User(
                id=str(entry["id"]),
                name=entry.get("name"),
                roles=set(entry.get("roles") or []),
                metadata=dict(entry.get("metadata") or {}),
            )
            unknown = user.roles - set(self._roles)
            if unknown:
                logger.warning(f"User {user.id} references unknown roles: {sorted(unknown)}")

            self._users[user.id] = user

            key_hash = entry.get("api_key_hash")
            if not key_hash and entry.get("api_key"):
                key_hash = hash_api_key(str(entry["api_key"]))
            if key_hash:
                self._by_key_hash[str(key_hash)] = user.id

    async def uninstall(self) -> None:
        self._users.clear()
        self._by_key_hash.clear()
        self._roles.clear()

    async def find_by_api_key_hash(self, key_hash: str) -> Optional[User]:
        user_id = self._by_key_hash.get(key_hash)
        return self._users.get(user_id) if user_id else None

    async def find_by_id(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def permissions_for(self, user: User) -> List[str]:
        permissions: List[str] = []
        for role in sorted(user.roles):
            permissions.extend(self._roles.get(role, []))
        return permissions
