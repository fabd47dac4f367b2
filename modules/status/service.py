"""
Status service.

Builds the status report: every loaded library with its connection
health, cached for a short time when the Redis cache is loaded.
"""
from datetime import datetime, timezone
from typing import Any, Dict

from pydantic_settings import BaseSettings

from core.errors import LibraryNotFoundError
from modules.status.repository import StatusRepository


class StatusSettings(BaseSettings):
    """Bound from ``MODULE_STATUS_*`` environment variables."""

    cache_ttl: int = 10
    probe_connections: bool = True

    model_config = {"env_prefix": "MODULE_STATUS_"}


class StatusService:
    def __init__(self, repository: StatusRepository, settings: StatusSettings):
        self.repository = repository
        self.settings = settings

    async def report(self, refresh: bool = False) -> Dict[str, Any]:
        if not refresh:
            cached = await self.repository.cached_report()
            if cached is not None:
                return {**cached, "cached": True}

        libraries = self.repository.list_libraries()
        if self.settings.probe_connections:
            for entry in libraries:
                entry["health"] = await self.repository.probe(entry["name"], entry["key"])

        degraded = any(entry.get("health") == "down" for entry in libraries)
        report = {
            "status": "degraded" if degraded else "ok",
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "libraries": libraries,
        }
        await self.repository.store_report(report, self.settings.cache_ttl)
        return {**report, "cached": False}

    def library(self, name: str, key: str) -> Dict[str, Any]:
        for entry in self.repository.list_libraries():
            if entry["name"] == name and entry["key"] == key:
                return entry
        raise LibraryNotFoundError(
            f"Library '{name}' is not loaded under key '{key}'",
            library=name,
            key=key,
        )
