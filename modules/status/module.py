"""Status module wiring."""
from typing import Optional

from fastapi import APIRouter

from config import load_module_config
from core.context import AppContext
from core.module import Module
from libraries.redis_cache import RedisCache
from modules.status.handler import StatusHandler
from modules.status.repository import StatusRepository
from modules.status.service import StatusService, StatusSettings


class StatusModule(Module):
    """Reports loaded libraries and their connection health."""

    name = "status"
    version = "1.0.0"

    def __init__(self):
        self.handler = StatusHandler()
        self.settings: Optional[StatusSettings] = None

    async def init(self, context: AppContext) -> None:
        self.settings = load_module_config(self.name, StatusSettings)

        # The cache is optional; without it every report is rebuilt.
        cache = context.libraries.get_singleton("cache:redis")
        if not isinstance(cache, RedisCache):
            cache = None

        repository = StatusRepository(context.libraries, cache)
        self.handler.service = StatusService(repository, self.settings)

    def router(self) -> Optional[APIRouter]:
        return self.handler.router()

    async def destroy(self) -> None:
        self.handler.service = None
