"""Status repository: reads registry state and the optional report cache."""
import logging
from typing import Any, Dict, List, Optional

from core.library import is_connector
from core.manager import LibraryManager
from libraries.redis_cache import RedisCache

logger = logging.getLogger("webcore.modules.status.repository")

REPORT_CACHE_KEY = "status:report"


class StatusRepository:
    def __init__(self, libraries: LibraryManager, cache: Optional[RedisCache] = None):
        self.libraries = libraries
        self.cache = cache

    def list_libraries(self) -> List[Dict[str, Any]]:
        entries = []
        for name, key in self.libraries.loaded():
            library = self.libraries.get_instance(name, key)
            if library is None:
                continue
            entries.append({
                "name": name,
                "key": key,
                "type": type(library).__name__,
                "connector": is_connector(library),
            })
        return entries

    async def probe(self, name: str, key: str) -> str:
        """Ping a connector that supports it: ``up``, ``down`` or ``n/a``."""
        library = self.libraries.get_instance(name, key)
        ping = getattr(library, "ping", None)
        if library is None or not is_connector(library) or ping is None:
            return "n/a"
        try:
            return "up" if await ping() else "down"
        except Exception as e:
            logger.warning(f"Health probe for {name}[{key}] failed: {e}")
            return "down"

    async def cached_report(self) -> Optional[Dict[str, Any]]:
        if self.cache is None:
            return None
        return await self.cache.get(REPORT_CACHE_KEY)

    async def store_report(self, report: Dict[str, Any], ttl: int) -> None:
        if self.cache is not None and ttl > 0:
            await self.cache.set(REPORT_CACHE_KEY, report, ttl=ttl)
