"""
WEBCORE - Bundled Libraries

Static registration surface for the library manager. Keys follow the
``"<kind>:<driver>"`` convention.

Usage:
    from libraries import default_loaders

    manager = LibraryManager(default_loaders())
"""
from typing import Dict

from core.library import LibraryLoader
from libraries.auth import ApiKeyValidator, AuthN, JwtValidator, YamlAuthStore
from libraries.kafka import KafkaConsumer, KafkaConsumerParams, KafkaProducer
from libraries.postgres import PostgresDatabase
from libraries.pubsub import RedisPubSub
from libraries.redis_cache import RedisCache


def default_loaders() -> Dict[str, LibraryLoader]:
    """Return a fresh mapping of every bundled library loader."""
    return {
        "db:postgres": LibraryLoader(PostgresDatabase),
        "cache:redis": LibraryLoader(RedisCache),
        "pubsub:redis": LibraryLoader(RedisPubSub),
        "kafka:producer": LibraryLoader(KafkaProducer),
        "kafka:consumer": LibraryLoader(KafkaConsumer, params_type=KafkaConsumerParams),
        "auth.store:yaml": LibraryLoader(YamlAuthStore),
        "authn:apikey": LibraryLoader(lambda: AuthN(ApiKeyValidator())),
        "authn:jwt": LibraryLoader(lambda: AuthN(JwtValidator())),
        # Add your library here
    }


__all__ = ["default_loaders"]
