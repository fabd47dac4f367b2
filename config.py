"""
WEBCORE - Configuration

Centralized configuration management for the application and its libraries.
Uses environment variables with sensible defaults.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from dotenv import load_dotenv
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsError

from core.errors import WebcoreConfigError

# Load environment variables from .env file
load_dotenv()

S = TypeVar("S", bound=BaseSettings)


class Environment(Enum):
    """Deployment environments."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


def _csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class DatabaseConfig:
    """Database configuration. The database is enabled when a host is set."""
    driver: str = field(default_factory=lambda: os.getenv("DB_DRIVER", "postgres"))
    host: str = field(default_factory=lambda: os.getenv("DB_HOST", ""))
    port: int = field(default_factory=lambda: int(os.getenv("DB_PORT", "5432")))
    user: str = field(default_factory=lambda: os.getenv("DB_USER", "webcore"))
    password: str = field(default_factory=lambda: os.getenv("DB_PASSWORD", ""))
    name: str = field(default_factory=lambda: os.getenv("DB_NAME", "webcore"))

    # Connection pool settings
    pool_size: int = field(default_factory=lambda: int(os.getenv("DB_POOL_SIZE", "10")))
    max_overflow: int = field(default_factory=lambda: int(os.getenv("DB_MAX_OVERFLOW", "20")))
    pool_timeout: int = field(default_factory=lambda: int(os.getenv("DB_POOL_TIMEOUT", "30")))
    echo: bool = field(default_factory=lambda: os.getenv("DB_ECHO", "false").lower() == "true")

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    @property
    def url(self) -> str:
        """Get SQLAlchemy async connection URL."""
        auth = f"{self.user}:{self.password}@" if self.password else f"{self.user}@"
        return f"postgresql+asyncpg://{auth}{self.host}:{self.port}/{self.name}"


@dataclass
class RedisConfig:
    """Redis cache configuration. The cache is enabled when a host is set."""
    host: str = field(default_factory=lambda: os.getenv("REDIS_HOST", ""))
    port: int = field(default_factory=lambda: int(os.getenv("REDIS_PORT", "6379")))
    password: str = field(default_factory=lambda: os.getenv("REDIS_PASSWORD", ""))
    db: int = field(default_factory=lambda: int(os.getenv("REDIS_DB", "0")))
    max_connections: int = field(default_factory=lambda: int(os.getenv("REDIS_MAX_CONNECTIONS", "10")))
    key_prefix: str = field(default_factory=lambda: os.getenv("REDIS_KEY_PREFIX", "webcore:"))
    default_ttl: int = field(default_factory=lambda: int(os.getenv("REDIS_DEFAULT_TTL", "300")))

    @property
    def enabled(self) -> bool:
        return bool(self.host)

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


@dataclass
class PubSubConfig:
    """
    Pub/sub configuration.

    Pub/sub runs over Redis Streams: the topic is a stream, the
    subscription a consumer group. Enabled when both are set.
    """
    driver: str = field(default_factory=lambda: os.getenv("PUBSUB_DRIVER", "redis"))
    url: str = field(default_factory=lambda: os.getenv("PUBSUB_URL", "redis://localhost:6379/0"))
    topic: str = field(default_factory=lambda: os.getenv("PUBSUB_TOPIC", ""))
    subscription: str = field(default_factory=lambda: os.getenv("PUBSUB_SUBSCRIPTION", ""))
    consumer_name: str = field(default_factory=lambda: os.getenv("PUBSUB_CONSUMER", ""))
    batch_size: int = field(default_factory=lambda: int(os.getenv("PUBSUB_BATCH_SIZE", "10")))
    block_timeout_ms: int = field(default_factory=lambda: int(os.getenv("PUBSUB_BLOCK_MS", "5000")))
    max_stream_length: int = field(default_factory=lambda: int(os.getenv("PUBSUB_MAX_LEN", "100000")))
    claim_min_idle_ms: int = field(default_factory=lambda: int(os.getenv("PUBSUB_CLAIM_IDLE_MS", "60000")))

    @property
    def enabled(self) -> bool:
        return bool(self.topic and self.subscription)


@dataclass
class KafkaConfig:
    """Kafka producer/consumer configuration."""
    bootstrap_servers: str = field(default_factory=lambda: os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"))
    topics: List[str] = field(default_factory=lambda: _csv(os.getenv("KAFKA_TOPICS", "")))
    group_id: str = field(default_factory=lambda: os.getenv("KAFKA_GROUP_ID", "webcore"))
    client_id: str = field(default_factory=lambda: os.getenv("KAFKA_CLIENT_ID", "webcore"))
    auto_offset_reset: str = field(default_factory=lambda: os.getenv("KAFKA_AUTO_OFFSET_RESET", "earliest"))
    max_batch_size: int = field(default_factory=lambda: int(os.getenv("KAFKA_MAX_BATCH_SIZE", "100")))
    poll_timeout_ms: int = field(default_factory=lambda: int(os.getenv("KAFKA_POLL_TIMEOUT_MS", "1000")))


@dataclass
class AuthConfig:
    """Authentication chain configuration."""
    enabled: bool = field(default_factory=lambda: os.getenv("AUTH_ENABLED", "false").lower() == "true")
    # Validator name: apikey or jwt
    type: str = field(default_factory=lambda: os.getenv("AUTH_TYPE", "apikey"))
    store: str = field(default_factory=lambda: os.getenv("AUTH_STORE", "yaml"))
    store_path: str = field(default_factory=lambda: os.getenv("AUTH_STORE_PATH", "./auth.yaml"))
    api_key_header: str = field(default_factory=lambda: os.getenv("AUTH_API_KEY_HEADER", "X-API-Key"))
    jwt_secret: str = field(default_factory=lambda: os.getenv("JWT_SECRET", ""))
    jwt_algorithm: str = field(default_factory=lambda: os.getenv("JWT_ALGORITHM", "HS256"))
    jwt_audience: str = field(default_factory=lambda: os.getenv("JWT_AUDIENCE", ""))
    public_paths: List[str] = field(
        default_factory=lambda: _csv(os.getenv("AUTH_PUBLIC_PATHS", "/health,/docs,/redoc,/openapi.json"))
    )


@dataclass
class APIConfig:
    """API server configuration."""
    host: str = field(default_factory=lambda: os.getenv("API_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("API_PORT", "8000")))
    workers: int = field(default_factory=lambda: int(os.getenv("API_WORKERS", "1")))
    reload: bool = field(default_factory=lambda: os.getenv("API_RELOAD", "false").lower() == "true")
    base_path: str = field(default_factory=lambda: os.getenv("API_BASE_PATH", "/api"))
    cors_origins: List[str] = field(default_factory=lambda: _csv(os.getenv("CORS_ORIGINS", "")))


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    json_format: bool = field(default_factory=lambda: os.getenv("LOG_FORMAT", "json").lower() == "json")


@dataclass
class ObservabilityConfig:
    """OpenTelemetry tracing configuration."""
    service_name: str = field(default_factory=lambda: os.getenv("OTEL_SERVICE_NAME", "webcore"))
    otlp_endpoint: str = field(
        default_factory=lambda: os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    )
    tracing_enabled: bool = field(
        default_factory=lambda: os.getenv("OTEL_TRACING_ENABLED", "true").lower() == "true"
    )
    sample_rate: float = field(default_factory=lambda: float(os.getenv("OTEL_SAMPLE_RATE", "1.0")))
    instrument_fastapi: bool = field(
        default_factory=lambda: os.getenv("OTEL_INSTRUMENT_FASTAPI", "true").lower() == "true"
    )


@dataclass
class Config:
    """Main configuration class combining all sub-configs."""
    env: Environment = field(default_factory=lambda: Environment(os.getenv("ENVIRONMENT", "development")))
    debug: bool = field(default_factory=lambda: os.getenv("DEBUG", "false").lower() == "true")
    # Bound on library construction and disconnect, in seconds; 0 disables it
    library_timeout: float = field(default_factory=lambda: float(os.getenv("LIBRARY_TIMEOUT", "30")))

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    pubsub: PubSubConfig = field(default_factory=PubSubConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.env == Environment.DEVELOPMENT

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary (excluding sensitive values)."""
        return {
            "env": self.env.value,
            "debug": self.debug,
            "library_timeout": self.library_timeout,
            "database": {
                "enabled": self.database.enabled,
                "driver": self.database.driver,
                "host": self.database.host,
                "port": self.database.port,
                "name": self.database.name,
            },
            "redis": {
                "enabled": self.redis.enabled,
                "host": self.redis.host,
                "port": self.redis.port,
                "db": self.redis.db,
            },
            "pubsub": {
                "enabled": self.pubsub.enabled,
                "driver": self.pubsub.driver,
                "topic": self.pubsub.topic,
                "subscription": self.pubsub.subscription,
            },
            "kafka": {
                "bootstrap_servers": self.kafka.bootstrap_servers,
                "topics": self.kafka.topics,
                "group_id": self.kafka.group_id,
            },
            "auth": {
                "enabled": self.auth.enabled,
                "type": self.auth.type,
                "store": self.auth.store,
            },
            "api": {
                "host": self.api.host,
                "port": self.api.port,
                "base_path": self.api.base_path,
            },
        }


def module_env_prefix(module_name: str) -> str:
    """Environment prefix of a module's settings: ``MODULE_<NAME>_``."""
    return f"MODULE_{module_name.upper().replace('-', '_').replace('.', '_')}_"


def load_module_config(module_name: str, config_cls: Type[S]) -> S:
    """
    Bind a module's settings class from the environment.

    Each field is read from ``MODULE_<NAME>_<FIELD>`` and validated by
    pydantic against the field's annotation. Fields without a variable
    keep their default.

    Example:
        >>> class StatusSettings(BaseSettings):
        ...     cache_ttl: int = 10
        >>> load_module_config("status", StatusSettings)  # MODULE_STATUS_CACHE_TTL
    """
    if not (isinstance(config_cls, type) and issubclass(config_cls, BaseSettings)):
        raise WebcoreConfigError(
            f"Module config for '{module_name}' must be a BaseSettings subclass",
            config_key=module_name,
            expected_type=BaseSettings,
            actual_value=config_cls,
        )

    prefix = module_env_prefix(module_name)
    try:
        return config_cls(_env_prefix=prefix)
    except ValidationError as e:
        first = e.errors()[0]
        field_name = str(first["loc"][0]) if first.get("loc") else ""
        env_key = prefix + field_name.upper()
        raise WebcoreConfigError(
            f"Invalid value for {env_key}: {first['msg']}",
            config_key=env_key,
            actual_value=os.getenv(env_key),
            cause=e,
        ) from e
    except SettingsError as e:
        raise WebcoreConfigError(
            f"Invalid settings for module '{module_name}': {e}",
            config_key=prefix,
            cause=e,
        ) from e


# Singleton configuration instance for entry points
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create configuration singleton."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """Reload configuration from environment."""
    global _config
    load_dotenv(override=True)
    _config = Config()
    return _config
