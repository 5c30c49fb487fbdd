"""Shared runtime plumbing: settings, database, redis and observability setup."""

from devkit.config import ServiceSettings, load_settings
from devkit.db import AsyncDatabaseManager, Base, is_transient_db_error, normalize_postgres_dsn
from devkit.observability import configure_logging, configure_otel, configure_probe_access_log_filter, start_span
from devkit.redis import AsyncRedisManager, create_redis_client

__all__ = [
    "AsyncDatabaseManager",
    "AsyncRedisManager",
    "Base",
    "ServiceSettings",
    "configure_logging",
    "configure_otel",
    "configure_probe_access_log_filter",
    "create_redis_client",
    "is_transient_db_error",
    "load_settings",
    "normalize_postgres_dsn",
    "start_span",
]
