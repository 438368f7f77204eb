"""
clanstore - Persistence and caching layer for a clan directory.

Owns the relational clan schema, migrates legacy YAML clan records into it,
and serves player -> clan and clan name lookups from a TTL-gated cache.
"""

__version__ = "1.0.0"

from .cache import CacheReloadReport, DirectoryCache
from .db import ConnectionPool, PoolSettings
from .errors import (
    CacheRebuildError,
    ClanStoreError,
    DBQueryError,
    LegacyDocumentError,
    MigrationRowError,
    PoolExhausted,
    SchemaError,
)
from .migration import LegacyMigrator, MigrationReport
from .schema import ensure_schema
from .store import ClanStore, StartupReport

__all__ = [
    "ClanStore",
    "StartupReport",
    "ConnectionPool",
    "PoolSettings",
    "DirectoryCache",
    "CacheReloadReport",
    "LegacyMigrator",
    "MigrationReport",
    "ensure_schema",
    "ClanStoreError",
    "DBQueryError",
    "PoolExhausted",
    "SchemaError",
    "MigrationRowError",
    "CacheRebuildError",
    "LegacyDocumentError",
]
