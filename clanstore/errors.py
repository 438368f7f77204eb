"""
Error taxonomy for the clan store.

Pool and schema errors propagate to the caller. Migration and cache errors
are collected as values in their reports and never raised to lookup callers.
"""

from typing import Optional

class ClanStoreError(Exception):
    """Base class for every error raised by clanstore."""
    pass

class DBQueryError(ClanStoreError):
    """
    Custom exception for database query errors.
    """
    pass

class PoolExhausted(DBQueryError):
    """No connection became available within the acquire timeout."""

    def __init__(self, timeout: float, max_size: int):
        super().__init__(
            f"No database connection available within {timeout}s (pool max size {max_size})"
        )
        self.timeout = timeout
        self.max_size = max_size

class SchemaError(ClanStoreError):
    """DDL failure while provisioning a table. Fatal for startup."""

    def __init__(self, table: str, cause: BaseException):
        super().__init__(f"Failed to provision table '{table}': {type(cause).__name__}")
        self.table = table
        self.cause = cause

class MigrationRowError(ClanStoreError):
    """A single clan or membership upsert failed during legacy migration."""

    def __init__(self, clan: str, cause: BaseException, user: Optional[str] = None):
        target = f"{clan}/{user}" if user is not None else clan
        super().__init__(f"Failed to migrate '{target}': {cause}")
        self.clan = clan
        self.user = user
        self.cause = cause

class CacheRebuildError(ClanStoreError):
    """One projection could not be read while rebuilding the directory cache."""

    def __init__(self, projection: str, cause: BaseException):
        super().__init__(f"Failed to rebuild '{projection}' projection: {cause}")
        self.projection = projection
        self.cause = cause

class LegacyDocumentError(ClanStoreError):
    """The legacy YAML document could not be read or written."""
    pass

__all__ = [
    "ClanStoreError",
    "DBQueryError",
    "PoolExhausted",
    "SchemaError",
    "MigrationRowError",
    "CacheRebuildError",
    "LegacyDocumentError",
]
