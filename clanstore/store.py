"""
Clan Store - Lifecycle owner for the pool, schema, legacy migration and directory cache.

Startup order: pool ready -> schema ensured -> optional legacy migration ->
cache warmed. Teardown drains the pool. Both are explicit; nothing here lives
at module scope.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from . import config
from .cache import DEFAULT_TTL, CacheReloadReport, DirectoryCache
from .core.logger import ComponentLogger
from .db import ConnectionPool, PoolSettings
from .legacy import CLANS_SECTION, YamlDocumentStore
from .migration import LegacyMigrator, MigrationReport
from .schema import ensure_schema

_logger = ComponentLogger("store")

@dataclass
class StartupReport:
    """What happened during start()."""

    tables: List[str] = field(default_factory=list)
    migration: Optional[MigrationReport] = None
    cache: Optional[CacheReloadReport] = None

class ClanStore:
    """Persistence and caching layer for the clan directory."""

    def __init__(
        self,
        settings: PoolSettings,
        legacy_path: Optional[str] = None,
        cache_ttl: float = DEFAULT_TTL,
    ):
        """
        Build the components without touching the database.

        Args:
            settings: Connection parameters and pool limits
            legacy_path: YAML data file to migrate from, or None to skip migration
            cache_ttl: Directory cache staleness threshold in seconds
        """
        self.pool = ConnectionPool(settings)
        self.cache = DirectoryCache(self.pool, ttl=cache_ttl)
        self.migrator = LegacyMigrator(self.pool)
        self.legacy_path = legacy_path
        self._started = False

    @classmethod
    def from_config(cls) -> "ClanStore":
        """Build a store from the environment configuration."""
        return cls(
            PoolSettings.from_config(),
            legacy_path=config.get_legacy_data_file(),
            cache_ttl=config.get_cache_ttl(),
        )

    async def start(self) -> StartupReport:
        """
        Bring the store up.

        Returns:
            StartupReport with provisioned tables, migration outcome and initial cache load

        Raises:
            DBQueryError: If the pool cannot be opened
            SchemaError: If a table cannot be provisioned
            LegacyDocumentError: If the legacy file cannot be read or saved
        """
        report = StartupReport()
        try:
            await self.pool.start()
            report.tables = await ensure_schema(self.pool)

            if self.legacy_path:
                store = YamlDocumentStore.load(self.legacy_path)
                if store.has_section(CLANS_SECTION):
                    report.migration = await self.migrator.migrate_and_clear(store)
                    self.cache.invalidate()

            report.cache = await self.cache.reload_cache()
        except BaseException:
            _logger.critical("store_startup_failed")
            await self.pool.shutdown()
            raise

        self._started = True
        _logger.info("store_started",
            tables=len(report.tables),
            migrated=report.migration is not None,
            migration_ok=report.migration.ok if report.migration else None,
            cache_ok=report.cache.ok,
        )
        return report

    async def close(self) -> None:
        """Drain the pool. Safe to call more than once."""
        if self.pool.closed:
            return
        await self.pool.shutdown()
        _logger.info("store_closed")

    async def __aenter__(self) -> "ClanStore":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # #################################################################################### #
    #                            Consumer API
    # #################################################################################### #
    async def get_cached_player_clan(self, player: str) -> Optional[str]:
        return await self.cache.get_cached_player_clan(player)

    async def get_cached_clan_names(self) -> List[str]:
        return await self.cache.get_cached_clan_names()

    async def get_player_clan_cache(self) -> Mapping[str, str]:
        return await self.cache.get_player_clan_cache()

    async def reload_cache(self) -> CacheReloadReport:
        return await self.cache.reload_cache()

    def health_check(self) -> Dict[str, Any]:
        """
        Summarize pool and cache state.

        Returns:
            Dictionary with an overall status and component metrics
        """
        pool_metrics = self.pool.get_performance_metrics()
        cache_metrics = self.cache.get_metrics()

        if not self._started or pool_metrics["closed"]:
            status = "down"
        elif pool_metrics["circuit_breaker_state"] == "OPEN" or cache_metrics["degraded"]:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "database": pool_metrics,
            "cache": cache_metrics,
        }
