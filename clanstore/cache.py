"""
Directory Cache - TTL-gated read-through cache of player memberships and clan names.

Provides low-latency clan lookups with features including:
- Fresh/Stale state driven only by elapsed time since the last rebuild attempt
- Single-flight protection: concurrent stale readers trigger one rebuild
- Snapshot swap: readers never observe a half-built projection
- Last-known-good retention when one projection read fails
- Typed rebuild errors for observability, never raised to lookup callers
"""

import asyncio
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional

from .core.logger import ComponentLogger
from .db import ConnectionPool
from .errors import CacheRebuildError, DBQueryError

DEFAULT_TTL = 300

PLAYER_CLAN_PROJECTION = "player_clan"
CLAN_NAMES_PROJECTION = "clan_names"

SELECT_MEMBERSHIPS = "SELECT username, clan FROM clan_users"
SELECT_CLAN_NAMES = "SELECT name FROM clans"

@dataclass
class CacheReloadReport:
    """Outcome of one rebuild attempt."""

    players: int = 0
    clans: int = 0
    duration_ms: float = 0.0
    errors: List[CacheRebuildError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

class DirectoryCache:
    """In-memory projections of clan_users and clans with a staleness threshold."""

    def __init__(
        self,
        pool: ConnectionPool,
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize an empty, stale cache.

        Args:
            pool: Connection pool used for rebuild reads
            ttl: Staleness threshold in seconds
            clock: Monotonic clock used for the staleness check
        """
        self.pool = pool
        self.ttl = ttl
        self._clock = clock

        self._player_clan: Mapping[str, str] = MappingProxyType({})
        self._clan_names: FrozenSet[str] = frozenset()
        self._last_reload: Optional[float] = None
        self._last_errors: List[CacheRebuildError] = []
        self._reload_lock = asyncio.Lock()

        self._metrics = {
            "hits": 0,
            "misses": 0,
            "reloads": 0,
            "reload_failures": 0,
        }
        self._logger = ComponentLogger("cache")

    # #################################################################################### #
    #                            Freshness
    # #################################################################################### #
    def is_stale(self) -> bool:
        """True when no rebuild was attempted yet or the last one is older than the TTL."""
        if self._last_reload is None:
            return True
        return self._clock() - self._last_reload > self.ttl

    def invalidate(self) -> None:
        """Force the next read to rebuild."""
        self._last_reload = None
        self._logger.debug("cache_invalidated")

    async def ensure_fresh(self) -> None:
        """Rebuild if stale. Concurrent callers collapse onto one rebuild."""
        if not self.is_stale():
            return
        async with self._reload_lock:
            if self.is_stale():
                await self._reload_locked()

    @property
    def last_errors(self) -> List[CacheRebuildError]:
        """Errors from the most recent rebuild attempt."""
        return list(self._last_errors)

    @property
    def is_degraded(self) -> bool:
        """True when the last rebuild could not refresh every projection."""
        return bool(self._last_errors)

    # #################################################################################### #
    #                            Lookups
    # #################################################################################### #
    async def get_cached_player_clan(self, player: str) -> Optional[str]:
        """
        Get the clan of a player, case-insensitively.

        Args:
            player: Player name

        Returns:
            Clan name, or None if the player is not in any known clan
        """
        await self.ensure_fresh()
        clan = self._player_clan.get(player.lower())
        if clan is None:
            self._metrics["misses"] += 1
        else:
            self._metrics["hits"] += 1
        return clan

    async def get_cached_clan_names(self) -> List[str]:
        """
        Get every known clan name.

        Returns:
            New sorted list; mutating it does not affect the cache
        """
        await self.ensure_fresh()
        return sorted(self._clan_names)

    async def get_player_clan_cache(self) -> Mapping[str, str]:
        """
        Get the whole player to clan projection.

        Returns:
            Read-only view of the current snapshot
        """
        await self.ensure_fresh()
        return self._player_clan

    # #################################################################################### #
    #                            Rebuild
    # #################################################################################### #
    async def reload_cache(self) -> CacheReloadReport:
        """
        Unconditionally rebuild both projections from the database.

        Waits for an in-flight rebuild to finish first; never raises for read
        failures, which are returned in the report.
        """
        async with self._reload_lock:
            return await self._reload_locked()

    async def _reload_locked(self) -> CacheReloadReport:
        start_time = time.perf_counter()
        report = CacheReloadReport()
        # a projection whose read fails keeps its previous snapshot
        player_clan = self._player_clan
        clan_names = self._clan_names

        try:
            rows = await self.pool.run_query(SELECT_MEMBERSHIPS, fetch_all=True)
            memberships: Dict[str, str] = {}
            for username, clan in rows or ():
                if username is None:
                    continue
                memberships[str(username).lower()] = clan
            player_clan = MappingProxyType(memberships)
        except DBQueryError as e:
            report.errors.append(CacheRebuildError(PLAYER_CLAN_PROJECTION, e))

        try:
            rows = await self.pool.run_query(SELECT_CLAN_NAMES, fetch_all=True)
            clan_names = frozenset(row[0] for row in rows or () if row[0] is not None)
        except DBQueryError as e:
            report.errors.append(CacheRebuildError(CLAN_NAMES_PROJECTION, e))

        # both projections are published together, with no await in between
        self._player_clan = player_clan
        self._clan_names = clan_names
        self._last_reload = self._clock()
        self._last_errors = list(report.errors)
        self._metrics["reloads"] += 1

        report.players = len(self._player_clan)
        report.clans = len(self._clan_names)
        report.duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        if report.ok:
            self._logger.info("cache_reloaded",
                players=report.players,
                clans=report.clans,
                duration_ms=report.duration_ms,
            )
        else:
            self._metrics["reload_failures"] += 1
            for error in report.errors:
                self._logger.error("cache_projection_reload_failed",
                    projection=error.projection,
                    error_type=type(error.cause).__name__,
                    error_msg=str(error.cause),
                )
        return report

    # #################################################################################### #
    #                            Observability
    # #################################################################################### #
    def get_metrics(self) -> Dict[str, object]:
        """
        Get cache counters and snapshot sizes.

        Returns:
            Dictionary of metrics
        """
        lookups = self._metrics["hits"] + self._metrics["misses"]
        age = None if self._last_reload is None else round(self._clock() - self._last_reload, 3)
        return {
            **self._metrics,
            "hit_rate": round(self._metrics["hits"] / lookups * 100, 2) if lookups else 0.0,
            "players": len(self._player_clan),
            "clans": len(self._clan_names),
            "age_seconds": age,
            "ttl_seconds": self.ttl,
            "stale": self.is_stale(),
            "degraded": self.is_degraded,
            "last_errors": [str(error) for error in self._last_errors],
        }
