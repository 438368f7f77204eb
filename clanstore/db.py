"""
Database Module - Async MySQL/MariaDB connection pool for the clan store.

Provides async database operations with:
- Native async connection pooling via asyncmy (bounded size, idle recycling)
- Acquire timeout surfaced as PoolExhausted
- Maximum connection lifetime and retirement of broken connections
- Ping validation of idle connections before reuse
- Circuit breaker pattern for fault tolerance
- Query metrics and slow query detection
- Security-focused query logging (no sensitive data exposure)

API Overview:
- ConnectionPool.start(): create the asyncmy pool and its minimum connections
- ConnectionPool.acquire(): borrow one connection for a unit of work
- ConnectionPool.run_query(): execute a single statement on a borrowed connection
- ConnectionPool.execute(): execute a statement on a connection the caller holds
- ConnectionPool.shutdown(): drain and close everything, idempotent
"""

import asyncio
import contextlib
import re
import time
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Optional

from asyncmy import pool  # type: ignore
from asyncmy.errors import (  # type: ignore
    Error as AsyncMyError,
    DataError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
)

from . import config
from .core.logger import ComponentLogger
from .errors import DBQueryError, PoolExhausted

_logger = ComponentLogger("database")

CONNECTION_ERRORS = (OperationalError, InterfaceError)

def _is_connection_error(error: Optional[BaseException]) -> bool:
    while error is not None:
        if isinstance(error, CONNECTION_ERRORS):
            return True
        error = error.__cause__
    return False

# #################################################################################### #
#                            Pool Settings
# #################################################################################### #
@dataclass(frozen=True)
class PoolSettings:
    """Connection parameters and pool limits."""

    host: str
    port: int
    database: str
    user: str
    password: str
    max_size: int = 10
    min_idle: int = 2
    acquire_timeout: float = 10.0
    idle_timeout: float = 600.0
    max_lifetime: float = 1800.0
    validate_after_idle: float = 0.5
    circuit_breaker_threshold: int = 5
    charset: str = "utf8mb4"
    autocommit: bool = True
    echo: bool = False

    def __post_init__(self):
        if self.max_size < 1:
            raise ValueError("max_size must be at least 1")
        if not 0 <= self.min_idle <= self.max_size:
            raise ValueError("min_idle must be between 0 and max_size")

    @classmethod
    def from_config(cls) -> "PoolSettings":
        """Build settings from the environment configuration."""
        return cls(
            host=config.get_db_host(),
            port=config.get_db_port(),
            database=config.get_db_name(),
            user=config.get_db_user(),
            password=config.get_db_password(),
            max_size=config.get_db_pool_size(),
            min_idle=config.get_db_pool_min_idle(),
            acquire_timeout=float(config.get_db_timeout()),
            idle_timeout=float(config.get_db_idle_timeout()),
            max_lifetime=float(config.get_db_max_lifetime()),
            circuit_breaker_threshold=config.get_db_circuit_breaker_threshold(),
            echo=config.get_debug(),
        )

    @property
    def dsn(self) -> str:
        """Connection string without the password, safe for logs."""
        return f"mariadb://{self.user}@{self.host}:{self.port}/{self.database}"

# #################################################################################### #
#                            Query Logging Utilities
# #################################################################################### #
def _redact_query(query: str, limit: int) -> str:
    safe_query = " ".join(query.split())
    safe_query = re.sub(r"VALUES\s*\([^)]+\)", "VALUES(...)", safe_query)
    safe_query = re.sub(r"'[^']*'", "'?'", safe_query)
    return safe_query[:limit] + "..." if len(safe_query) > limit else safe_query

def safe_log_query(query: str, params: tuple):
    """Log a statement preview and parameter count, never parameter values."""
    _logger.debug("query_executing",
        param_count=len(params) if params else 0,
        query_preview=_redact_query(query, 100)
    )

def safe_log_error(error: Exception, query: str):
    """Log a failed statement by error type and redacted preview."""
    _logger.error("query_failed",
        error_type=type(error).__name__,
        query_preview=_redact_query(query, 50)
    )

# #################################################################################### #
#                            Circuit Breaker Pattern
# #################################################################################### #
class CircuitBreaker:
    """Fails queries fast after repeated connection-class errors."""

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self._clock = clock
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.state = "CLOSED"

    def is_open(self) -> bool:
        """True while OPEN; moves to HALF_OPEN once the timeout has passed."""
        if self.state == "OPEN" and self._clock() - self.opened_at >= self.timeout:
            self.state = "HALF_OPEN"
            _logger.info("circuit_breaker_half_open")
        return self.state == "OPEN"

    def record_success(self):
        if self.state != "CLOSED":
            _logger.info("circuit_breaker_closed", reason="db_recovered")
        self.failure_count = 0
        self.state = "CLOSED"

    def record_failure(self):
        self.failure_count += 1
        if self.state == "HALF_OPEN" or (
            self.state == "CLOSED" and self.failure_count >= self.failure_threshold
        ):
            self.state = "OPEN"
            self.opened_at = self._clock()
            _logger.warning("circuit_breaker_open",
                failure_count=self.failure_count,
                reason="db_temporarily_unavailable"
            )

# #################################################################################### #
#                            Connection Pool
# #################################################################################### #
class ConnectionPool:
    """asyncmy pool with bounded acquire wait, connection lifetime and query execution."""

    def __init__(self, settings: PoolSettings, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the pool without opening any connection.

        Args:
            settings: Connection parameters and pool limits
            clock: Monotonic clock used for connection lifetime accounting
        """
        self.settings = settings
        self._clock = clock
        self._pool: Optional[pool.Pool] = None
        self._closed = False
        self._born: "weakref.WeakKeyDictionary[Any, float]" = weakref.WeakKeyDictionary()

        self.circuit_breaker = CircuitBreaker(settings.circuit_breaker_threshold)
        self.active_connections = 0
        self.waiting_queue = 0
        self.total_retired = 0
        self.exhausted_count = 0
        self.query_metrics: dict = {}
        self.slow_query_threshold = 0.1

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def size(self) -> int:
        """Open connections, idle and borrowed."""
        return self._pool.size if self._pool else 0

    @property
    def idle_count(self) -> int:
        return self._pool.freesize if self._pool else 0

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def start(self) -> None:
        """
        Create the asyncmy pool and open its minimum connections.

        Raises:
            DBQueryError: If the database cannot be reached
        """
        if self._closed:
            raise DBQueryError("Connection pool is closed")
        if self._pool is not None:
            return

        try:
            self._pool = await pool.create_pool(
                user=self.settings.user,
                password=self.settings.password,
                host=self.settings.host,
                port=self.settings.port,
                db=self.settings.database,
                minsize=self.settings.min_idle,
                maxsize=self.settings.max_size,
                connect_timeout=self.settings.acquire_timeout,
                pool_recycle=int(self.settings.idle_timeout),
                echo=self.settings.echo,
                charset=self.settings.charset,
                autocommit=self.settings.autocommit,
            )
        except (AsyncMyError, OSError) as e:
            self._log_connect_failure(e)
            raise DBQueryError(f"Cannot connect to database: {type(e).__name__}") from e

        _logger.info("pool_initialized",
            dsn=self.settings.dsn,
            max_size=self.settings.max_size,
            min_idle=self.settings.min_idle,
            timeout=self.settings.acquire_timeout,
        )

    async def shutdown(self) -> None:
        """
        Close the pool and all connections. A second call is a no-op.

        Borrowed connections are closed when released; after acquire_timeout
        the remaining ones are terminated.
        """
        if self._closed:
            return
        self._closed = True
        if self._pool is None:
            return

        self._pool.close()
        try:
            await asyncio.wait_for(
                self._pool.wait_closed(), timeout=self.settings.acquire_timeout
            )
        except asyncio.TimeoutError:
            _logger.warning("pool_drain_timeout",
                still_borrowed=self._pool.size,
                timeout=self.settings.acquire_timeout,
            )
            self._pool.terminate()

        _logger.info("pool_closed", retired=self.total_retired)

    async def __aenter__(self) -> "ConnectionPool":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------ #
    # Acquire / release
    # ------------------------------------------------------------------ #
    @contextlib.asynccontextmanager
    async def acquire(self):
        """
        Borrow a connection for a single unit of work.

        Yields:
            Async driver connection

        Raises:
            PoolExhausted: If no connection is available within the acquire timeout
            DBQueryError: If the pool is closed or a new connection cannot be opened
        """
        if self._closed or self._pool is None:
            raise DBQueryError("Connection pool is closed")

        self.waiting_queue += 1
        try:
            conn = await asyncio.wait_for(
                self._checkout(), timeout=self.settings.acquire_timeout
            )
        except asyncio.TimeoutError:
            self.exhausted_count += 1
            _logger.warning("pool_exhausted",
                waiting=self.waiting_queue - 1,
                active=self.active_connections,
                max_size=self.settings.max_size,
                timeout=self.settings.acquire_timeout,
            )
            raise PoolExhausted(self.settings.acquire_timeout, self.settings.max_size)
        except (AsyncMyError, OSError) as e:
            self._log_connect_failure(e)
            raise DBQueryError(f"Cannot connect to database: {type(e).__name__}") from e
        finally:
            self.waiting_queue -= 1

        broken = False
        self.active_connections += 1
        try:
            yield conn
        except BaseException as e:
            broken = _is_connection_error(e)
            raise
        finally:
            self.active_connections -= 1
            if broken:
                await self._retire(conn, reason="broken")
            elif self._expired(conn):
                await self._retire(conn, reason="max_lifetime")
            else:
                await self._pool.release(conn)

    async def _checkout(self) -> Any:
        while True:
            conn = await self._pool.acquire()
            # lifetime counts from first checkout; asyncmy recycles never-borrowed idle connections
            self._born.setdefault(conn, self._clock())
            if self._expired(conn):
                await self._retire(conn, reason="max_lifetime")
                continue
            if await self._validate(conn):
                return conn

    def _expired(self, conn: Any) -> bool:
        born = self._born.get(conn)
        return born is not None and self._clock() - born >= self.settings.max_lifetime

    async def _validate(self, conn: Any) -> bool:
        idle_for = asyncio.get_running_loop().time() - conn.last_usage
        if idle_for < self.settings.validate_after_idle:
            return True
        try:
            await conn.ping(reconnect=True)
            return True
        except BaseException as e:
            await self._retire(conn, reason="validation_failed")
            if not isinstance(e, (AsyncMyError, OSError)):
                raise
            _logger.warning("connection_validation_failed",
                error_type=type(e).__name__,
                error_msg=str(e),
            )
            return False

    async def _retire(self, conn: Any, reason: str) -> None:
        """Close a borrowed connection and hand its slot back to the pool."""
        try:
            await conn.ensure_closed()
        except Exception as e:
            _logger.debug("connection_close_error", error_type=type(e).__name__)
            conn.close()
        self._born.pop(conn, None)
        self.total_retired += 1
        # asyncmy drops released connections that are no longer connected
        await self._pool.release(conn)
        _logger.debug("connection_retired", reason=reason, pool_size=self._pool.size)

    def _log_connect_failure(self, error: BaseException) -> None:
        _logger.error("connection_open_failed",
            dsn=self.settings.dsn,
            error_type=type(error).__name__,
            error_msg=str(error),
        )

    # ------------------------------------------------------------------ #
    # Query execution
    # ------------------------------------------------------------------ #
    async def execute(
        self,
        conn: Any,
        query: str,
        params: tuple = (),
        commit: bool = False,
        fetch_one: bool = False,
        fetch_all: bool = False,
    ) -> Optional[Any]:
        """
        Execute one statement on a connection the caller already holds.

        Args:
            conn: Connection obtained from acquire()
            query: SQL query string
            params: Query parameters tuple (default: empty)
            commit: Whether to commit the transaction (default: False)
            fetch_one: Whether to fetch one row (default: False)
            fetch_all: Whether to fetch all rows (default: False)

        Returns:
            Query result or None depending on fetch parameters

        Raises:
            DBQueryError: If query execution fails or the circuit breaker is open
        """
        if self.circuit_breaker.is_open():
            _logger.warning("query_blocked_circuit_open")
            raise DBQueryError("Database temporarily unavailable (circuit breaker open)")

        safe_log_query(query, params)
        start_time = time.perf_counter()
        async with conn.cursor() as cursor:
            try:
                await cursor.execute(query, params)

                result = None
                if commit:
                    await conn.commit()
                elif fetch_one:
                    result = await cursor.fetchone()
                elif fetch_all:
                    result = await cursor.fetchall()

                self.log_query_metrics(query, time.perf_counter() - start_time)
                self.circuit_breaker.record_success()
                return result

            except (DataError, IntegrityError) as e:
                safe_log_error(e, query)
                raise DBQueryError(f"Database constraint error: {type(e).__name__}") from e
            except CONNECTION_ERRORS as e:
                safe_log_error(e, query)
                self.circuit_breaker.record_failure()
                raise DBQueryError("Database connection error") from e
            except ProgrammingError as e:
                safe_log_error(e, query)
                raise DBQueryError(f"Database query error: {type(e).__name__}") from e
            except AsyncMyError as e:
                safe_log_error(e, query)
                self.circuit_breaker.record_failure()
                raise DBQueryError(f"Database error: {type(e).__name__}") from e

    async def run_query(
        self,
        query: str,
        params: tuple = (),
        commit: bool = False,
        fetch_one: bool = False,
        fetch_all: bool = False,
    ) -> Optional[Any]:
        """
        Execute a single statement on a freshly borrowed connection.

        Raises:
            PoolExhausted: If no connection is available within the acquire timeout
            DBQueryError: If query execution fails
        """
        async with self.acquire() as conn:
            return await self.execute(
                conn, query, params,
                commit=commit, fetch_one=fetch_one, fetch_all=fetch_all,
            )

    # ------------------------------------------------------------------ #
    # Metrics
    # ------------------------------------------------------------------ #
    def log_query_metrics(self, query: str, execution_time: float):
        """Count a statement by its leading keyword and flag it when slow."""
        stats = self.query_metrics.setdefault(
            query.split(None, 1)[0].upper(),
            {"count": 0, "total_time": 0.0, "slow_queries": 0},
        )
        stats["count"] += 1
        stats["total_time"] += execution_time

        if execution_time > self.slow_query_threshold:
            stats["slow_queries"] += 1
            _logger.warning("slow_query_detected",
                execution_time_s=round(execution_time, 2),
                query_preview=_redact_query(query, 100)
            )

    def get_performance_metrics(self) -> dict:
        """
        Get pool statistics and per-statement query metrics.

        Returns:
            Dictionary containing performance metrics
        """
        return {
            "pool_size": self.size,
            "pool_free": self.idle_count,
            "pool_used": self.size - self.idle_count,
            "pool_maxsize": self.settings.max_size,
            "pool_minsize": self.settings.min_idle,
            "active_connections": self.active_connections,
            "waiting_queue": self.waiting_queue,
            "total_retired": self.total_retired,
            "exhausted_count": self.exhausted_count,
            "closed": self._closed,
            "query_metrics": {
                kind: dict(stats, avg_time=stats["total_time"] / stats["count"])
                for kind, stats in self.query_metrics.items()
            },
            "circuit_breaker_state": self.circuit_breaker.state,
            "circuit_breaker_failures": self.circuit_breaker.failure_count,
        }
