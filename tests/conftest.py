"""
Pytest configuration and fixtures for clanstore tests.

The database is replaced by an in-memory fake speaking the asyncmy connection
and cursor protocol for the handful of statements clanstore issues.
"""

import asyncio
import os
import sys

import pytest
import pytest_asyncio

# Set environment variables immediately before any imports
env_vars = {
    "DB_USER": "test_user",
    "DB_PASS": "test_password",
    "DB_HOST": "localhost",
    "DB_PORT": "3306",
    "DB_NAME": "test_database",
    "DB_POOL_SIZE": "10",
    "DB_TIMEOUT": "10",
    "DEBUG": "False",
}

for key, value in env_vars.items():
    os.environ[key] = value

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from asyncmy import pool as asyncmy_pool  # noqa: E402
from asyncmy.errors import OperationalError, ProgrammingError  # noqa: E402

from clanstore import config  # noqa: E402
from clanstore.db import ConnectionPool, PoolSettings  # noqa: E402

# #################################################################################### #
#                            Fake Database
# #################################################################################### #
class FakeDatabase:
    """In-memory stand-in for the MariaDB server."""

    def __init__(self):
        self.tables = {}
        self.executed = []
        self.failures = {}
        self.connect_error = None
        self.ping_error = None
        self.select_delay = 0.0
        self.connections = []

    def fail_on(self, fragment, error=None, times=None):
        """Raise `error` for statements containing `fragment`, `times` times (None: forever)."""
        self.failures[fragment] = [error or OperationalError(2013, "Lost connection"), times]

    def count(self, fragment):
        return sum(1 for query in self.executed if fragment in query)

    def rows(self, table):
        return set(self.tables[table].values())

    async def connect(self, **kwargs):
        if self.connect_error is not None:
            raise self.connect_error
        conn = FakeConnection(self, kwargs)
        self.connections.append(conn)
        return conn

    async def run(self, query, params):
        statement = " ".join(query.split())
        self.executed.append(statement)

        for fragment, failure in list(self.failures.items()):
            if fragment in statement:
                error, times = failure
                if times is not None:
                    failure[1] = times - 1
                    if failure[1] <= 0:
                        del self.failures[fragment]
                raise error

        if statement.startswith("CREATE TABLE IF NOT EXISTS"):
            self.tables.setdefault(statement.split()[5], {})
            return []
        if statement.startswith("REPLACE INTO clans "):
            self._table("clans")[params[0]] = tuple(params)
            return []
        if statement.startswith("REPLACE INTO clan_users "):
            self._table("clan_users")[(params[0], params[1])] = tuple(params)
            return []
        if statement == "SELECT username, clan FROM clan_users":
            await asyncio.sleep(self.select_delay)
            return [(username, clan) for clan, username in self._table("clan_users").values()]
        if statement == "SELECT name FROM clans":
            await asyncio.sleep(self.select_delay)
            return [(row[0],) for row in self._table("clans").values()]
        raise ProgrammingError(1064, f"Unsupported statement: {statement[:40]}")

    def _table(self, name):
        if name not in self.tables:
            raise ProgrammingError(1146, f"Table '{name}' doesn't exist")
        return self.tables[name]

class FakeCursor:
    def __init__(self, db):
        self.db = db
        self._result = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False

    async def execute(self, query, params=()):
        self._result = await self.db.run(query, params)
        return len(self._result)

    async def fetchall(self):
        return tuple(self._result)

    async def fetchone(self):
        return self._result[0] if self._result else None

class FakeConnection:
    def __init__(self, db, kwargs):
        self.db = db
        self.kwargs = kwargs
        self.closed = False
        self.pings = 0
        self.commits = 0
        self._stream_broken = False
        self.touch()

    @property
    def connected(self):
        return not self.closed

    def touch(self):
        self.last_usage = asyncio.get_running_loop().time()

    def age(self, seconds):
        """Pretend the connection has been idle for `seconds`."""
        self.last_usage -= seconds

    def get_transaction_status(self):
        return False

    def cursor(self):
        self.touch()
        return FakeCursor(self.db)

    async def ping(self, reconnect=True):
        self.pings += 1
        if self.db.ping_error is not None:
            raise self.db.ping_error
        self.touch()

    async def commit(self):
        self.commits += 1

    def close(self):
        self.closed = True

    async def ensure_closed(self):
        self.close()

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

# #################################################################################### #
#                            Fixtures
# #################################################################################### #
@pytest.fixture(autouse=True)
def fresh_config():
    """Reload configuration from the environment for every test."""
    config.reset_config_cache()
    yield
    config.reset_config_cache()

@pytest.fixture
def fake_db(monkeypatch):
    """Route asyncmy pool connections to an in-memory database."""
    db = FakeDatabase()
    monkeypatch.setattr(asyncmy_pool, "connect", db.connect)
    return db

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def pool_settings():
    return PoolSettings(
        host="localhost",
        port=3306,
        database="test_database",
        user="test_user",
        password="test_password",
        max_size=10,
        min_idle=2,
        acquire_timeout=0.2,
    )

@pytest_asyncio.fixture
async def pool(fake_db, pool_settings):
    pool = ConnectionPool(pool_settings)
    await pool.start()
    yield pool
    await pool.shutdown()

@pytest_asyncio.fixture
async def provisioned_pool(pool):
    from clanstore.schema import ensure_schema

    await ensure_schema(pool)
    return pool
