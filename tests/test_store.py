"""
Store lifecycle tests - Validates startup ordering, teardown and the command line entry point.
"""

import pytest
import yaml
from asyncmy.errors import OperationalError

from clanstore import __main__ as entry_point
from clanstore.errors import DBQueryError, SchemaError
from clanstore.legacy import CLANS_SECTION
from clanstore.store import ClanStore

LEGACY_DOCUMENT = {
    "Clans": {
        "Reds": {"Founder": "u1", "Leader": "u1", "Money": 100.0, "Privacy": "open", "Users": ["u1", "Steve"]},
    },
    "Settings": {"Motd": "hello"},
}

@pytest.fixture
def legacy_file(tmp_path):
    path = tmp_path / "data.yml"
    path.write_text(yaml.safe_dump(LEGACY_DOCUMENT), encoding="utf-8")
    return path

@pytest.fixture
def make_store(fake_db, pool_settings):
    def factory(legacy_path=None, cache_ttl=300):
        return ClanStore(pool_settings, legacy_path=legacy_path, cache_ttl=cache_ttl)
    return factory

class TestStartup:
    """Test ClanStore.start ordering and outcomes."""

    @pytest.mark.asyncio
    async def test_start_without_legacy_file(self, make_store, fake_db):
        store = make_store()

        report = await store.start()

        assert len(report.tables) == 11
        assert report.migration is None
        assert report.cache.ok
        assert await store.get_cached_clan_names() == []
        await store.close()

    @pytest.mark.asyncio
    async def test_start_migrates_clears_and_warms_cache(self, make_store, fake_db, legacy_file):
        """Test migrated rows are visible in the cache right after startup."""
        store = make_store(legacy_path=str(legacy_file))

        report = await store.start()

        assert report.migration.ok
        assert report.migration.clans == 1
        assert report.cache.players == 2
        assert await store.get_cached_player_clan("steve") == "Reds"
        assert await store.get_cached_clan_names() == ["Reds"]
        assert yaml.safe_load(legacy_file.read_text(encoding="utf-8")) == {"Settings": {"Motd": "hello"}}
        assert fake_db.count("SELECT name FROM clans") == 1
        await store.close()

    @pytest.mark.asyncio
    async def test_statement_order(self, make_store, fake_db, legacy_file):
        store = make_store(legacy_path=str(legacy_file))

        await store.start()

        first_create = fake_db.executed.index(next(q for q in fake_db.executed if q.startswith("CREATE")))
        first_replace = fake_db.executed.index(next(q for q in fake_db.executed if q.startswith("REPLACE")))
        first_select = fake_db.executed.index(next(q for q in fake_db.executed if q.startswith("SELECT")))
        assert first_create < first_replace < first_select
        await store.close()

    @pytest.mark.asyncio
    async def test_partial_migration_keeps_legacy_section(self, make_store, fake_db, legacy_file):
        fake_db.fail_on("REPLACE INTO clan_users", times=1)
        store = make_store(legacy_path=str(legacy_file))

        report = await store.start()

        assert not report.migration.ok
        assert CLANS_SECTION in yaml.safe_load(legacy_file.read_text(encoding="utf-8"))
        assert await store.get_cached_player_clan("steve") == "Reds"
        await store.close()

    @pytest.mark.asyncio
    async def test_schema_failure_shuts_pool_down(self, make_store, fake_db):
        fake_db.fail_on("CREATE TABLE IF NOT EXISTS clans ", error=OperationalError(1005, "Can't create table"))
        store = make_store()

        with pytest.raises(SchemaError):
            await store.start()

        assert store.pool.closed
        assert all(conn.closed for conn in fake_db.connections)

    @pytest.mark.asyncio
    async def test_unreachable_database(self, make_store, fake_db):
        fake_db.connect_error = OperationalError(2003, "Can't connect to MySQL server")
        store = make_store()

        with pytest.raises(DBQueryError):
            await store.start()

        assert store.pool.closed

class TestLifecycle:
    """Test teardown and health reporting."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_store, fake_db):
        store = make_store()
        await store.start()

        await store.close()
        await store.close()

        assert store.pool.closed
        assert all(conn.closed for conn in fake_db.connections)

    @pytest.mark.asyncio
    async def test_async_context_manager(self, make_store):
        async with make_store() as store:
            assert store.health_check()["status"] == "healthy"

        assert store.pool.closed
        assert store.health_check()["status"] == "down"

    def test_health_before_start_is_down(self, make_store):
        health = make_store().health_check()

        assert health["status"] == "down"
        assert "database" in health
        assert "cache" in health

    @pytest.mark.asyncio
    async def test_degraded_cache_reported(self, make_store, fake_db):
        async with make_store() as store:
            fake_db.fail_on("SELECT name FROM clans", times=1)
            await store.reload_cache()

            assert store.health_check()["status"] == "degraded"

class TestEntryPoint:
    """Test the python -m clanstore exit statuses."""

    @pytest.fixture
    def patch_store(self, monkeypatch, make_store):
        def apply(**kwargs):
            store = make_store(**kwargs)
            monkeypatch.setattr(ClanStore, "from_config", lambda: store)
            return store
        return apply

    @pytest.mark.asyncio
    async def test_success_exit_status(self, patch_store, legacy_file):
        store = patch_store(legacy_path=str(legacy_file))

        assert await entry_point.run() == 0
        assert store.pool.closed

    @pytest.mark.asyncio
    async def test_schema_failure_exit_status(self, patch_store, fake_db):
        fake_db.fail_on("CREATE TABLE IF NOT EXISTS reports", error=OperationalError(1005, "Can't create table"))
        patch_store()

        assert await entry_point.run() == 1

    @pytest.mark.asyncio
    async def test_partial_migration_exit_status(self, patch_store, fake_db, legacy_file):
        fake_db.fail_on("REPLACE INTO clans", times=1)
        store = patch_store(legacy_path=str(legacy_file))

        assert await entry_point.run() == 2
        assert store.pool.closed

    @pytest.mark.asyncio
    async def test_unreadable_legacy_file_exit_status(self, patch_store, tmp_path):
        path = tmp_path / "data.yml"
        path.write_text("Clans: [unclosed", encoding="utf-8")
        patch_store(legacy_path=str(path))

        assert await entry_point.run() == 1
