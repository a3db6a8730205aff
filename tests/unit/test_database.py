"""Unit tests for migrations and the health check."""

from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from chat_backend import database
from chat_backend.database import MIGRATION_LOCK_ID, health_check, run_migrations


@pytest.fixture
def db(mock_pool):
    pool, conn = mock_pool
    with patch("chat_backend.database.get_pool", new_callable=AsyncMock, return_value=pool):
        yield conn


@pytest.fixture
def migrations(tmp_path):
    (tmp_path / "001_users.sql").write_text("CREATE TABLE users ();")
    (tmp_path / "002_chats.sql").write_text("CREATE TABLE chats ();")
    return tmp_path


def _executed(conn):
    return [c.args[0] for c in conn.execute.call_args_list]


class TestRunMigrations:

    async def test_applies_only_pending_files(self, db, migrations):
        db.fetch.return_value = [{"name": "001_users.sql"}]

        applied = await run_migrations(migrations)

        assert applied == ["002_chats.sql"]
        statements = _executed(db)
        assert "CREATE TABLE chats ();" in statements
        assert "CREATE TABLE users ();" not in statements

    async def test_runs_under_advisory_lock(self, db, migrations):
        db.fetch.return_value = []

        await run_migrations(migrations)

        calls = db.execute.call_args_list
        assert calls[0].args == ("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_ID)
        assert calls[-1].args == ("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)

    async def test_failure_releases_lock_and_raises(self, db, migrations):
        db.fetch.return_value = []

        async def execute(sql, *args):
            if sql == "CREATE TABLE users ();":
                raise asyncpg.PostgresSyntaxError("bad sql")

        db.execute.side_effect = execute

        with pytest.raises(asyncpg.PostgresSyntaxError):
            await run_migrations(migrations)

        assert _executed(db)[-1] == "SELECT pg_advisory_unlock($1)"

    async def test_missing_directory(self, db, tmp_path):
        assert await run_migrations(tmp_path / "nope") == []
        db.execute.assert_not_called()

    def test_repository_migrations_exist(self):
        names = [p.name for p in sorted(database.MIGRATIONS_DIR.glob("*.sql"))]
        assert names == ["001_users.sql", "002_chats.sql"]


class TestHealthCheck:

    async def test_healthy(self, db):
        db.fetchval.return_value = 1
        assert await health_check() is True

    async def test_uninitialized_pool(self):
        with patch.object(database, "_pool", None):
            assert await health_check() is False
