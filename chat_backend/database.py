"""PostgreSQL pool and schema migrations."""

from pathlib import Path
from typing import Optional

import asyncpg
import structlog

from chat_backend.config import get_settings

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent.parent / "migrations"

# Arbitrary key shared by every process that may run migrations at startup
MIGRATION_LOCK_ID = 804_212_331

_pool: Optional[asyncpg.Pool] = None


async def get_pool() -> asyncpg.Pool:
    """Return the shared pool.

    Raises:
        RuntimeError: If init_database() has not run
    """
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Call init_database() first.")
    return _pool


async def init_database() -> asyncpg.Pool:
    """Create the shared pool on first call; later calls return it."""
    global _pool

    if _pool is not None:
        return _pool

    settings = get_settings()
    try:
        _pool = await asyncpg.create_pool(
            settings.postgres_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
    except (asyncpg.PostgresError, OSError) as e:
        logger.error("database_pool_creation_failed", error=str(e))
        raise

    logger.info(
        "database_pool_created",
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    return _pool


async def close_database() -> None:
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("database_pool_closed")


async def run_migrations(migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
    """Apply pending ``*.sql`` files in name order.

    Applied file names are recorded in ``schema_migrations``. Each file runs
    in its own transaction, and an advisory lock keeps concurrently starting
    workers from applying the same file twice.

    Returns:
        Names of the files applied by this call
    """
    pool = await get_pool()

    if not migrations_dir.exists():
        logger.warning("migrations_directory_not_found", path=str(migrations_dir))
        return []

    migration_files = sorted(migrations_dir.glob("*.sql"))
    applied: list[str] = []

    async with pool.acquire() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_ID)
        try:
            await conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    name TEXT PRIMARY KEY,
                    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """
            )
            done = {row["name"] for row in await conn.fetch("SELECT name FROM schema_migrations")}

            for migration_file in migration_files:
                if migration_file.name in done:
                    continue
                try:
                    async with conn.transaction():
                        await conn.execute(migration_file.read_text())
                        await conn.execute(
                            "INSERT INTO schema_migrations (name) VALUES ($1)",
                            migration_file.name,
                        )
                except asyncpg.PostgresError as e:
                    logger.error("migration_failed", file=migration_file.name, error=str(e))
                    raise
                applied.append(migration_file.name)
                logger.info("migration_applied", file=migration_file.name)
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)

    if not applied:
        logger.info("migrations_up_to_date", known=len(migration_files))
    return applied


async def health_check() -> bool:
    """True when a trivial query round-trips."""
    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
