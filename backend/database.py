import logging
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy import event, inspect, text
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import declarative_base

from utils import normalize_name

logger = logging.getLogger(__name__)

Base = declarative_base()

NORMALIZE_FUNCTION = "normalize_name"

# Columns added after the first release; older databases get them via ALTER TABLE.
OPTIONAL_COLUMNS = {
    "rooms": {
        "roles_json": "TEXT",
        "allow_write_ins": "INTEGER NOT NULL DEFAULT 1",
        "allow_anonymous": "INTEGER NOT NULL DEFAULT 1",
    },
    "votes": {
        "role_name": "TEXT NOT NULL DEFAULT 'General'",
    },
}


def _normalize_sql(value):
    return normalize_name(value) if value is not None else None


def _set_sqlite_pragmas(dbapi_connection, _record):
    # SQLite lower() only folds ASCII; match names the way the tally does
    dbapi_connection.create_function(NORMALIZE_FUNCTION, 1, _normalize_sql, deterministic=True)
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _add_missing_columns(sync_conn) -> list:
    inspector = inspect(sync_conn)
    added = []
    for table, columns in OPTIONAL_COLUMNS.items():
        existing = {col["name"] for col in inspector.get_columns(table)}
        for name, ddl in columns.items():
            if name not in existing:
                sync_conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {ddl}"))
                added.append(f"{table}.{name}")
    return added


class Store:
    """Owns the engine and session factory for the embedded database.

    Built once by the application lifespan and torn down on shutdown;
    tests construct one per test against a temporary file.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = create_async_engine(database_url, echo=echo)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragmas)

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    async def init(self) -> None:
        """Create tables and add any columns an older schema lacks. Idempotent."""
        # models must be imported so their tables are registered on Base
        import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            added = await conn.run_sync(_add_missing_columns)
        if added:
            logger.info("Migrated schema, added columns: %s", ", ".join(added))

    async def dispose(self) -> None:
        await self.engine.dispose()

    def session(self) -> AsyncSession:
        return self.session_factory()


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    store: Store = request.app.state.store
    async with store.session() as db:
        try:
            yield db
        except Exception:
            await db.rollback()
            raise
        finally:
            await db.close()
