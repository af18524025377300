"""Database layer -- async PostgreSQL via SQLAlchemy + asyncpg.

Provides engine lifecycle management and ``ChatStore``, the small
record-level surface (get / insert / patch / delete / query by index) that
the conversation ledger is written against.  Every mutation touches a
single row, or every row matching one indexed key, inside its own
transaction.
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from chat_server.tables import chat_metadata

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Engine singleton
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None


def _make_async_url(postgres_url: str) -> str:
    """Ensure the URL uses the asyncpg driver prefix."""
    url = postgres_url
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


def get_engine(postgres_url: str | None = None, *, ssl: bool = False) -> AsyncEngine:
    """Create or return the async engine singleton.

    On first call the engine is created with connection pooling.
    Subsequent calls return the cached engine (the *postgres_url* argument
    is ignored after the first call).

    Raises:
        RuntimeError: If the engine does not exist yet and no URL is given
    """
    global _engine
    if _engine is not None:
        return _engine

    if not postgres_url:
        raise RuntimeError("Database engine not initialised and no POSTGRES_URL provided.")

    url = _make_async_url(postgres_url)
    kwargs: dict = dict(
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
    )
    if ssl:
        kwargs["connect_args"] = {"ssl": "require"}
    _engine = create_async_engine(url, **kwargs)
    logger.info("database_engine_created")
    return _engine


async def init_db(engine: AsyncEngine) -> None:
    """Create the chat tables if they do not already exist."""
    async with engine.begin() as conn:
        await conn.run_sync(chat_metadata.create_all)
    logger.info("chat_tables_initialized")


async def close_engine() -> None:
    """Dispose of the connection pool."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        logger.info("database_engine_closed")


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------


class ChatStore:
    """Record-level access to the chat tables over an async engine."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get(self, table: Table, row_id: int) -> dict[str, Any] | None:
        """Return the row with primary key *row_id*, or None."""
        async with self._engine.connect() as conn:
            result = await conn.execute(select(table).where(table.c.id == row_id))
            row = result.mappings().first()
        return dict(row) if row is not None else None

    async def insert(self, table: Table, fields: dict[str, Any]) -> int:
        """Insert one row and return its generated id."""
        async with self._engine.begin() as conn:
            result = await conn.execute(insert(table).values(**fields))
            return int(result.inserted_primary_key[0])

    async def patch(self, table: Table, row_id: int, fields: dict[str, Any]) -> None:
        """Update the given columns of one row."""
        async with self._engine.begin() as conn:
            await conn.execute(update(table).where(table.c.id == row_id).values(**fields))

    async def delete(self, table: Table, row_id: int) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(delete(table).where(table.c.id == row_id))

    async def delete_by_index(self, table: Table, column: str, key: Any) -> int:
        """Delete every row whose *column* equals *key*; return the count."""
        async with self._engine.begin() as conn:
            result = await conn.execute(delete(table).where(table.c[column] == key))
            return result.rowcount or 0

    async def query_by_index(
        self,
        table: Table,
        column: str,
        key: Any,
        *,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        """Return rows whose *column* equals *key* in insertion order.

        Insertion order is the autoincrement id; *descending* gives
        newest first.
        """
        order = table.c.id.desc() if descending else table.c.id.asc()
        async with self._engine.connect() as conn:
            result = await conn.execute(
                select(table).where(table.c[column] == key).order_by(order)
            )
            rows = result.mappings().all()
        return [dict(row) for row in rows]

    async def first_by_index(self, table: Table, column: str, key: Any) -> dict[str, Any] | None:
        rows = await self.query_by_index(table, column, key)
        return rows[0] if rows else None
