"""PostgreSQL staging store.

Implements the existence lookup, recent history and write sink over the
staging tables named in settings. Table DDL is managed elsewhere; this
module only assumes each table has the category's conflict-key column
with a unique constraint, a title column, the normalized ``title_key``
column written beside it and ``created_at``.
"""

import json
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import column, or_, select, table
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .db import close_engine, get_db_session
from .deduplication import HistoryItem
from .errors import UniqueConflictError
from .logging import get_context_logger
from .models import Category, StagingRecord
from .staging.transform import CONFLICT_KEYS, TITLE_COLUMNS, TITLE_KEY_COLUMN

logger = get_context_logger(__name__)

UNIQUE_VIOLATION = "23505"

# Column holding the body text in each staging table
BODY_COLUMNS = {
    Category.PROJECTS: "description",
    Category.FUNDING_PROGRAMS: "description",
    Category.RESOURCES: "content",
}


def is_unique_violation(error: IntegrityError) -> bool:
    """Whether an IntegrityError was caused by a unique constraint."""
    original = error.orig
    code = getattr(original, "sqlstate", None) or getattr(original, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION
    return "unique" in str(error).lower()


def _row(record: StagingRecord) -> dict[str, Any]:
    """Column values with dicts serialized for JSON columns."""
    return {
        key: json.dumps(value, default=str) if isinstance(value, dict) else value
        for key, value in record.data.items()
    }


class SqlStore:
    """Staging store backed by PostgreSQL."""

    def __init__(
        self,
        settings: Settings | None = None,
        session_factory: Callable[[], AbstractAsyncContextManager[AsyncSession]] = get_db_session,
    ):
        """Initialize the store.

        Args:
            settings: Settings holding staging table names
            session_factory: Returns a session context manager that commits
                on exit
        """
        self.settings = settings or get_settings()
        self._session = session_factory

    def table_name(self, category: Category) -> str:
        return self.settings.staging_tables[category.value]

    async def close(self) -> None:
        """Dispose of the shared engine behind the default session factory."""
        await close_engine()

    # =========================
    # ExistenceLookup
    # =========================

    async def exists(self, category: Category, values: list[str]) -> dict[str, bool]:
        """Check identifying values against the conflict-key and title columns.

        Titles are compared through the normalized title column, which holds
        the same ``normalize_name`` form the duplicate filter sends.
        """
        if not values:
            return {}

        key_column = CONFLICT_KEYS[category]
        tbl = table(self.table_name(category), column(key_column), column(TITLE_KEY_COLUMN))
        title_key = tbl.c[TITLE_KEY_COLUMN]

        stmt = select(tbl.c[key_column], title_key).where(
            or_(tbl.c[key_column].in_(values), title_key.in_(values))
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            rows = result.all()

        found = set()
        for key, title in rows:
            found.add(key)
            found.add(title)
        return {value: value in found for value in values}

    # =========================
    # RecentHistory
    # =========================

    async def recent(self, category: Category, since: datetime, limit: int) -> list[HistoryItem]:
        """Most recently staged records since a point in time."""
        key_column = CONFLICT_KEYS[category]
        title_column = TITLE_COLUMNS[category]
        body_column = BODY_COLUMNS[category]
        tbl = table(
            self.table_name(category),
            column(key_column),
            column(title_column),
            column(body_column),
            column("created_at"),
        )

        stmt = (
            select(tbl.c[title_column], tbl.c[body_column], tbl.c[key_column])
            .where(tbl.c.created_at >= since)
            .order_by(tbl.c.created_at.desc())
            .limit(limit)
        )

        async with self._session() as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [
            HistoryItem(title=title or "", description=body or "", url=url or "")
            for title, body, url in rows
        ]

    # =========================
    # WriteSink
    # =========================

    async def batch_insert(
        self, category: Category, records: list[StagingRecord]
    ) -> list[StagingRecord]:
        """Insert all records in one statement.

        Raises:
            UniqueConflictError: If any row collides with a unique constraint
        """
        if not records:
            return []

        rows = [_row(record) for record in records]
        tbl = table(self.table_name(category), *(column(name) for name in rows[0]))

        try:
            async with self._session() as session:
                await session.execute(insert(tbl).values(rows))
        except IntegrityError as e:
            if is_unique_violation(e):
                raise UniqueConflictError(str(e.orig)) from e
            raise

        logger.debug(
            f"Inserted {len(records)} rows into {tbl.name}",
            extra={"category": category.value, "rows": len(records)},
        )
        return records

    async def upsert(
        self, category: Category, record: StagingRecord, conflict_key: str
    ) -> StagingRecord:
        """Insert a record, updating the existing row on key conflict."""
        row = _row(record)
        tbl = table(self.table_name(category), *(column(name) for name in row))

        stmt = insert(tbl).values(row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[conflict_key],
            set_={name: stmt.excluded[name] for name in row if name != conflict_key},
        )

        async with self._session() as session:
            await session.execute(stmt)

        return record
