"""
SQL Record Store

Production record store: one row per key in the ``records`` table, accessed
through SQLAlchemy's async engine. Writes are still whole-value replaces;
the row's revision column gives other processes a cheap change check.

Author: Tableside Team
Version: 1.0.0
"""

import logging
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from tableside.database import RecordRow, create_engine, create_session_maker, init_db
from tableside.services.store.base import BaseRecordStore, StoreError

logger = logging.getLogger(__name__)


class SqlRecordStore(BaseRecordStore):
    """Record store backed by a SQL database."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.engine = create_engine(database_url, echo=echo)
        self.session_maker = create_session_maker(self.engine)
        self._initialized = False
        logger.info(f"SqlRecordStore initialized ({self.engine.url.render_as_string(hide_password=True)})")

    @property
    def backend_name(self) -> str:
        return "sql"

    async def _ensure_schema(self) -> None:
        if not self._initialized:
            await init_db(self.engine)
            self._initialized = True
            logger.info("✅ Record table ready")

    async def get(self, key: str) -> Optional[str]:
        try:
            await self._ensure_schema()
            async with self.session_maker() as session:
                result = await session.execute(
                    select(RecordRow.value).where(RecordRow.key == key)
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StoreError(f"Error reading {key!r}: {e}", key=key) from e

    async def set(self, key: str, value: str) -> int:
        try:
            await self._ensure_schema()
            async with self.session_maker() as session:
                async with session.begin():
                    row = await session.get(RecordRow, key, with_for_update=True)
                    if row is None:
                        row = RecordRow(key=key, value=value, revision=1)
                        session.add(row)
                    else:
                        row.value = value
                        row.revision = row.revision + 1
                    revision = row.revision
            return revision
        except SQLAlchemyError as e:
            raise StoreError(f"Error writing {key!r}: {e}", key=key) from e

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_schema()
            async with self.session_maker() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(RecordRow).where(RecordRow.key == key)
                    )
            return bool(result.rowcount)
        except SQLAlchemyError as e:
            raise StoreError(f"Error deleting {key!r}: {e}", key=key) from e

    async def keys(self) -> list[str]:
        try:
            await self._ensure_schema()
            async with self.session_maker() as session:
                result = await session.execute(select(RecordRow.key).order_by(RecordRow.key))
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StoreError(f"Error listing keys: {e}") from e

    async def revision(self, key: str) -> int:
        try:
            await self._ensure_schema()
            async with self.session_maker() as session:
                result = await session.execute(
                    select(RecordRow.revision).where(RecordRow.key == key)
                )
                return result.scalar_one_or_none() or 0
        except SQLAlchemyError as e:
            raise StoreError(f"Error reading revision of {key!r}: {e}", key=key) from e

    async def close(self) -> None:
        await self.engine.dispose()
