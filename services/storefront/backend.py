"""
Storefront — レコードストレージ・バックエンド

4 つの論理テーブルに対して insert / select / update / delete だけを提供する。
テーブルをまたぐトランザクションは提供しない（1 呼び出し = 1 トランザクション）。
フィルタは等値(where) と大なり(greater_than) のみ、並び順は昇順・降順のみ。
"""

import logging
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from .errors import BackendError
from .tables import TABLES, metadata

logger = logging.getLogger(__name__)


def make_engine(database_url: str) -> AsyncEngine:
    """インメモリ SQLite は接続ごとに別 DB になるため StaticPool で 1 接続に固定する。"""
    if database_url.startswith("sqlite") and (
        ":memory:" in database_url or database_url.rstrip("/").endswith("sqlite+aiosqlite:")
    ):
        return create_async_engine(
            database_url,
            echo=False,
            poolclass=StaticPool,
        )
    return create_async_engine(database_url, echo=False)


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


class RecordBackend:
    """SQLAlchemy (async) 上の論理テーブル操作"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _table(name: str):
        try:
            return TABLES[name]
        except KeyError:
            raise ValueError(f"Unknown table: {name}") from None

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        行を挿入し、採番済みの行を返す。

        複数行でも 1 トランザクションで登録する（一括登録）。
        """
        t = self._table(table)
        inserted: list[dict[str, Any]] = []
        try:
            async with self._session_factory() as session:
                for row in rows:
                    result = await session.execute(
                        insert(t).values(**row).returning(*t.c)
                    )
                    inserted.append(dict(result.mappings().one()))
                await session.commit()
        except SQLAlchemyError as e:
            raise BackendError("insert", table, str(e)) from e
        return inserted

    async def select(
        self,
        table: str,
        *,
        where: dict[str, Any] | None = None,
        greater_than: dict[str, Any] | None = None,
        columns: list[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        t = self._table(table)
        stmt = select(*(t.c[c] for c in columns)) if columns else select(t)
        for name, value in (where or {}).items():
            stmt = stmt.where(t.c[name] == value)
        for name, value in (greater_than or {}).items():
            stmt = stmt.where(t.c[name] > value)
        if order_by:
            col = t.c[order_by]
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise BackendError("select", table, str(e)) from e

    async def update(
        self,
        table: str,
        values: dict[str, Any],
        *,
        where: dict[str, Any],
        expected: dict[str, Any] | None = None,
    ) -> int:
        """
        条件に一致する行を更新し、更新件数を返す。

        expected を渡すと「現在値が expected と等しい場合のみ更新」になる
        （compare-and-swap）。競合時は 0 件が返る。
        """
        t = self._table(table)
        stmt = update(t).values(**values)
        for name, value in {**where, **(expected or {})}.items():
            stmt = stmt.where(t.c[name] == value)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount
        except SQLAlchemyError as e:
            raise BackendError("update", table, str(e)) from e

    async def delete(self, table: str, *, where: dict[str, Any]) -> int:
        t = self._table(table)
        stmt = delete(t)
        for name, value in where.items():
            stmt = stmt.where(t.c[name] == value)
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount
        except SQLAlchemyError as e:
            raise BackendError("delete", table, str(e)) from e
