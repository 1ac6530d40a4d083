"""SQLAlchemy-backed state store with Redis change notifications.

Rows live in the cg_* tables. After each committed write the changed rows
are published as JSON on ``<prefix><table>``; every process (including this
one) receives them back through :class:`genesis.state.feed.RedisChangeFeed`.
Without a Redis client the store delivers events to its local
subscriptions directly.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError
from sqlalchemy import delete, insert, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from genesis.db.base import Base
from genesis.db.models import GameSession, Player, PlayerProgress, StageScore
from genesis.state.store import (
    ChangeEvent,
    ChangeType,
    Filters,
    Record,
    StateStore,
    StateStoreError,
    Table,
)

logger = structlog.get_logger()

TABLE_MODELS: dict[Table, type[Base]] = {
    Table.GAME_SESSIONS: GameSession,
    Table.PLAYERS: Player,
    Table.STAGE_SCORES: StageScore,
    Table.PLAYER_PROGRESS: PlayerProgress,
}

# Columns an upsert never overwrites on an existing row.
_PRESERVED_ON_CONFLICT = {"id", "created_at", "joined_at"}


def _columns(model: type[Base]) -> list[Any]:
    return list(model.__table__.columns)


def _conditions(model: type[Base], filters: Filters | None) -> list[Any]:
    table_columns = model.__table__.columns
    conditions = []
    for column, value in (filters or {}).items():
        if column not in table_columns:
            raise StateStoreError(f"Unknown column {column!r} on {model.__tablename__}")
        conditions.append(table_columns[column] == value)
    return conditions


def _validate_values(model: type[Base], values: Record) -> None:
    unknown = [column for column in values if column not in model.__table__.columns]
    if unknown:
        raise StateStoreError(f"Unknown columns {unknown} on {model.__tablename__}")


class SqlStateStore(StateStore):
    """:class:`StateStore` over the async SQLAlchemy session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client: aioredis.Redis | None = None,
        channel_prefix: str = "pubsub:cg:",
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self.redis = redis_client
        self.channel_prefix = channel_prefix

    def channel_for(self, table: Table) -> str:
        return f"{self.channel_prefix}{table.value}"

    async def publish(self, table: Table, change: ChangeType, records: Sequence[Record]) -> None:
        if self.redis is None:
            await super().publish(table, change, records)
            return
        channel = self.channel_for(table)
        for record in records:
            payload = ChangeEvent(table=table, event=change, record=dict(record)).to_json()
            try:
                await self.redis.publish(channel, payload)
            except RedisError as exc:
                # The row is committed; subscribers catch up on their next read.
                logger.warning("change_publish_failed", channel=channel, error=str(exc))

    async def _execute_returning(self, statement: Any) -> list[Record]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                rows = [dict(row) for row in result.mappings().all()]
                await session.commit()
        except SQLAlchemyError as exc:
            raise StateStoreError(str(exc)) from exc
        return rows

    async def insert(self, table: Table, record: Record) -> Record:
        model = TABLE_MODELS[table]
        values = dict(record)
        _validate_values(model, values)
        values.setdefault("id", str(uuid.uuid4()))
        rows = await self._execute_returning(insert(model.__table__).values(**values).returning(*_columns(model)))
        await self.publish(table, ChangeType.INSERT, rows)
        return rows[0]

    async def upsert(self, table: Table, record: Record, conflict_key: Sequence[str]) -> Record:
        model = TABLE_MODELS[table]
        values = dict(record)
        _validate_values(model, values)
        missing = [column for column in conflict_key if column not in values]
        if missing:
            raise StateStoreError(f"Upsert on {table.value} missing conflict columns {missing}")

        key = {column: values[column] for column in conflict_key}
        try:
            async with self._session_factory() as session:
                existing = (await session.execute(
                    select(model.__table__.c.id).where(*_conditions(model, key)),
                )).first()

                dialect = session.get_bind().dialect.name
                insert_fn = postgresql.insert if dialect == "postgresql" else sqlite.insert
                values.setdefault("id", str(uuid.uuid4()))
                statement = insert_fn(model.__table__).values(**values)
                overwrite = {
                    column: statement.excluded[column]
                    for column in values
                    if column not in _PRESERVED_ON_CONFLICT and column not in conflict_key
                }
                if overwrite:
                    statement = statement.on_conflict_do_update(index_elements=list(conflict_key), set_=overwrite)
                else:
                    statement = statement.on_conflict_do_nothing(index_elements=list(conflict_key))
                result = await session.execute(statement.returning(*_columns(model)))
                rows = [dict(row) for row in result.mappings().all()]
                await session.commit()
        except SQLAlchemyError as exc:
            raise StateStoreError(str(exc)) from exc

        if not rows:
            # on_conflict_do_nothing returns no row; read the survivor back.
            rows = await self.query(table, key)
        await self.publish(table, ChangeType.UPDATE if existing else ChangeType.INSERT, rows)
        return rows[0]

    async def update(self, table: Table, filters: Filters, values: Record) -> list[Record]:
        model = TABLE_MODELS[table]
        _validate_values(model, values)
        statement = (
            update(model.__table__)
            .where(*_conditions(model, filters))
            .values(**values)
            .returning(*_columns(model))
        )
        rows = await self._execute_returning(statement)
        if rows:
            await self.publish(table, ChangeType.UPDATE, rows)
        return rows

    async def query(
        self, table: Table, filters: Filters | None = None, order_by: str | None = None,
    ) -> list[Record]:
        model = TABLE_MODELS[table]
        statement = select(*_columns(model)).where(*_conditions(model, filters))
        if order_by:
            column_name = order_by.lstrip("-")
            if column_name not in model.__table__.columns:
                raise StateStoreError(f"Unknown column {column_name!r} on {model.__tablename__}")
            column = model.__table__.columns[column_name]
            statement = statement.order_by(column.desc() if order_by.startswith("-") else column.asc())
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as exc:
            raise StateStoreError(str(exc)) from exc

    async def delete(self, table: Table, filters: Filters) -> int:
        model = TABLE_MODELS[table]
        statement = delete(model.__table__).where(*_conditions(model, filters)).returning(*_columns(model))
        rows = await self._execute_returning(statement)
        if rows:
            await self.publish(table, ChangeType.DELETE, rows)
        return len(rows)

    async def ping(self) -> bool:
        try:
            async with self._session_factory() as session:
                await session.execute(text("SELECT 1"))
            if self.redis is not None:
                await self.redis.ping()
        except (SQLAlchemyError, RedisError, OSError) as exc:
            raise StateStoreError(str(exc)) from exc
        return True
