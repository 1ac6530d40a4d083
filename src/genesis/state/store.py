"""Shared state service contract.

Every client of a live show (host dashboard, main stage, phones, spectator
screen) reads and writes the same four tables. The store offers filtered
reads, upsert-on-conflict writes and a change feed scoped by table and
filter. Change delivery is at-least-once and unordered across tables, so
consumers must apply events idempotently.
"""

from __future__ import annotations

import inspect
import json
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


class Table(str, Enum):
    GAME_SESSIONS = "cg_game_sessions"
    PLAYERS = "cg_players"
    STAGE_SCORES = "cg_stage_scores"
    PLAYER_PROGRESS = "cg_player_progress"


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Stage Score and Player Progress hold one row per (player, stage).
STAGE_CONFLICT_KEY: tuple[str, ...] = ("player_id", "game_session_id", "stage")

Record = dict[str, Any]
Filters = Mapping[str, Any]


class StateStoreError(Exception):
    """A read or write against the shared state service failed."""


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def matches_filters(record: Mapping[str, Any], filters: Filters) -> bool:
    """Equality match on every filter column."""
    return all(record.get(column) == value for column, value in filters.items())


@dataclass(frozen=True)
class ChangeEvent:
    """One insert/update/delete notification from the change feed."""

    table: Table
    event: ChangeType
    record: Record

    def to_json(self) -> str:
        return json.dumps(
            {"event": self.event.value, "table": self.table.value, "record": self.record},
            default=_json_default,
        )

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> ChangeEvent:
        """Rebuild an event published by :meth:`to_json`. Raises ValueError on bad input."""
        try:
            table = Table(payload["table"])
            event = ChangeType(payload["event"])
        except KeyError as exc:
            raise ValueError(f"Change payload missing {exc.args[0]!r}") from exc
        record = payload.get("record")
        if not isinstance(record, dict):
            raise ValueError("Change payload record must be an object")
        return cls(table=table, event=event, record=record)


ChangeCallback = Callable[[ChangeEvent], Awaitable[None] | None]


@dataclass(eq=False)
class Subscription:
    """Handle returned by :meth:`StateStore.subscribe`."""

    table: Table
    filters: dict[str, Any]
    callback: ChangeCallback
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, event: ChangeEvent) -> bool:
        return event.table == self.table and matches_filters(event.record, self.filters)


class SubscriptionRegistry:
    """Local fan-out of change events to the subscriptions that match them."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}

    def __len__(self) -> int:
        return len(self._subscriptions)

    def add(self, table: Table, filters: Filters, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(table=table, filters=dict(filters), callback=callback)
        self._subscriptions[subscription.id] = subscription
        return subscription

    def remove(self, subscription: Subscription) -> None:
        self._subscriptions.pop(subscription.id, None)

    async def dispatch(self, event: ChangeEvent) -> int:
        """Deliver an event to every matching subscription.

        A failing callback is logged and does not stop delivery to the others.
        Returns the number of callbacks invoked.
        """
        delivered = 0
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(event):
                continue
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception:
                logger.exception(
                    "change_callback_failed",
                    table=event.table.value,
                    event=event.event.value,
                    subscription_id=subscription.id,
                )
        return delivered


class StateStore(ABC):
    """Abstract shared state service.

    Records travel as plain dicts keyed by column name, as they do on the
    wire. Implementations raise :class:`StateStoreError` for any failure at
    the storage boundary.
    """

    def __init__(self) -> None:
        self.subscriptions = SubscriptionRegistry()

    @abstractmethod
    async def insert(self, table: Table, record: Record) -> Record:
        """Insert a new row and return it with generated columns filled in."""

    @abstractmethod
    async def upsert(self, table: Table, record: Record, conflict_key: Sequence[str]) -> Record:
        """Insert, or overwrite the row that shares ``conflict_key`` columns with ``record``."""

    @abstractmethod
    async def update(self, table: Table, filters: Filters, values: Record) -> list[Record]:
        """Apply ``values`` to every row matching ``filters``; return the updated rows."""

    @abstractmethod
    async def query(
        self, table: Table, filters: Filters | None = None, order_by: str | None = None,
    ) -> list[Record]:
        """Filtered read. ``order_by`` is a column name, prefixed with ``-`` for descending."""

    @abstractmethod
    async def delete(self, table: Table, filters: Filters) -> int:
        """Delete every row matching ``filters``; return how many were removed."""

    async def ping(self) -> bool:
        """Connectivity probe used by the readiness endpoint."""
        return True

    async def get(self, table: Table, record_id: str) -> Record | None:
        rows = await self.query(table, {"id": record_id})
        return rows[0] if rows else None

    def subscribe(self, table: Table, filters: Filters, callback: ChangeCallback) -> Subscription:
        """Register ``callback`` for changes on ``table`` whose record matches ``filters``."""
        return self.subscriptions.add(table, filters, callback)

    def unsubscribe(self, subscription: Subscription) -> None:
        self.subscriptions.remove(subscription)

    async def publish(self, table: Table, change: ChangeType, records: Sequence[Record]) -> None:
        """Announce committed changes. The default delivers to local subscriptions."""
        for record in records:
            await self.subscriptions.dispatch(ChangeEvent(table=table, event=change, record=dict(record)))
