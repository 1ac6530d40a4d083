"""Shared state service: store contract, implementations and change feed."""

from genesis.state.memory import InMemoryStateStore
from genesis.state.store import (
    STAGE_CONFLICT_KEY,
    ChangeEvent,
    ChangeType,
    StateStore,
    StateStoreError,
    Subscription,
    Table,
)

__all__ = [
    "STAGE_CONFLICT_KEY",
    "ChangeEvent",
    "ChangeType",
    "InMemoryStateStore",
    "StateStore",
    "StateStoreError",
    "Subscription",
    "Table",
]
