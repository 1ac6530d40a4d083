"""Unit tests for the per-session cache."""

from __future__ import annotations

import pytest

from genesis.stage.cache import SessionCache
from genesis.stage.errors import SessionNotFoundError
from genesis.state.memory import InMemoryStateStore
from genesis.state.store import ChangeEvent, ChangeType, Table
from helpers import SESSION_ID


def _session(**fields) -> dict:
    return {"id": SESSION_ID, "status": "lobby", "current_stage": 0, "enabled_stages": [1, 2, 3], **fields}


def _player(player_id: str, **fields) -> dict:
    return {"id": player_id, "game_session_id": SESSION_ID, "name": player_id, **fields}


def _event(table: Table, record: dict, change: ChangeType = ChangeType.UPDATE) -> ChangeEvent:
    return ChangeEvent(table=table, event=change, record=record)


class TestLoad:
    @pytest.mark.asyncio
    async def test_load_reads_everything(self):
        store = InMemoryStateStore()
        await store.insert(Table.GAME_SESSIONS, _session(status="stage1", current_stage=1))
        await store.insert(Table.PLAYERS, _player("a"))
        await store.insert(Table.STAGE_SCORES, {
            "player_id": "a", "game_session_id": SESSION_ID, "stage": 1, "score": 8.2,
        })
        await store.insert(Table.PLAYER_PROGRESS, {
            "player_id": "a", "game_session_id": SESSION_ID, "stage": 1, "status": "finished",
        })

        cache = SessionCache(SESSION_ID)
        await cache.load(store)

        snapshot = cache.snapshot()
        assert snapshot.session.current_stage == 1
        assert [p.id for p in snapshot.players] == ["a"]
        assert snapshot.stage_scores(1)["a"].score == 8.2
        assert snapshot.stage_progress(1)["a"].is_finished

    @pytest.mark.asyncio
    async def test_missing_session(self):
        cache = SessionCache("nope")
        with pytest.raises(SessionNotFoundError):
            await cache.load(InMemoryStateStore())

    def test_snapshot_before_load(self):
        with pytest.raises(SessionNotFoundError):
            SessionCache(SESSION_ID).snapshot()


class TestApply:
    def test_ignores_other_sessions(self):
        cache = SessionCache(SESSION_ID)
        assert not cache.apply(_event(Table.GAME_SESSIONS, _session(id="other")))
        assert not cache.apply(_event(Table.PLAYERS, {**_player("x"), "game_session_id": "other"}))
        assert cache.session is None

    def test_last_write_wins(self):
        cache = SessionCache(SESSION_ID)
        cache.apply(_event(Table.GAME_SESSIONS, _session(status="stage2", current_stage=2)))
        cache.apply(_event(Table.GAME_SESSIONS, _session(status="stage1", current_stage=1)))
        assert cache.session.current_stage == 1

    def test_duplicate_events_are_harmless(self):
        cache = SessionCache(SESSION_ID)
        cache.apply(_event(Table.GAME_SESSIONS, _session()))
        event = _event(Table.PLAYERS, _player("a"), ChangeType.INSERT)
        cache.apply(event)
        cache.apply(event)
        assert len(cache.snapshot().players) == 1

    def test_delete_removes_stage_records(self):
        cache = SessionCache(SESSION_ID)
        record = {"player_id": "a", "game_session_id": SESSION_ID, "stage": 1, "score": 9.0}
        cache.apply(_event(Table.STAGE_SCORES, record, ChangeType.INSERT))
        assert ("a", 1) in cache.scores
        cache.apply(_event(Table.STAGE_SCORES, record, ChangeType.DELETE))
        assert ("a", 1) not in cache.scores

    def test_non_finite_score_ignored(self):
        cache = SessionCache(SESSION_ID)
        record = {"player_id": "a", "game_session_id": SESSION_ID, "stage": 2, "score": float("nan")}
        assert not cache.apply(_event(Table.STAGE_SCORES, record, ChangeType.INSERT))
        assert cache.scores == {}

    def test_clear_table_only_touches_that_table(self):
        cache = SessionCache(SESSION_ID)
        base = {"player_id": "a", "game_session_id": SESSION_ID, "stage": 1}
        cache.apply(_event(Table.STAGE_SCORES, {**base, "score": 9.0}, ChangeType.INSERT))
        cache.apply(_event(Table.PLAYER_PROGRESS, base, ChangeType.INSERT))

        cache.clear_table(Table.PLAYER_PROGRESS)
        assert ("a", 1) in cache.scores
        assert cache.progress == {}
        with pytest.raises(ValueError):
            cache.clear_table(Table.PLAYERS)

    def test_session_delete_ignored(self):
        cache = SessionCache(SESSION_ID)
        cache.apply(_event(Table.GAME_SESSIONS, _session()))
        assert not cache.apply(_event(Table.GAME_SESSIONS, _session(), ChangeType.DELETE))
        assert cache.session is not None

    def test_invalid_record_ignored(self):
        cache = SessionCache(SESSION_ID)
        assert not cache.apply(_event(Table.GAME_SESSIONS, _session(status="intermission")))
        assert cache.session is None

    def test_progress_extra_data_tagged_from_stage(self):
        cache = SessionCache(SESSION_ID)
        cache.apply(_event(Table.PLAYER_PROGRESS, {
            "player_id": "a",
            "game_session_id": SESSION_ID,
            "stage": 2,
            "extra_data": {"round_results": "WWL"},
        }))
        extra = cache.progress[("a", 2)].extra_data
        assert extra.stage == 2
        assert extra.round_results == ["win", "win", "lose"]

    def test_active_players(self):
        cache = SessionCache(SESSION_ID)
        cache.apply(_event(Table.GAME_SESSIONS, _session()))
        cache.apply(_event(Table.PLAYERS, _player("a")))
        cache.apply(_event(Table.PLAYERS, _player("b", is_kicked=True)))
        cache.apply(_event(Table.PLAYERS, _player("c", is_spectator=True)))
        assert [p.id for p in cache.snapshot().active_players()] == ["a"]
