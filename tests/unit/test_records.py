"""Unit tests for the shared-state record models."""

import pytest
from pydantic import ValidationError

from genesis.stage.records import GameSession, Player, PlayerProgress, Stage1Extra, Stage3Extra


class TestGameSession:
    def test_defaults(self):
        session = GameSession(id="s")
        assert session.status == "lobby"
        assert session.current_stage == 0
        assert session.enabled_stages == [1, 2, 3]

    def test_empty_enabled_stages_fall_back(self):
        assert GameSession(id="s", enabled_stages=None).enabled_stages == [1, 2, 3]

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            GameSession(id="s", status="paused")


class TestPlayer:
    def test_is_active(self):
        assert Player(id="p", game_session_id="s", name="Ada").is_active
        assert not Player(id="p", game_session_id="s", name="Ada", is_kicked=True).is_active


class TestExtraData:
    def test_stage_one_variant(self):
        progress = PlayerProgress(player_id="p", game_session_id="s", stage=1, extra_data={})
        assert isinstance(progress.extra_data, Stage1Extra)

    def test_stage_two_round_list(self):
        progress = PlayerProgress(
            player_id="p", game_session_id="s", stage=2,
            extra_data={"round_results": ["win", "draw", "lose"]},
        )
        assert progress.extra_data.round_results == ["win", "draw", "lose"]

    def test_stage_two_bad_letter(self):
        with pytest.raises(ValidationError):
            PlayerProgress(player_id="p", game_session_id="s", stage=2, extra_data={"round_results": "WXL"})

    def test_stage_three_phase(self):
        progress = PlayerProgress(
            player_id="p", game_session_id="s", stage=3,
            extra_data={"game_phase": "actual", "trial_time": 7.52},
        )
        assert isinstance(progress.extra_data, Stage3Extra)
        assert progress.extra_data.trial_time == 7.52

    def test_explicit_tag_wins(self):
        progress = PlayerProgress(
            player_id="p", game_session_id="s", stage=3,
            extra_data={"stage": 3, "game_phase": "trial"},
        )
        assert progress.extra_data.game_phase == "trial"

    def test_missing_extra_data(self):
        progress = PlayerProgress(player_id="p", game_session_id="s", stage=1)
        assert progress.extra_data is None
        assert not progress.is_finished
