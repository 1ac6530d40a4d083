"""Errors raised by the stage flow."""


class SessionNotFoundError(LookupError):
    """No game session exists for the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Game session {session_id} not found")
        self.session_id = session_id


class PlayerNotFoundError(LookupError):
    """No player exists for the given id (or not in the expected session)."""

    def __init__(self, player_id: str) -> None:
        super().__init__(f"Player {player_id} not found")
        self.player_id = player_id


class InvalidTransitionError(ValueError):
    """A controller action was invoked from a phase that does not allow it."""


class StageNotEnabledError(ValueError):
    """The requested stage is not part of the session's enabled stages."""


class RosterFullError(ValueError):
    """The session already holds the maximum number of players."""
