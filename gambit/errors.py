"""Exception taxonomy shared by sessions, the engine client and the reviewer."""

from __future__ import annotations


class GambitError(Exception):
    """Base class for every error raised by this package."""


class IllegalMoveError(GambitError, ValueError):
    """A move is malformed or not legal in the position under the active variant."""

    def __init__(self, move: str, fen: str | None = None, reason: str | None = None) -> None:
        self.move = move
        self.fen = fen
        message = f"Illegal move: {move}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class NotYourTurnError(GambitError):
    """An actor tried to move while another seat is on move."""

    def __init__(self, actor_id: str) -> None:
        self.actor_id = actor_id
        super().__init__(f"Not your turn: {actor_id}")


class SessionStateError(GambitError):
    """The session is not in a state that accepts the operation."""


class SessionNotFoundError(GambitError, LookupError):
    """No session matches the requested key."""


class SessionExistsError(GambitError):
    """A session already occupies the requested channel or player pair."""


class EngineError(GambitError):
    """The analysis engine failed to produce a result."""


class EngineTimeoutError(EngineError):
    """No ``bestmove`` arrived within the search budget plus grace period."""


class EngineProcessError(EngineError):
    """The engine process could not start, or exited before ``bestmove``."""


class NotationParseError(GambitError, ValueError):
    """Game notation yielded nothing usable."""
