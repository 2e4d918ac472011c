"""Shared data models for Gambit.

Position and Move are immutable values produced by the rule adapter.
AnalysisResult, AnnotatedMove and GameReview are the contract between the
engine pool, the reviewer and whatever presents results to users.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

WHITE = "white"
BLACK = "black"


@dataclass(frozen=True)
class Position:
    """Immutable board snapshot serialized as FEN, scoped to one rule variant."""

    fen: str
    variant: str = "standard"

    @property
    def turn(self) -> str:
        """Colour to move, read from the FEN side-to-move field."""
        return WHITE if self.fen.split()[1] == "w" else BLACK

    @property
    def key(self) -> str:
        """Placement, side to move, castling and en-passant fields.

        Positions with equal keys count as the same position for repetition.
        """
        return " ".join(self.fen.split()[:4])


@dataclass(frozen=True)
class Move:
    """A legal transition between two positions in both notations."""

    uci: str
    san: str
    from_square: str
    to_square: str
    promotion: str | None = None
    is_capture: bool = False

    def squares(self) -> frozenset[str]:
        """Origin and destination squares."""
        return frozenset((self.from_square, self.to_square))


@dataclass(frozen=True)
class HistoryEntry:
    """One applied move in a session's history."""

    move: Move
    timestamp: float
    actor: str | None = None


@dataclass(frozen=True)
class TerminalState:
    """Rule-level terminal conditions for a position."""

    checkmate: bool = False
    stalemate: bool = False
    insufficient_material: bool = False
    fifty_moves: bool = False
    variant_win: str | None = None
    # Colour that won by checkmate; stalemate and material draws have none
    winner: str | None = None

    @property
    def is_over(self) -> bool:
        return (
            self.checkmate
            or self.stalemate
            or self.insufficient_material
            or self.fifty_moves
            or self.variant_win is not None
        )


@dataclass(frozen=True)
class AnalysisResult:
    """Engine verdict for one position.

    ``score_cp`` and ``mate`` are mutually exclusive and expressed from the
    side to move's perspective.
    """

    fen: str
    best_move: str | None
    score_cp: int | None = None
    mate: int | None = None


class Classification(str, Enum):
    """Move quality, ordered from worst to best."""

    BLUNDER = "blunder"
    MISTAKE = "mistake"
    INACCURACY = "inaccuracy"
    GOOD = "good"
    EXCELLENT = "excellent"
    BRILLIANT = "brilliant"

    @property
    def symbol(self) -> str:
        return _CLASSIFICATION_SYMBOLS[self]


_CLASSIFICATION_SYMBOLS = {
    Classification.BLUNDER: "??",
    Classification.MISTAKE: "?",
    Classification.INACCURACY: "?!",
    Classification.GOOD: "!",
    Classification.EXCELLENT: "!!",
    Classification.BRILLIANT: "★",
}


@dataclass
class AnnotatedMove:
    """One reviewed move with its evaluation and classification."""

    ply: int
    san: str
    uci: str
    color: str
    fen_after: str
    evaluation: int | None
    classification: Classification
    rationale: str
    best_move: str | None = None


@dataclass
class GameReview:
    """Full review of a parsed game."""

    headers: dict[str, str]
    moves: list[AnnotatedMove] = field(default_factory=list)
    summary: dict[str, dict[str, int]] = field(default_factory=dict)
    accuracy: dict[str, float] = field(
        default_factory=lambda: {WHITE: 100.0, BLACK: 100.0}
    )
    opening_skip: int = 0
