"""Variant rule adapter.

Wraps python-chess boards behind one small contract so sessions and the
notation reader never branch on the variant tag themselves. ``VARIANTS`` is the
capability table: one ``VariantRules`` record per tag, picked once by
``get_rules`` and held for the lifetime of a session.
"""

from __future__ import annotations

import random
from dataclasses import dataclass

import chess
import chess.variant

from gambit.errors import IllegalMoveError
from gambit.models import BLACK, WHITE, Move, Position, TerminalState


def _color_name(color: chess.Color) -> str:
    return WHITE if color == chess.WHITE else BLACK


def _color_value(color: str) -> chess.Color:
    if color == WHITE:
        return chess.WHITE
    if color == BLACK:
        return chess.BLACK
    raise ValueError(f"Unknown colour: {color}")


@dataclass(frozen=True)
class VariantRules:
    """Rule set for one variant, backed by a python-chess board class."""

    tag: str
    name: str
    description: str
    board_class: type[chess.Board]

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    def initial_position(self) -> Position:
        """Default setup for this variant."""
        return Position(self.board_class().fen(), self.tag)

    def position_from_fen(self, fen: str) -> Position:
        """Validate a FEN for this variant and wrap it.

        Raises:
            ValueError: If the FEN is malformed or describes an invalid position.
        """
        board = self.board_class(fen)
        if not board.is_valid():
            raise ValueError(f"Invalid position for {self.tag}: {fen}")
        return Position(board.fen(), self.tag)

    def board(self, position: Position) -> chess.Board:
        """Fresh mutable board for a position (callers own the copy)."""
        if position.variant != self.tag:
            raise ValueError(
                f"Position belongs to variant {position.variant}, not {self.tag}"
            )
        return self.board_class(position.fen)

    def with_turn(self, position: Position, color: str) -> Position:
        """Position after ``color``'s opponent passes, so ``color`` is on move.

        The pass is a null move: placement is unchanged, the en-passant right
        is dropped and the move counters advance as for any other move.

        Raises:
            IllegalMoveError: If passing would leave the side that passed in
                check, i.e. ``color`` could capture the king.
        """
        board = self.board(position)
        if board.turn == _color_value(color):
            return position
        board.push(chess.Move.null())
        if not board.is_valid():
            raise IllegalMoveError(
                "--", position.fen, f"{_color_name(not board.turn)} is in check and cannot pass"
            )
        return Position(board.fen(), self.tag)

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def legal_moves(self, position: Position) -> frozenset[Move]:
        board = self.board(position)
        return frozenset(self._to_move(board, m) for m in board.legal_moves)

    def apply(self, position: Position, move: Move) -> Position:
        """Play a move and return the resulting position.

        Raises:
            IllegalMoveError: If the move is not legal in ``position``.
        """
        board = self.board(position)
        chess_move = self._legal_chess_move(board, move.uci)
        board.push(chess_move)
        return Position(board.fen(), self.tag)

    def parse_move(self, position: Position, text: str) -> Move:
        """Resolve SAN or UCI text to a legal move.

        Args:
            position: Position the move is played from.
            text: Move in SAN (``Nf3``, ``O-O``) or coordinate form (``g1f3``).

        Returns:
            The matching legal Move.

        Raises:
            IllegalMoveError: If the text is malformed, ambiguous or illegal.
        """
        cleaned = (text or "").strip()
        if not cleaned:
            raise IllegalMoveError(text or "", position.fen, "empty move")
        board = self.board(position)
        try:
            chess_move = board.parse_san(cleaned)
        except ValueError:
            try:
                chess_move = self._legal_chess_move(board, cleaned.lower())
            except IllegalMoveError:
                raise IllegalMoveError(
                    cleaned, position.fen, f"not legal in {self.tag}"
                ) from None
        return self._to_move(board, chess_move)

    def from_coordinate(self, position: Position, uci: str) -> Move:
        board = self.board(position)
        return self._to_move(board, self._legal_chess_move(board, uci))

    def move_record(self, board: chess.Board, chess_move: chess.Move) -> Move:
        """Describe a move that is legal on ``board`` before it is pushed."""
        return self._to_move(board, chess_move)

    def to_coordinate(self, move: Move) -> str:
        return move.uci

    def to_algebraic(self, position: Position, move: Move) -> str:
        board = self.board(position)
        return board.san(self._legal_chess_move(board, move.uci))

    def random_move(self, position: Position, rng: random.Random | None = None) -> Move | None:
        """Uniformly random legal move, or None when there is none."""
        moves = sorted(self.legal_moves(position), key=lambda m: m.uci)
        if not moves:
            return None
        return (rng or random).choice(moves)

    # ------------------------------------------------------------------
    # Game state
    # ------------------------------------------------------------------

    def is_terminal(self, position: Position) -> TerminalState:
        board = self.board(position)

        variant_win = None
        if board.is_variant_end():
            if board.is_variant_win():
                variant_win = _color_name(board.turn)
            elif board.is_variant_loss():
                variant_win = _color_name(not board.turn)

        checkmate = variant_win is None and board.is_checkmate()
        stalemate = (
            variant_win is None and not checkmate and board.is_stalemate()
        )
        insufficient = (
            variant_win is None and not checkmate
            and board.is_insufficient_material()
        )
        # Drawn as soon as the fifty-move claim becomes available
        fifty_moves = (
            variant_win is None and not (checkmate or stalemate or insufficient)
            and board.is_fifty_moves()
        )
        return TerminalState(
            checkmate=checkmate,
            stalemate=stalemate,
            insufficient_material=insufficient,
            fifty_moves=fifty_moves,
            variant_win=variant_win,
            winner=_color_name(not board.turn) if checkmate else None,
        )

    def in_check(self, position: Position) -> bool:
        return self.board(position).is_check()

    def king_square(self, position: Position, color: str) -> str | None:
        square = self.board(position).king(_color_value(color))
        return chess.square_name(square) if square is not None else None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _legal_chess_move(self, board: chess.Board, uci: str) -> chess.Move:
        try:
            chess_move = chess.Move.from_uci(uci)
        except ValueError:
            raise IllegalMoveError(uci, board.fen(), "unrecognised notation") from None
        if chess_move not in board.legal_moves:
            raise IllegalMoveError(uci, board.fen(), f"not legal in {self.tag}")
        return chess_move

    @staticmethod
    def _to_move(board: chess.Board, chess_move: chess.Move) -> Move:
        return Move(
            uci=chess_move.uci(),
            san=board.san(chess_move),
            from_square=chess.square_name(chess_move.from_square),
            to_square=chess.square_name(chess_move.to_square),
            promotion=(
                chess.piece_symbol(chess_move.promotion)
                if chess_move.promotion else None
            ),
            is_capture=board.is_capture(chess_move),
        )


VARIANTS: dict[str, VariantRules] = {
    "standard": VariantRules(
        tag="standard",
        name="Standard Chess",
        description="Standard chess rules apply.",
        board_class=chess.Board,
    ),
    "antichess": VariantRules(
        tag="antichess",
        name="Antichess",
        description=(
            "Capture moves are mandatory. First to lose all pieces or to be "
            "stalemated wins!"
        ),
        board_class=chess.variant.AntichessBoard,
    ),
    "atomic": VariantRules(
        tag="atomic",
        name="Atomic Chess",
        description=(
            "Captures cause explosions! Pieces adjacent to a capture are "
            "destroyed (except pawns)."
        ),
        board_class=chess.variant.AtomicBoard,
    ),
    "horde": VariantRules(
        tag="horde",
        name="Horde Chess",
        description=(
            "White commands a horde of pawns and has no king. White wins by "
            "checkmating Black; Black wins by capturing every white piece."
        ),
        board_class=chess.variant.HordeBoard,
    ),
}


def get_rules(tag: str) -> VariantRules:
    """Look up a rule set by tag.

    Raises:
        ValueError: If the tag is unknown.
    """
    try:
        return VARIANTS[tag]
    except KeyError:
        raise ValueError(
            f"Unknown variant: {tag}. Choose from {sorted(VARIANTS)}"
        ) from None


def rules_for_board(board: chess.Board) -> VariantRules | None:
    """Rule set whose board class built ``board``, or None for unsupported variants."""
    for rules in VARIANTS.values():
        if type(board) is rules.board_class:
            return rules
    return None
