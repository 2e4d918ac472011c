"""Portable game notation reader and writer.

Reading goes through ``chess.pgn.read_game`` and walks the main line only;
side variations are ignored. Illegal or unreadable moves end the main line
early and are reported through ``ParsedGame.error`` instead of raising, so
callers always get whatever could be reconstructed. Null moves (``--``)
are kept as entries without a ``move`` so out-of-turn play round-trips.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Iterable

import chess
import chess.pgn

from gambit.models import BLACK, WHITE, Move, Position
from gambit.variants import VariantRules, get_rules, rules_for_board

logger = logging.getLogger(__name__)

_GLYPHS = {
    chess.pgn.NAG_GOOD_MOVE: "!",
    chess.pgn.NAG_MISTAKE: "?",
    chess.pgn.NAG_BRILLIANT_MOVE: "!!",
    chess.pgn.NAG_BLUNDER: "??",
    chess.pgn.NAG_SPECULATIVE_MOVE: "!?",
    chess.pgn.NAG_DUBIOUS_MOVE: "?!",
}

_TAG_PATTERNS = (chess.pgn.EVAL_REGEX, chess.pgn.CLOCK_REGEX, chess.pgn.ARROWS_REGEX)


@dataclass
class NotationMove:
    """One main-line move with its annotations. ``move`` is None for a null move."""

    san: str
    side: str
    glyph: str | None = None
    nags: frozenset[int] = frozenset()
    comment: str | None = None
    clean_comment: str | None = None
    move: Move | None = None

    @property
    def is_null(self) -> bool:
        return self.move is None


@dataclass
class PositionMeta:
    """Per-position details gathered during replay."""

    in_check: bool = False
    is_checkmate: bool = False
    check_square: str | None = None
    # Pawns from White's point of view; ``mate`` is set instead for mate scores
    eval: float | None = None
    mate: int | None = None
    # Last known remaining time per side, in seconds
    clocks: dict[str, float | None] = field(
        default_factory=lambda: {WHITE: None, BLACK: None}
    )
    comment: str | None = None
    glyph: str | None = None


@dataclass
class ParsedGame:
    """Result of ``parse``: positions[0] is the start, positions[i + 1] follows moves[i]."""

    headers: dict[str, str]
    moves: list[NotationMove]
    positions: list[Position]
    meta: list[PositionMeta]
    variant: str = "standard"
    intro_comment: str | None = None
    # Index of the first move that could not be replayed, if any
    stopped_at: int | None = None
    error: str | None = None

    @property
    def played(self) -> list[Move]:
        """Real moves in order, null moves left out."""
        return [m.move for m in self.moves if m.move is not None]


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------


def clean_comment(comment: str | None) -> str | None:
    """Comment text with ``[%eval]``, ``[%clk]`` and arrow tags removed."""
    if not comment:
        return None
    for pattern in _TAG_PATTERNS:
        comment = pattern.sub(" ", comment)
    return " ".join(comment.split()) or None


def glyph_for(nags: Iterable[int]) -> str | None:
    """Move-quality glyph (``!``, ``?!`` ...) for the first such NAG, if any."""
    for nag in sorted(nags):
        if nag in _GLYPHS:
            return _GLYPHS[nag]
    return None


def _node_eval(node: chess.pgn.ChildNode) -> tuple[float | None, int | None]:
    score = node.eval()
    if score is None:
        return None, None
    white = score.white()
    if white.is_mate():
        return None, white.mate()
    return white.score() / 100, None


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------


def _position_meta(rules: VariantRules, position: Position, **extra) -> PositionMeta:
    in_check = rules.in_check(position)
    terminal = rules.is_terminal(position)
    return PositionMeta(
        in_check=in_check,
        is_checkmate=terminal.checkmate,
        check_square=rules.king_square(position, position.turn) if in_check else None,
        **extra,
    )


def _empty(headers: dict[str, str], error: str | None) -> ParsedGame:
    rules = get_rules("standard")
    start = rules.initial_position()
    return ParsedGame(
        headers=headers,
        moves=[],
        positions=[start],
        meta=[_position_meta(rules, start)],
        stopped_at=0 if error else None,
        error=error,
    )


def parse(text: str) -> ParsedGame:
    """Parse notation text into headers, moves and replayed positions.

    Replay starts from the ``FEN`` header when one is present and uses the
    rules named by the ``Variant`` header (standard chess otherwise). The
    first move that cannot be read ends the main line; the positions and
    moves gathered before that point are returned.

    Args:
        text: Raw PGN text (headers optional).

    Returns:
        ParsedGame. Never raises for malformed move text.
    """
    game = chess.pgn.read_game(io.StringIO(text or ""))
    if game is None:
        return _empty({}, None)

    headers = dict(game.headers)
    error = str(game.errors[0]) if game.errors else None
    try:
        board = game.board()
    except ValueError as exc:
        logger.warning("unusable start position: %s", exc)
        return _empty(headers, error or str(exc))

    rules = rules_for_board(board)
    if rules is None:
        return _empty(headers, f"Unsupported variant: {type(board).uci_variant}")

    position = Position(board.fen(), rules.tag)
    positions = [position]
    meta = [_position_meta(rules, position)]
    clocks: dict[str, float | None] = {WHITE: None, BLACK: None}
    moves: list[NotationMove] = []

    for node in game.mainline():
        side = WHITE if board.turn == chess.WHITE else BLACK
        if node.move:
            move = rules.move_record(board, node.move)
            entry = NotationMove(san=move.san, side=side, move=move)
        else:
            entry = NotationMove(san="--", side=side)
        board.push(node.move)

        entry.nags = frozenset(node.nags)
        entry.glyph = glyph_for(node.nags)
        entry.comment = node.comment or None
        entry.clean_comment = clean_comment(node.comment)
        clock = node.clock()
        if clock is not None:
            clocks[side] = clock
        eval_pawns, mate = _node_eval(node)

        position = Position(board.fen(), rules.tag)
        positions.append(position)
        meta.append(
            _position_meta(
                rules,
                position,
                eval=eval_pawns,
                mate=mate,
                clocks=dict(clocks),
                comment=entry.clean_comment,
                glyph=entry.glyph,
            )
        )
        moves.append(entry)

    if error:
        logger.debug("replay stopped at move %d: %s", len(moves), error)

    return ParsedGame(
        headers=headers,
        moves=moves,
        positions=positions,
        meta=meta,
        variant=rules.tag,
        intro_comment=game.comment or None,
        stopped_at=len(moves) if error else None,
        error=error,
    )


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


def export_pgn(
    moves: Iterable[Move],
    headers: dict[str, str] | None = None,
    starting_fen: str | None = None,
    variant: str = "standard",
) -> str:
    """Serialize a move sequence as PGN.

    Args:
        moves: Moves in play order.
        headers: Extra tag pairs (Event, White, Black, Result, ...).
        starting_fen: Start position when it differs from the variant default.
        variant: Rule variant tag.

    Returns:
        PGN text.
    """
    rules = get_rules(variant)
    start = (
        Position(starting_fen, variant) if starting_fen else rules.initial_position()
    )
    board = rules.board(start)

    game = chess.pgn.Game()
    if variant != "standard" or start != rules.initial_position():
        game.setup(board)
    for key, value in (headers or {}).items():
        game.headers[key] = value

    node = game
    for move in moves:
        played = chess.Move.from_uci(move.uci)
        piece = board.piece_at(played.from_square)
        if piece is not None and piece.color != board.turn:
            # Out-of-turn move (simultaneous play): pass with a null move
            node = node.add_variation(chess.Move.null())
            board.push(chess.Move.null())
        node = node.add_variation(played)
        board.push(played)
    return str(game)
