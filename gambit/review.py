"""Game review: annotate every move of a finished game.

Pipeline:
- parse the notation into positions (gambit.pgn)
- skip a short theoretical opening prefix
- analyze the remaining positions through the engine pool in batches of the
  pool size, awaiting each batch before sending the next
- classify every judged move from the evaluation swing it caused
- aggregate per-side counts and an accuracy score

CLI:
    python -m gambit.review game.pgn [--approximate] [--time-ms 2000]
"""

from __future__ import annotations

import argparse
import logging
import random
import sys
from pathlib import Path

import chess

from gambit.config import Settings, log_level
from gambit.engine import describe_evaluation
from gambit.errors import EngineError, NotationParseError
from gambit.models import (
    BLACK,
    WHITE,
    AnalysisResult,
    AnnotatedMove,
    Classification,
    GameReview,
    Position,
)
from gambit.pgn import ParsedGame, parse
from gambit.pool import EnginePool
from gambit.variants import get_rules

logger = logging.getLogger(__name__)

_MATE_SCORE = 10000
_OPENING_SKIP_MAX = 6

# Evaluation swing (mover's view) -> classification, checked in order
_CLASSIFICATION_THRESHOLDS = [
    (-200, Classification.BLUNDER),
    (-100, Classification.MISTAKE),
    (-50, Classification.INACCURACY),
]
_EXCELLENT_GAIN = 50

# Average of these is subtracted from 100 for the accuracy score
_ACCURACY_PENALTIES = {
    Classification.BLUNDER: 10.0,
    Classification.MISTAKE: 5.0,
    Classification.INACCURACY: 2.0,
    Classification.GOOD: -0.5,
    Classification.EXCELLENT: -1.0,
    Classification.BRILLIANT: -2.0,
}

_PIECE_VALUES = {
    chess.PAWN: 1,
    chess.KNIGHT: 3,
    chess.BISHOP: 3,
    chess.ROOK: 5,
    chess.QUEEN: 9,
    chess.KING: 0,
}


def opening_skip(position_count: int) -> int:
    """Number of leading moves treated as theory and left unjudged."""
    return min(_OPENING_SKIP_MAX, position_count // 4)


def score_from_result(result: AnalysisResult | None) -> int | None:
    """Centipawn score for the side to move, with mates mapped near +-_MATE_SCORE."""
    if result is None:
        return None
    if result.mate is not None:
        if result.mate == 0:
            return -_MATE_SCORE
        sign = 1 if result.mate > 0 else -1
        return sign * (_MATE_SCORE - abs(result.mate))
    if result.score_cp is not None:
        return result.score_cp
    return 0


def is_best_move(played_uci: str, best_uci: str | None) -> bool:
    if not best_uci:
        return False
    return played_uci == best_uci


def is_sacrifice(fen: str, uci: str) -> bool:
    """Whether a move leaves material en prise for less than it is worth.

    The moved piece (knight or bigger) must land on a square the opponent can
    take it on, either with a cheaper piece or with no defender around, and the
    capture it made (if any) must not pay for it.
    """
    board = chess.Board(fen)
    move = chess.Move.from_uci(uci)
    piece = board.piece_at(move.from_square)
    if piece is None:
        return False
    moved_value = _PIECE_VALUES[move.promotion or piece.piece_type]
    if moved_value < 3:
        return False

    if board.is_en_passant(move):
        captured_value = 1
    else:
        captured = board.piece_at(move.to_square)
        captured_value = _PIECE_VALUES[captured.piece_type] if captured else 0
    if captured_value >= moved_value:
        return False

    board.push(move)
    attackers = board.attackers(board.turn, move.to_square)
    if not attackers:
        return False
    cheapest = min(_PIECE_VALUES[board.piece_type_at(sq)] or 100 for sq in attackers)
    defended = bool(board.attackers(not board.turn, move.to_square))
    return cheapest < moved_value or not defended


def classify_move(
    delta: int, is_best: bool, sacrifice: bool = False
) -> tuple[Classification, str]:
    """Classify a move from its evaluation swing.

    Args:
        delta: Evaluation after minus before, in centipawns, from the mover's
            point of view (negative means ground was lost).
        is_best: Whether the move matches the engine's top choice.
        sacrifice: Whether the move gives up material (see is_sacrifice).

    Returns:
        Tuple of (classification, human-readable rationale).
    """
    for threshold, label in _CLASSIFICATION_THRESHOLDS:
        if delta <= threshold:
            return label, f"Loses {abs(delta)} centipawns"
    if is_best:
        if sacrifice:
            return Classification.BRILLIANT, "Brilliant! Best move, and a sacrifice"
        return Classification.GOOD, "Best move"
    if delta >= _EXCELLENT_GAIN:
        return Classification.EXCELLENT, f"Great move! Gains {delta} centipawns"
    if delta >= 0:
        return Classification.GOOD, "Good move"
    return Classification.GOOD, "Acceptable move"


def calculate_accuracy(moves: list[AnnotatedMove]) -> dict[str, float]:
    """Per-side accuracy in [0, 100] from the classification penalties."""
    accuracy = {}
    for color in (WHITE, BLACK):
        penalties = [
            _ACCURACY_PENALTIES[m.classification] for m in moves if m.color == color
        ]
        if not penalties:
            accuracy[color] = 100.0
            continue
        score = 100.0 - sum(penalties) / len(penalties)
        accuracy[color] = round(max(0.0, min(100.0, score)), 1)
    return accuracy


def empty_summary() -> dict[str, dict[str, int]]:
    return {c.value: {WHITE: 0, BLACK: 0} for c in Classification}


class GameReviewer:
    """Annotates games using an EnginePool."""

    def __init__(
        self,
        pool: EnginePool,
        search_time_ms: int | None = None,
        approximate: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        """Create a reviewer.

        Args:
            pool: Engine pool used for every analysis request.
            search_time_ms: Per-position budget. Defaults to the pool settings.
            approximate: Analyze only pre-move positions and estimate the loss
                of non-best moves instead of measuring it. Halves engine load.
            rng: Random source for the approximate estimate.
        """
        self._pool = pool
        self._search_time_ms = search_time_ms or pool.settings.search_time_ms
        self._approximate = approximate
        self._rng = rng or random.Random()

    def review_game(self, notation: str) -> GameReview:
        """Review a game given as PGN text.

        Raises:
            NotationParseError: If not a single move could be replayed.
        """
        parsed = parse(notation)
        if not parsed.played:
            raise NotationParseError(parsed.error or "Could not parse any moves")
        return self.review_parsed(parsed)

    def review_parsed(self, parsed: ParsedGame) -> GameReview:
        skip = opening_skip(len(parsed.positions))
        judged = [
            i for i in range(skip, len(parsed.moves)) if not parsed.moves[i].is_null
        ]
        logger.info(
            "reviewing %d moves (skipping %d opening moves) with %d engines",
            len(judged),
            skip,
            self._pool.size,
        )

        if self._approximate:
            wanted = [parsed.positions[i] for i in judged]
        else:
            wanted = parsed.positions[skip:]
        results = self._analyze_batched(wanted)

        review = GameReview(
            headers=dict(parsed.headers), summary=empty_summary(), opening_skip=skip
        )
        for offset, index in enumerate(judged):
            if self._approximate:
                before, after = results[offset], None
            else:
                before, after = results[index - skip], results[index + 1 - skip]
            annotated = self._annotate(parsed, index, before, after)
            review.moves.append(annotated)
            review.summary[annotated.classification.value][annotated.color] += 1

        review.accuracy = calculate_accuracy(review.moves)
        return review

    def position_report(self, fen: str) -> dict:
        """Evaluate a single position, White's point of view."""
        result = self._pool.analyze(fen, search_time_ms=self._search_time_ms)
        sign = 1 if Position(fen).turn == WHITE else -1
        score = result.score_cp * sign if result.score_cp is not None else None
        mate = result.mate * sign if result.mate is not None else None
        return {
            "fen": fen,
            "best_move": result.best_move,
            "score_cp": score,
            "mate": mate,
            "evaluation": describe_evaluation(score, mate),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _analyze_batched(self, positions: list[Position]) -> list[AnalysisResult | None]:
        results: list[AnalysisResult | None] = []
        batch_size = self._pool.size
        for start in range(0, len(positions), batch_size):
            batch = positions[start:start + batch_size]
            futures = [
                self._pool.submit(p, search_time_ms=self._search_time_ms) for p in batch
            ]
            for position, future in zip(batch, futures):
                try:
                    results.append(future.result())
                except EngineError as exc:
                    logger.warning("analysis failed for %s: %s", position.fen, exc)
                    results.append(None)
        return results

    def _annotate(
        self,
        parsed: ParsedGame,
        index: int,
        before: AnalysisResult | None,
        after: AnalysisResult | None,
    ) -> AnnotatedMove:
        notation_move = parsed.moves[index]
        move = notation_move.move
        color = notation_move.side
        before_position = parsed.positions[index]
        after_position = parsed.positions[index + 1]

        annotated = AnnotatedMove(
            ply=index + 1,
            san=move.san,
            uci=move.uci,
            color=color,
            fen_after=after_position.fen,
            evaluation=None,
            classification=Classification.GOOD,
            rationale="Unable to analyze",
            best_move=before.best_move if before else None,
        )

        before_score = score_from_result(before)
        if before_score is None:
            return annotated
        best = is_best_move(move.uci, before.best_move)

        if self._approximate:
            delta = 0 if best else self._estimated_loss(before_score)
            after_score = before_score + delta
            sacrifice = False
        else:
            after_score = self._score_after(after_position, after)
            if after_score is None:
                return annotated
            delta = after_score - before_score
            sacrifice = best and is_sacrifice(before_position.fen, move.uci)

        classification, rationale = classify_move(delta, best, sacrifice)
        if self._approximate and not best:
            rationale = f"{rationale} (estimated)"
        annotated.classification = classification
        annotated.rationale = rationale
        annotated.evaluation = after_score if color == WHITE else -after_score
        return annotated

    @staticmethod
    def _score_after(position: Position, result: AnalysisResult | None) -> int | None:
        """Score of the position after a move, from the mover's point of view."""
        terminal = get_rules(position.variant).is_terminal(position)
        if terminal.checkmate:
            return _MATE_SCORE
        if terminal.is_over:
            return 0
        score = score_from_result(result)
        return None if score is None else -score

    def _estimated_loss(self, before_score: int) -> int:
        """Synthetic evaluation loss; larger when the position was already lopsided."""
        magnitude = abs(before_score)
        if magnitude < 100:
            scale = 60.0
        elif magnitude < 300:
            scale = 120.0
        else:
            scale = 250.0
        return -round(self._rng.expovariate(1.0 / scale))


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


def main() -> None:
    """CLI entry point for review.py."""
    from gambit.report import print_review

    logging.basicConfig(level=log_level())
    parser = argparse.ArgumentParser(description="Review a PGN game with Stockfish")
    parser.add_argument("pgn", type=Path, help="PGN file to review")
    parser.add_argument(
        "--approximate", action="store_true", help="Estimate losses (half the engine load)"
    )
    parser.add_argument("--time-ms", type=int, default=None, help="Search time per position")
    args = parser.parse_args()

    try:
        text = args.pgn.read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Cannot read {args.pgn}: {exc}", file=sys.stderr)
        sys.exit(1)

    settings = Settings.from_env()
    with EnginePool(settings=settings) as pool:
        reviewer = GameReviewer(pool, search_time_ms=args.time_ms, approximate=args.approximate)
        try:
            review = reviewer.review_game(text)
        except NotationParseError as exc:
            print(f"Could not parse PGN: {exc}", file=sys.stderr)
            sys.exit(1)
    print_review(review)


if __name__ == "__main__":
    main()
