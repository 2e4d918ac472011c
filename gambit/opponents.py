"""Automated seats.

``"stockfish"`` asks the engine pool for its best move and falls back to a
random legal move when the engine fails or suggests something illegal in the
active variant. ``"random"`` always plays a uniformly random legal move.
"""

from __future__ import annotations

import logging
import random

from gambit.errors import EngineError, IllegalMoveError
from gambit.models import Move, Position
from gambit.pool import EnginePool
from gambit.variants import VariantRules

logger = logging.getLogger(__name__)

SEAT_ENGINE = "stockfish"
SEAT_RANDOM = "random"
SEAT_COLLECTIVE = "server"

AUTOMATED_SEATS = frozenset({SEAT_ENGINE, SEAT_RANDOM})
SYNTHETIC_SEATS = AUTOMATED_SEATS | {SEAT_COLLECTIVE}

_SEAT_NAMES = {
    SEAT_ENGINE: "Stockfish",
    SEAT_RANDOM: "Random Bot",
    SEAT_COLLECTIVE: "The Server",
}


def seat_name(identity: str | None, index: int) -> str:
    """Display name for a seat occupant."""
    if identity in _SEAT_NAMES:
        return _SEAT_NAMES[identity]
    return f"Player {index + 1}"


def is_automated(identity: str | None) -> bool:
    return identity in AUTOMATED_SEATS


class AutomatedOpponent:
    """Picks moves for automated seats."""

    def __init__(
        self,
        pool: EnginePool | None = None,
        search_time_ms: int = 1000,
        rng: random.Random | None = None,
    ) -> None:
        self._pool = pool
        self._search_time_ms = search_time_ms
        self._rng = rng or random.Random()
        self._warned_no_pool = False

    def choose_move(
        self, identity: str, rules: VariantRules, position: Position
    ) -> Move | None:
        """Move for ``identity`` in ``position``, or None if there is no legal move."""
        if identity == SEAT_ENGINE:
            move = self._engine_move(rules, position)
            if move is not None:
                return move
        return rules.random_move(position, self._rng)

    def _engine_move(self, rules: VariantRules, position: Position) -> Move | None:
        if self._pool is None:
            if not self._warned_no_pool:
                self._warned_no_pool = True
                logger.warning("no engine pool configured, the engine seat plays random moves")
            return None
        try:
            result = self._pool.analyze(position, search_time_ms=self._search_time_ms)
        except EngineError as exc:
            logger.warning("engine move failed, falling back to random: %s", exc)
            return None
        if result.best_move is None:
            return None
        try:
            return rules.from_coordinate(position, result.best_move)
        except IllegalMoveError:
            logger.warning(
                "engine suggested illegal move %s in %s, falling back to random",
                result.best_move,
                rules.tag,
            )
            return None
