"""UCI analysis engine client for Gambit.

Every call to ``analyze_position`` owns one Stockfish process, opened with
``chess.engine.SimpleEngine.popen_uci``. The search is bounded by its budget
plus a grace period, and the engine is always asked to quit and then closed
before returning, whether the call succeeded, timed out or failed.

CLI:
    python -m gambit.engine analyze "<fen>" [--time-ms 2000] [--depth N]
"""

from __future__ import annotations

import argparse
import asyncio
import concurrent.futures
import logging
import shutil
import sys
from pathlib import Path

import chess
import chess.engine

from gambit.config import (
    DEFAULT_ENGINE_GRACE_MS,
    DEFAULT_ENGINE_HASH_MB,
    DEFAULT_ENGINE_THREADS,
    DEFAULT_SEARCH_TIME_MS,
    FAST_DEPTH_THRESHOLD,
    Settings,
    log_level,
)
from gambit.errors import EngineProcessError, EngineTimeoutError
from gambit.models import AnalysisResult

logger = logging.getLogger(__name__)

# Stockfish search paths in priority order
_STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
    "/usr/games/stockfish",
]

# What a SimpleEngine call raises when its deadline passes
_TIMEOUTS = (TimeoutError, asyncio.TimeoutError, concurrent.futures.TimeoutError)


def find_stockfish(explicit: str | None = None) -> str:
    """Auto-detect the Stockfish binary path.

    Checks an explicit path, then known install paths, then PATH.

    Args:
        explicit: Path supplied by configuration. Used as-is when set.

    Returns:
        Path to the Stockfish binary.

    Raises:
        EngineProcessError: If Stockfish is not found anywhere.
    """
    if explicit:
        return explicit

    for path_str in _STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise EngineProcessError(
        "Stockfish not found. Install it or set GAMBIT_STOCKFISH_PATH."
    )


def search_limit(
    search_time_ms: int = DEFAULT_SEARCH_TIME_MS, depth: int | None = None
) -> chess.engine.Limit:
    """Search limit for one analysis.

    A depth below FAST_DEPTH_THRESHOLD asks for a fixed-depth search, capped by
    the time budget; anything else searches for the time budget alone.
    """
    seconds = search_time_ms / 1000.0
    if depth is not None and depth < FAST_DEPTH_THRESHOLD:
        return chess.engine.Limit(depth=depth, time=seconds)
    return chess.engine.Limit(time=seconds)


def score_from_info(info: chess.engine.InfoDict) -> tuple[int | None, int | None]:
    """``(score_cp, mate)`` from the side to move's point of view.

    At most one of the two is set; both are None when the engine reported no
    score.
    """
    score = info.get("score")
    if score is None:
        return None, None
    relative = score.relative
    if relative.is_mate():
        return None, relative.mate()
    return relative.score(), None


def _shutdown(engine: chess.engine.SimpleEngine) -> None:
    try:
        engine.quit()
    except (chess.engine.EngineError, *_TIMEOUTS) as exc:
        logger.debug("engine did not quit cleanly: %s", exc)
    finally:
        engine.close()


def analyze_position(
    fen: str,
    search_time_ms: int = DEFAULT_SEARCH_TIME_MS,
    depth: int | None = None,
    *,
    stockfish_path: str | None = None,
    threads: int = DEFAULT_ENGINE_THREADS,
    hash_mb: int = DEFAULT_ENGINE_HASH_MB,
    grace_ms: int = DEFAULT_ENGINE_GRACE_MS,
) -> AnalysisResult:
    """Analyze one position in a dedicated engine process.

    Args:
        fen: Position to analyze.
        search_time_ms: Time budget for the search.
        depth: Depth budget. Only used when below FAST_DEPTH_THRESHOLD.
        stockfish_path: Engine binary. Auto-detected when None.
        threads: Engine ``Threads`` option.
        hash_mb: Engine ``Hash`` option in MB.
        grace_ms: Extra time on top of the search budget before giving up.

    Returns:
        AnalysisResult with the best move and the last reported score.

    Raises:
        EngineTimeoutError: If no best move arrives in time.
        EngineProcessError: If the process fails to start, rejects an option
            or exits early.
        ValueError: If ``fen`` is malformed.
    """
    binary = find_stockfish(stockfish_path)
    board = chess.Board(fen)
    limit = search_limit(search_time_ms, depth)
    grace_s = grace_ms / 1000.0
    timeout_s = search_time_ms / 1000.0 + grace_s

    logger.debug("analyzing position %s", fen)
    try:
        engine = chess.engine.SimpleEngine.popen_uci(binary, timeout=timeout_s)
    except _TIMEOUTS as exc:
        raise EngineTimeoutError(
            f"Stockfish did not answer the handshake within {timeout_s:.1f}s"
        ) from exc
    except (OSError, chess.engine.EngineError) as exc:
        raise EngineProcessError(f"Stockfish failed to start: {exc}") from exc

    try:
        engine.configure({"Threads": threads, "Hash": hash_mb})
        # play() waits for limit.time plus this
        engine.timeout = grace_s
        result = engine.play(board, limit, info=chess.engine.INFO_SCORE)
    except _TIMEOUTS as exc:
        raise EngineTimeoutError(f"Analysis timeout after {timeout_s:.1f}s") from exc
    except chess.engine.EngineTerminatedError as exc:
        raise EngineProcessError(f"Stockfish exited before bestmove: {exc}") from exc
    except chess.engine.EngineError as exc:
        raise EngineProcessError(f"Stockfish rejected the request: {exc}") from exc
    finally:
        _shutdown(engine)

    score_cp, mate = score_from_info(result.info)
    best = result.move.uci() if result.move else None
    return AnalysisResult(fen=fen, best_move=best, score_cp=score_cp, mate=mate)


def analyze_with_settings(fen: str, settings: Settings, **overrides) -> AnalysisResult:
    """``analyze_position`` with engine options taken from Settings."""
    options = {
        "search_time_ms": settings.search_time_ms,
        "stockfish_path": settings.stockfish_path,
        "threads": settings.engine_threads,
        "hash_mb": settings.engine_hash_mb,
        "grace_ms": settings.engine_grace_ms,
    }
    options.update(overrides)
    return analyze_position(fen, **options)


def describe_evaluation(score_cp: int | None, mate: int | None) -> str:
    """Human-readable summary of a White-perspective evaluation.

    Args:
        score_cp: Centipawns from White's point of view.
        mate: Mate distance from White's point of view (negative: Black mates).

    Returns:
        Phrase such as "White is better" or "Mate in 3".
    """
    if mate is not None:
        return f"Mate in {abs(mate)}"
    if score_cp is None:
        return "Equal position"
    pawns = abs(score_cp) / 100.0
    side = "White" if score_cp > 0 else "Black"
    if pawns >= 5:
        return f"{side} is winning"
    if pawns >= 2:
        return f"{side} is better"
    if pawns >= 0.5:
        return f"{side} is slightly better"
    return "Equal position"


# ---------------------------------------------------------------------------
# CLI interface
# ---------------------------------------------------------------------------


def _cli_analyze(fen: str, time_ms: int, depth: int | None) -> int:
    """Analyze a FEN position and print the verdict.

    Args:
        fen: FEN string of the position to analyze.
        time_ms: Search time budget.
        depth: Optional fast depth budget.

    Returns:
        Process exit code.
    """
    settings = Settings.from_env()
    try:
        result = analyze_with_settings(
            fen, settings, search_time_ms=time_ms, depth=depth
        )
    except (EngineTimeoutError, EngineProcessError) as exc:
        print(f"Analysis failed: {exc}", file=sys.stderr)
        return 1

    white_to_move = fen.split()[1] == "w" if len(fen.split()) > 1 else True
    sign = 1 if white_to_move else -1
    score = result.score_cp * sign if result.score_cp is not None else None
    mate = result.mate * sign if result.mate is not None else None

    print(f"Position: {fen}")
    print(f"Side to move: {'White' if white_to_move else 'Black'}")
    print(f"Best move: {result.best_move or '-'}")
    if mate is not None:
        print(f"Score: mate {mate}")
    elif score is not None:
        print(f"Score: {score / 100.0:+.2f}")
    print(describe_evaluation(score, mate))
    return 0


def main() -> None:
    """CLI entry point for engine.py."""
    logging.basicConfig(level=log_level())
    parser = argparse.ArgumentParser(
        description="UCI analysis engine client - analyze a position"
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    analyze_parser = subparsers.add_parser("analyze", help="Analyze a FEN position")
    analyze_parser.add_argument("fen", type=str, help="FEN string to analyze")
    analyze_parser.add_argument(
        "--time-ms", type=int, default=DEFAULT_SEARCH_TIME_MS, help="Search time budget"
    )
    analyze_parser.add_argument(
        "--depth", type=int, default=None, help="Fast depth budget (below 20)"
    )

    args = parser.parse_args()

    if args.command == "analyze":
        sys.exit(_cli_analyze(args.fen, args.time_ms, args.depth))
    parser.print_help()
    sys.exit(1)


if __name__ == "__main__":
    main()
