"""MCP server for Gambit.

Exposes game sessions, position analysis and game review as FastMCP tools.
Sessions live in one SessionRegistry owned by this module; its sweeper thread
runs for as long as the server does. Every tool returns a plain dict, and
failures come back as ``{"error": "..."}`` instead of raising.
"""

from __future__ import annotations

import logging
import sys
from collections import deque
from dataclasses import asdict
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP  # noqa: E402

from gambit.config import Settings, log_level  # noqa: E402
from gambit.errors import EngineError, GambitError  # noqa: E402
from gambit.models import Move  # noqa: E402
from gambit.pool import EnginePool  # noqa: E402
from gambit.registry import SessionRegistry, SweepReport  # noqa: E402
from gambit.review import GameReviewer  # noqa: E402
from gambit.session import GameSession, SubmitResult  # noqa: E402
from gambit.variants import get_rules  # noqa: E402

from response_schemas import (  # noqa: E402
    minify_analysis,
    minify_review,
    minify_session_state,
    minify_submit_result,
)

logger = logging.getLogger(__name__)

mcp = FastMCP("gambit")

_settings = Settings.from_env()
_pool = EnginePool(settings=_settings)

# Deadline events and sweeper-applied moves the clients have not seen yet
_recent_events: deque[dict] = deque(maxlen=200)


def _remember_sweep(report: SweepReport) -> None:
    _recent_events.extend(_report_events(report))


_registry = SessionRegistry(_settings, pool=_pool, on_sweep=_remember_sweep)


def _move_dict(move: Move) -> dict:
    return {"uci": move.uci, "san": move.san}


def _report_events(report: SweepReport) -> list[dict]:
    events = []
    for session_id, moves in report.applied.items():
        events.append({
            "kind": "moves",
            "session_id": session_id,
            "moves": [m.san for m in moves],
        })
    for event in report.deadline_events:
        events.append(asdict(event))
    for session_id in report.evicted:
        events.append({"kind": "evicted", "session_id": session_id})
    return events


def _submission_response(session: GameSession, outcome: SubmitResult) -> dict:
    return minify_submit_result(
        session.snapshot(),
        [_move_dict(m) for m in outcome.applied],
        outcome.queued,
        outcome.voted,
    )


# ---------------------------------------------------------------------------
# Session tools
# ---------------------------------------------------------------------------


@mcp.tool()
def new_session(
    channel_id: str,
    player: str,
    opponent: str | None = None,
    variant: str = "standard",
    mode: str | None = None,
    player_color: str = "white",
    starting_fen: str | None = None,
) -> dict:
    """Start a new game session in a channel.

    Args:
        channel_id: Channel (or conversation) the game belongs to.
        player: Identity of the player creating the game.
        opponent: Opponent identity, 'stockfish', 'random', or None to open
            a challenge anyone can join. Voting games ignore it.
        variant: 'standard', 'antichess', 'atomic', 'horde', or a legacy type
            ('realtime', 'servervs', 'correspondence', 'blitz').
        mode: Coordination mode override ('alternating', 'simultaneous',
            'voting', 'reaction', 'correspondence').
        player_color: 'white' or 'black'. Default 'white'.
        starting_fen: Optional custom starting position FEN.

    Returns:
        Minified session state.
    """
    players = [player, opponent] if player_color == "white" else [opponent, player]
    options = {"starting_fen": starting_fen} if starting_fen else {}
    try:
        session = _registry.create_session(channel_id, players, variant, mode, **options)
    except (GambitError, ValueError) as exc:
        return {"error": str(exc)}
    return minify_session_state(session.snapshot())


@mcp.tool()
def join_session(session_id: str, player: str) -> dict:
    """Accept an open challenge.

    Args:
        session_id: Session waiting for a second player.
        player: Identity taking the open seat.

    Returns:
        Minified session state, including any automated reply.
    """
    try:
        session = _registry.get(session_id)
        outcome = session.join(player)
    except (GambitError, ValueError) as exc:
        return {"error": str(exc)}
    return _submission_response(session, outcome)


@mcp.tool()
def submit_move(
    session_id: str, player: str, move: str, speed: str | None = None
) -> dict:
    """Submit a move in SAN or coordinate notation.

    The session's coordination mode decides what happens: alternating games
    apply the move at once, simultaneous games queue it for the window,
    voting games count it as a vote while the collective is on move.

    Args:
        session_id: Target session.
        player: Identity submitting the move.
        move: Move text (e.g., 'e4', 'Nf3', 'e2e4', 'O-O').
        speed: Reaction-mode speed: 'instant', 'deliberate' or 'normal'.

    Returns:
        Minified session state plus applied moves, queued and voted flags.
    """
    try:
        session = _registry.get(session_id)
        outcome = session.submit_move(move, player, speed)
    except (GambitError, ValueError) as exc:
        return {"error": str(exc)}
    return _submission_response(session, outcome)


@mcp.tool()
def vote(session_id: str, player: str, move: str) -> dict:
    """Vote for the collective's next move in a voting game.

    Args:
        session_id: Voting session.
        player: Voter identity (the opposing player cannot vote).
        move: Move text.

    Returns:
        Minified session state with the current tally.
    """
    try:
        session = _registry.get(session_id)
        outcome = session.vote(move, player)
    except (GambitError, ValueError) as exc:
        return {"error": str(exc)}
    return _submission_response(session, outcome)


@mcp.tool()
def resign(session_id: str, player: str) -> dict:
    """Resign a game.

    Args:
        session_id: Active session.
        player: Seated player resigning.

    Returns:
        Minified final state plus the outcome and any rating change.
    """
    try:
        session = _registry.get(session_id)
        outcome = session.resign(player)
    except GambitError as exc:
        return {"error": str(exc)}
    result = minify_session_state(session.snapshot())
    result["winner"] = outcome.winner
    result["rating_delta"] = asdict(outcome.rating_delta) if outcome.rating_delta else None
    return result


@mcp.tool()
def get_session(
    session_id: str | None = None,
    channel_id: str | None = None,
    verbose: bool = False,
) -> dict:
    """Get a session by id or by channel.

    Args:
        session_id: Session id.
        channel_id: Channel whose current game to return.
        verbose: Return the full snapshot (legal move list, raw move list).

    Returns:
        Session state dict.
    """
    try:
        if session_id:
            session = _registry.get(session_id)
        elif channel_id:
            session = _registry.get_by_channel(channel_id)
        else:
            return {"error": "Provide session_id or channel_id"}
    except GambitError as exc:
        return {"error": str(exc)}
    snapshot = session.snapshot()
    return snapshot if verbose else minify_session_state(snapshot)


@mcp.tool()
def get_session_pgn(session_id: str) -> dict:
    """Export a session's moves as PGN.

    Args:
        session_id: Session id.

    Returns:
        Dict with 'pgn' string and 'move_count'.
    """
    try:
        session = _registry.get(session_id)
    except GambitError as exc:
        return {"error": str(exc)}
    return {"pgn": session.to_pgn(), "move_count": len(session.history)}


@mcp.tool()
def poll_sessions(now: float | None = None) -> dict:
    """Resolve due timers now and return everything that happened since last poll.

    Closes simultaneous windows and vote deadlines, releases deliberate moves,
    times out correspondence players and evicts idle sessions.

    Args:
        now: Clock override in epoch seconds (for replays and tests).

    Returns:
        Dict with 'events' list and registry 'stats'.
    """
    report = _registry.sweep(now)
    events = list(_recent_events) + _report_events(report)
    _recent_events.clear()
    return {"events": events, "stats": _registry.stats()}


# ---------------------------------------------------------------------------
# Analysis tools
# ---------------------------------------------------------------------------


@mcp.tool()
def analyze_position(fen: str, search_time_ms: int | None = None) -> dict:
    """Evaluate a position with Stockfish.

    Does not require a session.

    Args:
        fen: FEN string of the position to analyze.
        search_time_ms: Search budget. Default from GAMBIT_SEARCH_TIME_MS.

    Returns:
        Dict with fen, best_move, evaluation text and score_cp or mate.
    """
    try:
        position = get_rules("standard").position_from_fen(fen)
    except ValueError as exc:
        return {"error": f"Invalid FEN: {exc}"}

    reviewer = GameReviewer(_pool, search_time_ms=search_time_ms)
    try:
        report = reviewer.position_report(position.fen)
    except EngineError as exc:
        return {"error": f"Engine error: {exc}"}
    return minify_analysis(report)


@mcp.tool()
def review_game(pgn: str, approximate: bool = False) -> dict:
    """Annotate every move of a game with a quality classification.

    Args:
        pgn: Game in PGN (headers optional).
        approximate: Analyze only pre-move positions and estimate losses.
            Faster, less precise.

    Returns:
        Dict with accuracy per side, classification counts and per-move notes.
    """
    reviewer = GameReviewer(_pool, approximate=approximate)
    try:
        review = reviewer.review_game(pgn)
    except GambitError as exc:
        return {"error": str(exc)}
    return minify_review(asdict(review))


def main() -> None:
    logging.basicConfig(level=log_level())
    _registry.start()
    try:
        mcp.run()
    finally:
        _registry.stop()
        _pool.shutdown(wait=False)


if __name__ == "__main__":
    main()
