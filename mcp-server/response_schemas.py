"""Response schemas and minification for MCP tool responses.

Session snapshots and reviews carry more than an LLM client needs on every
call; these helpers trim them down. The full data stays available through
``get_session`` with ``verbose=True`` and ``get_session_pgn``.

Move lists are rendered as a PGN-style string (1.e4 e5 2.Nf3 ...), which is
natural to read.
"""

from __future__ import annotations

import os


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_session_state(state: dict) -> dict:
    """Minify a session snapshot for an MCP response.

    Compacts move_list to a PGN string, replaces legal_moves with a count and
    keeps mode-specific fields only for the mode that produced them.

    Args:
        state: Snapshot dict from ``GameSession.snapshot()``.

    Returns:
        Minified dict with reduced token footprint.
    """
    result = {}

    for key in (
        "session_id", "variant", "mode", "state", "fen", "turn", "players",
        "current_player", "last_move", "last_move_san", "is_check", "result",
        "reason",
    ):
        if key in state:
            result[key] = state[key]

    move_list = state.get("move_list", [])
    if isinstance(move_list, list):
        result["move_list"] = _moves_to_pgn_string(move_list)
    else:
        result["move_list"] = move_list

    legal_moves = state.get("legal_moves", [])
    result["legal_moves_count"] = len(legal_moves) if isinstance(legal_moves, list) else 0

    # Mode-specific extras
    for key in ("votes", "vote_deadline", "pending", "time_remaining"):
        if key in state:
            result[key] = state[key]

    return result


def minify_submit_result(state: dict, applied: list[dict], queued: bool, voted: bool) -> dict:
    """Combine a submission outcome with the minified session state.

    Args:
        state: Snapshot dict after the submission.
        applied: Moves applied by the submission, as dicts with uci and san.
        queued: Whether the move is waiting on a window or delay.
        voted: Whether the submission was counted as a vote.

    Returns:
        Minified session state plus ``applied``, ``queued`` and ``voted``.
    """
    result = minify_session_state(state)
    result["applied"] = [m["san"] for m in applied]
    result["queued"] = queued
    result["voted"] = voted
    return result


def minify_review(review: dict) -> dict:
    """Minify a GameReview dict for an MCP response.

    Drops per-move FENs and collapses each move to ``san``, classification
    and, for losing moves, the engine's suggestion.

    Args:
        review: GameReview as produced by ``dataclasses.asdict``.

    Returns:
        Minified dict.
    """
    moves = []
    for move in review.get("moves", []):
        entry = {
            "ply": move.get("ply"),
            "san": move.get("san"),
            "classification": _enum_value(move.get("classification")),
            "eval": move.get("evaluation"),
        }
        if entry["classification"] in ("blunder", "mistake", "inaccuracy"):
            entry["best"] = move.get("best_move")
        moves.append(entry)

    # Only non-zero counts
    summary = {}
    for label, counts in review.get("summary", {}).items():
        non_zero = {color: n for color, n in counts.items() if n}
        if non_zero:
            summary[label] = non_zero

    return {
        "white": review.get("headers", {}).get("White"),
        "black": review.get("headers", {}).get("Black"),
        "result": review.get("headers", {}).get("Result"),
        "opening_skip": review.get("opening_skip", 0),
        "accuracy": review.get("accuracy", {}),
        "summary": summary,
        "moves": moves,
    }


def minify_analysis(analysis: dict) -> dict:
    """Minify a position report, removing null score keys.

    Args:
        analysis: Dict with fen, best_move, score_cp, mate, evaluation.

    Returns:
        Minified dict.
    """
    result = {
        "fen": analysis.get("fen"),
        "best_move": analysis.get("best_move"),
        "evaluation": analysis.get("evaluation"),
    }
    for key in ("score_cp", "mate"):
        if analysis.get(key) is not None:
            result[key] = analysis[key]
    return result


def _enum_value(value):
    return getattr(value, "value", value)


# ---------------------------------------------------------------------------
# Helper: move list to PGN string
# ---------------------------------------------------------------------------


def _moves_to_pgn_string(moves: list[str]) -> str:
    """Convert a list of SAN moves to a PGN move string.

    E.g., ['e4', 'e5', 'Nf3', 'Nc6'] -> '1.e4 e5 2.Nf3 Nc6'

    Args:
        moves: List of SAN move strings.

    Returns:
        PGN-formatted move string.
    """
    parts = []
    for i, move in enumerate(moves):
        if i % 2 == 0:
            parts.append(f"{i // 2 + 1}.{move}")
        else:
            parts.append(move)
    return " ".join(parts)


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

SESSION_STATE_SCHEMA = {
    "session_id": str,
    "variant": str,
    "mode": str,
    "state": str,
    "fen": str,
    "turn": str,
    "players": list,
    "current_player": (str, type(None)),
    "last_move": (str, type(None)),
    "last_move_san": (str, type(None)),
    "is_check": bool,
    "result": (str, type(None)),
    "reason": (str, type(None)),
    "move_list": str,
    "legal_moves_count": int,
}

SUBMIT_RESULT_SCHEMA = {
    **SESSION_STATE_SCHEMA,
    "applied": list,
    "queued": bool,
    "voted": bool,
}

REVIEW_SCHEMA = {
    "opening_skip": int,
    "accuracy": dict,
    "summary": dict,
    "moves": list,
}

ANALYSIS_SCHEMA = {
    "fen": str,
    "best_move": (str, type(None)),
    "evaluation": str,
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when GAMBIT_VALIDATE=1 env var is set.

    Args:
        response: Response dict to validate.
        schema: Dict mapping key names to expected types (or tuple of types).

    Returns:
        List of validation error strings (empty = valid).
    """
    if os.environ.get("GAMBIT_VALIDATE") != "1":
        return []

    if not isinstance(response, dict):
        return [f"Response is not a dict: {type(response).__name__}"]

    errors = []
    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue
        value = response[key]
        if not isinstance(value, expected_types):
            if isinstance(expected_types, tuple):
                expected = "(" + ", ".join(t.__name__ for t in expected_types) + ")"
            else:
                expected = expected_types.__name__
            errors.append(f"Key '{key}': expected {expected}, got {type(value).__name__}")
    return errors
