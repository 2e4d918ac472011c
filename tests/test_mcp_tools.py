"""Per-tool MCP integration tests verifying minified response shapes.

Every tool runs against a SessionRegistry on the fake analyzer and a manual
clock from conftest.py, so no Stockfish binary is needed.

Run:
    pytest tests/test_mcp_tools.py -v
"""

from __future__ import annotations

import importlib.util
import json
import random
import sys
from collections import deque
from pathlib import Path

import pytest

# Add project root so imports resolve
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_PROJECT_ROOT))

# Import server module from hyphenated directory via importlib
_server_path = _PROJECT_ROOT / "mcp-server" / "server.py"
_spec = importlib.util.spec_from_file_location("mcp_server_tools_test", _server_path)
_server = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(_server)

from gambit.registry import SessionRegistry  # noqa: E402

new_session = _server.new_session
join_session = _server.join_session
submit_move = _server.submit_move
vote = _server.vote
resign = _server.resign
get_session = _server.get_session
get_session_pgn = _server.get_session_pgn
poll_sessions = _server.poll_sessions
analyze_position = _server.analyze_position
review_game = _server.review_game

# Import response schemas for validation
sys.path.insert(0, str(_PROJECT_ROOT / "mcp-server"))
from response_schemas import (  # noqa: E402
    ANALYSIS_SCHEMA,
    ERROR_SCHEMA,
    REVIEW_SCHEMA,
    SESSION_STATE_SCHEMA,
    SUBMIT_RESULT_SCHEMA,
    validate_response,
)

_SCHOLARS_MATE = "1. e4 e5 2. Qh5 Nc6 3. Bc4 Nf6 4. Qxf7# 1-0"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _assert_session_state(response: dict) -> None:
    """Assert a response is a properly minified session snapshot."""
    assert "error" not in response, response.get("error")
    assert "legal_moves" not in response, "legal_moves list should be replaced by legal_moves_count"
    assert isinstance(response["move_list"], str), "move_list must be PGN string"
    errors = validate_response(response, SESSION_STATE_SCHEMA)
    assert not errors, f"Schema validation errors: {errors}"


def _assert_submit_result(response: dict) -> None:
    _assert_session_state(response)
    errors = validate_response(response, SUBMIT_RESULT_SCHEMA)
    assert not errors, f"Schema validation errors: {errors}"


def _assert_error(response: dict, fragment: str | None = None) -> None:
    assert validate_response(response, ERROR_SCHEMA) == []
    if fragment is not None:
        assert fragment in response["error"]


@pytest.fixture(autouse=True)
def registry(monkeypatch, fake_pool, clock, settings):
    """Swap the server's pool and registry for fake-backed ones."""
    registry = SessionRegistry(
        settings, pool=fake_pool, clock=clock, rng=random.Random(1)
    )
    monkeypatch.setattr(_server, "_pool", fake_pool)
    monkeypatch.setattr(_server, "_registry", registry)
    monkeypatch.setattr(_server, "_recent_events", deque(maxlen=200))
    yield registry
    registry.stop()


# ---------------------------------------------------------------------------
# Session tools
# ---------------------------------------------------------------------------


class TestNewSession:

    def test_minified_response_shape(self):
        response = new_session("chan", "alice", "bob")
        _assert_session_state(response)
        assert response["state"] == "active"
        assert response["legal_moves_count"] == 20
        assert response["move_list"] == ""
        assert response["current_player"] == "alice"

    def test_response_size(self):
        response = new_session("chan", "alice", "bob")
        assert len(json.dumps(response)) < 600

    def test_open_challenge(self):
        response = new_session("chan", "alice")
        assert response["state"] == "awaiting_second_player"
        assert response["players"] == ["alice", None]

    def test_black_against_engine_gets_reply(self, fake_analyzer):
        response = new_session("chan", "alice", "stockfish", player_color="black")
        _assert_session_state(response)
        # Fake analyzer answers with the first legal move in UCI order
        assert response["move_list"] == "1.a3"
        assert response["current_player"] == "alice"
        assert len(fake_analyzer.calls) == 1

    def test_duplicate_channel(self):
        new_session("chan", "alice", "bob")
        _assert_error(new_session("chan", "carol", "dave"), "already in progress")

    def test_unknown_variant(self):
        _assert_error(new_session("chan", "alice", "bob", variant="crazyhouse"), "Unknown variant")

    def test_invalid_fen(self):
        _assert_error(new_session("chan", "alice", "bob", starting_fen="not a fen"))

    def test_legacy_variant_sets_mode(self):
        response = new_session("chan", "alice", "bob", variant="blitz")
        assert response["variant"] == "standard"
        assert response["mode"] == "reaction"


class TestJoinSession:

    def test_join_activates(self):
        session_id = new_session("chan", "alice")["session_id"]
        response = join_session(session_id, "bob")
        _assert_submit_result(response)
        assert response["state"] == "active"
        assert response["players"] == ["alice", "bob"]

    def test_join_own_challenge(self):
        session_id = new_session("chan", "alice")["session_id"]
        _assert_error(join_session(session_id, "alice"))

    def test_join_unknown_session(self):
        _assert_error(join_session("missing", "bob"), "No session")


class TestSubmitMove:

    def test_applies_move(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        response = submit_move(session_id, "alice", "e4")
        _assert_submit_result(response)
        assert response["applied"] == ["e4"]
        assert response["queued"] is False
        assert response["last_move"] == "e2e4"
        assert response["current_player"] == "bob"

    def test_not_your_turn(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        _assert_error(submit_move(session_id, "bob", "e5"), "Not your turn")

    def test_illegal_move(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        _assert_error(submit_move(session_id, "alice", "e5"), "Illegal move")

    def test_random_opponent_replies(self):
        session_id = new_session("chan", "alice", "random")["session_id"]
        response = submit_move(session_id, "alice", "e2e4")
        assert response["applied"][0] == "e4"
        assert len(response["applied"]) == 2
        assert response["current_player"] == "alice"

    def test_simultaneous_move_is_queued(self, clock):
        session_id = new_session("chan", "alice", "bob", variant="realtime")["session_id"]
        response = submit_move(session_id, "alice", "e4")
        _assert_submit_result(response)
        assert response["queued"] is True
        assert response["applied"] == []
        assert response["pending"] == ["alice"]
        assert response["current_player"] is None

        polled = poll_sessions(now=clock.now + 3)
        assert {"kind": "moves", "session_id": session_id, "moves": ["e4"]} in polled["events"]

    def test_reaction_speed(self, clock):
        session_id = new_session("chan", "alice", "bob", variant="blitz")["session_id"]
        response = submit_move(session_id, "alice", "e4", speed="deliberate")
        assert response["queued"] is True
        clock.advance(3)
        response = get_session(session_id)
        assert response["pending"] == ["alice"]
        polled = poll_sessions()
        assert polled["events"][0]["moves"] == ["e4"]

    def test_unknown_speed(self):
        session_id = new_session("chan", "alice", "bob", variant="blitz")["session_id"]
        _assert_error(submit_move(session_id, "alice", "e4", speed="warp"))


class TestVote:

    def _voting_game(self) -> str:
        session_id = new_session("chan", "alice", variant="servervs")["session_id"]
        submit_move(session_id, "alice", "e4")
        return session_id

    def test_vote_is_tallied(self):
        session_id = self._voting_game()
        response = vote(session_id, "v1", "e5")
        _assert_submit_result(response)
        assert response["voted"] is True
        assert response["votes"] == {"e7e5": 1}
        assert isinstance(response["vote_deadline"], float)

    def test_seated_player_cannot_vote(self):
        session_id = self._voting_game()
        _assert_error(vote(session_id, "alice", "e5"), "Not your turn")

    def test_early_majority_plays_move(self):
        session_id = self._voting_game()
        vote(session_id, "v1", "e5")
        vote(session_id, "v2", "e7e5")
        response = submit_move(session_id, "v3", "e5")
        assert response["applied"] == ["e5"]
        assert response["current_player"] == "alice"
        assert response["votes"] == {}

    def test_illegal_vote(self):
        session_id = self._voting_game()
        _assert_error(vote(session_id, "v1", "e4"), "Illegal move")

    def test_vote_outside_voting_mode(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        _assert_error(vote(session_id, "v1", "e4"), "mode")


class TestResign:

    def test_resign(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        response = resign(session_id, "alice")
        _assert_session_state(response)
        assert response["state"] == "finished"
        assert response["winner"] == "black"
        assert response["result"] == "0-1"
        assert response["reason"] == "resignation"
        assert response["rating_delta"] is None

    def test_resign_twice(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        resign(session_id, "alice")
        _assert_error(resign(session_id, "bob"), "finished")

    def test_spectator_cannot_resign(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        _assert_error(resign(session_id, "carol"), "not seated")


class TestGetSession:

    def test_by_channel(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        response = get_session(channel_id="chan")
        _assert_session_state(response)
        assert response["session_id"] == session_id

    def test_verbose_returns_full_snapshot(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        submit_move(session_id, "alice", "Nf3")
        response = get_session(session_id, verbose=True)
        assert response["move_list"] == ["Nf3"]
        assert len(response["legal_moves"]) == 20
        assert response["channel_id"] == "chan"

    def test_needs_a_key(self):
        _assert_error(get_session(), "Provide")

    def test_not_found(self):
        _assert_error(get_session("missing"))
        _assert_error(get_session(channel_id="nowhere"))


class TestGetSessionPgn:

    def test_exports_moves(self):
        session_id = new_session("chan", "alice", "bob")["session_id"]
        submit_move(session_id, "alice", "e4")
        submit_move(session_id, "bob", "e5")
        response = get_session_pgn(session_id)
        assert response["move_count"] == 2
        assert "1. e4 e5" in response["pgn"]
        assert '[White "Player 1"]' in response["pgn"]

    def test_not_found(self):
        _assert_error(get_session_pgn("missing"))


class TestPollSessions:

    def test_empty_poll(self):
        response = poll_sessions()
        assert response["events"] == []
        assert response["stats"]["total"] == 0

    def test_correspondence_timeout(self, clock):
        session_id = new_session("dm", "alice", "bob", variant="correspondence")["session_id"]
        response = poll_sessions(now=clock.now + 24 * 3600 + 1)
        kinds = [(e["kind"], e["session_id"]) for e in response["events"]]
        # Timed out, then evicted as a finished session past its idle limit
        assert kinds == [("timeout", session_id), ("evicted", session_id)]
        assert response["events"][0]["actor"] == "alice"

    def test_sweeper_events_are_reported_once(self, registry, clock):
        session_id = new_session("chan", "alice", "bob", variant="realtime")["session_id"]
        submit_move(session_id, "bob", "e5")
        clock.advance(3)
        _server._remember_sweep(registry.sweep())
        events = poll_sessions()["events"]
        assert events == [{"kind": "moves", "session_id": session_id, "moves": ["e5"]}]
        assert poll_sessions()["events"] == []


# ---------------------------------------------------------------------------
# Analysis tools
# ---------------------------------------------------------------------------


class TestAnalyzePosition:

    def test_white_perspective(self, fake_analyzer):
        fen = "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
        fake_analyzer.scores[fen] = 60
        response = analyze_position(fen)
        assert validate_response(response, ANALYSIS_SCHEMA) == []
        assert response["score_cp"] == -60
        assert response["evaluation"] == "Black is slightly better"
        assert "mate" not in response

    def test_search_time_forwarded(self, fake_analyzer):
        analyze_position("4k3/8/8/8/8/8/8/4K2R w K - 0 1", search_time_ms=250)
        assert fake_analyzer.calls[0][1] == {"search_time_ms": 250}

    def test_invalid_fen(self):
        _assert_error(analyze_position("not a fen"), "Invalid FEN")

    def test_engine_failure(self, fake_analyzer):
        fen = "4k3/8/8/8/8/8/8/4K2R w K - 0 1"
        fake_analyzer.failing.add(fen)
        _assert_error(analyze_position(fen), "Engine error")


class TestReviewGame:

    def test_minified_review(self, fake_analyzer):
        response = review_game(_SCHOLARS_MATE)
        assert validate_response(response, REVIEW_SCHEMA) == []
        assert response["opening_skip"] == 2
        assert [m["san"] for m in response["moves"]] == ["Qh5", "Nc6", "Bc4", "Nf6", "Qxf7#"]
        assert all("fen_after" not in m for m in response["moves"])

    def test_losing_move_carries_suggestion(self, fake_analyzer):
        from gambit.pgn import parse

        positions = parse(_SCHOLARS_MATE).positions
        fake_analyzer.scores[positions[6].fen] = 900
        fake_analyzer.best_moves[positions[5].fen] = "g7g6"
        response = review_game(_SCHOLARS_MATE)
        nf6 = response["moves"][3]
        assert nf6["classification"] == "blunder"
        assert nf6["best"] == "g7g6"
        assert response["summary"]["blunder"] == {"black": 1}

    def test_approximate(self):
        response = review_game(_SCHOLARS_MATE, approximate=True)
        assert validate_response(response, REVIEW_SCHEMA) == []
        assert len(response["moves"]) == 5

    def test_unreadable_notation(self):
        _assert_error(review_game("not a game at all"))
