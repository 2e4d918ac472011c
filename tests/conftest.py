"""Shared test fixtures with dual-mode support (fake vs real Stockfish).

Usage:
    pytest tests/                  # Fast, fake analyzer (no Stockfish)
    pytest tests/ --e2e            # Also run tests that need real Stockfish

Fixtures:
    settings         - Default Settings, independent of GAMBIT_* variables.
    clock            - Manually advanced clock for timed session behaviour.
    fake_analyzer    - Deterministic analyzer standing in for Stockfish.
    fake_pool        - EnginePool backed by fake_analyzer.
    enable_validation - Sets GAMBIT_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import os
import threading

import chess
import pytest

from gambit.config import Settings
from gambit.errors import EngineTimeoutError
from gambit.models import AnalysisResult
from gambit.pool import EnginePool


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no fakes).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--e2e"):
        return
    skip = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def settings():
    return Settings()


# ---------------------------------------------------------------------------
# Fake analyzer and pool
# ---------------------------------------------------------------------------


class FakeAnalyzer:
    """Deterministic stand-in for a Stockfish call.

    Scores come from ``scores`` (keyed by FEN, side-to-move view, default 20cp),
    the best move from ``best_moves`` or the first legal move by UCI order.
    FENs in ``failing`` raise EngineTimeoutError.
    """

    def __init__(self) -> None:
        self.scores: dict[str, int] = {}
        self.mates: dict[str, int] = {}
        self.best_moves: dict[str, str | None] = {}
        self.failing: set[str] = set()
        self.calls: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def __call__(self, fen: str, **options) -> AnalysisResult:
        with self._lock:
            self.calls.append((fen, options))
        if fen in self.failing:
            raise EngineTimeoutError("Analysis timeout after 4.0s")
        if fen in self.best_moves:
            best = self.best_moves[fen]
        else:
            legal = sorted(m.uci() for m in chess.Board(fen).legal_moves)
            best = legal[0] if legal else None
        if fen in self.mates:
            return AnalysisResult(fen=fen, best_move=best, mate=self.mates[fen])
        return AnalysisResult(fen=fen, best_move=best, score_cp=self.scores.get(fen, 20))


@pytest.fixture()
def fake_analyzer():
    return FakeAnalyzer()


@pytest.fixture()
def fake_pool(fake_analyzer, settings):
    pool = EnginePool(size=2, settings=settings, analyzer=fake_analyzer)
    yield pool
    pool.shutdown()


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set GAMBIT_VALIDATE=1 for the test session.

    Restores the original env var value after the test.
    """
    original = os.environ.get("GAMBIT_VALIDATE")
    os.environ["GAMBIT_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("GAMBIT_VALIDATE", None)
    else:
        os.environ["GAMBIT_VALIDATE"] = original
