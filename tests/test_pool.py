"""Pytest tests for EnginePool: bounded concurrency, FIFO order, isolation."""

from __future__ import annotations

import threading
import time

import chess
import pytest

from gambit.errors import EngineProcessError, EngineTimeoutError
from gambit.models import AnalysisResult, Position
from gambit.pool import EnginePool


class BlockingAnalyzer:
    """Analyzer that holds every call until released, recording concurrency."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.started: list[str] = []

    def __call__(self, fen: str, **options) -> AnalysisResult:
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.started.append(fen)
        self.release.wait(5)
        with self.lock:
            self.active -= 1
        return AnalysisResult(fen=fen, best_move="e2e4", score_cp=0)


def _fens(n: int) -> list[str]:
    """n distinct legal FENs."""
    board = chess.Board()
    fens = []
    for move in sorted(board.legal_moves, key=lambda m: m.uci())[:n]:
        board.push(move)
        fens.append(board.fen())
        board.pop()
    return fens


class TestConcurrency:

    def test_never_exceeds_size(self, settings):
        analyzer = BlockingAnalyzer()
        with EnginePool(size=4, settings=settings, analyzer=analyzer) as pool:
            futures = [pool.submit(fen) for fen in _fens(10)]
            deadline = time.monotonic() + 2
            while analyzer.active < 4 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert pool.running == 4
            assert pool.queued == 6
            analyzer.release.set()
            for future in futures:
                future.result(timeout=5)
        assert analyzer.peak == 4
        assert pool.stats()["completed"] == 10

    def test_fifo_start_order(self, settings):
        analyzer = BlockingAnalyzer()
        fens = _fens(6)
        with EnginePool(size=1, settings=settings, analyzer=analyzer) as pool:
            futures = [pool.submit(fen) for fen in fens]
            analyzer.release.set()
            for future in futures:
                future.result(timeout=5)
        assert analyzer.started == fens

    def test_size_must_be_positive(self, settings):
        with pytest.raises(ValueError):
            EnginePool(size=0, settings=settings, analyzer=lambda fen, **o: None)

    def test_default_size_from_settings(self, settings):
        pool = EnginePool(settings=settings, analyzer=lambda fen, **o: None)
        try:
            assert pool.size == 4
        finally:
            pool.shutdown()


class TestFailures:

    def test_failure_only_affects_its_own_future(self, fake_analyzer, fake_pool):
        bad, good = _fens(2)
        fake_analyzer.failing.add(bad)
        bad_future = fake_pool.submit(bad)
        good_future = fake_pool.submit(good)
        with pytest.raises(EngineTimeoutError):
            bad_future.result(timeout=5)
        assert good_future.result(timeout=5).fen == good
        stats = fake_pool.stats()
        assert stats["failed"] == 1
        assert stats["completed"] == 1

    def test_analyze_raises_engine_error(self, settings):
        def broken(fen, **options):
            raise EngineProcessError("Stockfish exited with code 1 before bestmove")

        with EnginePool(size=1, settings=settings, analyzer=broken) as pool:
            with pytest.raises(EngineProcessError):
                pool.analyze(chess.STARTING_FEN)


class TestRequests:

    def test_accepts_position_and_forwards_options(self, fake_analyzer, fake_pool):
        position = Position(chess.STARTING_FEN)
        result = fake_pool.analyze(position, search_time_ms=300, depth=8)
        assert result.fen == chess.STARTING_FEN
        assert fake_analyzer.calls == [
            (chess.STARTING_FEN, {"search_time_ms": 300, "depth": 8})
        ]
