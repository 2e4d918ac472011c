"""Bounded pool of analysis engine calls.

At most ``size`` engine processes run at once. Excess requests wait in the
executor's FIFO queue and start in arrival order as slots free up. A failed
request only fails its own future.

Usage:
    with EnginePool(size=4) as pool:
        result = pool.analyze(position)
        futures = [pool.submit(p) for p in positions]
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from gambit.config import Settings
from gambit.engine import analyze_with_settings
from gambit.errors import EngineError
from gambit.models import AnalysisResult, Position

logger = logging.getLogger(__name__)

Analyzer = Callable[..., AnalysisResult]


class EnginePool:
    """Fixed-size pool that runs one engine conversation per request."""

    def __init__(
        self,
        size: int | None = None,
        settings: Settings | None = None,
        analyzer: Analyzer | None = None,
    ) -> None:
        """Create the pool.

        Args:
            size: Maximum concurrent engine processes. Defaults to settings.
            settings: Engine options. Defaults to ``Settings.from_env()``.
            analyzer: Callable ``(fen, **options) -> AnalysisResult``.
                Defaults to a Stockfish subprocess call.
        """
        self.settings = settings or Settings.from_env()
        self.size = size or self.settings.pool_size
        if self.size < 1:
            raise ValueError("Pool size must be at least 1")
        self._analyzer = analyzer or (
            lambda fen, **options: analyze_with_settings(fen, self.settings, **options)
        )
        self._executor = ThreadPoolExecutor(
            max_workers=self.size, thread_name_prefix="engine"
        )
        self._lock = threading.Lock()
        self._running = 0
        self._queued = 0
        self._completed = 0
        self._failed = 0

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def submit(self, position: Position | str, **options) -> Future:
        """Queue an analysis request.

        Args:
            position: Position (or bare FEN) to analyze.
            **options: Forwarded to the analyzer (search_time_ms, depth, ...).

        Returns:
            Future resolving to an AnalysisResult or raising EngineError.
        """
        fen = position.fen if isinstance(position, Position) else position
        with self._lock:
            self._queued += 1
        return self._executor.submit(self._run, fen, options)

    def analyze(self, position: Position | str, **options) -> AnalysisResult:
        """Analyze a position, waiting for a free slot if the pool is saturated."""
        return self.submit(position, **options).result()

    def _run(self, fen: str, options: dict) -> AnalysisResult:
        with self._lock:
            self._queued -= 1
            self._running += 1
        try:
            result = self._analyzer(fen, **options)
        except EngineError as exc:
            logger.warning("analysis failed for %s: %s", fen, exc)
            with self._lock:
                self._failed += 1
            raise
        else:
            with self._lock:
                self._completed += 1
            return result
        finally:
            with self._lock:
                self._running -= 1

    # ------------------------------------------------------------------
    # Introspection and lifetime
    # ------------------------------------------------------------------

    @property
    def running(self) -> int:
        with self._lock:
            return self._running

    @property
    def queued(self) -> int:
        with self._lock:
            return self._queued

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": self.size,
                "running": self._running,
                "queued": self._queued,
                "completed": self._completed,
                "failed": self._failed,
            }

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and optionally wait for running calls."""
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def __enter__(self) -> EnginePool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
