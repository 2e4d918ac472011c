"""Runtime settings for Gambit.

Defaults live here as module constants. Every value can be overridden with a
``GAMBIT_*`` environment variable through ``Settings.from_env()``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields

# Engine
DEFAULT_POOL_SIZE = 4
DEFAULT_SEARCH_TIME_MS = 2000
DEFAULT_ENGINE_GRACE_MS = 2000
DEFAULT_ENGINE_THREADS = min(6, os.cpu_count() or 1)
DEFAULT_ENGINE_HASH_MB = 512
# Depth budgets below this use "go depth"; anything else searches on time
FAST_DEPTH_THRESHOLD = 20
# Automated opponents think for less time than the reviewer
DEFAULT_OPPONENT_SEARCH_TIME_MS = 1000

# Coordination modes
DEFAULT_SIMULTANEOUS_WINDOW_S = 3.0
DEFAULT_DELIBERATE_DELAY_S = 3.0
DEFAULT_VOTE_WINDOW_S = 60.0
DEFAULT_VOTE_EARLY_MINIMUM = 3
DEFAULT_VOTE_CAP = 10
DEFAULT_CORRESPONDENCE_HOURS = 24
DEFAULT_CORRESPONDENCE_WARNING_S = 2 * 60 * 60

# Idle eviction (seconds without a move)
DEFAULT_IDLE_TIMEOUT_S = 30 * 60
DEFAULT_SIMULTANEOUS_IDLE_TIMEOUT_S = 5 * 60
DEFAULT_VOTING_IDLE_TIMEOUT_S = 60 * 60

DEFAULT_SWEEP_INTERVAL_S = 1.0


@dataclass(frozen=True)
class Settings:
    """Tunable knobs shared by the engine pool, sessions and registry."""

    stockfish_path: str | None = None
    pool_size: int = DEFAULT_POOL_SIZE
    search_time_ms: int = DEFAULT_SEARCH_TIME_MS
    engine_grace_ms: int = DEFAULT_ENGINE_GRACE_MS
    engine_threads: int = DEFAULT_ENGINE_THREADS
    engine_hash_mb: int = DEFAULT_ENGINE_HASH_MB
    opponent_search_time_ms: int = DEFAULT_OPPONENT_SEARCH_TIME_MS
    simultaneous_window_s: float = DEFAULT_SIMULTANEOUS_WINDOW_S
    deliberate_delay_s: float = DEFAULT_DELIBERATE_DELAY_S
    vote_window_s: float = DEFAULT_VOTE_WINDOW_S
    vote_early_minimum: int = DEFAULT_VOTE_EARLY_MINIMUM
    vote_cap: int = DEFAULT_VOTE_CAP
    correspondence_hours: float = DEFAULT_CORRESPONDENCE_HOURS
    correspondence_warning_s: float = DEFAULT_CORRESPONDENCE_WARNING_S
    idle_timeout_s: float = DEFAULT_IDLE_TIMEOUT_S
    simultaneous_idle_timeout_s: float = DEFAULT_SIMULTANEOUS_IDLE_TIMEOUT_S
    voting_idle_timeout_s: float = DEFAULT_VOTING_IDLE_TIMEOUT_S
    sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from ``GAMBIT_<FIELD>`` environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Returns:
            Settings with every present variable converted to the field's type.

        Raises:
            ValueError: If a variable cannot be converted.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(f"GAMBIT_{f.name.upper()}")
            if raw is None or raw == "":
                continue
            default = f.default
            if isinstance(default, bool):
                overrides[f.name] = raw.lower() in ("1", "true", "yes")
            elif isinstance(default, int):
                overrides[f.name] = int(raw)
            elif isinstance(default, float):
                overrides[f.name] = float(raw)
            else:
                overrides[f.name] = raw
        return cls(**overrides)


def log_level() -> str:
    """Log level name for CLIs and the MCP server (``GAMBIT_LOG_LEVEL``)."""
    return os.environ.get("GAMBIT_LOG_LEVEL", "INFO").upper()
