"""Session registry.

The registry is an explicitly owned object: whoever hosts the sessions (the
MCP server, a bot, a test) creates one, starts its sweeper thread and stops it
on shutdown. It indexes sessions by id, by channel (one live session per
channel) and, for correspondence games, by the pair of players.

Sweeps do three things:
- poll every session so due windows, vote deadlines and deliberate moves resolve
- time out or warn correspondence players whose clock is running out
- evict sessions that have been idle too long
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Sequence

from gambit.config import Settings
from gambit.errors import SessionExistsError, SessionNotFoundError
from gambit.models import Move
from gambit.opponents import AutomatedOpponent
from gambit.pool import EnginePool
from gambit.ratings import RatingRecorder
from gambit.session import (
    CoordinationMode,
    DeadlineEvent,
    GameSession,
    SessionState,
    resolve_variant,
)

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Everything one sweep changed."""

    applied: dict[str, list[Move]] = field(default_factory=dict)
    deadline_events: list[DeadlineEvent] = field(default_factory=list)
    evicted: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.applied or self.deadline_events or self.evicted)


class SessionRegistry:
    """Owns every live GameSession and the background sweeper."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        pool: EnginePool | None = None,
        ratings: RatingRecorder | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        on_sweep: Callable[[SweepReport], None] | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._ratings = ratings
        self._clock = clock
        self._rng = rng or random.Random()
        self._opponent = AutomatedOpponent(
            pool=pool,
            search_time_ms=self.settings.opponent_search_time_ms,
            rng=self._rng,
        )
        self._on_sweep = on_sweep

        self._lock = threading.Lock()
        self._sessions: dict[str, GameSession] = {}
        self._by_channel: dict[str, str] = {}
        self._by_pair: dict[frozenset[str], str] = {}
        # Channels and pairs whose session is being built
        self._reserved: set[str | frozenset[str]] = set()

        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def create_session(
        self,
        channel_id: str,
        players: Sequence[str | None],
        rules: str = "standard",
        mode: CoordinationMode | str | None = None,
        **options,
    ) -> GameSession:
        """Create and index a session.

        Args:
            channel_id: Channel the game is played in.
            players: Seat occupants, White first; None leaves the seat open.
            rules: Rule variant tag or legacy game type.
            mode: Coordination mode; defaults from ``rules``.
            **options: Passed through to GameSession (starting_fen,
                vote_eligibility, correspondence_hours).

        Returns:
            The new session, already ACTIVE when both seats are filled.

        Raises:
            SessionExistsError: If the channel (or, for correspondence, the
                pair of players) already has a live game.
            ValueError: On unknown variants or impossible seatings.
        """
        _, resolved_mode = resolve_variant(rules, mode)
        pair = None
        if resolved_mode is CoordinationMode.CORRESPONDENCE:
            if len(players) < 2 or None in players[:2]:
                raise ValueError("Correspondence games need both players up front")
            pair = frozenset(players[:2])

        # Reserve the slot, then build outside the lock: an engine seat that
        # moves first searches during construction.
        slot = pair or channel_id
        with self._lock:
            existing = self._live(self._by_pair.get(pair) if pair else self._by_channel.get(channel_id))
            if existing is not None or slot in self._reserved:
                where = "these players" if pair else f"channel {channel_id}"
                raise SessionExistsError(f"A game is already in progress for {where}")
            self._reserved.add(slot)

        try:
            session = GameSession(
                channel_id,
                players,
                rules,
                resolved_mode,
                settings=self.settings,
                opponent=self._opponent,
                ratings=self._ratings,
                clock=self._clock,
                rng=self._rng,
                **options,
            )
        except BaseException:
            with self._lock:
                self._reserved.discard(slot)
            raise

        with self._lock:
            self._reserved.discard(slot)
            base_id, suffix = session.id, 1
            while session.id in self._sessions:
                suffix += 1
                session.id = f"{base_id}-{suffix}"

            self._sessions[session.id] = session
            if pair:
                self._by_pair[pair] = session.id
            else:
                self._by_channel[channel_id] = session.id

        logger.info(
            "created session %s (%s, %s) for %s",
            session.id, session.rules.tag, session.mode.value, players,
        )
        return session

    def _live(self, session_id: str | None) -> GameSession | None:
        session = self._sessions.get(session_id) if session_id else None
        if session is None or session.state is SessionState.FINISHED:
            return None
        return session

    def get(self, session_id: str) -> GameSession:
        with self._lock:
            try:
                return self._sessions[session_id]
            except KeyError:
                raise SessionNotFoundError(f"No session {session_id}") from None

    def get_by_channel(self, channel_id: str) -> GameSession:
        with self._lock:
            session_id = self._by_channel.get(channel_id)
            if session_id is None or session_id not in self._sessions:
                raise SessionNotFoundError(f"No game in channel {channel_id}")
            return self._sessions[session_id]

    def get_correspondence(self, first: str, second: str) -> GameSession:
        with self._lock:
            session_id = self._by_pair.get(frozenset((first, second)))
            if session_id is None or session_id not in self._sessions:
                raise SessionNotFoundError(
                    f"No correspondence game between {first} and {second}"
                )
            return self._sessions[session_id]

    def sessions_for_player(self, actor: str) -> list[GameSession]:
        """Unfinished sessions where ``actor`` holds a seat."""
        return [
            s for s in self.all_sessions()
            if s.state is not SessionState.FINISHED and s.seat_of(actor) is not None
        ]

    def all_sessions(self) -> list[GameSession]:
        with self._lock:
            return list(self._sessions.values())

    def remove(self, session_id: str) -> GameSession:
        """Unindex a session and clear its pending submissions."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                raise SessionNotFoundError(f"No session {session_id}")
            if self._by_channel.get(session.channel_id) == session_id:
                del self._by_channel[session.channel_id]
            for pair, indexed in list(self._by_pair.items()):
                if indexed == session_id:
                    del self._by_pair[pair]
        session.close()
        return session

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def idle_timeout(self, session: GameSession) -> float | None:
        """Idle limit for a session, None when it is never evicted for idling."""
        if session.mode is CoordinationMode.CORRESPONDENCE:
            if session.state is SessionState.FINISHED:
                return self.settings.idle_timeout_s
            return None
        if session.mode is CoordinationMode.SIMULTANEOUS:
            return self.settings.simultaneous_idle_timeout_s
        if session.mode is CoordinationMode.VOTING:
            return self.settings.voting_idle_timeout_s
        return self.settings.idle_timeout_s

    def evict_idle(self, now: float | None = None) -> list[str]:
        now = self._clock() if now is None else now
        evicted = []
        for session in self.all_sessions():
            limit = self.idle_timeout(session)
            if limit is None or now - session.last_activity <= limit:
                continue
            self.remove(session.id)
            evicted.append(session.id)
            logger.info("evicted idle session %s", session.id)
        return evicted

    def sweep_correspondence(self, now: float | None = None) -> list[DeadlineEvent]:
        now = self._clock() if now is None else now
        events = []
        for session in self.all_sessions():
            event = session.check_deadline(now)
            if event is not None:
                logger.info("correspondence %s for %s in %s", event.kind, event.actor, event.session_id)
                events.append(event)
        return events

    def poll_all(self, now: float | None = None) -> dict[str, list[Move]]:
        """Poll every session; returns applied moves keyed by session id."""
        now = self._clock() if now is None else now
        applied = {}
        for session in self.all_sessions():
            moves = session.poll(now)
            if moves:
                applied[session.id] = moves
        return applied

    def discard_finished(self) -> list[str]:
        finished = [
            s.id for s in self.all_sessions() if s.state is SessionState.FINISHED
        ]
        for session_id in finished:
            self.remove(session_id)
        return finished

    def sweep(self, now: float | None = None) -> SweepReport:
        """One full sweep: poll, correspondence deadlines, idle eviction."""
        now = self._clock() if now is None else now
        return SweepReport(
            applied=self.poll_all(now),
            deadline_events=self.sweep_correspondence(now),
            evicted=self.evict_idle(now),
        )

    def stats(self) -> dict:
        sessions = self.all_sessions()
        return {
            "total": len(sessions),
            "by_state": dict(Counter(s.state.value for s in sessions)),
            "by_mode": dict(Counter(s.mode.value for s in sessions)),
            "sweeper_running": self.is_running,
        }

    # ------------------------------------------------------------------
    # Background sweeper
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sweeper thread (no-op when already running)."""
        if self.is_running:
            return
        self._stopping.clear()
        self._thread = threading.Thread(
            target=self._run, name="session-sweeper", daemon=True
        )
        self._thread.start()
        logger.info("session sweeper started (every %.1fs)", self.settings.sweep_interval_s)

    def stop(self, timeout: float | None = None) -> None:
        """Stop the sweeper and clear every session's pending buffers."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        for session in self.all_sessions():
            session.close()
        logger.info("session sweeper stopped")

    def _run(self) -> None:
        while not self._stopping.wait(self.settings.sweep_interval_s):
            try:
                report = self.sweep()
            except Exception:
                logger.exception("session sweep failed")
                continue
            if report and self._on_sweep is not None:
                self._on_sweep(report)

    def __enter__(self) -> SessionRegistry:
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
