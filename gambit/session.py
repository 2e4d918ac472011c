"""Game session state machine.

A GameSession owns one game: seats, rule variant, position, history and the
coordination mode that decides how submissions become applied moves.

States:
    AWAITING_SECOND_PLAYER -> ACTIVE -> FINISHED

Coordination modes:
    alternating     seats take turns; anyone else gets NotYourTurnError
    simultaneous    both seats queue moves; a short window batches them
    voting          the "server" seat is a crowd that votes on its moves
    reaction        moves carry a speed tag (instant, deliberate, normal)
    correspondence  alternating with a long per-move deadline

Every mutating method holds the session's own lock, so one session never
sees two concurrent mutations. Timed behaviour (windows, vote deadlines,
deliberate delays) is resolved by ``poll``, which the registry sweeper calls
periodically and tests call with an explicit clock.
"""

from __future__ import annotations

import functools
import logging
import random
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from gambit.config import Settings
from gambit.errors import (
    IllegalMoveError,
    NotYourTurnError,
    SessionStateError,
)
from gambit.models import BLACK, WHITE, HistoryEntry, Move, Position
from gambit.opponents import (
    AUTOMATED_SEATS,
    SEAT_COLLECTIVE,
    SYNTHETIC_SEATS,
    AutomatedOpponent,
    is_automated,
    seat_name,
)
from gambit.pgn import export_pgn
from gambit.pool import EnginePool
from gambit.ratings import RatingDelta, RatingRecorder
from gambit.variants import VariantRules, get_rules

logger = logging.getLogger(__name__)

SEAT_COLORS = (WHITE, BLACK)

# Occurrences of one position that end the game as a draw
REPETITION_LIMIT = 3


class SessionState(str, Enum):
    AWAITING_SECOND_PLAYER = "awaiting_second_player"
    ACTIVE = "active"
    FINISHED = "finished"


class CoordinationMode(str, Enum):
    ALTERNATING = "alternating"
    SIMULTANEOUS = "simultaneous"
    VOTING = "voting"
    REACTION = "reaction"
    CORRESPONDENCE = "correspondence"


class Speed(str, Enum):
    INSTANT = "instant"
    DELIBERATE = "deliberate"
    NORMAL = "normal"


# Game types accepted from chat commands, as (rules, mode)
LEGACY_VARIANTS = {
    "realtime": ("standard", CoordinationMode.SIMULTANEOUS),
    "servervs": ("standard", CoordinationMode.VOTING),
    "correspondence": ("standard", CoordinationMode.CORRESPONDENCE),
    "blitz": ("standard", CoordinationMode.REACTION),
}


def resolve_variant(
    tag: str, mode: CoordinationMode | str | None = None
) -> tuple[str, CoordinationMode]:
    """Map a variant tag (rules or legacy game type) to (rules tag, mode)."""
    if tag in LEGACY_VARIANTS:
        rules_tag, legacy_mode = LEGACY_VARIANTS[tag]
        return rules_tag, CoordinationMode(mode) if mode else legacy_mode
    get_rules(tag)
    return tag, CoordinationMode(mode) if mode else CoordinationMode.ALTERNATING


@dataclass
class Outcome:
    """How a finished session ended."""

    winner: str | None
    reason: str
    result: str
    rating_delta: RatingDelta | None = None


@dataclass
class SubmitResult:
    """Uniform answer to every move submission."""

    applied: list[Move] = field(default_factory=list)
    queued: bool = False
    voted: bool = False


@dataclass
class DeadlineEvent:
    """Correspondence sweep finding: a timeout or a one-time warning."""

    kind: str
    session_id: str
    actor: str | None
    time_remaining: float


@dataclass
class PendingSubmission:
    actor: str
    text: str
    seat: int
    timestamp: float
    sequence: int
    due: float | None = None


# ---------------------------------------------------------------------------
# Coordination buffers
# ---------------------------------------------------------------------------


class SimultaneousBuffer:
    """One pending submission per actor, batched on a window from the first."""

    def __init__(self) -> None:
        self.pending: dict[str, PendingSubmission] = {}
        self.closes_at: float | None = None

    def submit(self, submission: PendingSubmission, window: float) -> None:
        if self.closes_at is None:
            self.closes_at = submission.timestamp + window
        self.pending[submission.actor] = submission

    def due(self, now: float) -> bool:
        return self.closes_at is not None and now >= self.closes_at

    def drain(self) -> list[PendingSubmission]:
        submissions = sorted(
            self.pending.values(), key=lambda s: (s.timestamp, s.sequence)
        )
        self.clear()
        return submissions

    def clear(self) -> None:
        self.pending.clear()
        self.closes_at = None


class VoteBox:
    """Collective votes: one per voter, re-votes overwrite."""

    def __init__(self) -> None:
        self.votes: dict[str, str] = {}
        self.deadline: float | None = None
        self._sequence = 0
        # (move, count) -> sequence number when the move first reached count
        self._reached: dict[tuple[str, int], int] = {}

    @property
    def active(self) -> bool:
        return self.deadline is not None

    @property
    def total(self) -> int:
        return len(self.votes)

    def start(self, now: float, window: float) -> None:
        self.clear()
        self.deadline = now + window

    def cast(self, actor: str, uci: str) -> None:
        self.votes[actor] = uci
        self._sequence += 1
        count = self.counts()[uci]
        self._reached.setdefault((uci, count), self._sequence)

    def counts(self) -> Counter:
        return Counter(self.votes.values())

    def leader(self) -> str | None:
        """Plurality move; ties go to the move that reached the top count first."""
        counts = self.counts()
        if not counts:
            return None
        top = max(counts.values())
        tied = [uci for uci, count in counts.items() if count == top]
        return min(tied, key=lambda uci: self._reached.get((uci, top), 0))

    def should_close(self, now: float, early_minimum: int, cap: int) -> bool:
        if self.total >= cap:
            return True
        if self.total >= early_minimum:
            top = max(self.counts().values())
            if top * 2 > self.total:
                return True
        return self.deadline is not None and now >= self.deadline

    def clear(self) -> None:
        self.votes.clear()
        self._reached.clear()
        self.deadline = None


def _serialized(method):
    """Run a GameSession method under the session lock."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class GameSession:
    """One game between two seats under a rule variant and coordination mode."""

    def __init__(
        self,
        channel_id: str,
        players: Sequence[str | None],
        rules: str = "standard",
        mode: CoordinationMode | str | None = None,
        *,
        settings: Settings | None = None,
        opponent: AutomatedOpponent | None = None,
        pool: EnginePool | None = None,
        ratings: RatingRecorder | None = None,
        clock: Callable[[], float] = time.time,
        rng: random.Random | None = None,
        vote_eligibility: Callable[[str], bool] | None = None,
        starting_fen: str | None = None,
        correspondence_hours: float | None = None,
    ) -> None:
        """Create a session.

        Args:
            channel_id: Channel (or DM context) the game lives in.
            players: Seat occupants, White first. A missing or None seat
                opens a challenge that ``join`` fills.
            rules: Rule variant tag, or a legacy game type such as "servervs".
            mode: Coordination mode. Defaults from the variant tag.
            settings: Timing knobs. Defaults to ``Settings.from_env()``.
            opponent: Move source for automated seats.
            pool: Engine pool for the default opponent; ignored when
                ``opponent`` is given.
            ratings: Collaborator told about finished human-vs-human games.
            clock: Wall clock in seconds.
            rng: Random source for random seats and simultaneous tie-breaks.
            vote_eligibility: Extra filter for who may vote in voting mode.
            starting_fen: Custom start position.
            correspondence_hours: Per-move deadline for correspondence mode.

        Raises:
            ValueError: On unknown variants or impossible seatings.
        """
        rules_tag, resolved_mode = resolve_variant(rules, mode)
        self.rules: VariantRules = get_rules(rules_tag)
        self.mode = resolved_mode
        self.channel_id = channel_id
        self.settings = settings or Settings.from_env()

        self._clock = clock
        self._rng = rng or random.Random()
        self._opponent = opponent or AutomatedOpponent(
            pool=pool,
            search_time_ms=self.settings.opponent_search_time_ms,
            rng=self._rng,
        )
        self._ratings = ratings
        self._vote_eligibility = vote_eligibility
        self._lock = threading.RLock()

        seats = list(players)[:2]
        seats += [None] * (2 - len(seats))
        if self.mode is CoordinationMode.VOTING and seats[1] is None:
            seats[1] = SEAT_COLLECTIVE
        self._validate_seats(seats)
        self.players: list[str | None] = seats

        self.created_at = self._clock()
        self.last_activity = self.created_at
        self.id = f"{channel_id}-{int(self.created_at * 1000)}"

        if starting_fen:
            self._start = self.rules.position_from_fen(starting_fen)
        else:
            self._start = self.rules.initial_position()
        self._position = self._start
        self.history: list[HistoryEntry] = []
        self._seen: Counter[str] = Counter({self._start.key: 1})
        self.current_seat = 0 if self._start.turn == WHITE else 1
        self.outcome: Outcome | None = None

        self.move_time_limit = (
            (correspondence_hours or self.settings.correspondence_hours) * 3600.0
        )
        self._deadline_warned = False
        self._turn_started_at = self.created_at

        self._sequence = 0
        self._simultaneous = SimultaneousBuffer()
        self._votes = VoteBox()
        self._reactions: dict[str, PendingSubmission] = {}

        self.state = (
            SessionState.ACTIVE if None not in seats
            else SessionState.AWAITING_SECOND_PLAYER
        )
        if self.state is SessionState.ACTIVE:
            self._on_activated()

    def _validate_seats(self, seats: list[str | None]) -> None:
        if seats[0] is None and seats[1] is None:
            raise ValueError("At least one seat must be filled")
        if seats[0] is not None and seats[0] == seats[1]:
            raise ValueError("Cannot play against yourself")
        if SEAT_COLLECTIVE in seats and self.mode is not CoordinationMode.VOTING:
            raise ValueError("The collective seat only exists in voting mode")
        if self.mode is CoordinationMode.VOTING and seats[1] != SEAT_COLLECTIVE:
            raise ValueError("Voting mode puts the collective in the second seat")
        automated = [s for s in seats if s in AUTOMATED_SEATS]
        if len(automated) == 2:
            raise ValueError("At least one seat must be a person")
        if automated and self.mode in (
            CoordinationMode.SIMULTANEOUS, CoordinationMode.VOTING
        ):
            raise ValueError(f"Automated seats cannot play in {self.mode.value} mode")

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def position(self) -> Position:
        return self._position

    @property
    def start_position(self) -> Position:
        return self._start

    @property
    def current_player(self) -> str | None:
        return self.players[self.current_seat]

    @property
    def is_human_game(self) -> bool:
        return all(p is not None and p not in SYNTHETIC_SEATS for p in self.players)

    def seat_of(self, actor: str) -> int | None:
        if actor in self.players:
            return self.players.index(actor)
        return None

    def is_in_game(self, actor: str) -> bool:
        if self.mode is CoordinationMode.VOTING and self.seat_of(actor) is None:
            return self._may_vote(actor)
        return self.seat_of(actor) is not None

    def is_player_turn(self, actor: str) -> bool:
        if self.state is not SessionState.ACTIVE:
            return False
        if self.mode is CoordinationMode.SIMULTANEOUS:
            return self.seat_of(actor) is not None
        if self.mode is CoordinationMode.VOTING and self.current_player == SEAT_COLLECTIVE:
            return self._may_vote(actor)
        return self.current_player == actor

    def player_name(self, index: int) -> str:
        return seat_name(self.players[index], index)

    def legal_moves(self) -> list[str]:
        """Legal moves in SAN for the position, sorted."""
        return sorted(m.san for m in self.rules.legal_moves(self._position))

    def time_remaining(self, now: float | None = None) -> float | None:
        """Seconds left on the correspondence clock, None in other modes."""
        if self.mode is not CoordinationMode.CORRESPONDENCE:
            return None
        now = self._clock() if now is None else now
        return self.move_time_limit - (now - self._turn_started_at)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @_serialized
    def join(self, actor: str) -> SubmitResult:
        """Fill the open seat of a challenge and start the game."""
        if self.state is not SessionState.AWAITING_SECOND_PLAYER:
            raise SessionStateError("This game is not waiting for a player")
        if actor in self.players:
            raise SessionStateError("Cannot accept your own challenge")
        self.players[self.players.index(None)] = actor
        self._validate_seats(self.players)
        self.state = SessionState.ACTIVE
        self.last_activity = self._clock()
        self._turn_started_at = self.last_activity
        logger.info("session %s: %s joined", self.id, actor)
        return SubmitResult(applied=self._on_activated())

    def _on_activated(self) -> list[Move]:
        return self._after_move()

    @_serialized
    def resign(self, actor: str) -> Outcome:
        """Resign on behalf of a seated actor; the other seat wins."""
        self._require_active()
        seat = self.seat_of(actor)
        if seat is None or actor in SYNTHETIC_SEATS:
            raise SessionStateError(f"{actor} is not seated in this game")
        return self._finish(SEAT_COLORS[1 - seat], "resignation")

    @_serialized
    def close(self) -> None:
        """Drop pending submissions and votes (eviction or shutdown)."""
        self._clear_buffers()

    # ------------------------------------------------------------------
    # Move submission
    # ------------------------------------------------------------------

    @_serialized
    def submit_move(
        self, move: str, actor: str, speed: Speed | str | None = None
    ) -> SubmitResult:
        """Submit a move under whatever coordination mode this session uses.

        Args:
            move: SAN or UCI text.
            actor: Identity submitting the move.
            speed: Reaction-mode speed tag; ignored by other modes.

        Returns:
            SubmitResult listing every move applied, including automated replies.

        Raises:
            SessionStateError: If the session is not active.
            NotYourTurnError: If the actor may not move now.
            IllegalMoveError: If the move is rejected immediately.
        """
        self._require_active()
        self._poll(self._clock())
        self._require_active()

        if self.mode is CoordinationMode.SIMULTANEOUS:
            return self.queue_move(move, actor)
        if self.mode is CoordinationMode.VOTING and self.current_player == SEAT_COLLECTIVE:
            return self.vote(move, actor)
        if self.mode is CoordinationMode.REACTION:
            return self.react(move, actor, speed or Speed.NORMAL)
        return SubmitResult(applied=self._submit_turn(move, actor))

    def _submit_turn(self, text: str, actor: str) -> list[Move]:
        if self.current_player != actor:
            raise NotYourTurnError(actor)
        move = self.rules.parse_move(self._position, text)
        return self._play(move, actor)

    def _play(self, move: Move, actor: str) -> list[Move]:
        """Apply a turn-based move, flip the seat and run follow-ups."""
        self._apply(move, actor)
        self.current_seat = 1 - self.current_seat
        return [move] + self._after_move()

    def _apply(self, move: Move, actor: str | None, base: Position | None = None) -> None:
        now = self._clock()
        self._position = self.rules.apply(base or self._position, move)
        self._seen[self._position.key] += 1
        self.history.append(HistoryEntry(move=move, timestamp=now, actor=actor))
        self.last_activity = now
        self._turn_started_at = now
        self._deadline_warned = False
        logger.debug("session %s: %s played %s", self.id, actor, move.san)

    def _after_move(self) -> list[Move]:
        if self._check_terminal():
            return []
        if self.mode is CoordinationMode.VOTING and self.current_player == SEAT_COLLECTIVE:
            self._votes.start(self._clock(), self.settings.vote_window_s)
            return []
        return self._play_automated()

    def _play_automated(self) -> list[Move]:
        applied: list[Move] = []
        while self.state is SessionState.ACTIVE and is_automated(self.current_player):
            identity = self.current_player
            move = self._opponent.choose_move(identity, self.rules, self._position)
            if move is None:
                break
            self._apply(move, identity)
            self.current_seat = 1 - self.current_seat
            applied.append(move)
            if self._check_terminal():
                break
        return applied

    # -- simultaneous ---------------------------------------------------

    @_serialized
    def queue_move(self, move: str, actor: str) -> SubmitResult:
        """Queue a simultaneous-mode submission for the current window."""
        self._require_active()
        self._require_mode(CoordinationMode.SIMULTANEOUS)
        seat = self.seat_of(actor)
        if seat is None:
            raise NotYourTurnError(actor)
        now = self._clock()
        self._sequence += 1
        self._simultaneous.submit(
            PendingSubmission(
                actor=actor, text=move, seat=seat, timestamp=now, sequence=self._sequence
            ),
            self.settings.simultaneous_window_s,
        )
        return SubmitResult(queued=True)

    def _position_for(self, color: str) -> Position:
        # Raises IllegalMoveError when the other side is in check and cannot pass
        return self.rules.with_turn(self._position, color)

    def _close_simultaneous(self) -> list[Move]:
        valid: list[tuple[PendingSubmission, Move]] = []
        for submission in self._simultaneous.drain():
            color = SEAT_COLORS[submission.seat]
            try:
                move = self.rules.parse_move(self._position_for(color), submission.text)
            except IllegalMoveError as exc:
                logger.info("session %s: dropped %s from %s: %s",
                            self.id, submission.text, submission.actor, exc)
                continue
            valid.append((submission, move))

        if len(valid) >= 2 and valid[0][1].squares() & valid[1][1].squares():
            logger.info("session %s: conflicting submissions, keeping the earlier", self.id)
            valid = valid[:1]

        applied: list[Move] = []
        for submission, move in valid[:2]:
            try:
                base = self._position_for(SEAT_COLORS[submission.seat])
                move = self.rules.from_coordinate(base, move.uci)
            except IllegalMoveError:
                logger.info("session %s: %s no longer legal", self.id, move.uci)
                continue
            self._apply(move, submission.actor, base)
            applied.append(move)
            if self._check_terminal():
                break
        return applied

    # -- voting ---------------------------------------------------------

    def _may_vote(self, actor: str) -> bool:
        if actor in self.players:
            return False
        if self._vote_eligibility is not None:
            return self._vote_eligibility(actor)
        return True

    @_serialized
    def vote(self, move: str, actor: str) -> SubmitResult:
        """Cast (or change) a vote for the collective's next move."""
        self._require_active()
        self._require_mode(CoordinationMode.VOTING)
        if self.current_player != SEAT_COLLECTIVE or not self._may_vote(actor):
            raise NotYourTurnError(actor)
        parsed = self.rules.parse_move(self._position, move)

        now = self._clock()
        if not self._votes.active:
            self._votes.start(now, self.settings.vote_window_s)
        self._votes.cast(actor, parsed.uci)

        applied: list[Move] = []
        if self._votes.should_close(
            now, self.settings.vote_early_minimum, self.settings.vote_cap
        ):
            applied = self._close_vote(now)
        return SubmitResult(applied=applied, voted=True)

    def _close_vote(self, now: float) -> list[Move]:
        winner = self._votes.leader()
        if winner is None:
            # Nobody voted; keep the collective on move with a fresh deadline
            self._votes.start(now, self.settings.vote_window_s)
            return []
        tally = dict(self._votes.counts())
        self._votes.clear()
        move = self.rules.from_coordinate(self._position, winner)
        logger.info("session %s: collective plays %s with votes %s", self.id, move.san, tally)
        return self._play(move, SEAT_COLLECTIVE)

    def vote_tally(self) -> dict[str, int]:
        return dict(self._votes.counts())

    # -- reaction speed -------------------------------------------------

    @_serialized
    def react(self, move: str, actor: str, speed: Speed | str = Speed.NORMAL) -> SubmitResult:
        """Submit a reaction-mode move with a speed tag."""
        self._require_active()
        self._require_mode(CoordinationMode.REACTION)
        speed = Speed(speed)
        if self.current_player != actor:
            raise NotYourTurnError(actor)
        parsed = self.rules.parse_move(self._position, move)
        now = self._clock()

        if speed is Speed.INSTANT:
            self._reactions.pop(actor, None)
            return SubmitResult(applied=self._play(parsed, actor))

        pending = self._reactions.get(actor)
        if speed is Speed.DELIBERATE:
            self._sequence += 1
            due = pending.due if pending else now + self.settings.deliberate_delay_s
            self._reactions[actor] = PendingSubmission(
                actor=actor, text=parsed.uci, seat=self.current_seat,
                timestamp=now, sequence=self._sequence, due=due,
            )
            return SubmitResult(queued=True)

        if pending is not None:
            # A normal move never jumps a pending delay; it replaces the move
            pending.text = parsed.uci
            pending.timestamp = now
            return SubmitResult(queued=True)
        return SubmitResult(applied=self._play(parsed, actor))

    def _release_reactions(self, now: float) -> list[Move]:
        applied: list[Move] = []
        for actor, pending in sorted(self._reactions.items(), key=lambda kv: kv[1].due):
            if pending.due > now:
                continue
            del self._reactions[actor]
            if self.state is not SessionState.ACTIVE or self.current_player != actor:
                continue
            try:
                move = self.rules.from_coordinate(self._position, pending.text)
            except IllegalMoveError:
                logger.info("session %s: deliberate move %s expired illegal", self.id, pending.text)
                continue
            applied.extend(self._play(move, actor))
        return applied

    # ------------------------------------------------------------------
    # Timed behaviour
    # ------------------------------------------------------------------

    @_serialized
    def poll(self, now: float | None = None) -> list[Move]:
        """Resolve anything whose time has come; returns the moves applied."""
        return self._poll(self._clock() if now is None else now)

    def _poll(self, now: float) -> list[Move]:
        if self.state is not SessionState.ACTIVE:
            return []
        if self.mode is CoordinationMode.SIMULTANEOUS and self._simultaneous.due(now):
            return self._close_simultaneous()
        if self.mode is CoordinationMode.VOTING and self._votes.active:
            if self._votes.deadline is not None and now >= self._votes.deadline:
                return self._close_vote(now)
        if self.mode is CoordinationMode.REACTION and self._reactions:
            return self._release_reactions(now)
        return []

    @_serialized
    def check_deadline(self, now: float | None = None) -> DeadlineEvent | None:
        """Correspondence sweep: time out the player on move or warn them once."""
        if self.mode is not CoordinationMode.CORRESPONDENCE:
            return None
        if self.state is not SessionState.ACTIVE:
            return None
        now = self._clock() if now is None else now
        remaining = self.time_remaining(now)
        actor = self.current_player
        if remaining <= 0:
            logger.info("session %s: %s ran out of time", self.id, actor)
            self._finish(SEAT_COLORS[1 - self.current_seat], "timeout")
            return DeadlineEvent("timeout", self.id, actor, remaining)
        if remaining <= self.settings.correspondence_warning_s and not self._deadline_warned:
            self._deadline_warned = True
            return DeadlineEvent("warning", self.id, actor, remaining)
        return None

    # ------------------------------------------------------------------
    # Endings
    # ------------------------------------------------------------------

    def _check_terminal(self) -> bool:
        terminal = self.rules.is_terminal(self._position)
        repeated = self._seen[self._position.key] >= REPETITION_LIMIT
        if not (terminal.is_over or repeated):
            return False
        if terminal.variant_win is not None:
            self._finish(terminal.variant_win, "variant_win")
        elif terminal.checkmate:
            self._finish(terminal.winner, "checkmate")
        elif terminal.stalemate:
            self._finish(None, "stalemate")
        elif terminal.insufficient_material:
            self._finish(None, "insufficient_material")
        else:
            # Fifty moves without progress, or threefold repetition
            self._finish(None, "draw")
        return True

    def _finish(self, winner: str | None, reason: str) -> Outcome:
        if winner == WHITE:
            result = "1-0"
        elif winner == BLACK:
            result = "0-1"
        else:
            result = "1/2-1/2"
        self.outcome = Outcome(winner=winner, reason=reason, result=result)
        self.state = SessionState.FINISHED
        self._clear_buffers()
        logger.info("session %s finished: %s (%s)", self.id, result, reason)

        if self.is_human_game and self._ratings is not None:
            try:
                self.outcome.rating_delta = self._ratings.record_result(
                    self.players[0], self.players[1], result
                )
            except Exception:
                logger.exception("session %s: recording the result failed", self.id)
        return self.outcome

    def _clear_buffers(self) -> None:
        self._simultaneous.clear()
        self._votes.clear()
        self._reactions.clear()

    # ------------------------------------------------------------------
    # Guards and presentation
    # ------------------------------------------------------------------

    def _require_active(self) -> None:
        if self.state is not SessionState.ACTIVE:
            raise SessionStateError(f"Game is {self.state.value}")

    def _require_mode(self, mode: CoordinationMode) -> None:
        if self.mode is not mode:
            raise SessionStateError(f"Game uses {self.mode.value} mode, not {mode.value}")

    def to_pgn(self) -> str:
        """Export the history as PGN."""
        headers = {
            "Event": "Gambit",
            "White": self.player_name(0),
            "Black": self.player_name(1),
            "Result": self.outcome.result if self.outcome else "*",
        }
        starting_fen = None if self._start == self.rules.initial_position() else self._start.fen
        return export_pgn(
            [entry.move for entry in self.history],
            headers=headers,
            starting_fen=starting_fen,
            variant=self.rules.tag,
        )

    @_serialized
    def snapshot(self) -> dict:
        """Presentation view of the session."""
        terminal = self.rules.is_terminal(self._position)
        last = self.history[-1].move if self.history else None
        state = {
            "session_id": self.id,
            "channel_id": self.channel_id,
            "variant": self.rules.tag,
            "mode": self.mode.value,
            "state": self.state.value,
            "fen": self._position.fen,
            "turn": self._position.turn,
            "players": list(self.players),
            "current_player": (
                None if self.mode is CoordinationMode.SIMULTANEOUS else self.current_player
            ),
            "move_list": [entry.move.san for entry in self.history],
            "last_move": last.uci if last else None,
            "last_move_san": last.san if last else None,
            "is_check": self.rules.in_check(self._position),
            "is_checkmate": terminal.checkmate,
            "is_stalemate": terminal.stalemate,
            "legal_moves": self.legal_moves() if self.state is SessionState.ACTIVE else [],
            "result": self.outcome.result if self.outcome else None,
            "reason": self.outcome.reason if self.outcome else None,
        }
        if self.mode is CoordinationMode.VOTING:
            state["votes"] = self.vote_tally()
            state["vote_deadline"] = self._votes.deadline
        if self.mode is CoordinationMode.SIMULTANEOUS:
            state["pending"] = sorted(self._simultaneous.pending)
        if self.mode is CoordinationMode.REACTION:
            state["pending"] = sorted(self._reactions)
        if self.mode is CoordinationMode.CORRESPONDENCE:
            state["time_remaining"] = self.time_remaining()
            state["move_time_limit"] = self.move_time_limit
        return state
