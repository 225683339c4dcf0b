"""
Challenge session state machine.

Drives one timed challenge session through its phases:

    MENU --start--> PLAYING --(answer | timeout)--> FEEDBACK --(delay)--> PLAYING | RESULT

The session is the only writer of its SessionState. The countdown timer and the
feedback scheduler only hold guarded callbacks bound to the session id and the
question index that created them, so a callback that fires after its question
or session has moved on is ignored.
"""
import logging
import random
import time
import uuid
from typing import Any, Callable, List, Optional, Sequence, Tuple

from challenge_engine.countdown import CountdownTimer, Disposer, TimerLifecycleLogger
from challenge_engine.errors import ChallengeEngineError
from challenge_engine.feedback import FeedbackScheduler
from challenge_engine.models import (
    Challenge,
    Feedback,
    FeedbackKind,
    Outcome,
    Phase,
    SessionConfig,
    SessionResult,
    SessionSnapshot,
    SessionState,
)
from challenge_engine.question_bank import QuestionBank
from challenge_engine.scoring import max_achievable_score, score_answer

SnapshotListener = Callable[[SessionSnapshot], Any]


class ChallengeSession:
    """
    Owns the state, timing and scoring of a single challenge session.

    The host creates one ChallengeSession per player surface, calls
    start_session() to begin and teardown() when the surface goes away.
    Observers subscribe to receive a SessionSnapshot after every transition.
    """

    def __init__(
        self,
        session_key: str = "local",
        timer: Optional[CountdownTimer] = None,
        scheduler: Optional[FeedbackScheduler] = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the session in the MENU phase.

        Args:
            session_key: Host identifier for this session (e.g. a channel id), used in logs
            timer: Countdown timer, created if not supplied
            scheduler: Feedback scheduler, created if not supplied
            rng: Random source for deck building
        """
        self.logger = logging.getLogger(__name__)
        self.session_key = session_key
        self._timer = timer or CountdownTimer(session_key)
        self._scheduler = scheduler or FeedbackScheduler(session_key)
        self._question_bank = QuestionBank(rng)

        self._state = SessionState()
        self._config: Optional[SessionConfig] = None
        self._pool: List[Challenge] = []
        self._session_id: Optional[str] = None

        self._timer_disposer: Optional[Disposer] = None
        self._advance_disposer: Optional[Disposer] = None
        self._listeners: List[SnapshotListener] = []

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_session(
        self,
        pool: Sequence[Challenge],
        config: SessionConfig,
        seed: Optional[int] = None
    ) -> SessionSnapshot:
        """
        Start a fresh session: build a deck, reset counters and start the first countdown.

        Args:
            pool: Challenges to draw the deck from
            config: Session configuration
            seed: Optional seed for a deterministic deck

        Returns:
            Snapshot of the new session

        Raises:
            ConfigurationError: If the configuration is invalid
            InsufficientPoolError: If the pool is empty
            RuntimeError: If the countdown cannot start (no running event loop);
                the session is left in MENU
        """
        config.validate()
        deck = self._question_bank.prepare_deck(pool, config, seed)

        # Anything still scheduled belongs to the previous session
        self._cancel_pending()

        self._session_id = uuid.uuid4().hex
        self._config = config
        self._pool = list(pool)
        self._state = SessionState(
            phase=Phase.PLAYING,
            deck=deck,
            index=0,
            score=0,
            lives=config.max_lives,
            streak=0,
            time_left=config.time_per_question
        )

        self.logger.info(
            f"Started challenge session {self._session_id} for {self.session_key}: "
            f"deck={len(deck)}, time={config.time_per_question}s, lives={config.max_lives}",
            extra={
                'event_type': 'session_started',
                'session_key': self.session_key,
                'session_id': self._session_id,
                'deck_size': len(deck),
                'timestamp': time.time()
            }
        )

        try:
            self._start_question_timer()
        except Exception:
            # A session without a countdown would never time out
            self.logger.error(f"Could not start countdown for session {self._session_id}", exc_info=True)
            self._session_id = None
            self._state = SessionState()
            raise

        self._publish()
        return self.snapshot()

    def restart(self) -> SessionSnapshot:
        """
        Start a new session with the previous pool and configuration, bypassing MENU.

        Raises:
            ChallengeEngineError: If no session was ever started
        """
        if self._config is None:
            raise ChallengeEngineError("Cannot restart: no session has been started")
        return self.start_session(self._pool, self._config)

    def teardown(self) -> None:
        """
        Cancel all outstanding timers and scheduled advances and invalidate the session.

        Called by the host on unmount or navigation away. Idempotent.
        """
        self._cancel_pending()
        if self._session_id is not None:
            self.logger.info(
                f"Tore down challenge session {self._session_id} for {self.session_key}",
                extra={
                    'event_type': 'session_torn_down',
                    'session_key': self.session_key,
                    'session_id': self._session_id,
                    'timestamp': time.time()
                }
            )
        self._session_id = None

        if self._state.phase in (Phase.PLAYING, Phase.FEEDBACK):
            self._state.phase = Phase.MENU
            self._clear_question_state()

    def return_to_menu(self) -> SessionSnapshot:
        """Tear down the running session and show the menu."""
        self.teardown()
        self._state.phase = Phase.MENU
        self._clear_question_state()
        self._publish()
        return self.snapshot()

    # ------------------------------------------------------------------
    # Player input
    # ------------------------------------------------------------------

    def submit_answer(self, option_index: int) -> bool:
        """
        Answer the current multiple-choice challenge.

        Ignored when not playing, when the challenge is already answered or timed
        out, for free-text challenges, and for out-of-range indices.

        Returns:
            True if the answer was accepted
        """
        challenge = self._claimable_challenge("submit_answer")
        if challenge is None:
            return False

        if challenge.is_free_text:
            self._log_ignored("submit_answer", "current challenge expects free text")
            return False

        if (
            not isinstance(option_index, int)
            or isinstance(option_index, bool)
            or not 0 <= option_index < len(challenge.options)
        ):
            self._log_ignored("submit_answer", f"option index {option_index!r} out of range")
            return False

        self._state.selected_index = option_index
        self._resolve_answer(challenge, option_index == challenge.correct_index, timed_out=False)
        return True

    def submit_text(self, text: str) -> bool:
        """
        Answer the current free-text challenge. Comparison ignores case and surrounding space.

        Returns:
            True if the answer was accepted
        """
        if not isinstance(text, str) or not text.strip():
            self._log_ignored("submit_text", "blank input")
            return False

        challenge = self._claimable_challenge("submit_text")
        if challenge is None:
            return False

        if not challenge.is_free_text:
            self._log_ignored("submit_text", "current challenge is multiple choice")
            return False

        guess = text.strip()
        self._state.submitted_text = guess
        is_correct = guess.casefold() == challenge.answer.strip().casefold()
        self._resolve_answer(challenge, is_correct, timed_out=False)
        return True

    def use_hint(self) -> Optional[str]:
        """
        Reveal the hint for the current challenge; a correct answer then pays the hint penalty.

        Returns:
            Hint text, or None if hints are disabled, already used, or the
            challenge is no longer open
        """
        if self._config is None or not self._config.hints_enabled:
            self._log_ignored("use_hint", "hints are disabled for this session")
            return None

        challenge = self._claimable_challenge("use_hint")
        if challenge is None:
            return None

        if self._state.hint_used:
            self._log_ignored("use_hint", "hint already used for this challenge")
            return None

        self._state.hint_used = True
        self.logger.debug(f"Hint used in session {self._session_id} on challenge {challenge.id}")
        self._publish()
        return challenge.hint or challenge.explanation

    # ------------------------------------------------------------------
    # Timer and scheduler events
    # ------------------------------------------------------------------

    def on_timer_expire(self) -> None:
        """Treat an expired countdown as a wrong answer. Ignored unless the challenge is still open."""
        challenge = self._claimable_challenge("on_timer_expire")
        if challenge is None:
            return

        self._state.time_left = 0
        self._resolve_answer(challenge, False, timed_out=True)

    def advance(self) -> bool:
        """
        Leave the feedback phase: go to the next challenge, or to RESULT when
        lives or the deck are exhausted.

        Returns:
            True if a transition happened
        """
        state = self._state
        if state.phase is not Phase.FEEDBACK:
            self._log_ignored("advance", f"phase is {state.phase.value}")
            return False

        self._dispose_advance()

        if state.lives <= 0:
            self._finish("lives exhausted")
        elif state.index + 1 >= len(state.deck):
            state.index = len(state.deck)
            self._finish("deck exhausted")
        else:
            state.index += 1
            self._clear_question_state()
            state.time_left = self._config.time_per_question
            state.phase = Phase.PLAYING
            self.logger.debug(
                f"Advanced session {self._session_id} to challenge {state.index + 1}/{len(state.deck)}"
            )
            self._start_question_timer()

        self._publish()
        return True

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a listener for snapshots published after each transition.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> SessionSnapshot:
        """Return a read-only copy of the current state."""
        state = self._state
        return SessionSnapshot(
            session_id=self._session_id,
            phase=state.phase,
            index=state.index,
            deck_size=len(state.deck),
            challenge=state.current_challenge,
            score=state.score,
            lives=state.lives,
            max_lives=self._config.max_lives if self._config else 0,
            streak=state.streak,
            time_left=state.time_left,
            selected_index=state.selected_index,
            submitted_text=state.submitted_text,
            feedback=state.feedback,
            hint_used=state.hint_used,
            correct_count=state.correct_count,
            answered_count=state.answered_count
        )

    def result(self) -> Optional[SessionResult]:
        """Summary of the finished session, or None if the session has not reached RESULT."""
        state = self._state
        if state.phase is not Phase.RESULT:
            return None

        max_score = max_achievable_score(state.deck, self._config)
        percent = min(100, round(100 * state.score / max_score)) if max_score else 0
        return SessionResult(
            outcome=Outcome.DEFEAT if state.lives <= 0 else Outcome.VICTORY,
            score=state.score,
            max_score=max_score,
            percent=percent,
            correct_count=state.correct_count,
            answered_count=state.answered_count,
            deck_size=len(state.deck),
            lives_remaining=state.lives,
            best_streak=state.best_streak
        )

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def config(self) -> Optional[SessionConfig]:
        return self._config

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _claimable_challenge(self, operation: str) -> Optional[Challenge]:
        """Current challenge if it is still open for an answer, else None."""
        state = self._state
        if self._session_id is None:
            self._log_ignored(operation, "no active session")
            return None
        if state.phase is not Phase.PLAYING:
            self._log_ignored(operation, f"phase is {state.phase.value}")
            return None
        if state.is_answered:
            self._log_ignored(operation, "challenge already answered")
            return None
        return state.current_challenge

    def _resolve_answer(self, challenge: Challenge, is_correct: bool, timed_out: bool) -> None:
        state = self._state
        config = self._config
        self._dispose_timer()

        result = score_answer(challenge, is_correct, state.streak, config, hint_used=state.hint_used)
        state.score += result.delta
        state.streak = result.next_streak
        state.best_streak = max(state.best_streak, state.streak)
        state.answered_count += 1

        if is_correct:
            state.correct_count += 1
            state.feedback = Feedback(FeedbackKind.CORRECT, challenge.explanation)
        else:
            state.lives = max(0, state.lives - 1)
            state.feedback = self._failure_feedback(challenge, timed_out)

        state.phase = Phase.FEEDBACK

        self.logger.info(
            f"Session {self._session_id} challenge {state.index + 1}/{len(state.deck)}: "
            f"{state.feedback.kind.value}, +{result.delta} points, lives {state.lives}",
            extra={
                'event_type': 'challenge_resolved',
                'session_key': self.session_key,
                'session_id': self._session_id,
                'challenge_id': challenge.id,
                'outcome': state.feedback.kind.value,
                'delta': result.delta,
                'timestamp': time.time()
            }
        )

        delay = config.timeout_feedback_delay_ms if timed_out else config.feedback_delay_ms
        self._dispose_advance()
        self._advance_disposer = self._scheduler.schedule_advance(
            delay,
            self._guarded(self.advance, "advance")
        )
        self._publish()

    def _failure_feedback(self, challenge: Challenge, timed_out: bool) -> Feedback:
        if challenge.is_free_text:
            reveal = f"The answer was: {challenge.answer}."
            if timed_out:
                return Feedback(FeedbackKind.TIMEOUT, f"{self._config.timeout_message} {reveal}")
            return Feedback(FeedbackKind.WRONG, f"{reveal} {challenge.explanation}".strip())

        if timed_out:
            return Feedback(FeedbackKind.TIMEOUT, self._config.timeout_message)
        return Feedback(FeedbackKind.WRONG, challenge.explanation)

    def _finish(self, reason: str) -> None:
        state = self._state
        self._cancel_pending()
        self._clear_question_state()
        state.phase = Phase.RESULT
        self.logger.info(
            f"Session {self._session_id} finished ({reason}): score {state.score}, "
            f"{state.correct_count}/{state.answered_count} correct",
            extra={
                'event_type': 'session_finished',
                'session_key': self.session_key,
                'session_id': self._session_id,
                'reason': reason,
                'score': state.score,
                'timestamp': time.time()
            }
        )

    def _clear_question_state(self) -> None:
        state = self._state
        state.selected_index = None
        state.submitted_text = None
        state.feedback = None
        state.hint_used = False

    def _on_timer_tick(self, remaining: int) -> None:
        state = self._state
        if state.phase is not Phase.PLAYING or state.is_answered:
            return
        state.time_left = max(0, remaining)
        self._publish()

    def _start_question_timer(self) -> None:
        self._dispose_timer()
        self._timer_disposer = self._timer.start(
            self._config.time_per_question,
            self._guarded(self._on_timer_tick, "tick"),
            self._guarded(self.on_timer_expire, "expire")
        )

    def _token(self) -> Tuple[Optional[str], int]:
        return (self._session_id, self._state.index)

    def _guarded(self, handler: Callable[..., Any], label: str) -> Callable[..., Any]:
        """Bind a callback to the current session id and challenge index."""
        token = self._token()

        def guarded(*args):
            if self._token() != token:
                TimerLifecycleLogger.log_race_condition_detected(
                    self.session_key,
                    f"stale {label} callback ignored (created for {token}, now {self._token()})"
                )
                return None
            return handler(*args)

        return guarded

    def _dispose_timer(self) -> None:
        if self._timer_disposer is not None:
            disposer, self._timer_disposer = self._timer_disposer, None
            disposer()

    def _dispose_advance(self) -> None:
        if self._advance_disposer is not None:
            disposer, self._advance_disposer = self._advance_disposer, None
            disposer()

    def _cancel_pending(self) -> None:
        self._dispose_timer()
        self._dispose_advance()

    def _publish(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                self.logger.error(
                    f"Snapshot listener failed for session {self._session_id}: {e}",
                    exc_info=True
                )

    def _log_ignored(self, operation: str, reason: str) -> None:
        self.logger.debug(
            f"Ignored {operation} for {self.session_key}: {reason}",
            extra={
                'event_type': 'operation_ignored',
                'session_key': self.session_key,
                'session_id': self._session_id,
                'operation': operation,
                'reason': reason,
                'timestamp': time.time()
            }
        )
