"""
Core data models for the timed challenge engine.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from challenge_engine.errors import ConfigurationError, InvalidChallengeError


@dataclass(frozen=True)
class Challenge:
    """A single immutable challenge: multiple choice, or free text when options is empty."""
    id: str
    prompt: str
    options: Tuple[str, ...] = ()
    correct_index: Optional[int] = None
    base_points: int = 10
    explanation: str = ""
    category: Optional[str] = None
    answer: Optional[str] = None
    hint: Optional[str] = None

    def __post_init__(self):
        # Lists from JSON are frozen so the challenge stays hashable
        if not isinstance(self.options, tuple):
            object.__setattr__(self, 'options', tuple(self.options))

        if not self.id:
            raise InvalidChallengeError("Challenge id cannot be empty")
        if not isinstance(self.base_points, int) or self.base_points < 0:
            raise InvalidChallengeError(f"Challenge {self.id}: base_points must be a non-negative integer")

        if self.options:
            if self.correct_index is None or not (0 <= self.correct_index < len(self.options)):
                raise InvalidChallengeError(
                    f"Challenge {self.id}: correct_index {self.correct_index} out of range "
                    f"for {len(self.options)} options"
                )
        elif not self.answer or not self.answer.strip():
            raise InvalidChallengeError(f"Challenge {self.id}: needs options or a free-text answer")

    @property
    def is_free_text(self) -> bool:
        """True when the challenge is answered by typing rather than choosing."""
        return not self.options

    @property
    def correct_answer(self) -> str:
        """Human-readable correct answer."""
        if self.is_free_text:
            return self.answer
        return self.options[self.correct_index]


@dataclass(frozen=True)
class SessionConfig:
    """Settings for one challenge session. Immutable for the session lifetime."""
    deck_size: int = 10
    time_per_question: int = 30
    max_lives: int = 3
    streak_bonus_per_level: int = 5
    hint_penalty: Optional[int] = None
    feedback_delay_ms: int = 2200
    timeout_feedback_delay_ms: int = 2000
    timeout_message: str = "⏰ Time ran out!"
    scramble_answers: bool = False

    @property
    def hints_enabled(self) -> bool:
        return self.hint_penalty is not None

    def validate(self) -> None:
        """
        Check the configuration before a session starts.

        Raises:
            ConfigurationError: If any value is out of range or of the wrong type
        """
        for name in ('deck_size', 'time_per_question', 'max_lives'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        for name in ('streak_bonus_per_level', 'feedback_delay_ms', 'timeout_feedback_delay_ms'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                raise ConfigurationError(f"{name} must be a non-negative integer, got {value!r}")

        if self.hint_penalty is not None and (
            not isinstance(self.hint_penalty, int)
            or isinstance(self.hint_penalty, bool)
            or self.hint_penalty < 0
        ):
            raise ConfigurationError(f"hint_penalty must be a non-negative integer, got {self.hint_penalty!r}")

        if not isinstance(self.scramble_answers, bool):
            raise ConfigurationError(f"scramble_answers must be true or false, got {self.scramble_answers!r}")

        if not isinstance(self.timeout_message, str):
            raise ConfigurationError(f"timeout_message must be a string, got {self.timeout_message!r}")


class Phase(Enum):
    """Lifecycle phases of a challenge session."""
    MENU = "menu"
    PLAYING = "playing"
    FEEDBACK = "feedback"
    RESULT = "result"


class FeedbackKind(Enum):
    CORRECT = "correct"
    WRONG = "wrong"
    TIMEOUT = "timeout"


class Outcome(Enum):
    VICTORY = "victory"
    DEFEAT = "defeat"


@dataclass(frozen=True)
class Feedback:
    kind: FeedbackKind
    text: str


@dataclass
class SessionState:
    """Mutable session state. Only ChallengeSession writes to it."""
    phase: Phase = Phase.MENU
    deck: List[Challenge] = field(default_factory=list)
    index: int = 0
    score: int = 0
    lives: int = 0
    streak: int = 0
    time_left: int = 0
    selected_index: Optional[int] = None
    submitted_text: Optional[str] = None
    feedback: Optional[Feedback] = None
    hint_used: bool = False
    correct_count: int = 0
    answered_count: int = 0
    best_streak: int = 0

    @property
    def current_challenge(self) -> Optional[Challenge]:
        if 0 <= self.index < len(self.deck):
            return self.deck[self.index]
        return None

    @property
    def is_answered(self) -> bool:
        """True once the current challenge has been claimed by an answer or a timeout."""
        return (
            self.selected_index is not None
            or self.submitted_text is not None
            or self.feedback is not None
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of a session published to observers after each transition."""
    session_id: Optional[str]
    phase: Phase
    index: int
    deck_size: int
    challenge: Optional[Challenge]
    score: int
    lives: int
    max_lives: int
    streak: int
    time_left: int
    selected_index: Optional[int]
    submitted_text: Optional[str]
    feedback: Optional[Feedback]
    hint_used: bool
    correct_count: int
    answered_count: int


@dataclass(frozen=True)
class SessionResult:
    """Summary of a finished session."""
    outcome: Outcome
    score: int
    max_score: int
    percent: int
    correct_count: int
    answered_count: int
    deck_size: int
    lives_remaining: int
    best_streak: int
