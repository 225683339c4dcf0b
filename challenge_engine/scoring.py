"""
Scoring rules shared by every challenge game.
"""
from dataclasses import dataclass
from typing import Sequence

from challenge_engine.models import Challenge, SessionConfig


@dataclass(frozen=True)
class ScoreResult:
    delta: int
    next_streak: int


def score_answer(
    challenge: Challenge,
    is_correct: bool,
    current_streak: int,
    config: SessionConfig,
    hint_used: bool = False
) -> ScoreResult:
    """
    Compute the points for one answer.

    A correct answer earns the challenge's base points plus a linear streak
    bonus, minus the hint penalty when a hint was used (never below zero).
    Wrong answers and timeouts earn nothing and reset the streak.

    Args:
        challenge: The challenge that was answered
        is_correct: Whether the answer was correct
        current_streak: Consecutive correct answers before this one
        config: Session configuration
        hint_used: Whether a hint was consumed for this challenge

    Returns:
        ScoreResult with the score delta and the streak after this answer
    """
    if not is_correct:
        return ScoreResult(delta=0, next_streak=0)

    delta = challenge.base_points + current_streak * config.streak_bonus_per_level
    if hint_used and config.hints_enabled:
        delta = max(0, delta - config.hint_penalty)

    return ScoreResult(delta=delta, next_streak=current_streak + 1)


def max_achievable_score(deck: Sequence[Challenge], config: SessionConfig) -> int:
    """Score of a perfect run through the deck without hints."""
    return sum(
        challenge.base_points + position * config.streak_bonus_per_level
        for position, challenge in enumerate(deck)
    )
