"""
Question bank: turns a challenge pool into a shuffled, size-capped session deck.
"""
import dataclasses
import logging
import random
from typing import List, Optional, Sequence

from challenge_engine.errors import ConfigurationError, InsufficientPoolError
from challenge_engine.models import Challenge, SessionConfig

logger = logging.getLogger(__name__)


def fisher_yates_shuffle(items: Sequence, rng: random.Random) -> list:
    """Return a uniformly shuffled copy of items."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = rng.randint(0, i)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def build_deck(
    pool: Sequence[Challenge],
    size: int,
    seed: Optional[int] = None,
    rng: Optional[random.Random] = None
) -> List[Challenge]:
    """
    Build a session deck from a challenge pool.

    Args:
        pool: Available challenges
        size: Maximum number of challenges in the deck
        seed: Makes the shuffle deterministic when given
        rng: Random source used when no seed is given

    Returns:
        New list of min(size, len(pool)) challenges in shuffled order

    Raises:
        InsufficientPoolError: If the pool is empty
        ConfigurationError: If size is not positive
    """
    if not pool:
        raise InsufficientPoolError("Cannot build a deck from an empty challenge pool")
    if not isinstance(size, int) or size <= 0:
        raise ConfigurationError(f"Deck size must be a positive integer, got {size!r}")

    if seed is not None:
        rng = random.Random(seed)
    elif rng is None:
        rng = random.Random()

    deck = fisher_yates_shuffle(pool, rng)[:min(size, len(pool))]
    logger.debug(f"Built deck of {len(deck)} challenges from pool of {len(pool)}")
    return deck


def scramble_word(word: str, rng: random.Random, max_attempts: int = 20) -> str:
    """
    Shuffle the letters of a word so the result differs from the word.

    Words made of one repeated letter cannot be scrambled and are returned as-is.
    """
    if len(set(word)) < 2:
        return word

    for _ in range(max_attempts):
        scrambled = "".join(fisher_yates_shuffle(word, rng))
        if scrambled != word:
            return scrambled

    # A rotation always differs once there are two distinct letters
    return word[1:] + word[0]


class QuestionBank:
    """Prepares per-session decks from a pool, applying pack-level transforms."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    def prepare_deck(
        self,
        pool: Sequence[Challenge],
        config: SessionConfig,
        seed: Optional[int] = None
    ) -> List[Challenge]:
        """
        Build the deck for a session and scramble free-text prompts if configured.

        Args:
            pool: Available challenges
            config: Session configuration
            seed: Optional seed for a deterministic deck

        Returns:
            Session deck
        """
        rng = random.Random(seed) if seed is not None else self._rng
        deck = build_deck(pool, config.deck_size, rng=rng)

        if config.scramble_answers:
            deck = [
                dataclasses.replace(challenge, prompt=scramble_word(challenge.answer.upper(), rng))
                if challenge.is_free_text else challenge
                for challenge in deck
            ]
        return deck
