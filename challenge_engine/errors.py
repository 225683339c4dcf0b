"""
Exception types raised by the timed challenge engine.
"""


class ChallengeEngineError(Exception):
    """Base exception for challenge engine errors."""
    pass


class ConfigurationError(ChallengeEngineError, ValueError):
    """Raised when a session cannot be started with the supplied settings."""
    pass


class InsufficientPoolError(ConfigurationError):
    """Raised when a deck is requested from an empty challenge pool."""
    pass


class InvalidChallengeError(ChallengeEngineError, ValueError):
    """Raised when challenge data violates the challenge invariants."""
    pass
