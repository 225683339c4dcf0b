"""
Configuration manager for challenge session defaults.
"""
import dataclasses
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from challenge_engine.errors import ConfigurationError
from challenge_engine.models import SessionConfig


class ConfigManager:
    """Manages default session settings and builds per-pack session configurations."""

    DEFAULT_CHALLENGE_DIRECTORY = "./challenges/"

    # Validation limits
    MIN_DECK_SIZE = 1
    MAX_DECK_SIZE = 50
    MIN_TIME_PER_QUESTION = 5
    MAX_TIME_PER_QUESTION = 300  # 5 minutes
    MIN_LIVES = 1
    MAX_LIVES = 10
    MAX_STREAK_BONUS = 100
    MAX_HINT_PENALTY = 100

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._defaults = SessionConfig()
        self._challenge_directory = self.DEFAULT_CHALLENGE_DIRECTORY

    def get_default_config(self) -> SessionConfig:
        """Get the current default session configuration."""
        return self._defaults

    def apply_settings(self, settings: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Apply a mapping of default settings, e.g. the "engine" section of config.json.

        Args:
            settings: Setting names mapped to values

        Returns:
            List of result dictionaries for settings that failed
        """
        setters = {
            'deck_size': self.set_deck_size,
            'time_per_question': self.set_time_per_question,
            'max_lives': self.set_max_lives,
            'streak_bonus_per_level': self.set_streak_bonus,
            'hint_penalty': self.set_hint_penalty,
            'challenge_directory': self.set_challenge_directory,
        }

        failures = []
        for name, value in settings.items():
            setter = setters.get(name)
            if setter is None:
                self.logger.warning(f"Ignoring unknown engine setting '{name}'")
                continue
            result = setter(value)
            if not result['success']:
                failures.append(result)
        return failures

    def _set_bounded_int(self, name: str, label: str, value: Any, minimum: int, maximum: int) -> Dict[str, Any]:
        if not isinstance(value, int) or isinstance(value, bool):
            error_msg = f"{label} must be an integer, got {type(value).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(value).__name__}"
            }

        if value < minimum:
            error_msg = f"{label} must be at least {minimum}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {label} too low: Minimum is {minimum}"
            }

        if value > maximum:
            error_msg = f"{label} cannot exceed {maximum}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {label} too high: Maximum is {maximum}"
            }

        self._defaults = dataclasses.replace(self._defaults, **{name: value})
        self.logger.info(f"{label} set to {value}")
        return {
            'success': True,
            'message': f"{label} set to {value}",
            'user_message': f"✅ {label} set to {value}"
        }

    def set_deck_size(self, size: int) -> Dict[str, Any]:
        """
        Set the number of challenges per session.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        return self._set_bounded_int('deck_size', "Deck size", size, self.MIN_DECK_SIZE, self.MAX_DECK_SIZE)

    def set_time_per_question(self, seconds: int) -> Dict[str, Any]:
        """Set the countdown length for each challenge."""
        return self._set_bounded_int(
            'time_per_question',
            "Time per question",
            seconds,
            self.MIN_TIME_PER_QUESTION,
            self.MAX_TIME_PER_QUESTION
        )

    def set_max_lives(self, lives: int) -> Dict[str, Any]:
        return self._set_bounded_int('max_lives', "Lives", lives, self.MIN_LIVES, self.MAX_LIVES)

    def set_streak_bonus(self, bonus: int) -> Dict[str, Any]:
        return self._set_bounded_int(
            'streak_bonus_per_level',
            "Streak bonus",
            bonus,
            0,
            self.MAX_STREAK_BONUS
        )

    def set_hint_penalty(self, penalty: Optional[int]) -> Dict[str, Any]:
        """
        Set the hint penalty, or disable hints with None.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if penalty is None:
            self._defaults = dataclasses.replace(self._defaults, hint_penalty=None)
            self.logger.info("Hints disabled")
            return {
                'success': True,
                'message': "Hints disabled",
                'user_message': "✅ Hints are disabled"
            }
        return self._set_bounded_int('hint_penalty', "Hint penalty", penalty, 0, self.MAX_HINT_PENALTY)

    def set_challenge_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory holding challenge packs.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(directory, str) or not directory.strip():
            error_msg = "Challenge directory must be a non-empty string"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': "❌ Directory path cannot be empty"
            }

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            error_msg = f"Invalid directory path format: {e}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid path format: {directory}"
            }

        self._challenge_directory = normalized_path
        self.logger.info(f"Challenge directory set to {normalized_path}")
        return {
            'success': True,
            'message': f"Challenge directory set to {normalized_path}",
            'user_message': f"✅ Challenge directory set to {normalized_path}"
        }

    def get_challenge_directory(self) -> str:
        return self._challenge_directory

    def build_session_config(self, overrides: Optional[Dict[str, Any]] = None) -> SessionConfig:
        """
        Merge pack settings over the defaults.

        Args:
            overrides: SessionConfig field values, typically a pack's "settings"

        Returns:
            Validated SessionConfig

        Raises:
            ConfigurationError: If an override is unknown or the result is invalid
        """
        overrides = overrides or {}
        known_fields = {f.name for f in dataclasses.fields(SessionConfig)}
        unknown = set(overrides) - known_fields
        if unknown:
            raise ConfigurationError(f"Unknown session settings: {', '.join(sorted(unknown))}")

        config = dataclasses.replace(self._defaults, **overrides)
        config.validate()
        return config

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._defaults = SessionConfig()
        self._challenge_directory = self.DEFAULT_CHALLENGE_DIRECTORY
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current defaults.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        try:
            self._defaults.validate()
        except ConfigurationError as e:
            validation_result["valid"] = False
            validation_result["issues"].append(str(e))

        if not self.MIN_DECK_SIZE <= self._defaults.deck_size <= self.MAX_DECK_SIZE:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid deck size: {self._defaults.deck_size}")

        if not self.MIN_TIME_PER_QUESTION <= self._defaults.time_per_question <= self.MAX_TIME_PER_QUESTION:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid time per question: {self._defaults.time_per_question}"
            )

        if not isinstance(self._challenge_directory, str) or not self._challenge_directory.strip():
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid challenge directory: {self._challenge_directory}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        defaults = self._defaults
        hints = f"-{defaults.hint_penalty} points" if defaults.hints_enabled else "disabled"
        return (
            f"Challenge Settings:\n"
            f"• Deck size: {defaults.deck_size}\n"
            f"• Timer: {defaults.time_per_question} seconds\n"
            f"• Lives: {defaults.max_lives}\n"
            f"• Streak bonus: +{defaults.streak_bonus_per_level} per level\n"
            f"• Hints: {hints}\n"
            f"• Challenge Directory: {self._challenge_directory}"
        )
