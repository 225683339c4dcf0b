"""
Challenge catalog for JSON challenge pack loading and validation.
"""
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from challenge_engine.errors import InvalidChallengeError
from challenge_engine.models import Challenge

SETTING_KEYS = (
    'deck_size',
    'time_per_question',
    'max_lives',
    'streak_bonus_per_level',
    'hint_penalty',
    'feedback_delay_ms',
    'timeout_feedback_delay_ms',
    'timeout_message',
    'scramble_answers',
)


@dataclass
class ChallengePack:
    """A named pool of challenges with the session settings it is played with."""
    name: str
    title: str
    challenges: List[Challenge]
    description: str = ""
    settings: Dict[str, Any] = field(default_factory=dict)


class ChallengeCatalog:
    """Manages loading and validation of JSON challenge packs."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB

    def __init__(self, challenge_directory: str = "./challenges/"):
        """
        Initialize the catalog with a challenge pack directory.

        Args:
            challenge_directory: Path to directory containing JSON challenge packs
        """
        self.challenge_directory = Path(challenge_directory)
        self.loaded_packs: Dict[str, ChallengePack] = {}
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []
        self.fallback_pack_created = False

    def load_packs(self) -> Dict[str, ChallengePack]:
        """
        Load all JSON challenge packs from the challenge directory.

        A broken file is reported in load_errors and skipped. If the directory
        holds no packs a sample pack is written; if it cannot be used at all an
        in-memory fallback pack is provided.

        Returns:
            Dictionary mapping pack names to ChallengePack objects
        """
        self.loaded_packs.clear()
        self.load_errors.clear()
        self.fallback_pack_created = False

        directory_result = self._ensure_challenge_directory()
        if not directory_result['success']:
            self.load_errors.append(directory_result['error'])
            return self._create_fallback_pack()

        try:
            json_files = sorted(self.challenge_directory.glob("*.json"))
        except OSError as e:
            self.load_errors.append(f"System error scanning {self.challenge_directory}: {e}")
            return self._create_fallback_pack()

        if not json_files:
            self.logger.warning(f"No JSON files found in {self.challenge_directory}")
            self.load_errors.append(f"No challenge packs found in {self.challenge_directory}")
            return self._create_sample_pack()

        successful_loads = 0
        for json_file in json_files:
            load_result = self._load_pack_file_safely(json_file)
            if load_result['success']:
                successful_loads += 1
            else:
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        if successful_loads == 0:
            self.logger.error("No challenge packs could be loaded successfully")
            self.load_errors.append("All challenge packs failed to load")
            return self._create_fallback_pack()

        self.logger.info(f"Successfully loaded {successful_loads} challenge packs")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self.loaded_packs

    def validate_pack_structure(self, data: dict) -> bool:
        """
        Validate that JSON data has the challenge pack structure.

        Expected structure:
        {
            "title": str,                  # Optional
            "settings": {...},             # Optional, SessionConfig field overrides
            "challenges": [
                {
                    "id": str,
                    "prompt": str,
                    "options": [str, ...],   # With correct_index, or
                    "correct_index": int,
                    "answer": str,           # for free-text challenges
                    "points": int,
                    "explanation": str
                }
            ]
        }

        Args:
            data: Parsed JSON data to validate

        Returns:
            True if structure is valid, False otherwise
        """
        if not isinstance(data, dict):
            self.logger.error("Challenge pack must be a JSON object")
            return False

        if "challenges" not in data:
            self.logger.error("Challenge pack must contain a 'challenges' key")
            return False

        challenges = data["challenges"]
        if not isinstance(challenges, list):
            self.logger.error("'challenges' value must be an array")
            return False

        if not challenges:
            self.logger.error("Challenge array cannot be empty")
            return False

        settings = data.get("settings", {})
        if not isinstance(settings, dict):
            self.logger.error("'settings' value must be an object")
            return False

        unknown_settings = set(settings) - set(SETTING_KEYS)
        if unknown_settings:
            self.logger.error(f"Unknown settings: {', '.join(sorted(unknown_settings))}")
            return False

        seen_ids = set()
        for i, entry in enumerate(challenges):
            if not isinstance(entry, dict):
                self.logger.error(f"Challenge {i} must be an object")
                return False

            for required in ("id", "prompt"):
                if not isinstance(entry.get(required), str) or not entry[required].strip():
                    self.logger.error(f"Challenge {i} '{required}' field must be a non-empty string")
                    return False

            if entry["id"] in seen_ids:
                self.logger.error(f"Challenge {i} has duplicate id '{entry['id']}'")
                return False
            seen_ids.add(entry["id"])

            if "options" in entry:
                options = entry["options"]
                if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
                    self.logger.error(f"Challenge {i} 'options' field must be an array of strings")
                    return False
                if not isinstance(entry.get("correct_index"), int):
                    self.logger.error(f"Challenge {i} 'correct_index' field must be an integer")
                    return False
            elif not isinstance(entry.get("answer"), str):
                self.logger.error(f"Challenge {i} needs 'options' or an 'answer' string")
                return False

            if "points" in entry and not isinstance(entry["points"], int):
                self.logger.error(f"Challenge {i} 'points' field must be an integer")
                return False

        return True

    def _parse_challenges(self, pack_data: dict) -> List[Challenge]:
        """
        Parse validated pack data into Challenge objects.

        Raises:
            InvalidChallengeError: If an entry breaks a challenge invariant
        """
        challenges = []

        for entry in pack_data["challenges"]:
            challenges.append(Challenge(
                id=entry["id"],
                prompt=entry["prompt"],
                options=tuple(entry.get("options", ())),
                correct_index=entry.get("correct_index"),
                base_points=entry.get("points", 10),
                explanation=entry.get("explanation", ""),
                category=entry.get("category"),
                answer=entry.get("answer"),
                hint=entry.get("hint")
            ))

        return challenges

    def get_available_packs(self) -> List[str]:
        """Get list of available pack names (file names without extension)."""
        return list(self.loaded_packs.keys())

    def get_pack(self, pack_name: str) -> Optional[ChallengePack]:
        """
        Retrieve a loaded pack.

        Args:
            pack_name: Name of the pack (without file extension)

        Returns:
            ChallengePack, or None if the pack is not loaded
        """
        return self.loaded_packs.get(pack_name)

    def get_pack_challenges(self, pack_name: str) -> Optional[List[Challenge]]:
        pack = self.get_pack(pack_name)
        return pack.challenges if pack else None

    def pack_exists(self, pack_name: str) -> bool:
        return pack_name in self.loaded_packs

    def _ensure_challenge_directory(self) -> Dict[str, Any]:
        """
        Ensure the challenge directory exists and is readable.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not self.challenge_directory.exists():
                self.challenge_directory.mkdir(parents=True, exist_ok=True)
                self.logger.info(f"Created challenge directory: {self.challenge_directory}")

            if not os.access(self.challenge_directory, os.R_OK):
                return {
                    'success': False,
                    'error': f"Permission denied: Cannot read from {self.challenge_directory}"
                }

            return {'success': True}

        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot access {self.challenge_directory}"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error accessing {self.challenge_directory}: {e}"
            }

    def _load_pack_file_safely(self, json_file: Path) -> Dict[str, Any]:
        """
        Load a single pack file.

        Args:
            json_file: Path to the JSON file to load

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). "
                             f"Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
                }

            with open(json_file, 'r', encoding='utf-8') as f:
                pack_data = json.load(f)

            if not self.validate_pack_structure(pack_data):
                return {
                    'success': False,
                    'error': "Invalid challenge pack structure"
                }

            challenges = self._parse_challenges(pack_data)
            pack_name = json_file.stem
            self.loaded_packs[pack_name] = ChallengePack(
                name=pack_name,
                title=pack_data.get("title", pack_name.replace("_", " ").title()),
                description=pack_data.get("description", ""),
                challenges=challenges,
                settings=dict(pack_data.get("settings", {}))
            )
            self.logger.info(f"Loaded challenge pack '{pack_name}' with {len(challenges)} challenges")

            return {'success': True}

        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {json_file}: {e}")
            return {
                'success': False,
                'error': f"Invalid JSON: {e}"
            }
        except UnicodeDecodeError as e:
            self.logger.error(f"Invalid encoding in {json_file}: {e}")
            return {
                'success': False,
                'error': f"File is not valid UTF-8: {e.reason} at byte {e.start}"
            }
        except InvalidChallengeError as e:
            self.logger.error(f"Invalid challenge in {json_file}: {e}")
            return {
                'success': False,
                'error': str(e)
            }
        except PermissionError:
            return {
                'success': False,
                'error': "Permission denied"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error: {e}"
            }

    def _create_sample_pack(self) -> Dict[str, ChallengePack]:
        """
        Write and load a sample pack when the directory has no packs.

        Returns:
            Dictionary with the sample pack loaded
        """
        sample_pack_data = {
            "title": "Sample Challenges",
            "description": "A starter pack written because no challenge packs were found.",
            "settings": {"deck_size": 3, "time_per_question": 30},
            "challenges": [
                {
                    "id": "sample-01",
                    "prompt": "What is the chemical formula of water?",
                    "options": ["H₂O", "CO₂", "NaCl", "O₂"],
                    "correct_index": 0,
                    "points": 10,
                    "explanation": "Water is made of 2 hydrogen atoms and 1 oxygen atom: H₂O."
                },
                {
                    "id": "sample-02",
                    "prompt": "Which is the largest continent by area?",
                    "options": ["Africa", "North America", "Asia", "Europe"],
                    "correct_index": 2,
                    "points": 10,
                    "explanation": "Asia covers about 44.58 million km²."
                },
                {
                    "id": "sample-03",
                    "prompt": "What is the SI unit of force?",
                    "options": ["Joule", "Pascal", "Newton", "Watt"],
                    "correct_index": 2,
                    "points": 10,
                    "explanation": "The SI unit of force is the Newton (N)."
                }
            ]
        }

        sample_file_path = self.challenge_directory / "sample_challenges.json"
        try:
            if not sample_file_path.exists():
                with open(sample_file_path, 'w', encoding='utf-8') as f:
                    json.dump(sample_pack_data, f, indent=2, ensure_ascii=False)
                self.logger.info(f"Created sample challenge pack: {sample_file_path}")
        except OSError as e:
            self.logger.error(f"Failed to write sample challenge pack: {e}")
            self.load_errors.append(f"Failed to write sample challenge pack: {e}")

        self.loaded_packs["sample_challenges"] = ChallengePack(
            name="sample_challenges",
            title=sample_pack_data["title"],
            description=sample_pack_data["description"],
            challenges=self._parse_challenges(sample_pack_data),
            settings=dict(sample_pack_data["settings"])
        )
        self.logger.info("Loaded sample challenge pack with 3 challenges")
        return self.loaded_packs

    def _create_fallback_pack(self) -> Dict[str, ChallengePack]:
        """
        Provide a minimal in-memory pack when the challenge directory is unusable.

        Returns:
            Dictionary with the fallback pack loaded
        """
        self.loaded_packs["fallback_challenges"] = ChallengePack(
            name="fallback_challenges",
            title="Fallback Challenge",
            challenges=[
                Challenge(
                    id="fallback-01",
                    prompt="Challenge packs could not be loaded. Where should JSON packs be placed?",
                    options=("The challenge directory", "The logs directory", "Nowhere", "The tests directory"),
                    correct_index=0,
                    base_points=10,
                    explanation="Put challenge pack JSON files in the configured challenge directory."
                )
            ],
            settings={"deck_size": 1}
        )
        self.fallback_pack_created = True
        self.logger.warning("Created fallback challenge pack due to loading failures")
        return self.loaded_packs

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def is_fallback_pack_active(self) -> bool:
        return self.fallback_pack_created

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the last load operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'total_packs': len(self.loaded_packs),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'fallback_active': self.is_fallback_pack_active(),
            'challenge_directory': str(self.challenge_directory),
            'available_packs': self.get_available_packs()
        }
