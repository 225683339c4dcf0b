"""
Challenge session controller.
Hosts one ChallengeSession per channel and translates engine operations
into result dictionaries for the presentation layer.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from challenge_engine.catalog import ChallengeCatalog
from challenge_engine.config_manager import ConfigManager
from challenge_engine.errors import ChallengeEngineError, ConfigurationError, InsufficientPoolError
from challenge_engine.models import Phase, SessionResult, SessionSnapshot
from challenge_engine.session_machine import ChallengeSession, SnapshotListener


class ChallengeControllerError(Exception):
    """Base exception for challenge controller errors."""
    pass


class SessionConflictError(ChallengeControllerError):
    """Raised when a channel already has a running session."""
    pass


class SessionNotFoundError(ChallengeControllerError):
    """Raised when operating on a channel without a session."""
    pass


class PackNotFoundError(ChallengeControllerError):
    """Raised when the requested challenge pack is not loaded."""
    pass


class ChallengeController:
    """
    Orchestrates challenge sessions across channels.

    Each channel has at most one session. Stopping or restarting a session
    always tears the previous one down so none of its timers can fire later.
    """

    def __init__(
        self,
        catalog: ChallengeCatalog,
        config_manager: ConfigManager,
        session_factory: Optional[Callable[[str], ChallengeSession]] = None
    ):
        """
        Initialize the challenge controller.

        Args:
            catalog: Loaded challenge packs
            config_manager: Default session settings
            session_factory: Creates a session for a channel key
        """
        self.logger = logging.getLogger(__name__)
        self.catalog = catalog
        self.config_manager = config_manager
        self._session_factory = session_factory or ChallengeSession

        self._sessions: Dict[int, ChallengeSession] = {}
        self._pack_names: Dict[int, str] = {}
        self._total_scores: Dict[int, int] = {}
        self._recorded_sessions: Dict[int, str] = {}

        self.logger.info("ChallengeController initialized")

    def get_session(self, channel_id: int) -> Optional[ChallengeSession]:
        return self._sessions.get(channel_id)

    def has_active_session(self, channel_id: int) -> bool:
        """
        Check if a channel has a session that is still being played.

        Args:
            channel_id: Channel identifier

        Returns:
            True if the session is in PLAYING or FEEDBACK
        """
        session = self._sessions.get(channel_id)
        return session is not None and session.phase in (Phase.PLAYING, Phase.FEEDBACK)

    def start_challenge(
        self,
        channel_id: int,
        pack_name: str,
        listener: Optional[SnapshotListener] = None
    ) -> Dict[str, Any]:
        """
        Start a challenge session in a channel.

        Args:
            channel_id: Channel identifier
            pack_name: Name of the challenge pack to play
            listener: Optional snapshot listener for the presentation layer

        Returns:
            Dictionary with operation results and error information
        """
        try:
            if self.has_active_session(channel_id):
                raise SessionConflictError(f"Challenge already running in channel {channel_id}")

            pack = self.catalog.get_pack(pack_name)
            if pack is None:
                available = self.catalog.get_available_packs()
                if not available:
                    raise PackNotFoundError("No challenge packs available")
                raise PackNotFoundError(
                    f"Challenge pack '{pack_name}' not found. Available packs: {', '.join(available)}"
                )

            config = self.config_manager.build_session_config(pack.settings)

            # A finished session in this channel is replaced
            self._discard_session(channel_id)

            session = self._session_factory(str(channel_id))
            session.subscribe(lambda snapshot: self._record_finished(channel_id, snapshot))
            if listener is not None:
                session.subscribe(listener)

            snapshot = session.start_session(pack.challenges, config)
            self._sessions[channel_id] = session
            self._pack_names[channel_id] = pack_name

            self.logger.info(
                f"Started challenge '{pack_name}' in channel {channel_id}",
                extra={
                    'event_type': 'challenge_started',
                    'channel_id': channel_id,
                    'pack_name': pack_name,
                    'deck_size': snapshot.deck_size,
                    'timestamp': time.time()
                }
            )

            return {
                'success': True,
                'message': f"Challenge '{pack.title}' started",
                'session_info': self.get_status(channel_id),
                'snapshot': snapshot
            }

        except Exception as e:
            return self._handle_session_error(channel_id, e, "start_challenge")

    def stop_challenge(self, channel_id: int) -> Dict[str, Any]:
        """
        Stop and tear down the session in a channel.

        Returns:
            Dictionary with operation results and the final status
        """
        session = self._sessions.get(channel_id)
        if session is None:
            return {
                'success': False,
                'message': f"No challenge session in channel {channel_id}",
                'user_message': "❌ No challenge is running in this channel"
            }

        status = self.get_status(channel_id)
        self._discard_session(channel_id)

        self.logger.info(
            f"Stopped challenge session in channel {channel_id}",
            extra={
                'event_type': 'challenge_stopped',
                'channel_id': channel_id,
                'timestamp': time.time()
            }
        )
        return {
            'success': True,
            'message': "Challenge stopped",
            'session_info': status
        }

    def restart_challenge(self, channel_id: int) -> Dict[str, Any]:
        """Restart the channel's session with the same pack and settings."""
        try:
            session = self._sessions.get(channel_id)
            if session is None:
                raise SessionNotFoundError(f"No challenge session in channel {channel_id}")

            snapshot = session.restart()
            return {
                'success': True,
                'message': "Challenge restarted",
                'session_info': self.get_status(channel_id),
                'snapshot': snapshot
            }
        except Exception as e:
            return self._handle_session_error(channel_id, e, "restart_challenge")

    def answer(self, channel_id: int, option_number: int) -> Dict[str, Any]:
        """
        Submit a 1-based option number for the current challenge.

        Returns:
            Dictionary with 'accepted' telling whether the engine took the answer
        """
        session = self._sessions.get(channel_id)
        if session is None:
            return self._no_session_result(channel_id)

        accepted = session.submit_answer(option_number - 1)
        return {
            'success': True,
            'accepted': accepted,
            'snapshot': session.snapshot()
        }

    def guess(self, channel_id: int, text: str) -> Dict[str, Any]:
        """Submit a free-text answer for the current challenge."""
        session = self._sessions.get(channel_id)
        if session is None:
            return self._no_session_result(channel_id)

        accepted = session.submit_text(text)
        return {
            'success': True,
            'accepted': accepted,
            'snapshot': session.snapshot()
        }

    def hint(self, channel_id: int) -> Dict[str, Any]:
        """Use the hint for the current challenge."""
        session = self._sessions.get(channel_id)
        if session is None:
            return self._no_session_result(channel_id)

        hint_text = session.use_hint()
        if hint_text is None:
            return {
                'success': False,
                'message': "Hint not available",
                'user_message': "💡 No hint is available right now"
            }

        return {
            'success': True,
            'hint': hint_text,
            'penalty': session.config.hint_penalty
        }

    def get_status(self, channel_id: int) -> Optional[Dict[str, Any]]:
        """
        Get progress information for a channel's session.

        Returns:
            Dictionary with progress info, None if the channel has no session
        """
        session = self._sessions.get(channel_id)
        if session is None:
            return None

        snapshot = session.snapshot()
        pack = self.catalog.get_pack(self._pack_names.get(channel_id, ""))
        return {
            'pack_name': self._pack_names.get(channel_id),
            'title': pack.title if pack else self._pack_names.get(channel_id),
            'phase': snapshot.phase.value,
            'current_challenge': min(snapshot.index + 1, snapshot.deck_size),
            'total_challenges': snapshot.deck_size,
            'score': snapshot.score,
            'lives': snapshot.lives,
            'max_lives': snapshot.max_lives,
            'streak': snapshot.streak,
            'time_left': snapshot.time_left,
            'total_score': self._total_scores.get(channel_id, 0)
        }

    def get_result(self, channel_id: int) -> Optional[SessionResult]:
        session = self._sessions.get(channel_id)
        return session.result() if session else None

    def get_total_score(self, channel_id: int) -> int:
        """Points collected in a channel across all finished sessions."""
        return self._total_scores.get(channel_id, 0)

    def get_all_active_sessions(self) -> Dict[int, Dict[str, Any]]:
        return {
            channel_id: self.get_status(channel_id)
            for channel_id in self._sessions
            if self.has_active_session(channel_id)
        }

    def cleanup_finished_sessions(self) -> int:
        """
        Drop sessions that are no longer being played.

        Returns:
            Number of sessions removed
        """
        finished = [
            channel_id for channel_id in self._sessions
            if not self.has_active_session(channel_id)
        ]
        for channel_id in finished:
            self._discard_session(channel_id)

        if finished:
            self.logger.info(f"Cleaned up {len(finished)} finished challenge sessions")
        return len(finished)

    def shutdown(self) -> None:
        """Tear down every session, e.g. when the host is closing."""
        for channel_id in list(self._sessions):
            self._discard_session(channel_id)

    def _discard_session(self, channel_id: int) -> None:
        session = self._sessions.pop(channel_id, None)
        self._pack_names.pop(channel_id, None)
        if session is not None:
            session.teardown()

    def _record_finished(self, channel_id: int, snapshot: SessionSnapshot) -> None:
        if snapshot.phase is not Phase.RESULT or snapshot.session_id is None:
            return
        # Each finished session is counted once
        if self._recorded_sessions.get(channel_id) == snapshot.session_id:
            return
        self._recorded_sessions[channel_id] = snapshot.session_id
        self._total_scores[channel_id] = self._total_scores.get(channel_id, 0) + snapshot.score

    def _no_session_result(self, channel_id: int) -> Dict[str, Any]:
        return {
            'success': False,
            'accepted': False,
            'message': f"No challenge session in channel {channel_id}",
            'user_message': "❌ No challenge is running in this channel. Use /play to start one."
        }

    def _handle_session_error(self, channel_id: int, error: Exception, operation: str) -> Dict[str, Any]:
        """
        Log an error and build a result dictionary for the presentation layer.

        Args:
            channel_id: Channel identifier
            error: The exception that occurred
            operation: Name of the failed operation

        Returns:
            Dictionary with error information and a user-friendly message
        """
        if isinstance(error, (ChallengeControllerError, ChallengeEngineError)):
            self.logger.warning(f"{operation} failed for channel {channel_id}: {error}")
        else:
            self.logger.error(
                f"Unexpected error in {operation} for channel {channel_id}: {error}",
                exc_info=True
            )

        return {
            'success': False,
            'error': str(error),
            'error_type': type(error).__name__,
            'message': str(error),
            'user_message': self._get_user_friendly_error_message(error)
        }

    def _get_user_friendly_error_message(self, error: Exception) -> str:
        if isinstance(error, SessionConflictError):
            return "⚠️ A challenge is already running in this channel. Use /stop to end it first."
        if isinstance(error, SessionNotFoundError):
            return "❌ No challenge is running in this channel. Use /play to start one."
        if isinstance(error, PackNotFoundError):
            return f"❌ {error}"
        if isinstance(error, InsufficientPoolError):
            return "❌ This challenge pack has no challenges."
        if isinstance(error, ConfigurationError):
            return f"❌ Invalid challenge settings: {error}"
        return "❌ An unexpected error occurred. Please try again."

    def list_packs(self) -> List[Dict[str, Any]]:
        """Describe every loaded pack for a game menu."""
        packs = []
        for name in self.catalog.get_available_packs():
            pack = self.catalog.get_pack(name)
            packs.append({
                'name': name,
                'title': pack.title,
                'description': pack.description,
                'challenge_count': len(pack.challenges)
            })
        return packs
