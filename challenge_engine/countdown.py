"""
Countdown timer for timed challenges.
Runs one asyncio countdown at a time per owner and reports ticks and expiry.
"""
import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Disposer = Callable[[], None]


async def invoke_callback(callback: Callable[..., Any], *args) -> None:
    """Call a plain or coroutine callback and await it if needed."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(owner_key: str, duration: int) -> None:
        """Log countdown start."""
        logger.info(
            f"Timer lifecycle: COUNTDOWN_START - Owner {owner_key}, Duration {duration}s",
            extra={
                'event_type': 'timer_countdown_start',
                'owner_key': owner_key,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_update(owner_key: str, remaining_time: int, total_duration: int) -> None:
        """Log timer update events (throttled to avoid spam)."""
        if remaining_time % 10 == 0 or remaining_time <= 5:
            progress_percent = ((total_duration - remaining_time) / total_duration) * 100
            logger.debug(
                f"Timer lifecycle: UPDATE - Owner {owner_key}, Remaining {remaining_time}s ({progress_percent:.1f}% complete)",
                extra={
                    'event_type': 'timer_update',
                    'owner_key': owner_key,
                    'remaining_time': remaining_time,
                    'total_duration': total_duration,
                    'progress_percent': progress_percent,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(owner_key: str, completion_type: str, total_duration: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Owner {owner_key}, Type {completion_type}, Duration {total_duration}s",
            extra={
                'event_type': 'timer_completed',
                'owner_key': owner_key,
                'completion_type': completion_type,
                'total_duration': total_duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(owner_key: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.debug(
            f"Timer lifecycle: STATE_TRANSITION - Owner {owner_key}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'owner_key': owner_key,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(owner_key: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Owner {owner_key}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'owner_key': owner_key,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(owner_key: str, details: str) -> None:
        """Log a stale callback that arrived after its session or question moved on."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Owner {owner_key}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'owner_key': owner_key,
                'details': details,
                'timestamp': time.time()
            }
        )


class CountdownTimer:
    """Counts down whole seconds for the current challenge of one session."""

    def __init__(self, owner_key: str = "local", tick_interval: float = 1.0):
        """
        Initialize the timer.

        Args:
            owner_key: Identifier of the owning session, used in logs
            tick_interval: Seconds per tick; tests shorten it
        """
        self._owner_key = owner_key
        self._tick_interval = tick_interval
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._remaining_time = 0
        self._total_duration = 0
        self._is_cancelled = True

    def start(
        self,
        duration: int,
        on_tick: Callable[[int], Any],
        on_expire: Callable[[], Any]
    ) -> Disposer:
        """
        Start a countdown, cancelling any countdown already running.

        Args:
            duration: Countdown length in seconds
            on_tick: Called after each elapsed second with the remaining seconds
            on_expire: Called once when the remaining time reaches zero

        Returns:
            Disposer that cancels this countdown and no later one

        Raises:
            ValueError: If duration is not positive
            RuntimeError: If no event loop is running
        """
        if duration <= 0:
            raise ValueError(f"Countdown duration must be positive, got {duration}")

        self.cancel()
        loop = asyncio.get_running_loop()

        self._generation += 1
        generation = self._generation
        self._remaining_time = duration
        self._total_duration = duration
        self._is_cancelled = False

        TimerLifecycleLogger.log_timer_start(self._owner_key, duration)
        self._task = loop.create_task(self._run_countdown(generation, on_tick, on_expire))

        def dispose() -> None:
            if generation == self._generation:
                self.cancel()

        return dispose

    async def _run_countdown(
        self,
        generation: int,
        on_tick: Callable[[int], Any],
        on_expire: Callable[[], Any]
    ) -> None:
        try:
            while self._remaining_time > 0:
                await asyncio.sleep(self._tick_interval)
                if self._is_stale(generation):
                    return

                self._remaining_time -= 1
                TimerLifecycleLogger.log_timer_update(
                    self._owner_key,
                    self._remaining_time,
                    self._total_duration
                )
                await invoke_callback(on_tick, self._remaining_time)

                if self._is_stale(generation):
                    return

            # Self-cancel before firing so on_expire can never run twice
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(
                self._owner_key,
                "natural_expiry",
                self._total_duration
            )
            await invoke_callback(on_expire)

        except asyncio.CancelledError:
            TimerLifecycleLogger.log_timer_completion(
                self._owner_key,
                "asyncio_cancelled",
                self._total_duration
            )
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._owner_key,
                "countdown_execution_error",
                str(e),
                "_run_countdown"
            )
            raise

    def _is_stale(self, generation: int) -> bool:
        return self._is_cancelled or generation != self._generation

    def cancel(self) -> None:
        """Cancel the running countdown. Safe to call at any time, any number of times."""
        if self._is_cancelled and (self._task is None or self._task.done()):
            return

        TimerLifecycleLogger.log_timer_state_transition(
            self._owner_key,
            "running",
            "cancelled",
            "cancel requested"
        )
        self._is_cancelled = True

        task = self._task
        if task and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            # A callback running inside the countdown task may cancel its own timer
            if task is not current:
                task.cancel()

    @property
    def is_running(self) -> bool:
        """Check if a countdown is active."""
        return not self._is_cancelled and self._task is not None and not self._task.done()

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def remaining_time(self) -> int:
        """Get remaining time in seconds."""
        return self._remaining_time
