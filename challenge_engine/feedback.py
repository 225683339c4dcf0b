"""
Feedback scheduler: holds a session in the feedback phase for a fixed delay
and then resumes it with a single delayed callback.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Optional

from challenge_engine.countdown import Disposer, invoke_callback


class FeedbackScheduler:
    """One-shot, cancellable delayed advance for a single session."""

    def __init__(self, owner_key: str = "local"):
        self.logger = logging.getLogger(__name__)
        self._owner_key = owner_key
        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._pending = False

    def schedule_advance(self, delay_ms: int, callback: Callable[[], Any]) -> Disposer:
        """
        Run callback once after delay_ms, replacing any advance already pending.

        Args:
            delay_ms: Delay in milliseconds
            callback: Plain or coroutine function to call after the delay

        Returns:
            Disposer that cancels this advance and no later one

        Raises:
            ValueError: If delay_ms is negative
            RuntimeError: If no event loop is running
        """
        if delay_ms < 0:
            raise ValueError(f"Feedback delay cannot be negative, got {delay_ms}")

        self.cancel()
        loop = asyncio.get_running_loop()

        self._generation += 1
        generation = self._generation
        self._pending = True
        self._task = loop.create_task(self._run(generation, delay_ms / 1000, callback))

        self.logger.debug(
            f"Scheduled advance for {self._owner_key} in {delay_ms}ms",
            extra={
                'event_type': 'advance_scheduled',
                'owner_key': self._owner_key,
                'delay_ms': delay_ms,
                'timestamp': time.time()
            }
        )

        def dispose() -> None:
            if generation == self._generation:
                self.cancel()

        return dispose

    async def _run(self, generation: int, delay: float, callback: Callable[[], Any]) -> None:
        try:
            await asyncio.sleep(delay)
            if not self._pending or generation != self._generation:
                return
            self._pending = False
            await invoke_callback(callback)
        except asyncio.CancelledError:
            self.logger.debug(f"Scheduled advance cancelled for {self._owner_key}")
            raise
        except Exception as e:
            self.logger.error(
                f"Scheduled advance failed for {self._owner_key}: {e}",
                extra={
                    'event_type': 'advance_error',
                    'owner_key': self._owner_key,
                    'timestamp': time.time()
                }
            )
            raise

    def cancel(self) -> None:
        """Cancel the pending advance. Idempotent."""
        if not self._pending:
            return

        self._pending = False
        task = self._task
        if task and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

        self.logger.debug(
            f"Cancelled pending advance for {self._owner_key}",
            extra={
                'event_type': 'advance_cancelled',
                'owner_key': self._owner_key,
                'timestamp': time.time()
            }
        )

    @property
    def is_pending(self) -> bool:
        return self._pending
