"""Cancellable timers and periodic tasks on the asyncio event loop.

Everything that waits on a clock (reconnect backoff, notification polling) takes a
``Scheduler`` so tests can substitute a manually advanced one.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """Anything with an idempotent ``cancel()``, e.g. ``asyncio.TimerHandle``."""

    def cancel(self) -> None: ...


class Scheduler:
    """Timer source backed by the running event loop."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run ``callback(*args)`` after ``delay`` seconds. Must be called on the loop."""
        return asyncio.get_running_loop().call_later(delay, callback, *args)

    def now(self) -> float:
        return asyncio.get_running_loop().time()


default_scheduler = Scheduler()


class PeriodicTask:
    """
    Runs an async function immediately on ``start()`` and then every ``interval`` seconds.

    The next run is scheduled only after the current one finishes, so runs never overlap.
    Exceptions from a run are logged and do not stop the schedule. ``stop()`` cancels both
    the pending timer and an in-flight run, and is safe to call repeatedly.
    """

    def __init__(
        self,
        func: Callable[[], Awaitable[Any]],
        interval: float,
        scheduler: Optional[Scheduler] = None,
        name: str = "periodic",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._func = func
        self.interval = interval
        self.name = name
        self._scheduler = scheduler or default_scheduler
        self._timer: Optional[TimerHandle] = None
        self._active = False
        # Exposed so callers (and tests) can await the run in progress
        self.current_run: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self) -> None:
        """Start the schedule. No-op if already active."""
        if self._active:
            return
        self._active = True
        logger.debug("Periodic task started", extra={"task": self.name, "interval": self.interval})
        self._fire()

    def stop(self) -> None:
        """Stop the schedule. No-op if already stopped."""
        if not self._active:
            return
        self._active = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.current_run is not None and not self.current_run.done():
            self.current_run.cancel()
        self.current_run = None
        logger.debug("Periodic task stopped", extra={"task": self.name})

    async def aclose(self) -> None:
        """Stop, then wait until a cancelled in-flight run has finished unwinding."""
        run = self.current_run
        self.stop()
        if run is not None:
            await asyncio.gather(run, return_exceptions=True)

    def _fire(self) -> None:
        self._timer = None
        if not self._active:
            return
        self.current_run = asyncio.ensure_future(self._run_once())

    async def _run_once(self) -> None:
        try:
            await self._func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Periodic task '{self.name}' run failed: {str(e)}")
        finally:
            self.runs += 1
        if self._active:
            self._timer = self._scheduler.call_later(self.interval, self._fire)
