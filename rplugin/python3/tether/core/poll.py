"""
Interval-driven refresh scheduling with standby support.

A Poll runs an async refresh factory immediately on start and then once per
interval. The interval lengthens while the standby policy applies (for example
when the editor has lost focus) and, optionally, after consecutive failures.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from .signal import Signal

STANDBY_NEVER = "never"
STANDBY_WHEN_HIDDEN = "when-hidden"
STANDBY_POLICIES = (STANDBY_NEVER, STANDBY_WHEN_HIDDEN)

StandbyPolicy = Union[str, Callable[[], bool]]


class Environment:
    """
    Visibility of the environment hosting the manager.

    The plugin flips this on FocusGained/FocusLost; polls using the
    'when-hidden' standby policy read it and listen to `changed`.
    """

    def __init__(self, visible: bool = True):
        self._visible = visible
        self.changed = Signal("visibility_changed")

    @property
    def is_visible(self) -> bool:
        return self._visible

    def set_visible(self, visible: bool) -> None:
        visible = bool(visible)
        if visible == self._visible:
            return
        self._visible = visible
        self.changed.emit(visible)


class Poll:
    """
    Runs a refresh factory on an adaptive interval.

    At most one refresh is in flight at any time. Ticks that fire while a
    refresh is pending are skipped. Failures of scheduled ticks are logged and
    swallowed; refresh_now() propagates them to its caller.
    """

    def __init__(
        self,
        factory: Callable[[], Awaitable[Any]],
        *,
        name: str = "poll",
        interval: float = 10.0,
        standby_interval: float = 120.0,
        standby: StandbyPolicy = STANDBY_NEVER,
        environment: Optional[Environment] = None,
        backoff: bool = True,
        max_interval: float = 300.0,
    ):
        """
        Initialize a stopped poll.

        Args:
            factory: Zero-argument coroutine function performing one refresh
            name: Name used in log messages
            interval: Seconds between refreshes while active
            standby_interval: Minimum seconds between refreshes in standby
            standby: 'never', 'when-hidden', or a callable returning True
                while standby applies
            environment: Visibility source for the 'when-hidden' policy
            backoff: Whether consecutive failures lengthen the interval
            max_interval: Upper bound for the backed-off interval
        """
        if interval <= 0 or standby_interval <= 0 or max_interval <= 0:
            raise ValueError(f"Poll '{name}' intervals must be positive")
        if not callable(standby) and standby not in STANDBY_POLICIES:
            raise ValueError(f"Unknown standby policy: {standby!r}")

        self.name = name
        self.interval = interval
        self.standby_interval = standby_interval
        self.backoff = backoff
        self.max_interval = max(max_interval, interval)
        self._factory = factory
        self._standby = standby
        self._environment = environment
        self._environment_token: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._pending: Optional[asyncio.Future] = None
        self._reset: Optional[asyncio.Event] = None
        self._failures = 0
        self._last_launch = 0.0
        self._logger = logging.getLogger(f"tether.poll.{name}")

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def is_standby(self) -> bool:
        if callable(self._standby):
            return bool(self._standby())
        if self._standby == STANDBY_WHEN_HIDDEN:
            return self._environment is not None and not self._environment.is_visible
        return False

    @property
    def failures(self) -> int:
        """Number of consecutive failed refreshes."""
        return self._failures

    def current_interval(self) -> float:
        """
        Delay before the next scheduled tick, given backoff and standby state.
        """
        interval = self.interval
        if self.backoff and self._failures:
            interval = min(self.interval * (2 ** self._failures), self.max_interval)
        if self.is_standby:
            interval = max(interval, self.standby_interval)
        return interval

    def start(self) -> None:
        """Begin polling. The first refresh runs immediately. No-op if running."""
        if self.is_running:
            return
        self._reset = asyncio.Event()
        self._task = asyncio.ensure_future(self._run())
        if self._environment is not None:
            self._environment_token = self._environment.changed.connect(self._on_visibility_changed)
        self._logger.debug(f"Poll '{self.name}' started (interval {self.interval}s)")

    def stop(self) -> None:
        """
        Stop scheduling. An in-flight refresh is left to complete. No-op if stopped.
        """
        if self._environment is not None and self._environment_token is not None:
            self._environment.changed.disconnect(self._environment_token)
            self._environment_token = None

        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        self._logger.debug(f"Poll '{self.name}' stopped")

    async def refresh_now(self) -> Any:
        """
        Run one refresh immediately and reset the interval timer.

        If a refresh is already in flight it is allowed to settle first, so
        the refresh performed here always starts after this call.

        Returns:
            The factory's result

        Raises:
            Whatever the factory raised.
        """
        while self._pending is not None and not self._pending.done():
            await asyncio.wait({self._pending})

        task = self._launch()
        if self._reset is not None:
            self._reset.set()
        return await asyncio.shield(task)

    def _launch(self) -> asyncio.Future:
        self._last_launch = asyncio.get_running_loop().time()
        task = asyncio.ensure_future(self._factory())
        self._pending = task
        task.add_done_callback(self._on_refresh_done)
        return task

    def _on_refresh_done(self, task: asyncio.Future) -> None:
        if self._pending is task:
            self._pending = None
        if task.cancelled():
            return
        if task.exception() is None:
            if self._failures:
                self._logger.info(f"Poll '{self.name}' recovered after {self._failures} failures")
            self._failures = 0
        else:
            self._failures += 1

    def _on_visibility_changed(self, visible: bool) -> None:
        self._logger.debug(f"Visibility changed to {visible}; rescheduling '{self.name}'")
        if self._reset is not None:
            self._reset.set()

    async def _tick(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._logger.debug(f"Skipping '{self.name}' tick: refresh still in flight")
            self._last_launch = asyncio.get_running_loop().time()
            return

        task = self._launch()
        await asyncio.wait({task})
        if task.cancelled():
            self._logger.warning(f"Poll '{self.name}' refresh was cancelled")
        elif task.exception() is not None:
            self._logger.warning(
                f"Poll '{self.name}' refresh failed ({self._failures} in a row): {task.exception()}"
            )

    async def _sleep(self, delay: float) -> None:
        """Wait for delay seconds or until the schedule is reset."""
        self._reset.clear()
        try:
            await asyncio.wait_for(self._reset.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await self._tick()
            while True:
                # Due one interval after the last launch; wakeups only re-evaluate.
                remaining = self._last_launch + self.current_interval() - loop.time()
                if remaining > 0:
                    await self._sleep(remaining)
                    continue
                await self._tick()
        except asyncio.CancelledError:
            self._logger.debug(f"Poll '{self.name}' loop cancelled")
            raise
