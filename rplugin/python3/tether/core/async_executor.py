"""
AsyncExecutor - runs kernel manager coroutines from synchronous pynvim commands.

Command handlers are synchronous; the kernel manager is async. This module
schedules the coroutine on the plugin's event loop and routes failures back to
the user as Neovim error messages.
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional

from .errors import DisposedError, KernelManagerError
from ..utils.notifications import notify_user


def describe_error(error: BaseException) -> str:
    """
    Turn an exception into a short message suitable for the command line.
    """
    if isinstance(error, DisposedError):
        return "kernel manager is stopped; run :TetherConnect first"
    if isinstance(error, asyncio.TimeoutError):
        return "timed out"
    if isinstance(error, KernelManagerError):
        return str(error)
    return f"{type(error).__name__}: {error}"


class AsyncExecutor:
    """
    Schedules kernel manager coroutines for synchronous pynvim handlers.
    """

    def __init__(self, nvim, logger: Optional[logging.Logger] = None):
        """
        Initialize the AsyncExecutor.

        Args:
            nvim: The pynvim.Nvim instance for interacting with Neovim
            logger: Optional logger instance. If None, will create one.
        """
        self.nvim = nvim
        self._logger = logger or logging.getLogger("tether.async_executor")

    def _report(self, context: str, error: BaseException) -> None:
        message = f"{context} failed: {describe_error(error)}"
        self._logger.error(message)
        try:
            self.nvim.async_call(lambda: notify_user(self.nvim, message, level="error"))
        except Exception as notify_error:
            self._logger.error(f"Failed to notify user of {context} error: {notify_error}")

    async def execute_async(self, coro: Awaitable[Any], error_context: str = "operation") -> Any:
        """
        Await a coroutine, reporting any failure to the user before re-raising.
        """
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._report(error_context, e)
            raise

    def execute_sync(self, coro: Optional[Awaitable[Any]], error_context: str = "operation") -> Any:
        """
        Run a coroutine from a synchronous command handler.

        Inside pynvim the event loop is already running, so the coroutine is
        scheduled as a background task and None is returned; its failure is
        reported through the task's done callback. Without a running loop the
        coroutine is run to completion and its result returned.

        Args:
            coro: The coroutine to execute; None is accepted and ignored
            error_context: Context string for error messages
        """
        if coro is None:
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            try:
                return asyncio.run(self.execute_async(coro, error_context))
            except Exception:
                # Already reported by execute_async
                return None

        task = loop.create_task(self.execute_async(coro, error_context))

        def _on_done(done: asyncio.Task) -> None:
            if done.cancelled():
                self._logger.info(f"{error_context} was cancelled")
            elif done.exception() is not None:
                self._logger.debug(f"Background {error_context} task finished with an error")

        task.add_done_callback(_on_done)
        return None
