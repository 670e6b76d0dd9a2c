import asyncio
import logging
logging.basicConfig(filename="/tmp/tether.log", level=logging.DEBUG)
from typing import Dict, Optional

import pynvim

from .kernel_manager import KernelManager
from .kernel_connection import KernelConnection
from .transport import RestTransport

# Import utilities
from .utils.notifications import notify_user

# Import core modules
from .core.poll import STANDBY_WHEN_HIDDEN, Environment
from .core.config import (
    get_server_settings,
    get_standby_policy,
    get_running_interval,
    get_specs_interval,
    get_standby_interval,
    get_ready_timeout,
)
from .core.async_executor import AsyncExecutor


@pynvim.plugin
class Tether:
    """
    Main Tether plugin class.

    Keeps one KernelManager per Neovim session, pointed at the configured
    Jupyter server, and binds buffers to kernel connections vended by it.
    """

    def __init__(self, nvim):
        """
        Initialize the plugin. The kernel manager is created on :TetherConnect.

        Args:
            nvim: The pynvim.Nvim instance for interacting with Neovim.
        """
        self.nvim = nvim
        self._logger = logging.getLogger("tether.main")

        self.environment = Environment()
        self.transport: Optional[RestTransport] = None
        self.kernel_manager: Optional[KernelManager] = None
        self.buffer_connections: Dict[int, KernelConnection] = {}
        self.standby_policy = get_standby_policy(nvim, self._logger)

        self.async_executor = AsyncExecutor(nvim, self._logger)
        self._cleanup_lock = asyncio.Lock()

        self._logger.info("Tether plugin initialized")

    # ================================================================
    # Manager lifecycle
    # ================================================================

    def ensure_manager(self) -> KernelManager:
        """
        Return the live kernel manager, creating it (and its transport) if needed.

        Must be called while the plugin's event loop is running.
        """
        if self.kernel_manager is not None and not self.kernel_manager.is_disposed:
            return self.kernel_manager

        settings = get_server_settings(self.nvim, self._logger)
        if self.transport is None:
            self.transport = RestTransport(settings)
        else:
            self.transport.settings = settings

        self.standby_policy = get_standby_policy(self.nvim, self._logger)
        self.kernel_manager = KernelManager(
            self.transport,
            standby=self.standby_policy,
            environment=self.environment,
            running_interval=get_running_interval(self.nvim, self._logger),
            specs_interval=get_specs_interval(self.nvim, self._logger),
            standby_interval=get_standby_interval(self.nvim, self._logger),
        )
        self.kernel_manager.running_changed.connect(self._on_running_changed)
        self._logger.info(f"Kernel manager created for {settings.base_url}")
        return self.kernel_manager

    def environment_standby(self) -> bool:
        """True while polling runs at the standby interval."""
        return self.standby_policy == STANDBY_WHEN_HIDDEN and not self.environment.is_visible

    def _on_running_changed(self, running):
        self._logger.debug(f"Running kernels changed: {[model.id[:8] for model in running]}")
        try:
            self.nvim.async_call(lambda: self.nvim.command("doautocmd <nomodeline> User TetherKernelsChanged"))
        except Exception as e:
            self._logger.error(f"Failed to fire TetherKernelsChanged: {e}")

    async def _async_cleanup(self):
        """
        Dispose the kernel manager and close the HTTP session. Kernels keep running on the server.
        """
        async with self._cleanup_lock:
            if self.kernel_manager is None and self.transport is None:
                self._logger.info("Cleanup not needed; components already stopped.")
                return

            self._logger.info("Starting async cleanup")
            if self.kernel_manager is not None:
                self.kernel_manager.dispose()
                self.kernel_manager = None
            self.buffer_connections.clear()

            if self.transport is not None:
                try:
                    await self.transport.close()
                except Exception as e:
                    self._logger.error(f"Error closing transport: {e}")
                finally:
                    self.transport = None

            self._logger.info("Async cleanup completed")

    # ================================================================
    # Buffer attachments
    # ================================================================

    def attach_connection(self, bnum: int, connection: KernelConnection) -> None:
        """
        Bind a buffer to a kernel connection, disposing any previous binding.
        """
        self.detach_buffer(bnum)
        self.buffer_connections[bnum] = connection

        def on_disposed(disposed):
            if self.buffer_connections.get(bnum) is not disposed:
                return
            del self.buffer_connections[bnum]
            if self.kernel_manager is not None and not self.kernel_manager.is_disposed:
                message = f"Kernel {disposed.id[:8]} for buffer {bnum} is no longer running"
                self._logger.info(message)
                try:
                    self.nvim.async_call(lambda: notify_user(self.nvim, message, level="error"))
                except Exception as e:
                    self._logger.error(f"Failed to notify user: {e}")

        connection.disposed.connect(on_disposed)
        self._logger.info(f"Attached buffer {bnum} to kernel {connection.id[:8]}")

    def detach_buffer(self, bnum: int) -> bool:
        """
        Dispose the buffer's connection, if any.

        Returns:
            bool: True if the buffer was attached
        """
        connection = self.buffer_connections.pop(bnum, None)
        if connection is None:
            return False
        connection.dispose()
        self._logger.info(f"Detached buffer {bnum} from kernel {connection.id[:8]}")
        return True

    # ================================================================
    # Autocommands
    # ================================================================

    @pynvim.autocmd("FocusGained", sync=False)
    def on_focus_gained(self):
        self.environment.set_visible(True)

    @pynvim.autocmd("FocusLost", sync=False)
    def on_focus_lost(self):
        self.environment.set_visible(False)

    @pynvim.autocmd("BufWipeout", eval='expand("<abuf>")', sync=False)
    def on_buf_wipeout(self, abuf):
        try:
            self.detach_buffer(int(abuf))
        except (TypeError, ValueError):
            pass

    @pynvim.autocmd("VimLeave", sync=True)
    def on_vim_leave(self):
        """
        Handle Vim exit - schedules the async cleanup without waiting for it.
        """
        self._logger.info("Vim leaving - scheduling async cleanup.")
        try:
            loop = asyncio.get_running_loop()
            asyncio.run_coroutine_threadsafe(self._async_cleanup(), loop)
        except Exception as e:
            self._logger.error(f"Error scheduling VimLeave cleanup: {e}")

    # ================================================================
    # Commands
    # ================================================================

    @pynvim.command("TetherConnect", sync=True)
    def connect_command(self):
        """
        Connect to the configured kernel server and start polling it.
        """
        from .commands.kernel_mgmt import connect_command_impl
        return connect_command_impl(self, get_ready_timeout(self.nvim, self._logger))

    @pynvim.command("TetherStatus", sync=True)
    def status_command(self):
        """
        Show the kernel manager state, kernel specs and running kernels.
        """
        from .commands.debug import status_command_impl
        return status_command_impl(self)

    @pynvim.command("TetherDebug", sync=True)
    def debug_command(self):
        """
        Show dependency and event loop diagnostics.
        """
        from .commands.debug import debug_command_impl
        return debug_command_impl(self)

    @pynvim.command("TetherRefresh", sync=True)
    def refresh_command(self):
        """
        Refresh kernel specs and running kernels now.
        """
        from .commands.kernel_mgmt import refresh_command_impl
        return refresh_command_impl(self)

    @pynvim.command("TetherStartKernel", sync=True)
    def start_kernel_command(self):
        """
        Start a kernel from a chosen spec and attach it to the current buffer.
        """
        from .commands.kernel_mgmt import start_kernel_command_impl
        return start_kernel_command_impl(self)

    @pynvim.command("TetherAttachKernel", sync=True)
    def attach_kernel_command(self):
        """
        Attach the current buffer to a running kernel.
        """
        from .commands.kernel_mgmt import attach_kernel_command_impl
        return attach_kernel_command_impl(self)

    @pynvim.command("TetherDetachKernel", sync=True)
    def detach_kernel_command(self):
        """
        Release the current buffer's kernel connection.
        """
        from .commands.kernel_mgmt import detach_kernel_command_impl
        return detach_kernel_command_impl(self)

    @pynvim.command("TetherShutdownKernel", sync=True)
    def shutdown_kernel_command(self):
        """
        Shut down a chosen running kernel.
        """
        from .commands.kernel_mgmt import shutdown_kernel_command_impl
        return shutdown_kernel_command_impl(self)

    @pynvim.command("TetherStop", sync=True)
    def stop_command(self):
        """
        Stop polling and release all connections. Kernels keep running on the server.
        """
        self.nvim.out_write("Stopping Tether...\n")
        try:
            loop = asyncio.get_running_loop()
            asyncio.run_coroutine_threadsafe(self._async_cleanup(), loop)
            self.nvim.out_write("Tether cleanup scheduled.\n")
        except RuntimeError:
            self.nvim.err_write("No async event loop available for cleanup.\n")
        except Exception as e:
            self._logger.error(f"Error in TetherStop: {e}")
            self.nvim.err_write(f"Stop error: {e}\n")
