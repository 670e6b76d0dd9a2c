"""
Debug and status commands for the Tether plugin.

This module contains command implementation functions for:
- Plugin status information
- Debug diagnostics
"""

import asyncio


def status_command_impl(plugin):
    """
    Implementation for showing the state of the kernel manager.

    Args:
        plugin: The main Tether plugin instance
    """
    try:
        manager = plugin.kernel_manager
        if manager is None or manager.is_disposed:
            plugin.nvim.out_write("Tether Status:\n  Not connected (run :TetherConnect)\n")
            return

        url = plugin.transport.settings.base_url
        state = "ready" if manager.is_ready else "waiting for server"
        polling = "standby" if plugin.environment_standby() else "active"
        specs = manager.specs
        running = manager.running()

        status_msg = f"""Tether Status:
  Server: {url} ({state})
  Polling: {polling}
"""
        if specs is not None:
            status_msg += f"  Kernel Specs: {len(specs)} (default: {specs.default or 'none'})\n"
        status_msg += f"  Running Kernels: {len(running)}\n"

        if running:
            attached = {}
            for bnum, connection in plugin.buffer_connections.items():
                attached.setdefault(connection.id, []).append(bnum)

            status_msg += "\nRunning Kernels:\n"
            for model in running:
                buffers = ", ".join(map(str, attached.get(model.id, [])))
                status_msg += (
                    f"  {model.id[:8]}: {model.name}, {model.execution_state}, "
                    f"{model.connections} connections, buffers [{buffers}]\n"
                )

        plugin.nvim.out_write(status_msg)

    except Exception as e:
        plugin._logger.error(f"Error in TetherStatus: {e}")
        plugin.nvim.err_write(f"Status error: {e}\n")


def debug_command_impl(plugin):
    """
    Implementation for debug command to show dependency and event loop diagnostics.

    Args:
        plugin: The main Tether plugin instance
    """
    try:
        plugin._logger.info("TetherDebug called")
        plugin.nvim.out_write("=== Tether Debug Info ===\n")
        plugin.nvim.out_write("✓ Plugin loaded and responding\n")

        import aiohttp
        import jupyter_client

        plugin.nvim.out_write(f"✓ aiohttp {aiohttp.__version__}\n")
        plugin.nvim.out_write(f"✓ jupyter_client {jupyter_client.__version__}\n")

        try:
            loop = asyncio.get_running_loop()
            plugin.nvim.out_write(f"✓ Event loop: {type(loop).__name__}\n")
        except RuntimeError:
            plugin.nvim.out_write("✗ No running event loop\n")

        visible = "focused" if plugin.environment.is_visible else "unfocused"
        plugin.nvim.out_write(f"✓ Editor focus: {visible}\n")
        plugin.nvim.out_write(f"✓ Attached buffers: {len(plugin.buffer_connections)}\n")
        plugin.nvim.out_write("=== End Debug Info ===\n")

    except Exception as e:
        plugin._logger.error(f"Error in TetherDebug: {e}")
        plugin.nvim.err_write(f"Debug error: {e}\n")
