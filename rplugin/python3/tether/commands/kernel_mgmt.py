"""
Kernel management commands for the Tether plugin.

This module contains command implementation functions for:
- Connecting to the kernel server and refreshing its state
- Starting and shutting down kernels
- Attaching buffers to running kernels and detaching them
"""

import asyncio

from ..utils.notifications import notify_user, select_from_choices_sync


def _notify_later(plugin, message, level="info"):
    """Notify from async code, where the Neovim API must be reached through async_call."""
    try:
        plugin.nvim.async_call(lambda: notify_user(plugin.nvim, message, level=level))
    except Exception as e:
        plugin._logger.error(f"Failed to notify user: {e}")


def _require_manager(plugin):
    manager = plugin.kernel_manager
    if manager is None or manager.is_disposed:
        notify_user(plugin.nvim, "Not connected to a kernel server. Run :TetherConnect first.", level="error")
        return None
    return manager


def _current_bnum(plugin):
    try:
        return plugin.nvim.current.buffer.number
    except Exception as e:
        plugin._logger.error(f"Error getting buffer number: {e}")
        notify_user(plugin.nvim, f"Error accessing buffer: {e}", level="error")
        return None


def running_kernel_choices(plugin):
    """
    Build selection choices for the running kernels known to the manager.

    Returns:
        List[Dict]: choices with 'display_name' and 'value' (the KernelModel)
    """
    attached = {}
    for bnum, connection in plugin.buffer_connections.items():
        attached.setdefault(connection.id, []).append(bnum)

    choices = []
    for model in plugin.kernel_manager.running():
        label = f"{model.name} ({model.id[:8]}) - {model.execution_state}, {model.connections} connections"
        if model.id in attached:
            label += f" [buffers {', '.join(map(str, attached[model.id]))}]"
        choices.append({"display_name": label, "value": model})
    return choices


async def connect_async(plugin, ready_timeout):
    """
    Create the kernel manager if needed and wait until it has loaded server state.

    Args:
        plugin: The main Tether plugin instance
        ready_timeout: Seconds to wait for the manager to become ready
    """
    manager = plugin.ensure_manager()
    url = plugin.transport.settings.base_url
    try:
        await asyncio.wait_for(asyncio.shield(manager.ready), timeout=ready_timeout)
    except asyncio.TimeoutError:
        _notify_later(plugin, f"Kernel server at {url} is not responding yet; still polling.", level="error")
        return

    specs = manager.specs
    running = manager.running()
    _notify_later(
        plugin, f"Connected to {url}: {len(specs)} kernel specs (default: {specs.default or 'none'}), {len(running)} running"
    )


def connect_command_impl(plugin, ready_timeout):
    """
    Implementation for connecting to the configured kernel server.

    Args:
        plugin: The main Tether plugin instance
        ready_timeout: Seconds to wait for the manager to become ready
    """
    plugin._logger.info("TetherConnect called")
    return plugin.async_executor.execute_sync(connect_async(plugin, ready_timeout), "server connection")


async def refresh_async(plugin):
    manager = plugin.kernel_manager
    await asyncio.gather(manager.refresh_specs(), manager.refresh_running())
    _notify_later(plugin, f"Refreshed: {len(manager.specs)} kernel specs, {len(manager.running())} running kernels")


def refresh_command_impl(plugin):
    """
    Implementation for refreshing kernel specs and running kernels immediately.

    Args:
        plugin: The main Tether plugin instance
    """
    plugin._logger.info("TetherRefresh called")
    if _require_manager(plugin) is None:
        return None
    return plugin.async_executor.execute_sync(refresh_async(plugin), "refresh")


async def start_kernel_async(plugin, bnum, kernel_name):
    """
    Start a kernel from the given spec and attach it to buffer bnum.
    """
    plugin._logger.debug(f"Starting new kernel '{kernel_name}' for buffer {bnum}")
    connection = await plugin.kernel_manager.start_new(kernel_name)
    plugin.attach_connection(bnum, connection)
    _notify_later(plugin, f"Started kernel {connection.name} ({connection.id[:8]}) for buffer {bnum}")


def start_kernel_command_impl(plugin):
    """
    Implementation for choosing a kernel spec, starting it and attaching it to the current buffer.

    Args:
        plugin: The main Tether plugin instance
    """
    plugin._logger.info("TetherStartKernel called")
    manager = _require_manager(plugin)
    if manager is None:
        return None

    specs = manager.specs
    if specs is None:
        notify_user(plugin.nvim, "Kernel specs have not been loaded yet. Try again shortly.", level="error")
        return None
    if not specs:
        notify_user(plugin.nvim, "The kernel server has no kernel specs installed.", level="error")
        return None

    choices = []
    for name, spec in specs.specs.items():
        label = f"{spec.display_name} ({name})"
        if name == specs.default:
            label += " [default]"
        choices.append({"display_name": label, "value": name})

    selected = select_from_choices_sync(plugin.nvim, choices, "Select a kernel to start")
    if not selected:
        return None

    bnum = _current_bnum(plugin)
    if bnum is None:
        return None

    return plugin.async_executor.execute_sync(start_kernel_async(plugin, bnum, selected["value"]), "kernel start")


async def shutdown_kernel_async(plugin, kernel_id):
    await plugin.kernel_manager.shutdown(kernel_id)
    _notify_later(plugin, f"Kernel {kernel_id[:8]} shut down successfully")


def shutdown_kernel_command_impl(plugin):
    """
    Implementation for choosing a running kernel and shutting it down.

    Args:
        plugin: The main Tether plugin instance
    """
    plugin._logger.info("TetherShutdownKernel called")
    manager = _require_manager(plugin)
    if manager is None:
        return None

    choices = running_kernel_choices(plugin)
    if not choices:
        notify_user(plugin.nvim, "No running kernels to shut down.")
        return None

    selected = select_from_choices_sync(plugin.nvim, choices, "Select a kernel to shut down")
    if not selected:
        return None

    kernel_id = selected["value"].id
    return plugin.async_executor.execute_sync(shutdown_kernel_async(plugin, kernel_id), "kernel shutdown")


def attach_kernel_command_impl(plugin):
    """
    Implementation for attaching the current buffer to a running kernel.

    Args:
        plugin: The main Tether plugin instance
    """
    plugin._logger.info("TetherAttachKernel called")
    manager = _require_manager(plugin)
    if manager is None:
        return

    choices = running_kernel_choices(plugin)
    if not choices:
        notify_user(plugin.nvim, "No running kernels. Start one with :TetherStartKernel.", level="error")
        return

    selected = select_from_choices_sync(plugin.nvim, choices, "Select a kernel for this buffer")
    if not selected:
        return

    bnum = _current_bnum(plugin)
    if bnum is None:
        return

    connection = manager.connect_to(selected["value"])
    plugin.attach_connection(bnum, connection)
    notify_user(plugin.nvim, f"Attached buffer {bnum} to kernel {connection.name} ({connection.id[:8]})")


def detach_kernel_command_impl(plugin):
    """
    Implementation for releasing the current buffer's kernel connection.

    The kernel keeps running; only the buffer's handle is disposed.

    Args:
        plugin: The main Tether plugin instance
    """
    plugin._logger.info("TetherDetachKernel called")
    bnum = _current_bnum(plugin)
    if bnum is None:
        return

    if not plugin.detach_buffer(bnum):
        notify_user(plugin.nvim, f"Buffer {bnum} is not attached to a kernel.")
        return
    notify_user(plugin.nvim, f"Detached buffer {bnum}")
