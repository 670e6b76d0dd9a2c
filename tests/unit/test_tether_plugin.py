"""
Unit tests for the main Tether plugin class and its commands.
"""
import asyncio
import copy
from unittest.mock import AsyncMock, Mock, patch

import pytest

from fakes import KERNELSPECS, FakeTransport
from tether import Tether
from tether.commands.kernel_mgmt import connect_async
from tether.core.errors import StartFailedError
from tether.kernel_connection import KernelConnection
from tether.models import KernelModel, SpecCollection


class MockBuffer(list):
    """Mock buffer that behaves like a list."""

    def __init__(self, lines, number=1, name="analysis.py"):
        super().__init__(lines)
        self.number = number
        self.name = name


class MockNvim:
    """Mock Neovim instance for testing."""

    def __init__(self, variables=None):
        self.current = Mock()
        self.current.buffer = MockBuffer(["print('hello')"], 3)
        self.output_messages = []
        self.error_messages = []
        self.commands = []
        self.input_responses = []
        self.variables = dict(variables or {})
        self.vars = Mock()
        self.vars.get = Mock(side_effect=lambda name, default=None: self.variables.get(name, default))

    def out_write(self, message):
        """Mock output writing."""
        self.output_messages.append(message)

    def err_write(self, message):
        """Mock error writing."""
        self.error_messages.append(message)

    def async_call(self, func):
        """Mock async call - just execute the function."""
        return func()

    def command(self, cmd):
        """Mock command execution."""
        self.commands.append(cmd)

    def call(self, name, *args):
        if name == "input":
            return self.input_responses.pop(0) if self.input_responses else ""
        return None


def make_model(kernel_id="abcdef1234567890", name="echo"):
    return KernelModel(id=kernel_id, name=name, execution_state="idle")


def make_manager_mock(running=()):
    manager = Mock()
    manager.is_disposed = False
    manager.is_ready = True
    manager.specs = SpecCollection.from_json(copy.deepcopy(KERNELSPECS))
    manager.running = Mock(return_value=tuple(running))
    manager.start_new = AsyncMock()
    manager.shutdown = AsyncMock()
    manager.refresh_specs = AsyncMock()
    manager.refresh_running = AsyncMock()
    return manager


def fake_transport_factory(settings):
    transport = FakeTransport()
    transport.settings = settings
    transport.close = AsyncMock()
    return transport


class TestTetherPlugin:
    """Test cases for plugin state and buffer attachments."""

    def setup_method(self):
        self.mock_nvim = MockNvim()
        self.plugin = Tether(self.mock_nvim)

    def test_initialization(self):
        assert self.plugin.nvim is self.mock_nvim
        assert self.plugin.kernel_manager is None
        assert self.plugin.transport is None
        assert self.plugin.buffer_connections == {}
        assert self.plugin.standby_policy == "never"
        assert self.plugin.environment.is_visible

    def test_focus_autocmds_toggle_visibility(self):
        self.plugin.on_focus_lost()
        assert not self.plugin.environment.is_visible

        self.plugin.on_focus_gained()
        assert self.plugin.environment.is_visible

    def test_environment_standby(self):
        self.plugin.on_focus_lost()
        assert self.plugin.environment_standby() is False

        self.plugin.standby_policy = "when-hidden"
        assert self.plugin.environment_standby() is True

    def test_attach_replaces_previous_connection(self):
        first = KernelConnection(make_model("first-kernel-id"))
        second = KernelConnection(make_model("second-kernel-id"))

        self.plugin.attach_connection(3, first)
        self.plugin.attach_connection(3, second)

        assert first.is_disposed
        assert self.plugin.buffer_connections == {3: second}

    def test_detach_buffer(self):
        connection = KernelConnection(make_model())
        self.plugin.attach_connection(3, connection)

        assert self.plugin.detach_buffer(3) is True
        assert connection.is_disposed
        assert self.plugin.detach_buffer(3) is False
        assert self.mock_nvim.error_messages == []

    def test_kernel_death_notifies_user(self):
        self.plugin.kernel_manager = make_manager_mock()
        connection = KernelConnection(make_model())
        self.plugin.attach_connection(3, connection)

        connection.mark_disposed()

        assert 3 not in self.plugin.buffer_connections
        assert any("no longer running" in msg for msg in self.mock_nvim.error_messages)

    def test_buf_wipeout_detaches(self):
        connection = KernelConnection(make_model())
        self.plugin.attach_connection(3, connection)

        self.plugin.on_buf_wipeout("3")
        self.plugin.on_buf_wipeout("not-a-number")

        assert connection.is_disposed
        assert self.plugin.buffer_connections == {}

    def test_running_changed_fires_user_autocmd(self):
        self.plugin._on_running_changed((make_model(),))

        assert "doautocmd <nomodeline> User TetherKernelsChanged" in self.mock_nvim.commands


class TestKernelCommands:
    """Test cases for the kernel management commands."""

    def setup_method(self):
        self.mock_nvim = MockNvim()
        self.plugin = Tether(self.mock_nvim)

    def test_commands_require_connection(self):
        self.plugin.start_kernel_command()
        self.plugin.shutdown_kernel_command()
        self.plugin.attach_kernel_command()
        self.plugin.refresh_command()

        assert len(self.mock_nvim.error_messages) == 4
        assert all("TetherConnect" in msg for msg in self.mock_nvim.error_messages)

    def test_start_kernel_with_selected_spec(self):
        manager = make_manager_mock()
        connection = KernelConnection(make_model(name="shell"))
        manager.start_new.return_value = connection
        self.plugin.kernel_manager = manager
        self.mock_nvim.input_responses = ["2"]

        self.plugin.start_kernel_command()

        manager.start_new.assert_awaited_once_with("shell")
        assert self.plugin.buffer_connections[3] is connection
        assert any("Started kernel shell" in msg for msg in self.mock_nvim.output_messages)

    def test_start_kernel_cancelled(self):
        manager = make_manager_mock()
        self.plugin.kernel_manager = manager
        self.mock_nvim.input_responses = [""]

        self.plugin.start_kernel_command()

        manager.start_new.assert_not_awaited()

    def test_start_kernel_failure_is_reported(self):
        manager = make_manager_mock()
        manager.start_new.side_effect = StartFailedError("Failed to start kernel 'echo': 500", status=500)
        self.plugin.kernel_manager = manager
        self.mock_nvim.input_responses = ["1"]

        self.plugin.start_kernel_command()

        assert self.plugin.buffer_connections == {}
        assert any("kernel start failed" in msg for msg in self.mock_nvim.error_messages)

    def test_start_kernel_before_specs_loaded(self):
        manager = make_manager_mock()
        manager.specs = None
        self.plugin.kernel_manager = manager

        self.plugin.start_kernel_command()

        assert any("not been loaded" in msg for msg in self.mock_nvim.error_messages)

    def test_start_kernel_on_server_without_specs(self):
        manager = make_manager_mock()
        manager.specs = SpecCollection.from_json({"default": None, "kernelspecs": {}})
        self.plugin.kernel_manager = manager

        self.plugin.start_kernel_command()

        manager.start_new.assert_not_awaited()
        assert any("no kernel specs installed" in msg for msg in self.mock_nvim.error_messages)

    def test_shutdown_with_no_running_kernels(self):
        self.plugin.kernel_manager = make_manager_mock()

        self.plugin.shutdown_kernel_command()

        assert any("No running kernels to shut down." in msg for msg in self.mock_nvim.output_messages)

    def test_shutdown_single_kernel(self):
        model = make_model()
        manager = make_manager_mock(running=[model])
        self.plugin.kernel_manager = manager

        self.plugin.shutdown_kernel_command()

        manager.shutdown.assert_awaited_once_with(model.id)
        assert any("shut down successfully" in msg for msg in self.mock_nvim.output_messages)

    def test_attach_kernel(self):
        model = make_model()
        manager = make_manager_mock(running=[model])
        connection = KernelConnection(model)
        manager.connect_to = Mock(return_value=connection)
        self.plugin.kernel_manager = manager

        self.plugin.attach_kernel_command()

        manager.connect_to.assert_called_once_with(model)
        assert self.plugin.buffer_connections[3] is connection
        assert any("Attached buffer 3" in msg for msg in self.mock_nvim.output_messages)

    def test_detach_kernel(self):
        self.plugin.detach_kernel_command()
        assert any("not attached" in msg for msg in self.mock_nvim.output_messages)

        self.plugin.attach_connection(3, KernelConnection(make_model()))
        self.plugin.detach_kernel_command()
        assert any("Detached buffer 3" in msg for msg in self.mock_nvim.output_messages)

    def test_refresh(self):
        manager = make_manager_mock()
        self.plugin.kernel_manager = manager

        self.plugin.refresh_command()

        manager.refresh_specs.assert_awaited_once()
        manager.refresh_running.assert_awaited_once()
        assert any("Refreshed: 2 kernel specs" in msg for msg in self.mock_nvim.output_messages)


class TestStatusCommands:
    """Test cases for TetherStatus and TetherDebug."""

    def setup_method(self):
        self.mock_nvim = MockNvim()
        self.plugin = Tether(self.mock_nvim)

    def test_status_when_not_connected(self):
        self.plugin.status_command()

        assert "Not connected" in "".join(self.mock_nvim.output_messages)

    def test_status_lists_running_kernels(self):
        model = make_model()
        self.plugin.kernel_manager = make_manager_mock(running=[model])
        self.plugin.transport = Mock()
        self.plugin.transport.settings.base_url = "http://127.0.0.1:8888"
        self.plugin.attach_connection(3, KernelConnection(model))

        self.plugin.status_command()

        output = "".join(self.mock_nvim.output_messages)
        assert "http://127.0.0.1:8888 (ready)" in output
        assert "Kernel Specs: 2 (default: echo)" in output
        assert "abcdef12: echo, idle" in output
        assert "buffers [3]" in output

    def test_debug(self):
        self.plugin.debug_command()

        output = "".join(self.mock_nvim.output_messages)
        assert "Tether Debug Info" in output
        assert "aiohttp" in output
        assert self.mock_nvim.error_messages == []


class TestManagerLifecycle:
    """Test cases for creating and cleaning up the kernel manager."""

    @pytest.mark.asyncio
    async def test_connect_and_cleanup(self):
        mock_nvim = MockNvim({"tether_running_interval": 60, "tether_specs_interval": 60})
        plugin = Tether(mock_nvim)

        with patch("tether.RestTransport", side_effect=fake_transport_factory):
            await connect_async(plugin, 5)
            transport = plugin.transport
            manager = plugin.kernel_manager

            assert plugin.ensure_manager() is manager
            assert manager.is_ready
            assert any("Connected to http://127.0.0.1:8888: 2 kernel specs" in msg
                       for msg in mock_nvim.output_messages)

            await manager.start_new()
            assert "doautocmd <nomodeline> User TetherKernelsChanged" in mock_nvim.commands

            await plugin._async_cleanup()

        assert manager.is_disposed
        assert plugin.kernel_manager is None
        assert plugin.transport is None
        transport.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_timeout_keeps_polling(self):
        def failing_transport(settings):
            transport = fake_transport_factory(settings)
            transport.fail["list_specs"] = ConnectionRefusedError("refused")
            return transport

        plugin = Tether(MockNvim())
        with patch("tether.RestTransport", side_effect=failing_transport):
            await connect_async(plugin, 0.05)

        try:
            assert any("not responding" in msg for msg in plugin.nvim.error_messages)
            assert not plugin.kernel_manager.is_disposed
            assert not plugin.kernel_manager.ready.cancelled()
        finally:
            await plugin._async_cleanup()

    @pytest.mark.asyncio
    async def test_cleanup_when_never_connected(self):
        plugin = Tether(MockNvim())

        await plugin._async_cleanup()

        assert plugin.kernel_manager is None


if __name__ == "__main__":
    pytest.main([__file__])
