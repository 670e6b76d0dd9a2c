"""
Pytest configuration and shared fixtures for Tether tests.
"""
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add the plugin and the test helpers to Python path
plugin_path = Path(__file__).parent.parent / 'rplugin' / 'python3'
sys.path.insert(0, str(plugin_path))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeJupyterServer, FakeTransport  # noqa: E402


@pytest.fixture(scope="session")
def plugin_dir():
    """Path to the plugin directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def fake_transport():
    """In-memory transport with the 'echo' and 'shell' specs and no running kernels."""
    return FakeTransport()


@pytest_asyncio.fixture
async def jupyter_server():
    """An in-process Jupyter kernel REST server; yields (server, base_url)."""
    server = FakeJupyterServer()
    base_url = await server.start()
    yield server, base_url
    await server.close()


def pytest_collection_modifyitems(config, items):
    """Mark everything under tests/integration as integration tests."""
    for item in items:
        if "integration" in Path(str(item.fspath)).parts:
            item.add_marker(pytest.mark.integration)


def pytest_report_header(config):
    """Add information about available dependencies to test report header."""
    import aiohttp
    import jupyter_client
    import pynvim

    deps = [
        f"pynvim-{pynvim.__version__}" if hasattr(pynvim, "__version__") else "pynvim",
        f"aiohttp-{aiohttp.__version__}",
        f"jupyter_client-{jupyter_client.__version__}",
    ]
    return f"dependencies: {', '.join(deps)}"
