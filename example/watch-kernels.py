"""
Watch the kernels of a Jupyter server from the command line.

Start a server first, e.g. `jupyter server --ServerApp.token=secret`, then run:

    python example/watch-kernels.py http://127.0.0.1:8888 secret

Every change to the kernel specs or running kernels is printed. A kernel is
started and shut down again after the manager becomes ready.
"""
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "rplugin" / "python3"))

from tether.kernel_manager import KernelManager  # noqa: E402
from tether.transport import RestTransport, ServerSettings  # noqa: E402


def print_running(running):
    print(f"Running kernels ({len(running)}):")
    for model in running:
        print(f"  {model.id[:8]} {model.name:<12} {model.execution_state}")


async def main(base_url, token):
    transport = RestTransport(ServerSettings(base_url=base_url, token=token))
    manager = KernelManager(transport, running_interval=2, specs_interval=30)
    manager.specs_changed.connect(lambda specs: print(f"Kernel specs: {', '.join(specs.names)} (default {specs.default})"))
    manager.running_changed.connect(print_running)

    try:
        await asyncio.wait_for(asyncio.shield(manager.ready), timeout=10)
        connection = await manager.start_new()
        print(f"Started {connection!r}")
        await asyncio.sleep(5)
        await manager.shutdown(connection.id)
        print(f"After shutdown: {connection!r}")
        await asyncio.sleep(5)
    finally:
        manager.dispose()
        await transport.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    url = sys.argv[1] if len(sys.argv) > 1 else "http://127.0.0.1:8888"
    token = sys.argv[2] if len(sys.argv) > 2 else ""
    asyncio.run(main(url, token))
