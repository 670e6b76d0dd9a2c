"""
Client-side manager for the kernels of one Jupyter server.

The manager keeps cached views of the server's kernel specs and running
kernels, refreshes them with two polls, vends KernelConnection handles and
notifies observers when a cached view actually changes.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Tuple, Union

from .caches import RunningCache, SpecCache
from .core.errors import DisposedError, NotFoundError, StartFailedError, TransportError
from .core.poll import STANDBY_NEVER, Environment, Poll, StandbyPolicy
from .core.signal import Signal
from .kernel_connection import KernelConnection
from .models import KernelModel, SpecCollection


class KernelManager:
    """
    Caches, polls and coordinates the lifecycle of kernels on one server.

    Construction starts both polls, so it must happen while an asyncio event
    loop is running. `ready` resolves once the first spec fetch and the first
    running-kernel fetch have both succeeded.

    Signals:
        specs_changed: emitted with the new SpecCollection
        running_changed: emitted with a tuple snapshot of running KernelModels
    """

    def __init__(
        self,
        transport,
        *,
        standby: StandbyPolicy = STANDBY_NEVER,
        environment: Optional[Environment] = None,
        running_interval: float = 10.0,
        specs_interval: float = 61.0,
        standby_interval: float = 120.0,
        max_interval: float = 300.0,
    ):
        """
        Initialize the manager and start polling.

        Args:
            transport: Object providing list_specs(), list_running(),
                start(name, options) and shutdown(kernel_id) coroutines,
                e.g. a RestTransport
            standby: Standby policy shared by both polls
            environment: Visibility source for the 'when-hidden' policy
            running_interval: Seconds between running-kernel refreshes
            specs_interval: Seconds between kernel spec refreshes
            standby_interval: Minimum seconds between refreshes in standby
            max_interval: Cap for the failure backoff
        """
        self.transport = transport
        self._logger = logging.getLogger("tether.kernel_manager")
        self._spec_cache = SpecCache()
        self._running_cache = RunningCache()
        # kernel id -> {connection: number of running requests issued before it registered}
        self._connections: Dict[str, Dict[KernelConnection, int]] = {}
        self._pending_shutdowns: Dict[str, asyncio.Future] = {}
        self._running_requests = 0
        self._specs_loaded = False
        self._running_loaded = False
        self._is_disposed = False
        self._ready: asyncio.Future = asyncio.get_running_loop().create_future()

        self.specs_changed = Signal("specs_changed")
        self.running_changed = Signal("running_changed")

        poll_options = dict(
            standby=standby,
            environment=environment,
            standby_interval=standby_interval,
            max_interval=max_interval,
        )
        self._spec_poll = Poll(self._fetch_specs, name="kernelspecs", interval=specs_interval, **poll_options)
        self._running_poll = Poll(self._fetch_running, name="kernels", interval=running_interval, **poll_options)
        self._spec_poll.start()
        self._running_poll.start()

        self._logger.info("Kernel manager created")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def specs(self) -> Optional[SpecCollection]:
        """The cached kernel specs, or None before the first successful fetch."""
        return self._spec_cache.value

    @property
    def is_ready(self) -> bool:
        return self._ready.done()

    @property
    def ready(self) -> asyncio.Future:
        """Future resolved once both caches have been filled for the first time."""
        return self._ready

    @property
    def is_disposed(self) -> bool:
        return self._is_disposed

    def running(self) -> Tuple[KernelModel, ...]:
        """
        Snapshot of the cached running kernels.

        Raises:
            DisposedError: If the manager has been disposed
        """
        self._check_disposed()
        return self._running_cache.snapshot()

    def connections_for(self, kernel_id: str) -> Tuple[KernelConnection, ...]:
        """Connections this manager vended for kernel_id that are still live."""
        return tuple(self._connections.get(kernel_id, ()))

    # ------------------------------------------------------------------
    # Refreshing
    # ------------------------------------------------------------------

    async def refresh_specs(self) -> None:
        """
        Fetch kernel specs now, bypassing the poll interval.

        Raises:
            TransportError: If the fetch fails
            DisposedError: If the manager has been disposed
        """
        self._check_disposed()
        await self._spec_poll.refresh_now()

    async def refresh_running(self) -> None:
        """
        Fetch the running kernels now, bypassing the poll interval.

        Raises:
            TransportError: If the fetch fails
            DisposedError: If the manager has been disposed
        """
        self._check_disposed()
        await self._running_poll.refresh_now()

    async def _fetch_specs(self) -> None:
        specs = await self.transport.list_specs()
        if self._is_disposed:
            self._logger.debug("Discarding kernel specs fetched after disposal")
            return

        self._specs_loaded = True
        if self._spec_cache.update(specs):
            self._logger.info(f"Kernel specs changed: {len(specs)} specs, default '{specs.default}'")
            self.specs_changed.emit(specs)
        self._check_ready()

    async def _fetch_running(self) -> None:
        self._running_requests += 1
        issued = self._running_requests
        models = await self.transport.list_running()
        if self._is_disposed:
            self._logger.debug("Discarding running kernels fetched after disposal")
            return

        self._running_loaded = True
        if self._running_cache.replace(models):
            self._logger.info(f"Running kernels changed: {len(self._running_cache)} running")
            self._emit_running()

        for kernel_id in list(self._connections):
            if kernel_id not in self._running_cache:
                self._dispose_connections(kernel_id, issued_before=issued)
        self._check_ready()

    def _check_ready(self) -> None:
        if self._specs_loaded and self._running_loaded and not self._ready.done():
            self._ready.set_result(None)
            self._logger.info("Kernel manager ready")

    def _emit_running(self) -> None:
        self.running_changed.emit(self._running_cache.snapshot())

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    async def start_new(self, name: Optional[str] = None, **options: Any) -> KernelConnection:
        """
        Start a new kernel and return a connection to it.

        The new kernel is added to the running cache and running_changed is
        emitted before this returns, without waiting for the next poll.

        Args:
            name: Kernel spec name; None lets the server pick its default
            **options: Extra fields for the start request, e.g. path

        Raises:
            StartFailedError: If the server could not start the kernel
            DisposedError: If the manager has been disposed
        """
        self._check_disposed()
        try:
            model = await self.transport.start(name, options)
        except TransportError as e:
            raise StartFailedError(f"Failed to start kernel '{name or 'default'}': {e}", status=e.status) from e

        if self._is_disposed:
            self._logger.warning(f"Manager disposed while kernel {model.id[:8]} was starting; leaving it running")
            raise DisposedError("Kernel manager was disposed during start")

        if self._running_cache.add(model):
            self._emit_running()
        connection = self._register(model)
        self._logger.info(f"Started kernel {model.id[:8]} ({model.name})")
        return connection

    def connect_to(self, model: Union[KernelModel, Dict[str, Any]]) -> KernelConnection:
        """
        Create a connection to a kernel the caller knows to be running.

        No request is made and the running cache is not modified. If a later
        poll finds the kernel gone, the connection is disposed.

        Args:
            model: The kernel's record, or its JSON form

        Raises:
            DisposedError: If the manager has been disposed
        """
        self._check_disposed()
        if not isinstance(model, KernelModel):
            model = KernelModel.from_json(model)
        connection = self._register(model)
        self._logger.info(f"Connected to kernel {model.id[:8]} ({model.name})")
        return connection

    async def find_by_id(self, kernel_id: str) -> KernelModel:
        """
        Look up a running kernel, refreshing once if it is not cached.

        Raises:
            NotFoundError: If the kernel is still unknown after the refresh
            TransportError: If the refresh fails
            DisposedError: If the manager has been disposed
        """
        self._check_disposed()
        model = self._running_cache.get(kernel_id)
        if model is not None:
            return model

        await self.refresh_running()
        model = self._running_cache.get(kernel_id)
        if model is None:
            raise NotFoundError(f"No running kernel with id {kernel_id}", status=None)
        return model

    async def shutdown(self, kernel_id: str) -> None:
        """
        Shut a kernel down.

        On return the kernel is gone from the running cache, running_changed
        has been emitted and every connection to it is disposed. A kernel the
        server no longer knows counts as shut down. Concurrent calls for the
        same id share one request.

        Raises:
            TransportError: If the server failed to shut the kernel down
            DisposedError: If the manager has been disposed
        """
        self._check_disposed()
        task = self._pending_shutdowns.get(kernel_id)
        if task is None:
            task = asyncio.ensure_future(self._shutdown(kernel_id))
            self._pending_shutdowns[kernel_id] = task

            def _forget(done: asyncio.Future) -> None:
                if self._pending_shutdowns.get(kernel_id) is done:
                    del self._pending_shutdowns[kernel_id]
                # Marks the failure retrieved even when every awaiter was cancelled.
                if not done.cancelled() and done.exception() is not None:
                    self._logger.debug(f"Shutdown of kernel {kernel_id[:8]} failed: {done.exception()}")

            task.add_done_callback(_forget)
        else:
            self._logger.debug(f"Joining in-flight shutdown of kernel {kernel_id[:8]}")
        await asyncio.shield(task)

    async def _shutdown(self, kernel_id: str) -> None:
        try:
            await self.transport.shutdown(kernel_id)
        except NotFoundError:
            self._logger.debug(f"Kernel {kernel_id[:8]} was already gone on the server")

        if self._is_disposed:
            return

        if self._running_cache.remove(kernel_id):
            self._emit_running()
        self._dispose_connections(kernel_id)
        self._logger.info(f"Kernel {kernel_id[:8]} shut down")

    # ------------------------------------------------------------------
    # Connection registry
    # ------------------------------------------------------------------

    def _register(self, model: KernelModel) -> KernelConnection:
        connection = KernelConnection(model, on_disposed=self._deregister)
        self._connections.setdefault(model.id, {})[connection] = self._running_requests
        return connection

    def _deregister(self, connection: KernelConnection) -> None:
        registered = self._connections.get(connection.id)
        if registered is None:
            return
        registered.pop(connection, None)
        if not registered:
            del self._connections[connection.id]

    def _dispose_connections(self, kernel_id: str, issued_before: Optional[int] = None) -> None:
        """
        Mark connections to a vanished kernel disposed.

        With issued_before set, only connections registered before that
        running request was issued are affected; newer ones postdate the
        server view that reported the kernel missing.
        """
        registered = self._connections.get(kernel_id)
        if not registered:
            return
        for connection, epoch in list(registered.items()):
            if issued_before is not None and epoch >= issued_before:
                continue
            connection.mark_disposed()

    # ------------------------------------------------------------------
    # Disposal
    # ------------------------------------------------------------------

    def _check_disposed(self) -> None:
        if self._is_disposed:
            raise DisposedError("Kernel manager has been disposed")

    def dispose(self) -> None:
        """
        Stop polling, dispose every vended connection and clear all state. Idempotent.

        Refreshes already in flight complete but their results are discarded.
        """
        if self._is_disposed:
            return
        self._is_disposed = True

        self._spec_poll.stop()
        self._running_poll.stop()

        for registered in list(self._connections.values()):
            for connection in list(registered):
                connection.dispose()
        self._connections.clear()

        self._spec_cache.clear()
        self._running_cache.clear()
        self.specs_changed.clear()
        self.running_changed.clear()
        self._logger.info("Kernel manager disposed")
