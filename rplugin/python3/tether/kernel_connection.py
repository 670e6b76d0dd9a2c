"""
Local handles to running kernels.
"""
import logging
from enum import Enum
from typing import Callable, Optional

from .core.signal import Signal
from .models import KernelModel


class KernelStatus(str, Enum):
    """Connection-local view of a kernel's state."""

    UNKNOWN = "unknown"
    STARTING = "starting"
    IDLE = "idle"
    BUSY = "busy"
    RESTARTING = "restarting"
    DEAD = "dead"

    @classmethod
    def from_execution_state(cls, state: Optional[str]) -> "KernelStatus":
        try:
            return cls(state)
        except ValueError:
            return cls.UNKNOWN


class KernelConnection:
    """
    A handle bound to one kernel id.

    Several connections may target the same kernel. The manager that vended a
    connection only ever calls mark_disposed() on it; the connection calls
    back into the manager only to deregister when it is disposed locally.
    """

    def __init__(self, model: KernelModel, on_disposed: Optional[Callable[["KernelConnection"], None]] = None):
        """
        Initialize a connection.

        Args:
            model: Record of the kernel this connection targets
            on_disposed: Called once with this connection when it is disposed
        """
        self._model = model
        self._status = KernelStatus.from_execution_state(model.execution_state)
        self._on_disposed = on_disposed
        self._is_disposed = False
        self.status_changed = Signal("status_changed")
        self.disposed = Signal("disposed")
        self._logger = logging.getLogger(f"tether.connection.{model.id[:8]}")

    @property
    def id(self) -> str:
        return self._model.id

    @property
    def name(self) -> str:
        return self._model.name

    @property
    def model(self) -> KernelModel:
        return self._model

    @property
    def status(self) -> KernelStatus:
        return self._status

    @property
    def is_disposed(self) -> bool:
        return self._is_disposed

    def set_status(self, status: KernelStatus) -> None:
        """
        Record a new local status and notify status_changed observers.

        Disposed connections stay dead.
        """
        status = KernelStatus(status)
        if self._is_disposed or status == self._status:
            return
        self._status = status
        self.status_changed.emit(status)

    def mark_disposed(self) -> None:
        """The backing kernel is confirmed gone: mark the connection dead and dispose it."""
        if self._is_disposed:
            return
        self._logger.info(f"Kernel {self.id[:8]} is gone; disposing connection")
        self.set_status(KernelStatus.DEAD)
        self.dispose()

    def dispose(self) -> None:
        """Release this handle. Idempotent. Does not touch the kernel itself."""
        if self._is_disposed:
            return
        self._is_disposed = True
        if self._on_disposed is not None:
            self._on_disposed(self)
            self._on_disposed = None
        self.disposed.emit(self)
        self.disposed.clear()
        self.status_changed.clear()

    def __repr__(self):
        state = "disposed" if self._is_disposed else self._status.value
        return f"<KernelConnection {self.id[:8]} ({self.name}) {state}>"
