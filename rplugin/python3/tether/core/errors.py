"""
Exception types raised by the Tether kernel manager and its transport.
"""
from typing import Optional


class KernelManagerError(Exception):
    """Base class for all errors raised by the kernel manager layer."""


class TransportError(KernelManagerError):
    """
    A request to the kernel server failed.

    Attributes:
        status: HTTP status code of the failed response, or None when the
            request never produced a response (connection refused, timeout).
    """

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class StartFailedError(TransportError):
    """The server refused or failed to start a new kernel."""


class NotFoundError(TransportError, KeyError):
    """
    A kernel id is unknown to the server.

    Raised for HTTP 404 responses (status 404) and for lookups that miss
    after a refresh (status None).
    """

    def __init__(self, message: str, status: Optional[int] = 404):
        super().__init__(message, status=status)

    def __str__(self):
        # KeyError quotes its argument; keep the plain message.
        return str(self.args[0]) if self.args else ""


class DisposedError(KernelManagerError, RuntimeError):
    """An operation was invoked on a manager that has been disposed."""
