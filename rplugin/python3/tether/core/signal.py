"""
Observer lists used for change notifications.

Each Signal is one broadcast channel. Observers are plain callables taking the
emitted payload; they are called synchronously, in registration order.
"""
import itertools
import logging
from typing import Any, Callable, Dict, Optional


class Signal:
    """
    A multicast channel with explicit registration tokens.
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        """
        Initialize an empty signal.

        Args:
            name: Channel name, used in log messages
            logger: Optional logger instance. If None, will create one.
        """
        self.name = name
        self._observers: Dict[int, Callable[[Any], None]] = {}
        self._tokens = itertools.count(1)
        self._logger = logger or logging.getLogger(f"tether.signal.{name}")

    def connect(self, callback: Callable[[Any], None]) -> int:
        """
        Register an observer.

        Args:
            callback: Called with the payload of every later emission

        Returns:
            int: Token to pass to disconnect()
        """
        token = next(self._tokens)
        self._observers[token] = callback
        return token

    def disconnect(self, token: int) -> bool:
        """
        Unregister the observer identified by token.

        Returns:
            bool: True if an observer was removed
        """
        return self._observers.pop(token, None) is not None

    def emit(self, payload: Any) -> None:
        """
        Deliver payload to every currently registered observer.

        Observers registered or removed during delivery take effect on the
        next emission. An observer that raises is logged and skipped.
        """
        for token, callback in list(self._observers.items()):
            try:
                callback(payload)
            except Exception as e:
                self._logger.error(f"Observer {token} of '{self.name}' failed: {e}")

    def clear(self) -> None:
        """Remove all observers."""
        self._observers.clear()

    def __len__(self) -> int:
        return len(self._observers)
