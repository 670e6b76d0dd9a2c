"""
Configuration management utilities for the Tether plugin.

This module contains functions for retrieving plugin configuration from Neovim
global variables with appropriate defaults and error handling.
"""
import logging
from typing import Any

from ..transport import ServerSettings
from .poll import STANDBY_POLICIES

DEFAULT_SERVER_URL = "http://127.0.0.1:8888"
DEFAULT_REQUEST_TIMEOUT = 20.0
DEFAULT_STANDBY = "never"
DEFAULT_RUNNING_INTERVAL = 10.0
DEFAULT_SPECS_INTERVAL = 61.0
DEFAULT_STANDBY_INTERVAL = 120.0
DEFAULT_READY_TIMEOUT = 30.0


def _get_var(nvim: Any, logger: logging.Logger, name: str, default: Any) -> Any:
    try:
        return nvim.vars.get(name, default)
    except Exception as e:
        logger.warning(f"Error getting {name} from Neovim variable: {e}")
        return default


def _get_positive_number(nvim: Any, logger: logging.Logger, name: str, default: float) -> float:
    value = _get_var(nvim, logger, name, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        logger.warning(f"Invalid value {value!r} for g:{name}, using {default}")
        return default
    return float(value)


def get_server_url(nvim: Any, logger: logging.Logger) -> str:
    """
    Get the Jupyter server URL from Neovim global variable.

    Args:
        nvim: The pynvim.Nvim instance for interacting with Neovim
        logger: Logger instance for error reporting

    Returns:
        str: Base URL of the kernel server, defaults to 'http://127.0.0.1:8888'.
    """
    value = _get_var(nvim, logger, "tether_server_url", DEFAULT_SERVER_URL)
    if not isinstance(value, str) or not value.startswith(("http://", "https://")):
        logger.warning(f"Invalid server URL {value!r}, using {DEFAULT_SERVER_URL}")
        return DEFAULT_SERVER_URL
    return value


def get_server_token(nvim: Any, logger: logging.Logger) -> str:
    """
    Get the API token for the kernel server. Empty means no token is sent.
    """
    value = _get_var(nvim, logger, "tether_server_token", "")
    return value if isinstance(value, str) else ""


def get_request_timeout(nvim: Any, logger: logging.Logger) -> float:
    """Seconds allowed for a single HTTP request, defaults to 20."""
    return _get_positive_number(nvim, logger, "tether_request_timeout", DEFAULT_REQUEST_TIMEOUT)


def get_standby_policy(nvim: Any, logger: logging.Logger) -> str:
    """
    Get the polling standby policy.

    'never' always polls at the normal interval; 'when-hidden' slows polling
    down while Neovim does not have focus.

    Returns:
        str: One of 'never' or 'when-hidden', defaults to 'never'.
    """
    value = _get_var(nvim, logger, "tether_standby", DEFAULT_STANDBY)
    if value not in STANDBY_POLICIES:
        logger.warning(f"Unknown standby policy {value!r}, using '{DEFAULT_STANDBY}'")
        return DEFAULT_STANDBY
    return value


def get_running_interval(nvim: Any, logger: logging.Logger) -> float:
    return _get_positive_number(nvim, logger, "tether_running_interval", DEFAULT_RUNNING_INTERVAL)


def get_specs_interval(nvim: Any, logger: logging.Logger) -> float:
    return _get_positive_number(nvim, logger, "tether_specs_interval", DEFAULT_SPECS_INTERVAL)


def get_standby_interval(nvim: Any, logger: logging.Logger) -> float:
    return _get_positive_number(nvim, logger, "tether_standby_interval", DEFAULT_STANDBY_INTERVAL)


def get_ready_timeout(nvim: Any, logger: logging.Logger) -> float:
    """Seconds TetherConnect waits for the manager to become ready, defaults to 30."""
    return _get_positive_number(nvim, logger, "tether_ready_timeout", DEFAULT_READY_TIMEOUT)


def get_server_settings(nvim: Any, logger: logging.Logger) -> ServerSettings:
    """
    Collect the transport settings from Neovim global variables.

    Returns:
        ServerSettings: URL, token and request timeout for the RestTransport
    """
    return ServerSettings(
        base_url=get_server_url(nvim, logger),
        token=get_server_token(nvim, logger),
        request_timeout=get_request_timeout(nvim, logger),
    )
