"""
User notification utilities for the Tether plugin.

This module contains utility functions for notifying users and getting their input
in a standardized way across the plugin.
"""
import logging
from typing import Any, Dict, List, Optional

_logger = logging.getLogger("tether.notifications")


def notify_user(nvim: Any, message: str, level: str = "info") -> None:
    """
    Send a single-line notification to the user.

    Args:
        nvim: The pynvim.Nvim instance for interacting with Neovim
        message: The message to display to the user
        level: The notification level ('info' or 'error')
    """
    if level == "error":
        nvim.err_write(message + "\n")
    else:
        nvim.out_write(message + "\n")


def notify_error_after_input(nvim: Any, message: str) -> None:
    """
    Display an error message after an input() dialog without requiring enter press.

    Args:
        nvim: The pynvim.Nvim instance for interacting with Neovim
        message: The error message to display
    """
    nvim.command("redraw")
    escaped = message.replace("'", "''")
    nvim.command(f"echohl ErrorMsg | echo '{escaped}' | echohl None")


def select_from_choices_sync(nvim: Any, choices: List[Dict[str, Any]], prompt_title: str) -> Optional[Dict[str, Any]]:
    """
    Present numbered choices and return the one the user picks.

    A single choice is returned without prompting.

    Args:
        nvim: The pynvim.Nvim instance for interacting with Neovim
        choices: List of choice dictionaries with 'display_name' and 'value' keys
        prompt_title: Title to display to the user

    Returns:
        The selected choice dictionary or None if cancelled/invalid
    """
    if not choices:
        notify_user(nvim, "No choices available", level="error")
        return None

    if len(choices) == 1:
        return choices[0]

    lines = [f"{i}. {choice['display_name']}" for i, choice in enumerate(choices, 1)]
    try:
        nvim.out_write(f"{prompt_title}:\n" + "\n".join(lines) + "\n")
    except Exception as e:
        _logger.error(f"Failed to display choices: {e}")
        return None

    try:
        choice_input = nvim.call("input", f"Enter selection number (1-{len(choices)}): ")
    except Exception as e:
        _logger.error(f"nvim.call('input') failed: {e}")
        return None

    if choice_input is None or (isinstance(choice_input, str) and not choice_input.strip()):
        notify_error_after_input(nvim, "No input received. Selection cancelled.")
        return None

    try:
        choice_idx = int(choice_input) - 1
    except (ValueError, TypeError):
        notify_error_after_input(nvim, f"Invalid input '{choice_input}'. Selection cancelled.")
        return None

    if not 0 <= choice_idx < len(choices):
        notify_error_after_input(nvim, f"Invalid selection: number out of range (1-{len(choices)}).")
        return None

    _logger.info(f"Selected choice: {choices[choice_idx]['display_name']}")
    return choices[choice_idx]
