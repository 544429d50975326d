"""
Common utilities shared across wp_tasks modules.
"""

from __future__ import annotations

import os
import sys


class TaskError(Exception):
    """
    Base exception for task failures surfaced at the CLI boundary.

    Attributes:
        message: Human-readable error message
        reason: Machine-readable failure category (module specific)
        remediation: Suggested fix for the error
    """
    def __init__(
        self,
        message: str,
        reason: str | None = None,
        remediation: str | None = None,
    ):
        self.message = message
        self.reason = reason
        self.remediation = remediation
        super().__init__(message)


def is_debug_enabled() -> bool:
    """Check whether WP_TASKS_DEBUG forces verbose messages."""
    return os.environ.get("WP_TASKS_DEBUG", "0") == "1"


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or is_debug_enabled():
        try:
            from .logging_config import get_logger
            logger = get_logger()
            logger.info(msg)
        except Exception:
            # Fallback to stderr if logging fails
            print(f"[wp_tasks] {msg}", file=sys.stderr)
