"""User-facing notifications (the storefront shows them as toasts)."""

from typing import Callable

from libs.common.logging import get_logger

logger = get_logger(__name__)

Notify = Callable[[str, str], None]

_LEVELS = {"error": 40, "warning": 30, "success": 20, "info": 20}


def log_notify(message: str, level: str = "info") -> None:
    """Default sink: write the notification to the log."""
    logger.log(_LEVELS.get(level, 20), f"[{level}] {message}")
