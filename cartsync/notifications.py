"""
User-visible cart notifications (toasts).

Fire-and-forget: a sink that raises is logged and otherwise ignored, it
never changes the outcome of a cart operation.
"""
from typing import Callable, Protocol

from cartsync.logging import get_logger, sanitize_string_for_logging

logger = get_logger(__name__)


class Notifier(Protocol):
    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LoggingNotifier:
    """Default sink: writes notifications to the log."""

    def success(self, message: str) -> None:
        logger.info(f"[toast:success] {sanitize_string_for_logging(message, 120)}")

    def error(self, message: str) -> None:
        logger.warning(f"[toast:error] {sanitize_string_for_logging(message, 120)}")


class CallbackNotifier:
    """Adapts a ``callback(level, message)`` function, e.g. a UI toast queue."""

    def __init__(self, callback: Callable[[str, str], None]):
        self._callback = callback

    def success(self, message: str) -> None:
        self._callback("success", message)

    def error(self, message: str) -> None:
        self._callback("error", message)


def notify(notifier: Notifier, level: str, message: str) -> None:
    """Deliver one notification, swallowing sink failures."""
    try:
        if level == "error":
            notifier.error(message)
        else:
            notifier.success(message)
    except Exception:
        logger.exception("Notification sink failed")
