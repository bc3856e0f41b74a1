"""User-facing notification seam.

The core decides when to notify and with which message. Rendering is left
to whoever implements ``Notifier`` (an editor integration, the CLI, tests).
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

from .logging_utils import get_module_logger

NotificationAction = Callable[[], Optional[Awaitable[None]]]


class Notifier(Protocol):

    def show_info(self, message: str) -> None:
        ...

    def show_warning(self, message: str) -> None:
        ...

    def show_error(self, message: str) -> None:
        ...

    def prompt_error(self, message: str, action_label: str, on_action: NotificationAction) -> None:
        """Show an error offering a single action button."""
        ...


class LoggingNotifier:
    """Notifier that writes notifications to the log.

    There is nobody to press a prompt's button, so prompts are logged and
    their action is never run.
    """

    def __init__(self) -> None:
        self.logger = get_module_logger("Notifications")

    def show_info(self, message: str) -> None:
        self.logger.info(message)

    def show_warning(self, message: str) -> None:
        self.logger.warning(message)

    def show_error(self, message: str) -> None:
        self.logger.error(message)

    def prompt_error(self, message: str, action_label: str, on_action: NotificationAction) -> None:
        self.logger.error("%s [%s]", message, action_label)


__all__ = ["Notifier", "LoggingNotifier", "NotificationAction"]
