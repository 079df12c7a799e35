"""Notification surface boundary."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class Notifier:
    """Default notification surface: logs messages and never confirms.

    UI layers subclass this and render the messages and prompts themselves.
    """

    def notify(self, message: str) -> None:
        logger.info("notice: %s", message)

    def confirm(self, message: str) -> bool:
        logger.info("prompt (no responder, treated as declined): %s", message)
        return False
