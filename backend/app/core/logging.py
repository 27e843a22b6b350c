"""Logging setup for the feature API."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once with the application format.

    Calling this again only adjusts the level, so repeated application
    factory calls (tests) do not stack handlers.

    Args:
        level: Logging level name such as ``"INFO"`` or ``"DEBUG"``.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format=LOG_FORMAT)
    root.setLevel(level)
