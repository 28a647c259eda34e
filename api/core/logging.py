"""
Process-wide logging setup.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    numeric_level = logging.getLevelName((level or "").strip().upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root = logging.getLogger()
    root.setLevel(numeric_level)

    # Re-running (e.g. under a reloader) must not stack handlers.
    for handler in list(root.handlers):
        if getattr(handler, "_user_posts_api", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._user_posts_api = True  # type: ignore[attr-defined]
    root.addHandler(handler)
