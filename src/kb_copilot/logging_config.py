"""Process-wide logging setup."""

from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Install a single stream handler on the ``kb_copilot`` logger.

    Safe to call more than once (e.g. per app startup in tests); the
    handler is only added the first time.
    """
    root = logging.getLogger("kb_copilot")
    root.setLevel(level if isinstance(level, int) else level.upper())
    if not any(getattr(h, "_kb_copilot", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._kb_copilot = True  # type: ignore[attr-defined]
        root.addHandler(handler)
