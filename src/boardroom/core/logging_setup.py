"""Logging bootstrap for processes embedding the governance kernel."""

from __future__ import annotations

import logging

from boardroom.core.config import Settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    """Apply ``Settings.log_level`` to the ``boardroom`` logger hierarchy."""
    settings = settings or Settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(format=_FORMAT)
    logging.getLogger("boardroom").setLevel(level)
