from __future__ import annotations

import logging

from herald.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    # Configure the root logger once per process; API and worker entry points both call this.
    resolved = (level or get_settings().log_level or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=resolved, format=_LOG_FORMAT)
    root.setLevel(resolved)
    # httpx logs every request at INFO, which drowns delivery events.
    logging.getLogger("httpx").setLevel(max(logging.WARNING, root.level))
