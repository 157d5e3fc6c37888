"""
core/logging/logic/log_setup.py
===============================

Process-wide logging setup driven by the ``[Logging]`` config section.

Modules log through ``logging.getLogger(__name__)``; nothing here carries
audit semantics. The audit store is the system of record.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from core.config.config_service import LoggingConfig

_configured = False
_lock = threading.Lock()


def configure_logging(cfg: Optional[LoggingConfig] = None, *, force: bool = False) -> None:
    """Attach a stream handler to the root logger once per process."""
    global _configured
    cfg = cfg or LoggingConfig()
    with _lock:
        if _configured and not force:
            return
        level = logging.getLevelName(str(cfg.level).upper())
        if not isinstance(level, int):
            level = logging.INFO
        logging.basicConfig(level=level, format=cfg.format, force=force)
        # third-party chatter
        logging.getLogger("pypdf").setLevel(max(level, logging.WARNING))
        logging.getLogger("PIL").setLevel(max(level, logging.WARNING))
        _configured = True
