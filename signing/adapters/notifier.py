"""Notifier adapters.

HTTP webhook delivery is out of scope; these adapters cover logging and
fan-out to several channels.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping

from core.contracts.notifications import INotifier

logger = logging.getLogger(__name__)


class LoggingNotifier(INotifier):
    """Writes each notification to the log. Default when nothing else is wired."""

    def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        logger.info("notify %s document=%s recipient=%s status=%s",
                    event, payload.get("documentId"), payload.get("recipientId"), payload.get("status"))


class CompositeNotifier(INotifier):
    """Fans out to every channel; one failing channel does not stop the rest."""

    def __init__(self, notifiers: Iterable[INotifier]) -> None:
        self._notifiers: List[INotifier] = list(notifiers)

    def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        for n in self._notifiers:
            try:
                n.notify(event, payload)
            except Exception:
                logger.exception("Notifier %s failed for %s", type(n).__name__, event)
