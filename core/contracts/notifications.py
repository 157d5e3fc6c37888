"""core/contracts/notifications.py
==============================

Outbound notification contract (business webhooks, KYC triggers, mail).
Delivery is fire-and-forget from the core's point of view.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping


class INotifier(ABC):

    @abstractmethod
    def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        """Hand an event to the delivery channel. May raise; callers isolate failures."""
