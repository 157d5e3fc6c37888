"""
Completion events and the outbox dispatcher.

The state machine writes a ``DocumentCompleted`` row into the outbox in
the same transaction as the transition. ``OutboxDispatcher.drain`` hands
pending rows to subscribed handlers afterwards. Each row is claimed before
its handlers run, so concurrent drains deliver it once. Handler failures are
logged and isolated, never propagated to the signer.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Optional, Protocol

from core.contracts.notifications import INotifier
from core.helpers.date_time_helper import from_iso, to_iso, utc_now
from signing.models.document import Recipient, SignatureDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentCompleted:
    topic: ClassVar[str] = "document.completed"

    document_id: str
    completed_at: datetime

    def as_payload(self) -> Dict[str, Any]:
        return {"document_id": self.document_id, "completed_at": to_iso(self.completed_at)}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "DocumentCompleted":
        return cls(document_id=payload["document_id"], completed_at=from_iso(payload["completed_at"]))


EVENT_TYPES = {DocumentCompleted.topic: DocumentCompleted}


@dataclass(frozen=True)
class OutboxMessage:
    id: int
    topic: str
    payload: Dict[str, Any]
    created_at: datetime = field(default_factory=utc_now)
    attempts: int = 0


class OutboxStore(Protocol):
    def pending_outbox(self, limit: Optional[int] = None) -> List[OutboxMessage]: ...

    def claim_outbox(self, message_id: int) -> bool: ...

    def mark_outbox_delivered(self, message_id: int, *, errors: Optional[List[str]] = None) -> None: ...


Handler = Callable[[Any], None]


class OutboxDispatcher:
    """Drains outbox rows into in-process handlers, one failure at a time."""

    def __init__(self, store: OutboxStore) -> None:
        self._store = store
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers[topic].append(handler)

    def handlers(self, topic: str) -> List[Handler]:
        return list(self._handlers.get(topic, ()))

    def drain(self, limit: Optional[int] = None) -> int:
        """Deliver pending messages. Returns the number of messages processed."""
        processed = 0
        for msg in self._store.pending_outbox(limit):
            if not self._store.claim_outbox(msg.id):
                # another drain took it between read and claim
                logger.debug("Outbox message %s already claimed", msg.id)
                continue
            event_cls = EVENT_TYPES.get(msg.topic)
            event = event_cls.from_payload(msg.payload) if event_cls else msg.payload
            errors: List[str] = []
            for handler in self.handlers(msg.topic):
                name = getattr(handler, "__qualname__", repr(handler))
                try:
                    handler(event)
                except Exception as exc:
                    logger.exception("Outbox handler %s failed for message %s", name, msg.id)
                    errors.append(f"{name}: {exc}")
            self._store.mark_outbox_delivered(msg.id, errors=errors or None)
            processed += 1
        return processed


# --------------------------------------------------------------------------- #
#  Notifications
# --------------------------------------------------------------------------- #

RECIPIENT_SIGNED = "signature.recipient_signed"
DOCUMENT_VIEWED = "signature.document_viewed"
DOCUMENT_DECLINED = "signature.document_declined"
DOCUMENT_COMPLETED = "signature.document_completed"
KYC_TRIGGER = "kyc.trigger"


def notification_payload(doc: SignatureDocument, recipient: Optional[Recipient] = None,
                         *, status: Optional[str] = None) -> Dict[str, Any]:
    """Business webhook payload shape."""
    return {
        "documentId": doc.id,
        "documentTitle": doc.title,
        "teamId": doc.team_id,
        "recipientId": recipient.id if recipient else None,
        "recipientName": recipient.name if recipient else None,
        "recipientEmail": recipient.email if recipient else None,
        "status": status or doc.status.value,
        "timestamp": to_iso(utc_now()),
        "ipAddress": recipient.ip_address if recipient else None,
        "userAgent": recipient.user_agent if recipient else None,
        "allRecipients": [
            {
                "id": r.id,
                "name": r.name,
                "email": r.email,
                "status": r.status.value,
                "signedAt": to_iso(r.signed_at),
            }
            for r in doc.ordered_recipients
        ],
    }


def notify_safely(notifier: Optional[INotifier], event: str, payload: Mapping[str, Any]) -> bool:
    """Fire-and-forget: failures are logged, never raised."""
    if notifier is None:
        return False
    try:
        notifier.notify(event, payload)
        return True
    except Exception:
        logger.exception("Notification %s failed for document %s", event, payload.get("documentId"))
        return False
