"""Read-time projection of a document's lifecycle.

Derived from the document and recipient timestamps, merged and sorted by
time. This is a display view only; the append-only audit log stays the
system of record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.helpers.date_time_helper import to_iso
from signing.models.document import SignatureDocument


@dataclass(frozen=True)
class TrailItem:
    event: str
    timestamp: datetime
    recipient_name: Optional[str] = None
    recipient_email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event,
            "timestamp": to_iso(self.timestamp),
            "recipient_name": self.recipient_name,
            "recipient_email": self.recipient_email,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "details": dict(self.details),
        }


# lifecycle rank breaks ties between equal timestamps
_RANK = {
    "document.created": 0,
    "document.sent": 1,
    "recipient.viewed": 2,
    "recipient.signed": 3,
    "recipient.declined": 3,
    "document.completed": 4,
    "document.declined": 4,
    "document.voided": 4,
    "document.expired": 4,
}


def build_audit_trail(doc: SignatureDocument) -> List[TrailItem]:
    items: List[TrailItem] = [TrailItem("document.created", doc.created_at, details={"title": doc.title})]
    if doc.sent_at:
        items.append(TrailItem("document.sent", doc.sent_at,
                               details={"recipients": len(doc.recipients)}))

    for r in doc.ordered_recipients:
        who = dict(recipient_name=r.name, recipient_email=r.email)
        if r.viewed_at:
            items.append(TrailItem("recipient.viewed", r.viewed_at, **who,
                                   ip_address=r.ip_address, user_agent=r.user_agent))
        if r.signed_at:
            items.append(TrailItem("recipient.signed", r.signed_at, **who,
                                   ip_address=r.ip_address, user_agent=r.user_agent,
                                   details={"signing_order": r.signing_order}))
        if r.declined_at:
            items.append(TrailItem("recipient.declined", r.declined_at, **who,
                                   ip_address=r.ip_address, user_agent=r.user_agent,
                                   details={"reason": r.declined_reason}))

    if doc.completed_at:
        items.append(TrailItem("document.completed", doc.completed_at))
    if doc.declined_at:
        items.append(TrailItem("document.declined", doc.declined_at))
    if doc.voided_at:
        items.append(TrailItem("document.voided", doc.voided_at, details={"reason": doc.voided_reason}))

    return sorted(items, key=lambda it: (it.timestamp, _RANK.get(it.event, 5)))
