"""Audit log entry model.

Entries are append-only: created once by the audit service, persisted by
the audit store, never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from core.helpers.date_time_helper import from_iso, to_iso, utc_now


class AuditEvent(str, Enum):
    """Audit event vocabulary for the document lifecycle."""

    # Lifecycle
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_SENT = "document_sent"
    DOCUMENT_VIEWED = "document_viewed"
    DOCUMENT_SIGNED = "document_signed"
    DOCUMENT_DECLINED = "document_declined"
    DOCUMENT_COMPLETED = "document_completed"
    DOCUMENT_VOIDED = "document_voided"
    DOCUMENT_EXPIRED = "document_expired"
    SIGNATURE_REJECTED = "signature_rejected"

    # Artifacts
    DOCUMENT_DOWNLOADED = "document_downloaded"
    CERTIFICATE_GENERATED = "certificate_generated"
    CERTIFICATE_DOWNLOADED = "certificate_downloaded"
    CERTIFICATE_VERIFIED = "certificate_verified"
    SIGNATURE_VERIFIED = "signature_verified"

    # Encryption
    SIGNATURE_IMAGE_ENCRYPTED = "signature_image_encrypted"
    DOCUMENT_ENCRYPTED = "document_encrypted"
    PASSWORD_STORED = "password_stored"
    INTEGRITY_CHECK_FAILED = "integrity_check_failed"


@dataclass(frozen=True)
class AuditLogEntry:
    document_id: str
    event: AuditEvent
    created_at: datetime = field(default_factory=utc_now)
    recipient_id: Optional[str] = None
    recipient_email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None    # assigned by the store, increasing in append order

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "event": self.event.value,
            "created_at": to_iso(self.created_at),
            "recipient_id": self.recipient_id,
            "recipient_email": self.recipient_email,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AuditLogEntry":
        return cls(
            id=data.get("id"),
            document_id=data["document_id"],
            event=AuditEvent(data["event"]),
            created_at=from_iso(data["created_at"]),
            recipient_id=data.get("recipient_id"),
            recipient_email=data.get("recipient_email"),
            ip_address=data.get("ip_address"),
            user_agent=data.get("user_agent"),
            metadata=dict(data.get("metadata") or {}),
        )
