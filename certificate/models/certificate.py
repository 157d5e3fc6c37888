"""Certificate models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from core.helpers.date_time_helper import to_iso
from signing.models.audit_entry import AuditLogEntry


@dataclass(frozen=True)
class SignerEvidence:
    recipient_id: str
    name: str
    email: str
    role: str
    signing_order: int
    signed_at: Optional[datetime]
    ip_address: Optional[str]
    user_agent: Optional[str]
    signature_hash: Optional[str]
    verification_token: Optional[str]


@dataclass(frozen=True)
class CertificateRecord:
    """Persisted once per document; the anchor for later verification."""
    certificate_id: str
    document_id: str
    document_hash: str
    certificate_hash: str
    generated_at: datetime
    version: str


@dataclass(frozen=True)
class CompletionCertificate:
    record: CertificateRecord
    document_title: str
    organization_name: str
    completed_at: datetime
    signers: Tuple[SignerEvidence, ...]
    audit_events: Tuple[AuditLogEntry, ...]
    pdf: bytes = field(repr=False, default=b"")

    @property
    def certificate_id(self) -> str:
        return self.record.certificate_id

    @property
    def document_hash(self) -> str:
        return self.record.document_hash


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    certificate_id: str
    document_id: Optional[str] = None
    reason: Optional[str] = None
    error_code: Optional[str] = None
    recorded_hash: Optional[str] = None
    current_hash: Optional[str] = None
    completed_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "certificateId": self.certificate_id,
            "documentId": self.document_id,
            "reason": self.reason,
            "errorCode": self.error_code,
            "recordedHash": self.recorded_hash,
            "currentHash": self.current_hash,
            "completedAt": to_iso(self.completed_at),
        }


@dataclass(frozen=True)
class SignatureVerificationResult:
    """Outcome of checking one recipient's verification token."""
    verified: bool
    token: str
    document_id: Optional[str] = None
    recipient_id: Optional[str] = None
    reason: Optional[str] = None
    error_code: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_email: Optional[str] = None
    signed_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    document_title: Optional[str] = None
    document_status: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "documentId": self.document_id,
            "recipientId": self.recipient_id,
            "reason": self.reason,
            "errorCode": self.error_code,
            "recipientName": self.recipient_name,
            "recipientEmail": self.recipient_email,
            "signedAt": to_iso(self.signed_at),
            "ipAddress": self.ip_address,
            "documentTitle": self.document_title,
            "documentStatus": self.document_status,
        }
