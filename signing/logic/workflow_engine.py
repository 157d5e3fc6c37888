# signing/logic/workflow_engine.py
"""
Signing rules & guards.

- Stateless: pure guard logic, no storage here.
- Each ``ensure_*`` raises the matching error from the signing taxonomy;
  ``is_*`` / ``should_*`` helpers only answer questions.
- The order gate only blocks a signer against strictly lower-order,
  required, not-yet-signed recipients. Equal orders sign in parallel.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from signing.exceptions.errors import (
    InvalidStateError,
    OrderViolationError,
    ValidationError,
)
from signing.models.document import Field, Recipient, SignatureDocument
from signing.models.enums import DocumentStatus, FieldType, RecipientRole, RecipientStatus

_CHECKED = {"true", "1", "yes", "on", "checked", "x"}

_STATE_REASONS = {
    DocumentStatus.DRAFT: "document has not been sent yet",
    DocumentStatus.COMPLETED: "document already completed",
    DocumentStatus.DECLINED: "document was declined",
    DocumentStatus.VOIDED: "document was voided",
    DocumentStatus.EXPIRED: "document has expired",
}


def is_checked(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in _CHECKED


def has_value(field: Field, value: Optional[str]) -> bool:
    if field.type == FieldType.CHECKBOX:
        return is_checked(value)
    return bool(str(value or "").strip())


class SigningEngine:
    """Stateless rules engine; the workflow service persists resulting changes."""

    # ----------------- Document level ---------------------------------------
    @staticmethod
    def ensure_sent(doc: SignatureDocument) -> None:
        if doc.status != DocumentStatus.SENT:
            raise InvalidStateError(_STATE_REASONS.get(doc.status, "document is not open for signing"),
                                    details={"status": doc.status.value})

    def ensure_can_dispatch(self, doc: SignatureDocument) -> None:
        if doc.status != DocumentStatus.DRAFT:
            reason = "document already sent" if doc.status == DocumentStatus.SENT \
                else _STATE_REASONS.get(doc.status, "document cannot be sent")
            raise InvalidStateError(reason, details={"status": doc.status.value})
        if not doc.recipients:
            raise ValidationError("document has no recipients")
        if not doc.required_recipients:
            raise ValidationError("document needs at least one required signer")

    @staticmethod
    def ensure_can_void(doc: SignatureDocument) -> None:
        if doc.status.is_terminal:
            raise InvalidStateError(_STATE_REASONS.get(doc.status, "document cannot be voided"),
                                    details={"status": doc.status.value})

    @staticmethod
    def is_overdue(doc: SignatureDocument, now: datetime) -> bool:
        return doc.status == DocumentStatus.SENT and doc.expires_at is not None and now >= doc.expires_at

    @staticmethod
    def should_complete(doc: SignatureDocument) -> bool:
        required = doc.required_recipients
        return (bool(required)
                and all(r.status == RecipientStatus.SIGNED for r in required)
                and not SigningEngine.unfilled_unassigned_fields(doc))

    @staticmethod
    def unfilled_unassigned_fields(doc: SignatureDocument) -> List[Field]:
        """Required fields without a recipient must carry their value from creation."""
        return [f for f in doc.fields
                if f.recipient_id is None and f.required and (f.type.is_image or not has_value(f, f.value))]

    # ----------------- Recipient level --------------------------------------
    def ensure_can_view(self, doc: SignatureDocument, recipient: Recipient) -> None:
        if doc.status not in (DocumentStatus.SENT, DocumentStatus.COMPLETED):
            self.ensure_sent(doc)
        if recipient.status in (RecipientStatus.PENDING, RecipientStatus.DECLINED):
            raise InvalidStateError(f"recipient cannot view the document in status {recipient.status.value}",
                                    details={"recipient_status": recipient.status.value})

    def ensure_can_sign(self, doc: SignatureDocument, recipient: Recipient) -> None:
        self.ensure_sent(doc)
        if recipient.status == RecipientStatus.SIGNED:
            raise InvalidStateError("recipient already signed")
        if recipient.status not in (RecipientStatus.SENT, RecipientStatus.VIEWED):
            raise InvalidStateError(f"recipient cannot sign in status {recipient.status.value}",
                                    details={"recipient_status": recipient.status.value})
        if recipient.role == RecipientRole.VIEWER:
            raise InvalidStateError("viewers do not sign")
        waiting = self.blocking_recipients(doc, recipient)
        if waiting:
            raise OrderViolationError(
                "waiting on an earlier signer",
                details={"waiting_on": [r.id for r in waiting]},
            )

    def ensure_can_decline(self, doc: SignatureDocument, recipient: Recipient) -> None:
        self.ensure_sent(doc)
        if recipient.status not in (RecipientStatus.SENT, RecipientStatus.VIEWED):
            raise InvalidStateError(f"recipient cannot decline in status {recipient.status.value}",
                                    details={"recipient_status": recipient.status.value})

    @staticmethod
    def blocking_recipients(doc: SignatureDocument, recipient: Recipient) -> List[Recipient]:
        return [
            r for r in doc.ordered_recipients
            if r.id != recipient.id
            and r.is_required
            and r.signing_order < recipient.signing_order
            and r.status != RecipientStatus.SIGNED
        ]

    @staticmethod
    def missing_required_fields(fields: Iterable[Field], values: Dict[str, Optional[str]],
                                *, has_signature_image: bool) -> List[Field]:
        missing: List[Field] = []
        for f in fields:
            if not f.required:
                continue
            if f.type.is_image:
                if not has_signature_image:
                    missing.append(f)
            elif not has_value(f, values.get(f.id)):
                missing.append(f)
        return missing

    # ----------------- Creation-time validation -----------------------------
    @staticmethod
    def validate_field_geometry(field: Field, page_count: Optional[int]) -> None:
        """Overflow past the right/bottom edge is allowed (rendering clips)."""
        label = field.label or field.type.value
        if not isinstance(field.page_number, int) or field.page_number < 1:
            raise ValidationError(f"field '{label}': page number must be >= 1")
        if page_count and field.page_number > page_count:
            raise ValidationError(f"field '{label}': page {field.page_number} exceeds page count {page_count}")
        for name in ("x", "y"):
            v = float(getattr(field, name))
            if not 0.0 <= v <= 100.0:
                raise ValidationError(f"field '{label}': {name} must be within 0..100")
        for name in ("width", "height"):
            v = float(getattr(field, name))
            if not 0.0 < v <= 100.0:
                raise ValidationError(f"field '{label}': {name} must be within (0, 100]")
