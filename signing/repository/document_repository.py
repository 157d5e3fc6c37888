"""Signature document repository protocol (interface).

Defines the contract for document data access without implementation details.
"""

from __future__ import annotations
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, List, Optional, Protocol, Tuple

from signing.logic.events import OutboxMessage
from signing.models.audit_entry import AuditLogEntry
from signing.models.document import Field, Recipient, SignatureDocument


class DocumentRepository(Protocol):
    """Protocol for signature document persistence."""

    def transaction(self) -> AbstractContextManager[Any]:
        """
        Unit of work. Everything written inside commits together or not at all.
        Nested calls join the outer transaction.
        """
        ...

    # ===== Documents =====

    def add_document(self, doc: SignatureDocument) -> None:
        """Insert a new document with its recipients and fields."""
        ...

    def get_document(self, document_id: str) -> Optional[SignatureDocument]:
        """
        Load a document aggregate.

        Args:
            document_id: Document ID

        Returns:
            SignatureDocument (with recipients and fields) or None
        """
        ...

    def find_document_by_recipient(self, recipient_id: str) -> Optional[SignatureDocument]:
        ...

    def find_recipient_by_token(self, token: str) -> Optional[Tuple[SignatureDocument, Recipient]]:
        """Document and recipient holding a verification token, or None."""
        ...

    def save_document(self, doc: SignatureDocument) -> None:
        """Persist document-level columns (status, timestamps, metadata)."""
        ...

    def save_recipient(self, recipient: Recipient) -> None:
        ...

    def save_field(self, field: Field) -> None:
        ...

    def list_overdue(self, now: datetime) -> List[str]:
        """IDs of SENT documents whose expiry has passed."""
        ...

    # ===== Audit (append-only) =====

    def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        ...

    def read_audit_entries(self, document_id: str) -> List[AuditLogEntry]:
        ...

    # ===== Outbox =====

    def enqueue_outbox(self, topic: str, payload: dict) -> int:
        ...

    def pending_outbox(self, limit: Optional[int] = None) -> List[OutboxMessage]:
        ...

    def claim_outbox(self, message_id: int) -> bool:
        ...

    def mark_outbox_delivered(self, message_id: int, *, errors: Optional[List[str]] = None) -> None:
        ...
