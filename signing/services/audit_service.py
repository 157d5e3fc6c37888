"""Audit logging service.

Builds ``AuditLogEntry`` objects and appends them to the audit store.
Called inside the workflow's transaction so that an entry and the state
change it records commit together.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from core.contracts.audit import IAuditStore
from core.helpers.date_time_helper import ensure_utc, utc_now
from signing.models.audit_entry import AuditEvent, AuditLogEntry
from signing.models.document import Recipient

logger = logging.getLogger(__name__)


class AuditService:
    """Append-only access to the audit trail."""

    def __init__(self, store: IAuditStore, *, clock: Callable[[], datetime] = utc_now):
        """
        Args:
            store: Durable audit store (usually the document repository)
            clock: Source of entry timestamps when the caller passes none
        """
        self._store = store
        self._clock = clock

    def log_action(
        self,
        *,
        document_id: str,
        event: AuditEvent,
        recipient: Optional[Recipient] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> AuditLogEntry:
        """
        Append one entry.

        Recipient evidence (IP, user agent) defaults to the values on the
        recipient when not passed explicitly. ``at`` is the time of the
        recorded transition; without it the service clock is read.

        Returns:
            The stored entry, with its store-assigned id.
        """
        entry = AuditLogEntry(
            document_id=document_id,
            event=event,
            created_at=ensure_utc(at) if at else ensure_utc(self._clock()),
            recipient_id=recipient.id if recipient else None,
            recipient_email=recipient.email if recipient else None,
            ip_address=ip_address if ip_address is not None else (recipient.ip_address if recipient else None),
            user_agent=user_agent if user_agent is not None else (recipient.user_agent if recipient else None),
            metadata=dict(metadata or {}),
        )
        stored = self._store.append_audit_entry(entry)
        logger.debug("audit %s doc=%s id=%s", event.value, document_id, stored.id)
        return stored

    def log_rejected_attempt(self, *, document_id: str, recipient: Recipient, code: str, reason: str,
                             ip_address: Optional[str], user_agent: Optional[str],
                             at: Optional[datetime] = None) -> AuditLogEntry:
        """Record a refused signing attempt. No state changes accompany it."""
        return self.log_action(
            document_id=document_id,
            event=AuditEvent.SIGNATURE_REJECTED,
            recipient=recipient,
            ip_address=ip_address,
            user_agent=user_agent,
            metadata={"code": code, "reason": reason},
            at=at,
        )

    def entries(self, document_id: str) -> List[AuditLogEntry]:
        return self._store.read_audit_entries(document_id)
