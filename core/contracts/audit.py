"""core/contracts/audit.py
======================

Audit trail contracts.

The audit store is append-only: implementations expose "append" and
"read all ordered", never update or delete.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from signing.models.audit_entry import AuditLogEntry


class IAuditStore(ABC):
    """Durable append-only audit log."""

    @abstractmethod
    def append_audit_entry(self, entry: "AuditLogEntry") -> "AuditLogEntry":
        """Persist an entry and return it with its store-assigned id."""

    @abstractmethod
    def read_audit_entries(self, document_id: str) -> List["AuditLogEntry"]:
        """All entries of a document in append order."""
