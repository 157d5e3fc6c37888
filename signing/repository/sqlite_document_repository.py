"""SQLite implementation of DocumentRepository.

Lightweight repository - only persistence and simple queries.
Business rules live in the workflow engine / service.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from core.common.db_interface import SQLiteRepository
from core.contracts.audit import IAuditStore
from core.helpers.date_time_helper import from_iso, to_iso, utc_now
from signing.exceptions.errors import StorageError
from signing.logic.events import OutboxMessage
from signing.models.audit_entry import AuditEvent, AuditLogEntry
from signing.models.document import (
    DocumentMetadata,
    Field,
    Recipient,
    SignatureDocument,
    StorageRef,
)
from signing.models.enums import (
    DocumentStatus,
    FieldType,
    RecipientRole,
    RecipientStatus,
    StorageType,
)

logger = logging.getLogger(__name__)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS signature_documents (
    id TEXT PRIMARY KEY,
    team_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    file_storage_type TEXT NOT NULL,
    file_key TEXT NOT NULL,
    page_count INTEGER NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    sent_at TEXT,
    completed_at TEXT,
    declined_at TEXT,
    voided_at TEXT,
    voided_reason TEXT,
    expires_at TEXT,
    completed_file_storage_type TEXT,
    completed_file_key TEXT,
    metadata TEXT NOT NULL DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS signature_recipients (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES signature_documents(id),
    position INTEGER NOT NULL,
    name TEXT NOT NULL,
    email TEXT NOT NULL,
    role TEXT NOT NULL,
    signing_order INTEGER NOT NULL,
    status TEXT NOT NULL,
    required INTEGER NOT NULL DEFAULT 1,
    access_code TEXT,
    viewed_at TEXT,
    signed_at TEXT,
    declined_at TEXT,
    declined_reason TEXT,
    ip_address TEXT,
    user_agent TEXT,
    signature_image TEXT,
    signature_checksum TEXT,
    signature_hash TEXT,
    verification_token TEXT
);
CREATE INDEX IF NOT EXISTS idx_recipients_document ON signature_recipients(document_id);
CREATE INDEX IF NOT EXISTS idx_recipients_token ON signature_recipients(verification_token);

CREATE TABLE IF NOT EXISTS signature_fields (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES signature_documents(id),
    position INTEGER NOT NULL,
    type TEXT NOT NULL,
    page_number INTEGER NOT NULL,
    x REAL NOT NULL,
    y REAL NOT NULL,
    width REAL NOT NULL,
    height REAL NOT NULL,
    recipient_id TEXT,
    label TEXT,
    placeholder TEXT,
    required INTEGER NOT NULL DEFAULT 0,
    value TEXT
);
CREATE INDEX IF NOT EXISTS idx_fields_document ON signature_fields(document_id);

CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id TEXT NOT NULL,
    event TEXT NOT NULL,
    created_at TEXT NOT NULL,
    recipient_id TEXT,
    recipient_email TEXT,
    ip_address TEXT,
    user_agent TEXT,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE INDEX IF NOT EXISTS idx_audit_document ON audit_log(document_id, id);

CREATE TRIGGER IF NOT EXISTS audit_log_no_update BEFORE UPDATE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit_log is append-only');
END;

CREATE TRIGGER IF NOT EXISTS audit_log_no_delete BEFORE DELETE ON audit_log
BEGIN
    SELECT RAISE(ABORT, 'audit_log is append-only');
END;

CREATE TABLE IF NOT EXISTS outbox (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    topic TEXT NOT NULL,
    payload TEXT NOT NULL,
    created_at TEXT NOT NULL,
    claimed_at TEXT,
    delivered_at TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    last_error TEXT
);
"""


class SQLiteDocumentRepository(SQLiteRepository, IAuditStore):
    """SQLite backend for signature documents, audit log and outbox.

    One shared connection guarded by a re-entrant lock; writes go through
    :meth:`transaction` so a state change, its audit entry and any outbox
    row commit as a unit.
    """

    def __init__(self, db_path: Path | str) -> None:
        """
        Args:
            db_path: SQLite file (``":memory:"`` for tests)
        """
        super().__init__(db_path)
        self._ensure_schema()

    # =========================================================================
    # Schema / plumbing
    # =========================================================================

    def _ensure_schema(self) -> None:
        with self._lock:
            try:
                self.connect().executescript(_SCHEMA)
            except sqlite3.Error as exc:
                raise StorageError(f"cannot initialise database {self.db_path}") from exc

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Unit of work; sqlite errors surface as StorageError."""
        try:
            with super().transaction() as conn:
                yield conn
        except sqlite3.Error as exc:
            logger.error("SQLite transaction failed: %s", exc)
            raise StorageError("database write failed") from exc

    def _query(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self.connect().execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StorageError("database read failed") from exc

    @staticmethod
    def _ref(storage_type: Optional[str], key: Optional[str]) -> Optional[StorageRef]:
        if not storage_type or not key:
            return None
        return StorageRef(StorageType(storage_type), key)

    # =========================================================================
    # Documents
    # =========================================================================

    def add_document(self, doc: SignatureDocument) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO signature_documents (
                    id, team_id, title, description, file_storage_type, file_key,
                    page_count, status, created_at, expires_at, metadata
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    doc.id, doc.team_id, doc.title, doc.description,
                    doc.file.storage_type.value, doc.file.key, doc.page_count,
                    doc.status.value, to_iso(doc.created_at), to_iso(doc.expires_at),
                    json.dumps(doc.metadata.as_dict()),
                ),
            )
            for pos, r in enumerate(doc.recipients):
                conn.execute(
                    """
                    INSERT INTO signature_recipients (id, document_id, position, name, email, role,
                        signing_order, status, required, access_code)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (r.id, doc.id, pos, r.name, r.email, r.role.value, r.signing_order,
                     r.status.value, int(r.required), r.access_code),
                )
            for pos, f in enumerate(doc.fields):
                conn.execute(
                    """
                    INSERT INTO signature_fields (id, document_id, position, type, page_number,
                        x, y, width, height, recipient_id, label, placeholder, required, value)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (f.id, doc.id, pos, f.type.value, f.page_number, f.x, f.y, f.width, f.height,
                     f.recipient_id, f.label, f.placeholder, int(f.required), f.value),
                )

    def get_document(self, document_id: str) -> Optional[SignatureDocument]:
        with self._lock:
            rows = self._query("SELECT * FROM signature_documents WHERE id = ?", (document_id,))
            if not rows:
                return None
            return self._load(rows[0])

    def find_document_by_recipient(self, recipient_id: str) -> Optional[SignatureDocument]:
        with self._lock:
            rows = self._query("SELECT document_id FROM signature_recipients WHERE id = ?", (recipient_id,))
            if not rows:
                return None
            return self.get_document(rows[0]["document_id"])

    def find_recipient_by_token(self, token: str) -> Optional[Tuple[SignatureDocument, Recipient]]:
        with self._lock:
            rows = self._query(
                "SELECT id, document_id FROM signature_recipients WHERE verification_token = ?", (token,)
            )
            if not rows:
                return None
            doc = self.get_document(rows[0]["document_id"])
            recipient = doc.recipient(rows[0]["id"]) if doc else None
            if doc is None or recipient is None:
                return None
            return doc, recipient

    def save_document(self, doc: SignatureDocument) -> None:
        cf = doc.completed_file
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE signature_documents SET
                    title = ?, description = ?, page_count = ?, status = ?,
                    sent_at = ?, completed_at = ?, declined_at = ?, voided_at = ?,
                    voided_reason = ?, expires_at = ?,
                    completed_file_storage_type = ?, completed_file_key = ?, metadata = ?
                WHERE id = ?
                """,
                (
                    doc.title, doc.description, doc.page_count, doc.status.value,
                    to_iso(doc.sent_at), to_iso(doc.completed_at), to_iso(doc.declined_at),
                    to_iso(doc.voided_at), doc.voided_reason, to_iso(doc.expires_at),
                    cf.storage_type.value if cf else None, cf.key if cf else None,
                    json.dumps(doc.metadata.as_dict()), doc.id,
                ),
            )

    def save_recipient(self, recipient: Recipient) -> None:
        r = recipient
        with self.transaction() as conn:
            conn.execute(
                """
                UPDATE signature_recipients SET
                    status = ?, viewed_at = ?, signed_at = ?, declined_at = ?, declined_reason = ?,
                    ip_address = ?, user_agent = ?, signature_image = ?, signature_checksum = ?,
                    signature_hash = ?, verification_token = ?
                WHERE id = ?
                """,
                (
                    r.status.value, to_iso(r.viewed_at), to_iso(r.signed_at), to_iso(r.declined_at),
                    r.declined_reason, r.ip_address, r.user_agent, r.signature_image,
                    r.signature_checksum, r.signature_hash, r.verification_token, r.id,
                ),
            )

    def save_field(self, field: Field) -> None:
        with self.transaction() as conn:
            conn.execute("UPDATE signature_fields SET value = ? WHERE id = ?", (field.value, field.id))

    def list_overdue(self, now: datetime) -> List[str]:
        # ISO strings with a fixed UTC offset compare chronologically
        rows = self._query(
            "SELECT id FROM signature_documents WHERE status = ? AND expires_at IS NOT NULL AND expires_at <= ?",
            (DocumentStatus.SENT.value, to_iso(now)),
        )
        return [row["id"] for row in rows]

    def _load(self, row: sqlite3.Row) -> SignatureDocument:
        doc_id = row["id"]
        recipients = [
            Recipient(
                id=r["id"],
                document_id=doc_id,
                name=r["name"],
                email=r["email"],
                role=RecipientRole(r["role"]),
                signing_order=int(r["signing_order"]),
                status=RecipientStatus(r["status"]),
                required=bool(r["required"]),
                access_code=r["access_code"],
                viewed_at=from_iso(r["viewed_at"]),
                signed_at=from_iso(r["signed_at"]),
                declined_at=from_iso(r["declined_at"]),
                declined_reason=r["declined_reason"],
                ip_address=r["ip_address"],
                user_agent=r["user_agent"],
                signature_image=r["signature_image"],
                signature_checksum=r["signature_checksum"],
                signature_hash=r["signature_hash"],
                verification_token=r["verification_token"],
            )
            for r in self._query(
                "SELECT * FROM signature_recipients WHERE document_id = ? ORDER BY position", (doc_id,)
            )
        ]
        fields = [
            Field(
                id=f["id"],
                document_id=doc_id,
                type=FieldType(f["type"]),
                page_number=int(f["page_number"]),
                x=float(f["x"]),
                y=float(f["y"]),
                width=float(f["width"]),
                height=float(f["height"]),
                recipient_id=f["recipient_id"],
                label=f["label"],
                placeholder=f["placeholder"],
                required=bool(f["required"]),
                value=f["value"],
            )
            for f in self._query(
                "SELECT * FROM signature_fields WHERE document_id = ? ORDER BY position", (doc_id,)
            )
        ]
        return SignatureDocument(
            id=doc_id,
            team_id=row["team_id"],
            title=row["title"],
            description=row["description"],
            file=StorageRef(StorageType(row["file_storage_type"]), row["file_key"]),
            page_count=int(row["page_count"]),
            status=DocumentStatus(row["status"]),
            created_at=from_iso(row["created_at"]),
            sent_at=from_iso(row["sent_at"]),
            completed_at=from_iso(row["completed_at"]),
            declined_at=from_iso(row["declined_at"]),
            voided_at=from_iso(row["voided_at"]),
            voided_reason=row["voided_reason"],
            expires_at=from_iso(row["expires_at"]),
            completed_file=self._ref(row["completed_file_storage_type"], row["completed_file_key"]),
            metadata=DocumentMetadata.from_dict(json.loads(row["metadata"] or "{}")),
            recipients=recipients,
            fields=fields,
        )

    # =========================================================================
    # Audit log (append-only)
    # =========================================================================

    def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        with self.transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO audit_log (document_id, event, created_at, recipient_id, recipient_email,
                    ip_address, user_agent, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.document_id, entry.event.value, to_iso(entry.created_at), entry.recipient_id,
                    entry.recipient_email, entry.ip_address, entry.user_agent,
                    json.dumps(entry.metadata, default=str),
                ),
            )
            entry_id = cur.lastrowid
        return replace(entry, id=entry_id)

    def read_audit_entries(self, document_id: str) -> List[AuditLogEntry]:
        rows = self._query("SELECT * FROM audit_log WHERE document_id = ? ORDER BY id", (document_id,))
        return [
            AuditLogEntry(
                id=row["id"],
                document_id=row["document_id"],
                event=AuditEvent(row["event"]),
                created_at=from_iso(row["created_at"]),
                recipient_id=row["recipient_id"],
                recipient_email=row["recipient_email"],
                ip_address=row["ip_address"],
                user_agent=row["user_agent"],
                metadata=json.loads(row["metadata"] or "{}"),
            )
            for row in rows
        ]

    # =========================================================================
    # Outbox
    # =========================================================================

    def enqueue_outbox(self, topic: str, payload: Dict[str, Any]) -> int:
        with self.transaction() as conn:
            cur = conn.execute(
                "INSERT INTO outbox (topic, payload, created_at) VALUES (?, ?, ?)",
                (topic, json.dumps(payload), to_iso(utc_now())),
            )
            return int(cur.lastrowid)

    def pending_outbox(self, limit: Optional[int] = None) -> List[OutboxMessage]:
        sql = "SELECT * FROM outbox WHERE delivered_at IS NULL AND claimed_at IS NULL ORDER BY id"
        params: tuple = ()
        if limit:
            sql += " LIMIT ?"
            params = (int(limit),)
        return [
            OutboxMessage(
                id=row["id"],
                topic=row["topic"],
                payload=json.loads(row["payload"]),
                created_at=from_iso(row["created_at"]),
                attempts=int(row["attempts"]),
            )
            for row in self._query(sql, params)
        ]

    def claim_outbox(self, message_id: int) -> bool:
        """Take a pending row for delivery. Only one caller ever gets True."""
        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE outbox SET claimed_at = ?, attempts = attempts + 1 "
                "WHERE id = ? AND delivered_at IS NULL AND claimed_at IS NULL",
                (to_iso(utc_now()), message_id),
            )
            return cur.rowcount == 1

    def mark_outbox_delivered(self, message_id: int, *, errors: Optional[List[str]] = None) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE outbox SET delivered_at = ?, last_error = ? WHERE id = ?",
                (to_iso(utc_now()), "; ".join(errors) if errors else None, message_id),
            )
