"""SQLite store for certificate records.

Shares the document repository's connection and lock so a record insert
can join the same transaction.
"""

from __future__ import annotations

import sqlite3
from typing import Optional, Tuple

from certificate.models.certificate import CertificateRecord
from core.common.db_interface import SQLiteRepository
from core.helpers.date_time_helper import from_iso, to_iso
from signing.exceptions.errors import StorageError

_SCHEMA = """
CREATE TABLE IF NOT EXISTS completion_certificates (
    certificate_id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL UNIQUE,
    document_hash TEXT NOT NULL,
    certificate_hash TEXT NOT NULL,
    generated_at TEXT NOT NULL,
    version TEXT NOT NULL
);
"""


class SQLiteCertificateRepository:

    def __init__(self, db: SQLiteRepository) -> None:
        """
        Args:
            db: Shared SQLite repository (usually the document repository)
        """
        self._db = db
        try:
            with self._db.transaction() as conn:
                conn.execute(_SCHEMA)
        except sqlite3.Error as exc:
            raise StorageError("cannot initialise certificate table") from exc

    def save_once(self, record: CertificateRecord) -> Tuple[CertificateRecord, bool]:
        """
        Insert unless a record for the document exists.

        Returns:
            (stored record, created flag). Concurrent callers all get the
            first writer's record.
        """
        try:
            with self._db.transaction() as conn:
                cur = conn.execute(
                    """
                    INSERT OR IGNORE INTO completion_certificates
                        (certificate_id, document_id, document_hash, certificate_hash, generated_at, version)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (record.certificate_id, record.document_id, record.document_hash,
                     record.certificate_hash, to_iso(record.generated_at), record.version),
                )
                created = cur.rowcount == 1
                stored = self.get_for_document(record.document_id)
        except sqlite3.Error as exc:
            raise StorageError("cannot store certificate record") from exc
        if stored is None:
            raise StorageError("certificate record vanished after insert")
        return stored, created

    def get(self, certificate_id: str) -> Optional[CertificateRecord]:
        return self._one("SELECT * FROM completion_certificates WHERE certificate_id = ?",
                         (str(certificate_id).strip().upper(),))

    def get_for_document(self, document_id: str) -> Optional[CertificateRecord]:
        return self._one("SELECT * FROM completion_certificates WHERE document_id = ?", (document_id,))

    def _one(self, sql: str, params: tuple) -> Optional[CertificateRecord]:
        with self._db.transaction() as conn:
            row = conn.execute(sql, params).fetchone()
        if row is None:
            return None
        return CertificateRecord(
            certificate_id=row["certificate_id"],
            document_id=row["document_id"],
            document_hash=row["document_hash"],
            certificate_hash=row["certificate_hash"],
            generated_at=from_iso(row["generated_at"]),
            version=row["version"],
        )
