"""Certificate identifiers and hashes.

Both are pure functions of their inputs so a certificate can be
re-derived for the same completed document at any time.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Iterable

from core.helpers.date_time_helper import to_iso


def certificate_id(document_id: str, completed_at: datetime, version: str) -> str:
    """First 16 hex chars, upper-case, of sha256("{document_id}:{completed_at}:{version}")."""
    material = f"{document_id}:{to_iso(completed_at)}:{version}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:16].upper()


def certificate_hash(*, cert_id: str, document_id: str, document_hash: str,
                     completed_at: datetime, signature_hashes: Iterable[str]) -> str:
    """Digest over the certificate's evidentiary content, printed in the footer."""
    canonical = json.dumps(
        {
            "certificate_id": cert_id,
            "document_id": document_id,
            "document_hash": document_hash,
            "completed_at": to_iso(completed_at),
            "signatures": list(signature_hashes),
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
