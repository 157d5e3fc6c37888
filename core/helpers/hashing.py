"""
hashing.py

Content hashing helpers shared by signing, certificate and encryption code.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from typing import Optional

from core.helpers.date_time_helper import to_iso

HASH_PREFIX = "sha256:"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def compute_document_hash(data: bytes) -> str:
    """Prefixed digest of a document's bytes, e.g. ``sha256:ab12...``."""
    return f"{HASH_PREFIX}{sha256_hex(data)}"


def compute_signature_hash(recipient_id: str, source_hash: Optional[str],
                           signed_at: datetime, ip_address: Optional[str]) -> str:
    """Bind a signature to the recipient, the source file and the signing moment."""
    material = f"{recipient_id}:{source_hash or ''}:{to_iso(signed_at)}:{ip_address or 'unknown'}"
    return sha256_hex(material.encode("utf-8"))
