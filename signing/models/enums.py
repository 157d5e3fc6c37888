# signing/models/enums.py
from __future__ import annotations
from enum import Enum


class DocumentStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.DECLINED,
                        DocumentStatus.VOIDED, DocumentStatus.EXPIRED)


class RecipientStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    VIEWED = "VIEWED"
    SIGNED = "SIGNED"
    DECLINED = "DECLINED"


class RecipientRole(str, Enum):
    SIGNER = "SIGNER"
    VIEWER = "VIEWER"      # never blocks ordering or completion
    APPROVER = "APPROVER"


class FieldType(str, Enum):
    SIGNATURE = "SIGNATURE"
    INITIALS = "INITIALS"
    DATE_SIGNED = "DATE_SIGNED"
    TEXT = "TEXT"
    CHECKBOX = "CHECKBOX"
    NAME = "NAME"
    EMAIL = "EMAIL"
    COMPANY = "COMPANY"
    TITLE = "TITLE"
    ADDRESS = "ADDRESS"

    @property
    def is_image(self) -> bool:
        """Filled from the recipient's signature image, not from a value."""
        return self in (FieldType.SIGNATURE, FieldType.INITIALS)


class StorageType(str, Enum):
    LOCAL = "LOCAL"
    S3 = "S3"
