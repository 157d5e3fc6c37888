"""
Signature document domain models.

Plain dataclasses, independent from storage and rendering. Mutation of
status fields happens only through the signing workflow service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from core.helpers.date_time_helper import utc_now
from signing.exceptions.errors import ValidationError
from signing.models.enums import (
    DocumentStatus,
    FieldType,
    RecipientRole,
    RecipientStatus,
    StorageType,
)


@dataclass(frozen=True)
class StorageRef:
    """Where a blob lives: backend type + backend-specific key."""
    storage_type: StorageType
    key: str

    def __str__(self) -> str:
        return f"{self.storage_type.value}:{self.key}"

    def as_dict(self) -> Dict[str, str]:
        return {"storage_type": self.storage_type.value, "key": self.key}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StorageRef":
        return cls(StorageType(str(data["storage_type"]).upper()), str(data["key"]))

    @classmethod
    def local(cls, key: str) -> "StorageRef":
        return cls(StorageType.LOCAL, key)


# --------------------------------------------------------------------------- #
#  Metadata
# --------------------------------------------------------------------------- #

@dataclass
class EncryptionMetadata:
    signatures_encrypted: bool = False
    document_encrypted: bool = False
    algorithm: Optional[str] = None
    encrypted_at: Optional[str] = None
    checksum: Optional[str] = None              # sha256 of the protected PDF bytes
    encrypted_file: Optional[StorageRef] = None
    password_protected: bool = False
    password_payload: Optional[str] = None      # sealed, never plaintext
    password_recipient_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "signatures_encrypted": self.signatures_encrypted,
            "document_encrypted": self.document_encrypted,
            "algorithm": self.algorithm,
            "encrypted_at": self.encrypted_at,
            "checksum": self.checksum,
            "encrypted_file": self.encrypted_file.as_dict() if self.encrypted_file else None,
            "password_protected": self.password_protected,
            "password_payload": self.password_payload,
            "password_recipient_id": self.password_recipient_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "EncryptionMetadata":
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ValidationError("metadata.encryption must be a mapping")
        ef = data.get("encrypted_file")
        return cls(
            signatures_encrypted=bool(data.get("signatures_encrypted", False)),
            document_encrypted=bool(data.get("document_encrypted", False)),
            algorithm=data.get("algorithm"),
            encrypted_at=data.get("encrypted_at"),
            checksum=data.get("checksum"),
            encrypted_file=StorageRef.from_dict(ef) if ef else None,
            password_protected=bool(data.get("password_protected", False)),
            password_payload=data.get("password_payload"),
            password_recipient_id=data.get("password_recipient_id"),
        )


_KNOWN_FLAGS = {
    "trigger_kyc_on_completion": bool,
    "encrypt_on_completion": bool,
    "source_hash": str,
}


@dataclass
class DocumentMetadata:
    """Known business flags are validated strictly; unknown keys ride along in ``extras``."""
    trigger_kyc_on_completion: bool = False
    encrypt_on_completion: Optional[bool] = None   # None -> configured default
    source_hash: Optional[str] = None
    encryption: EncryptionMetadata = field(default_factory=EncryptionMetadata)
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "DocumentMetadata":
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ValidationError("metadata must be a mapping")
        known: Dict[str, Any] = {}
        extras: Dict[str, Any] = {}
        for key, value in data.items():
            if key in _KNOWN_FLAGS:
                if value is not None and not isinstance(value, _KNOWN_FLAGS[key]):
                    raise ValidationError(
                        f"metadata.{key} must be {_KNOWN_FLAGS[key].__name__}",
                        details={"key": key},
                    )
                known[key] = value
            elif key == "encryption":
                known[key] = EncryptionMetadata.from_dict(value)
            else:
                extras[str(key)] = value
        if known.get("trigger_kyc_on_completion") is None:
            known.pop("trigger_kyc_on_completion", None)
        return cls(**known, extras=extras)

    def as_dict(self) -> Dict[str, Any]:
        data = dict(self.extras)
        data.update({
            "trigger_kyc_on_completion": self.trigger_kyc_on_completion,
            "encrypt_on_completion": self.encrypt_on_completion,
            "source_hash": self.source_hash,
            "encryption": self.encryption.as_dict(),
        })
        return data


# --------------------------------------------------------------------------- #
#  Entities
# --------------------------------------------------------------------------- #

@dataclass
class Recipient:
    id: str
    document_id: str
    name: str
    email: str
    role: RecipientRole = RecipientRole.SIGNER
    signing_order: int = 1
    status: RecipientStatus = RecipientStatus.PENDING
    required: bool = True
    access_code: Optional[str] = None
    viewed_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    declined_reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    signature_image: Optional[str] = None      # sealed payload
    signature_checksum: Optional[str] = None   # sha256 of the plaintext image
    signature_hash: Optional[str] = None
    verification_token: Optional[str] = None

    @property
    def is_required(self) -> bool:
        return self.required and self.role != RecipientRole.VIEWER


@dataclass
class Field:
    """
    A fillable box on a page. Position and size are percentages (0-100) of
    the page, origin top-left.
    """
    id: str
    document_id: str
    type: FieldType
    page_number: int
    x: float
    y: float
    width: float
    height: float
    recipient_id: Optional[str] = None
    label: Optional[str] = None
    placeholder: Optional[str] = None
    required: bool = False
    value: Optional[str] = None


@dataclass
class SignatureDocument:
    id: str
    team_id: str
    title: str
    file: StorageRef
    page_count: int
    status: DocumentStatus = DocumentStatus.DRAFT
    description: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    voided_reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    completed_file: Optional[StorageRef] = None
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    recipients: List[Recipient] = field(default_factory=list)
    fields: List[Field] = field(default_factory=list)

    def recipient(self, recipient_id: str) -> Optional[Recipient]:
        for r in self.recipients:
            if r.id == recipient_id:
                return r
        return None

    def fields_for(self, recipient_id: str) -> List[Field]:
        return [f for f in self.fields if f.recipient_id == recipient_id]

    @property
    def ordered_recipients(self) -> List[Recipient]:
        return sorted(self.recipients, key=lambda r: (r.signing_order, r.id))

    @property
    def required_recipients(self) -> List[Recipient]:
        return [r for r in self.ordered_recipients if r.is_required]
