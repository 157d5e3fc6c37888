"""Encryption service.

At-rest protection for signature images, completed documents and unlock
passwords, plus checksum-based integrity checks. Every operation that
touches persisted state appends an audit entry recording the algorithm and
version, never keys or plaintext.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional, Union

from core.config.config_service import EncryptionConfig
from core.contracts.storage import IFileStorage
from core.helpers.date_time_helper import to_iso, utc_now
from core.helpers.hashing import sha256_hex
from signature.logic.encryption import ALGORITHM, PAYLOAD_VERSION, SealedPayload
from signature.logic.image_codec import decode_signature_image
from signature.logic.key_provider import KeyProvider
from signature.logic.pdf_encryption import (
    AUDIT_ALGORITHM,
    PdfPermissions,
    generate_password,
    protect_pdf,
)
from signing.exceptions.errors import (
    DocumentNotFoundError,
    EncryptionError,
    InvalidStateError,
    RecipientNotFoundError,
    StorageError,
)
from signing.models.audit_entry import AuditEvent
from signing.models.document import SignatureDocument, StorageRef
from signing.models.enums import DocumentStatus
from signing.repository.document_repository import DocumentRepository
from signing.services.audit_service import AuditService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SealedSignature:
    stored_value: str      # JSON sealed payload
    checksum: str          # sha256 of the plaintext image


@dataclass(frozen=True)
class EncryptedDocumentResult:
    storage_ref: StorageRef
    checksum: str
    algorithm: str
    password_protected: bool
    # only handed out by the call that generated it
    password: Optional[str] = None


def _signature_ad(document_id: str, recipient_id: str) -> bytes:
    return f"{document_id}:{recipient_id}".encode("utf-8")


def _password_ad(document_id: str) -> bytes:
    return f"{document_id}:document-password".encode("utf-8")


class EncryptionService:
    """Seals signature images and completed documents."""

    def __init__(
        self,
        *,
        repository: DocumentRepository,
        storage: IFileStorage,
        key_provider: KeyProvider,
        audit: AuditService,
        config: Optional[EncryptionConfig] = None,
    ) -> None:
        self._repo = repository
        self._storage = storage
        self._keys = key_provider
        self._keyring = key_provider.keyring()
        self._audit = audit
        self._cfg = config or EncryptionConfig()

    # ---- helpers ------------------------------------------------------------

    def _document(self, document_id: str) -> SignatureDocument:
        doc = self._repo.get_document(document_id)
        if doc is None:
            raise DocumentNotFoundError(f"document {document_id} not found")
        return doc

    def verification_token(self, signature_hash: str, document_id: str) -> str:
        """HMAC-SHA256 over ``"{signature_hash}:{document_id}"``, first 32 hex chars."""
        mac = hmac.new(self._keys.mac_key(), f"{signature_hash}:{document_id}".encode("utf-8"), hashlib.sha256)
        return mac.hexdigest()[:32]

    # ---- signature images ---------------------------------------------------

    def encrypt_signature_image(self, document_id: str, recipient_id: str,
                                image: Union[str, bytes]) -> SealedSignature:
        """
        Decode the transport encoding, seal the image bound to
        document + recipient, and audit the operation.

        Raises:
            ValidationError: malformed image.
            EncryptionError: cipher failure.
        """
        raw = decode_signature_image(image)
        checksum = sha256_hex(raw)
        payload = self._keyring.encrypt_bytes(raw, associated_data=_signature_ad(document_id, recipient_id))
        self._audit.log_action(
            document_id=document_id,
            event=AuditEvent.SIGNATURE_IMAGE_ENCRYPTED,
            metadata={
                "recipient_id": recipient_id,
                "algorithm": ALGORITHM,
                "version": PAYLOAD_VERSION,
                "key_id": payload.key_id,
                "checksum": checksum,
            },
        )
        return SealedSignature(stored_value=payload.to_json(), checksum=checksum)

    def decrypt_signature_image(self, document_id: str, recipient_id: str, stored_value: str) -> bytes:
        payload = SealedPayload.from_json(stored_value)
        return self._keyring.decrypt_bytes(payload, associated_data=_signature_ad(document_id, recipient_id))

    def verify_signature_integrity(self, document_id: str, recipient_id: str) -> bool:
        """Decrypt and compare with the stored plaintext checksum. Mismatch is reported, not repaired."""
        doc = self._document(document_id)
        r = doc.recipient(recipient_id)
        if r is None:
            raise RecipientNotFoundError(f"recipient {recipient_id} not found")
        if not r.signature_image or not r.signature_checksum:
            return False
        try:
            plain = self.decrypt_signature_image(document_id, recipient_id, r.signature_image)
        except EncryptionError as exc:
            return self._integrity_failed(document_id, "signature", exc.reason, recipient_id=recipient_id)
        if sha256_hex(plain) != r.signature_checksum:
            return self._integrity_failed(document_id, "signature", "checksum mismatch", recipient_id=recipient_id)
        return True

    # ---- completed documents ------------------------------------------------

    def encrypt_completed_document(
        self,
        document_id: str,
        user_password: Optional[str] = None,
        permissions: Optional[PdfPermissions] = None,
        *,
        generate_password_if_missing: bool = True,
        recipient_id: Optional[str] = None,
    ) -> EncryptedDocumentResult:
        """
        Protect the stored final artifact with an open password and a
        restricted permission set. The protected copy is written next to
        the final artifact; the final artifact itself stays untouched.
        """
        doc = self._document(document_id)
        if doc.status != DocumentStatus.COMPLETED:
            raise InvalidStateError("only completed documents can be encrypted",
                                    details={"status": doc.status.value})
        enc = doc.metadata.encryption
        if enc.document_encrypted and enc.encrypted_file and enc.checksum and user_password is None:
            return EncryptedDocumentResult(enc.encrypted_file, enc.checksum, enc.algorithm or AUDIT_ALGORITHM,
                                           enc.password_protected)
        if doc.completed_file is None:
            raise InvalidStateError("document has not been rendered yet")

        final_bytes = self._storage.fetch_file_bytes(doc.completed_file)
        password = user_password
        if password is None and generate_password_if_missing:
            password = generate_password(self._cfg.password_length)
        protected = protect_pdf(
            final_bytes,
            user_password=password or "",
            owner_password=secrets.token_urlsafe(32),
            permissions=permissions,
        )
        checksum = sha256_hex(protected)
        ref = StorageRef(doc.completed_file.storage_type, f"encrypted/{doc.id}.pdf")
        self._storage.put_file_bytes(ref, protected, overwrite=True)

        with self._repo.transaction():
            doc = self._document(document_id)
            enc = doc.metadata.encryption
            enc.document_encrypted = True
            enc.algorithm = AUDIT_ALGORITHM
            enc.encrypted_at = to_iso(utc_now())
            enc.checksum = checksum
            enc.encrypted_file = ref
            enc.password_protected = bool(password)
            self._repo.save_document(doc)
            self._audit.log_action(
                document_id=doc.id,
                event=AuditEvent.DOCUMENT_ENCRYPTED,
                metadata={
                    "algorithm": AUDIT_ALGORITHM,
                    "version": PAYLOAD_VERSION,
                    "checksum": checksum,
                    "password_protected": bool(password),
                },
            )
            if password:
                self.store_encrypted_password(doc.id, password, recipient_id=recipient_id)

        logger.info("Document %s protected (%s)", doc.id, AUDIT_ALGORITHM)
        return EncryptedDocumentResult(ref, checksum, AUDIT_ALGORITHM, bool(password), password)

    # ---- passwords ----------------------------------------------------------

    def store_encrypted_password(self, document_id: str, password: str,
                                 recipient_id: Optional[str] = None) -> None:
        """Seal the password and keep it in document metadata. Plaintext is never persisted."""
        if not password:
            raise EncryptionError("empty password cannot be stored")
        payload = self._keyring.encrypt_bytes(password.encode("utf-8"), associated_data=_password_ad(document_id))
        with self._repo.transaction():
            doc = self._document(document_id)
            doc.metadata.encryption.password_payload = payload.to_json()
            doc.metadata.encryption.password_recipient_id = recipient_id
            self._repo.save_document(doc)
            self._audit.log_action(
                document_id=document_id,
                event=AuditEvent.PASSWORD_STORED,
                metadata={"algorithm": ALGORITHM, "version": PAYLOAD_VERSION,
                          "key_id": payload.key_id, "recipient_id": recipient_id},
            )

    def retrieve_document_password(self, document_id: str) -> Optional[str]:
        doc = self._document(document_id)
        stored = doc.metadata.encryption.password_payload
        if not stored:
            return None
        plain = self._keyring.decrypt_bytes(SealedPayload.from_json(stored),
                                            associated_data=_password_ad(document_id))
        return plain.decode("utf-8")

    # ---- integrity ----------------------------------------------------------

    def verify_document_integrity(self, document_id: str) -> bool:
        """
        Recompute every recorded checksum over the currently stored bytes:
        the source file against ``source_hash`` and the protected copy
        against the encryption checksum.
        """
        doc = self._document(document_id)
        meta = doc.metadata
        checks = []
        if meta.source_hash:
            checks.append(("source", doc.file, meta.source_hash))
        if meta.encryption.document_encrypted and meta.encryption.encrypted_file and meta.encryption.checksum:
            checks.append(("encrypted", meta.encryption.encrypted_file, meta.encryption.checksum))
        ok = True
        for name, ref, expected in checks:
            try:
                actual = sha256_hex(self._storage.fetch_file_bytes(ref))
            except StorageError as exc:
                ok = self._integrity_failed(doc.id, name, exc.reason) and ok
                continue
            if actual != expected:
                ok = self._integrity_failed(doc.id, name, "checksum mismatch") and ok
        return ok

    def _integrity_failed(self, document_id: str, target: str, reason: str,
                          *, recipient_id: Optional[str] = None) -> bool:
        logger.warning("Integrity check failed for document %s (%s): %s", document_id, target, reason)
        self._audit.log_action(
            document_id=document_id,
            event=AuditEvent.INTEGRITY_CHECK_FAILED,
            metadata={"target": target, "reason": reason, "recipient_id": recipient_id},
        )
        return False

    # ---- completion consumer ------------------------------------------------

    def process_document_completion(self, document_id: str, encrypt: bool = True,
                                    generate_password: bool = True) -> Optional[EncryptedDocumentResult]:
        """
        Completion hook: protect the final artifact when asked to. The
        generated password is stored sealed for the first signer.
        """
        if not encrypt:
            return None
        doc = self._document(document_id)
        signers = [r for r in doc.ordered_recipients if r.signed_at]
        return self.encrypt_completed_document(
            document_id,
            generate_password_if_missing=generate_password,
            recipient_id=signers[0].id if signers else None,
        )
