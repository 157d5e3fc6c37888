"""Completion certificate generation and verification.

The certificate record (id + document hash) is persisted once per
document; later generations return the same id and hash, and
verification recomputes the hash over the currently stored final artifact.
A recipient's verification token is checked the same way against the
source file and the evidence recorded at signing.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from certificate.logic.certificate_pdf import CertificatePdfBuilder
from certificate.logic.hashing import certificate_hash, certificate_id
from certificate.models.certificate import (
    CertificateRecord,
    CompletionCertificate,
    SignatureVerificationResult,
    SignerEvidence,
    VerificationResult,
)
from certificate.repository.sqlite_certificate_repository import SQLiteCertificateRepository
from core.config.config_service import CertificateConfig
from core.contracts.storage import IFileStorage
from core.helpers.date_time_helper import utc_now
from core.helpers.hashing import compute_document_hash, compute_signature_hash, sha256_hex
from signature.services.render_service import DocumentRenderService
from signing.exceptions.errors import (
    DocumentNotFoundError,
    IntegrityError,
    InvalidStateError,
    StorageError,
)
from signing.models.audit_entry import AuditEvent
from signing.models.document import Recipient, SignatureDocument
from signing.models.enums import DocumentStatus, RecipientStatus
from signing.repository.document_repository import DocumentRepository
from signing.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class CertificateService:
    """Issues and verifies completion certificates."""

    def __init__(
        self,
        *,
        repository: DocumentRepository,
        certificates: SQLiteCertificateRepository,
        storage: IFileStorage,
        render_service: DocumentRenderService,
        audit: AuditService,
        config: Optional[CertificateConfig] = None,
        organization_name: str = "",
        tz_name: str = "UTC",
    ) -> None:
        self._repo = repository
        self._certs = certificates
        self._storage = storage
        self._render = render_service
        self._audit = audit
        self._cfg = config or CertificateConfig()
        self._builder = CertificatePdfBuilder(organization_name=organization_name, tz_name=tz_name)
        self._org = organization_name

    # ---- helpers ------------------------------------------------------------

    def _completed_document(self, document_id: str) -> SignatureDocument:
        doc = self._repo.get_document(document_id)
        if doc is None:
            raise DocumentNotFoundError(f"document {document_id} not found")
        if doc.status != DocumentStatus.COMPLETED or doc.completed_at is None:
            raise InvalidStateError("document is not completed", details={"status": doc.status.value})
        return doc

    @staticmethod
    def _signers(doc: SignatureDocument) -> List[SignerEvidence]:
        return [
            SignerEvidence(
                recipient_id=r.id,
                name=r.name,
                email=r.email,
                role=r.role.value,
                signing_order=r.signing_order,
                signed_at=r.signed_at,
                ip_address=r.ip_address,
                user_agent=r.user_agent,
                signature_hash=r.signature_hash,
                verification_token=r.verification_token,
            )
            for r in doc.ordered_recipients
            if r.status == RecipientStatus.SIGNED
        ]

    # ---- operations ---------------------------------------------------------

    def generate_certificate(self, document_id: str) -> CompletionCertificate:
        """
        Safe to call repeatedly and concurrently: the first caller's record
        wins and every caller gets the same certificate id and document hash.
        """
        doc = self._completed_document(document_id)
        record = self._certs.get_for_document(doc.id)
        if record is None:
            final_bytes = self._render.final_document_bytes(doc.id)
            record = self._issue(doc, final_bytes)

        signers = self._signers(doc)
        events = self._repo.read_audit_entries(doc.id)
        pdf = self._builder.build(
            record=record,
            document_title=doc.title,
            completed_at=doc.completed_at,
            signers=signers,
            audit_events=events,
        )
        return CompletionCertificate(
            record=record,
            document_title=doc.title,
            organization_name=self._org,
            completed_at=doc.completed_at,
            signers=tuple(signers),
            audit_events=tuple(events),
            pdf=pdf,
        )

    def _issue(self, doc: SignatureDocument, final_bytes: bytes) -> CertificateRecord:
        cert_id = certificate_id(doc.id, doc.completed_at, self._cfg.version)
        doc_hash = compute_document_hash(final_bytes)
        candidate = CertificateRecord(
            certificate_id=cert_id,
            document_id=doc.id,
            document_hash=doc_hash,
            certificate_hash=certificate_hash(
                cert_id=cert_id,
                document_id=doc.id,
                document_hash=doc_hash,
                completed_at=doc.completed_at,
                signature_hashes=[s.signature_hash or "" for s in self._signers(doc)],
            ),
            generated_at=utc_now(),
            version=self._cfg.version,
        )
        with self._repo.transaction():
            record, created = self._certs.save_once(candidate)
            if created:
                self._audit.log_action(
                    document_id=doc.id,
                    event=AuditEvent.CERTIFICATE_GENERATED,
                    metadata={"certificate_id": record.certificate_id, "document_hash": record.document_hash,
                              "version": record.version},
                )
        if created:
            logger.info("Issued certificate %s for document %s", record.certificate_id, doc.id)
        return record

    def record_for(self, document_id: str) -> Optional[CertificateRecord]:
        return self._certs.get_for_document(document_id)

    def download_certificate(self, document_id: str) -> CompletionCertificate:
        cert = self.generate_certificate(document_id)
        self._audit.log_action(
            document_id=document_id,
            event=AuditEvent.CERTIFICATE_DOWNLOADED,
            metadata={"certificate_id": cert.certificate_id},
        )
        return cert

    def verify_certificate(self, certificate_id: str) -> VerificationResult:
        """
        Recompute the document hash from the currently stored final artifact
        and compare it with the hash recorded at issue time.
        """
        record = self._certs.get(certificate_id)
        if record is None:
            return VerificationResult(False, certificate_id, reason="certificate not found",
                                      error_code="not_found")

        def failed(reason: str, code: str, current: Optional[str] = None,
                   completed_at=None) -> VerificationResult:
            return self._audited(VerificationResult(False, record.certificate_id, record.document_id, reason, code,
                                                    record.document_hash, current, completed_at))

        doc = self._repo.get_document(record.document_id)
        if doc is None:
            return VerificationResult(False, record.certificate_id, record.document_id,
                                      reason="document not found", error_code="not_found",
                                      recorded_hash=record.document_hash)
        if doc.status != DocumentStatus.COMPLETED:
            return failed("document is not completed", InvalidStateError.code)
        if doc.completed_file is None:
            return failed("signed document file is missing", StorageError.code, completed_at=doc.completed_at)
        try:
            current = compute_document_hash(self._storage.fetch_file_bytes(doc.completed_file))
        except StorageError as exc:
            return failed(f"signed document file is missing: {exc.reason}", StorageError.code,
                          completed_at=doc.completed_at)
        if current != record.document_hash:
            logger.warning("Certificate %s: document hash mismatch", record.certificate_id)
            return failed("document hash mismatch: the signed document was modified after certification",
                          IntegrityError.code, current, doc.completed_at)
        return self._audited(VerificationResult(True, record.certificate_id, record.document_id,
                                                recorded_hash=record.document_hash, current_hash=current,
                                                completed_at=doc.completed_at))

    def _audited(self, result: VerificationResult) -> VerificationResult:
        self._audit.log_action(
            document_id=result.document_id,
            event=AuditEvent.CERTIFICATE_VERIFIED,
            metadata={"certificate_id": result.certificate_id, "verified": result.verified,
                      "reason": result.reason},
        )
        return result

    # ---- signature tokens ---------------------------------------------------

    def verify_signature(self, token: str) -> SignatureVerificationResult:
        """
        Check the signature behind a recipient's verification token.

        The source file is hashed again and compared with the hash taken
        at dispatch, then the signature hash is recomputed from that hash,
        the signing time and the signer's IP.
        """
        found = self._repo.find_recipient_by_token(token) if token else None
        if found is None:
            return SignatureVerificationResult(False, token, reason="verification token not found",
                                               error_code="not_found")
        doc, r = found

        def result(verified: bool, reason: Optional[str] = None,
                   code: Optional[str] = None) -> SignatureVerificationResult:
            return self._audited_signature(doc, r, SignatureVerificationResult(
                verified, token, doc.id, r.id, reason, code,
                recipient_name=r.name, recipient_email=r.email, signed_at=r.signed_at,
                ip_address=r.ip_address, document_title=doc.title, document_status=doc.status.value,
            ))

        if r.status != RecipientStatus.SIGNED or r.signed_at is None:
            return result(False, "recipient has not signed", InvalidStateError.code)
        if not r.signature_hash or not doc.metadata.source_hash:
            return result(False, "no signature hash recorded", IntegrityError.code)
        try:
            current = sha256_hex(self._storage.fetch_file_bytes(doc.file))
        except StorageError as exc:
            return result(False, f"source document is missing: {exc.reason}", StorageError.code)
        if current != doc.metadata.source_hash:
            logger.warning("Token check for recipient %s: source hash mismatch", r.id)
            return result(False, "document hash mismatch: the source document was modified after signing",
                          IntegrityError.code)
        if compute_signature_hash(r.id, current, r.signed_at, r.ip_address) != r.signature_hash:
            logger.warning("Token check for recipient %s: signature hash mismatch", r.id)
            return result(False, "signature hash mismatch", IntegrityError.code)
        return result(True)

    def _audited_signature(self, doc: SignatureDocument, recipient: Recipient,
                           result: SignatureVerificationResult) -> SignatureVerificationResult:
        self._audit.log_action(
            document_id=doc.id,
            event=AuditEvent.SIGNATURE_VERIFIED,
            recipient=recipient,
            metadata={"verified": result.verified, "reason": result.reason},
        )
        return result
