# signing/services/workflow_service.py
"""
Signing workflow service: the only writer of document and recipient state.

Every transition runs in one repository transaction together with its
audit entry (and, on completion, the outbox row). Follow-up work such as
certificate generation, encryption and notifications runs after commit and
never rolls a transition back.
"""
from __future__ import annotations

import hmac
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, List, Mapping, Optional, Sequence, Tuple

from core.config.config_service import SigningConfig
from core.contracts.notifications import INotifier
from core.contracts.storage import IFileStorage
from core.helpers.date_time_helper import ensure_utc, format_date, to_iso, utc_now
from core.helpers.hashing import compute_signature_hash, sha256_hex
from signing.dto.drafts import FieldDraft, RecipientDraft
from signing.exceptions.errors import (
    DocumentNotFoundError,
    InvalidStateError,
    RecipientNotFoundError,
    SigningError,
    ValidationError,
)
from signing.logic import events
from signing.logic.audit_trail import TrailItem, build_audit_trail
from signing.logic.events import DocumentCompleted, OutboxDispatcher
from signing.logic.workflow_engine import SigningEngine, has_value
from signing.models.audit_entry import AuditEvent, AuditLogEntry
from signing.models.document import (
    DocumentMetadata,
    Field,
    Recipient,
    SignatureDocument,
    StorageRef,
)
from signing.models.enums import DocumentStatus, FieldType, RecipientStatus
from signing.repository.document_repository import DocumentRepository
from signing.services.audit_service import AuditService

if TYPE_CHECKING:
    from signature.services.encryption_service import EncryptionService

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return uuid.uuid4().hex


class SigningWorkflowService:
    """
    Orchestrates the signing state machine.

    Entry points used by the web/API layer:
        dispatch(document_id)
        record_view(recipient_id, ip, ua)
        record_signature(recipient_id, field_values, signature_image, ip, ua)
        record_decline(recipient_id, reason, ip, ua)
    """

    def __init__(
        self,
        *,
        repository: DocumentRepository,
        storage: IFileStorage,
        encryption: "EncryptionService",
        audit: Optional[AuditService] = None,
        dispatcher: Optional[OutboxDispatcher] = None,
        notifier: Optional[INotifier] = None,
        config: Optional[SigningConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        must = ["transaction", "add_document", "get_document", "find_document_by_recipient",
                "save_document", "save_recipient", "save_field", "list_overdue",
                "append_audit_entry", "read_audit_entries", "enqueue_outbox"]
        missing = [m for m in must if not hasattr(repository, m)]
        if missing:
            raise AttributeError(f"Repository missing required methods: {', '.join(missing)}")

        self._repo = repository
        self._storage = storage
        self._encryption = encryption
        self._audit = audit or AuditService(repository, clock=clock)
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._cfg = config or SigningConfig()
        self._clock = clock
        self._new_id = id_factory
        self._engine = SigningEngine()

    # ---- helpers ------------------------------------------------------------

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    def _require_document(self, document_id: str) -> SignatureDocument:
        doc = self._repo.get_document(document_id)
        if doc is None:
            raise DocumentNotFoundError(f"document {document_id} not found")
        return doc

    def _require_recipient(self, recipient_id: str) -> Tuple[SignatureDocument, Recipient]:
        doc = self._repo.find_document_by_recipient(recipient_id)
        recipient = doc.recipient(recipient_id) if doc else None
        if doc is None or recipient is None:
            raise RecipientNotFoundError(f"recipient {recipient_id} not found")
        return doc, recipient

    def _raise_if_expired(self, doc: SignatureDocument) -> None:
        """An overdue SENT document is expired (committed) before the caller is refused."""
        if self._engine.is_overdue(doc, self._now()):
            self._expire(doc.id, self._now())
            raise InvalidStateError("document has expired", details={"status": DocumentStatus.EXPIRED.value})

    @staticmethod
    def _check_access_code(recipient: Recipient, access_code: Optional[str]) -> None:
        if not recipient.access_code:
            return
        if not access_code or not hmac.compare_digest(str(access_code), recipient.access_code):
            raise ValidationError("invalid access code")

    def _notify(self, event: str, doc: SignatureDocument, recipient: Optional[Recipient] = None) -> None:
        events.notify_safely(self._notifier, event, events.notification_payload(doc, recipient))

    def _drain_outbox(self) -> None:
        if not (self._cfg.dispatch_inline and self._dispatcher):
            return
        try:
            self._dispatcher.drain()
        except SigningError:
            # transition is committed; pending rows stay for the next drain
            logger.exception("Inline outbox drain failed")

    # ---- creation -----------------------------------------------------------

    def create_document(
        self,
        *,
        team_id: str,
        title: str,
        file: StorageRef,
        page_count: int,
        recipients: Sequence[RecipientDraft],
        fields: Sequence[FieldDraft] = (),
        metadata: Optional[Mapping[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        description: Optional[str] = None,
    ) -> SignatureDocument:
        if not str(title or "").strip():
            raise ValidationError("title is required")
        if not isinstance(page_count, int) or page_count < 1:
            raise ValidationError("page count must be a positive integer")

        doc_id = self._new_id()
        doc = SignatureDocument(
            id=doc_id,
            team_id=team_id,
            title=title.strip(),
            file=file,
            page_count=page_count,
            description=description,
            created_at=self._now(),
            expires_at=ensure_utc(expires_at) if expires_at else None,
            metadata=DocumentMetadata.from_dict(metadata),
        )

        for rd in recipients:
            if not str(rd.email or "").strip() or "@" not in rd.email:
                raise ValidationError(f"recipient '{rd.name}' needs a valid email")
            if not isinstance(rd.signing_order, int) or rd.signing_order < 1:
                raise ValidationError(f"recipient '{rd.name}': signing order must be a positive integer")
            doc.recipients.append(Recipient(
                id=self._new_id(),
                document_id=doc_id,
                name=rd.name.strip(),
                email=rd.email.strip(),
                role=rd.role,
                signing_order=rd.signing_order,
                required=rd.required,
                access_code=rd.access_code,
            ))

        for fd in fields:
            recipient_id = None
            if fd.recipient_index is not None:
                if not 0 <= fd.recipient_index < len(doc.recipients):
                    raise ValidationError(
                        f"field '{fd.label or fd.type.value}' references unknown recipient #{fd.recipient_index}"
                    )
                recipient_id = doc.recipients[fd.recipient_index].id
            f = Field(
                id=self._new_id(),
                document_id=doc_id,
                type=fd.type,
                page_number=fd.page_number,
                x=float(fd.x),
                y=float(fd.y),
                width=float(fd.width),
                height=float(fd.height),
                recipient_id=recipient_id,
                label=fd.label,
                placeholder=fd.placeholder,
                required=fd.required,
                value=fd.value,
            )
            self._engine.validate_field_geometry(f, page_count)
            doc.fields.append(f)

        if doc.recipients and not doc.required_recipients:
            raise ValidationError("document needs at least one required signer")
        unfilled = self._engine.unfilled_unassigned_fields(doc)
        if unfilled:
            names = [f.label or f.type.value for f in unfilled]
            raise ValidationError(f"required fields without a recipient need a value: {', '.join(names)}",
                                  details={"fields": names})

        with self._repo.transaction():
            self._repo.add_document(doc)
            self._audit.log_action(
                document_id=doc.id,
                event=AuditEvent.DOCUMENT_CREATED,
                at=doc.created_at,
                metadata={"title": doc.title, "recipients": len(doc.recipients), "fields": len(doc.fields)},
            )
        logger.info("Created signature document %s (%s recipients)", doc.id, len(doc.recipients))
        return doc

    # ---- transitions --------------------------------------------------------

    def dispatch(self, document_id: str) -> SignatureDocument:
        doc = self._require_document(document_id)
        self._engine.ensure_can_dispatch(doc)
        source_hash = sha256_hex(self._storage.fetch_file_bytes(doc.file))

        with self._repo.transaction():
            doc = self._require_document(document_id)
            self._engine.ensure_can_dispatch(doc)
            now = self._now()
            doc.status = DocumentStatus.SENT
            doc.sent_at = now
            doc.metadata.source_hash = source_hash
            self._repo.save_document(doc)
            for r in doc.recipients:
                r.status = RecipientStatus.SENT
                self._repo.save_recipient(r)
            self._audit.log_action(
                document_id=doc.id,
                event=AuditEvent.DOCUMENT_SENT,
                at=now,
                metadata={"recipients": [r.email for r in doc.ordered_recipients], "source_hash": source_hash},
            )
        logger.info("Dispatched document %s", doc.id)
        return doc

    def record_view(self, recipient_id: str, ip_address: Optional[str] = None,
                    user_agent: Optional[str] = None, *, access_code: Optional[str] = None) -> Recipient:
        """
        First view moves the recipient to VIEWED; every view is audited.
        """
        doc, _ = self._require_recipient(recipient_id)
        self._raise_if_expired(doc)

        with self._repo.transaction():
            doc, r = self._require_recipient(recipient_id)
            self._check_access_code(r, access_code)
            self._engine.ensure_can_view(doc, r)
            now = self._now()
            first = r.status == RecipientStatus.SENT
            if first:
                r.status = RecipientStatus.VIEWED
                r.viewed_at = now
                r.ip_address = ip_address
                r.user_agent = user_agent
                self._repo.save_recipient(r)
            self._audit.log_action(
                document_id=doc.id,
                event=AuditEvent.DOCUMENT_VIEWED,
                at=now,
                recipient=r,
                ip_address=ip_address,
                user_agent=user_agent,
                metadata={"first_view": first},
            )
        if first:
            self._notify(events.DOCUMENT_VIEWED, doc, r)
        return r

    def record_signature(
        self,
        recipient_id: str,
        field_values: Optional[Mapping[str, Any]] = None,
        signature_image: Optional[str | bytes] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        *,
        access_code: Optional[str] = None,
    ) -> Recipient:
        """
        Sign as ``recipient_id``.

        Raises:
            InvalidStateError: document not SENT or recipient already done.
            OrderViolationError: an earlier required signer has not signed yet.
            ValidationError: missing required fields, bad image, bad access code.

        A refused attempt appends one ``signature_rejected`` audit entry and
        changes nothing else.
        """
        doc, _ = self._require_recipient(recipient_id)
        try:
            self._raise_if_expired(doc)
            with self._repo.transaction():
                doc, r, completed = self._apply_signature(
                    recipient_id, field_values, signature_image, ip_address, user_agent, access_code
                )
        except SigningError as exc:
            self._audit_rejection(doc.id, recipient_id, exc, ip_address, user_agent)
            raise

        logger.info("Recipient %s signed document %s", r.id, doc.id)
        self._notify(events.RECIPIENT_SIGNED, doc, r)
        if completed:
            logger.info("Document %s completed", doc.id)
            self._drain_outbox()
        return r

    def _apply_signature(self, recipient_id, field_values, signature_image, ip_address, user_agent,
                         access_code) -> Tuple[SignatureDocument, Recipient, bool]:
        doc, r = self._require_recipient(recipient_id)
        self._check_access_code(r, access_code)
        self._engine.ensure_can_sign(doc, r)

        now = self._now()
        own_fields = doc.fields_for(r.id)
        values = self._collect_values(own_fields, r, field_values, now)
        has_image = bool(signature_image)
        missing = self._engine.missing_required_fields(own_fields, values, has_signature_image=has_image)
        if missing:
            names = [f.label or f.type.value for f in missing]
            raise ValidationError(f"missing required fields: {', '.join(names)}",
                                  details={"missing_fields": [f.id for f in missing]})

        if has_image:
            sealed = self._encryption.encrypt_signature_image(doc.id, r.id, signature_image)
            r.signature_image = sealed.stored_value
            r.signature_checksum = sealed.checksum
            doc.metadata.encryption.signatures_encrypted = True

        for f in own_fields:
            if f.id in values:
                f.value = values[f.id]
                self._repo.save_field(f)

        r.status = RecipientStatus.SIGNED
        r.signed_at = now
        r.ip_address = ip_address
        r.user_agent = user_agent
        r.signature_hash = compute_signature_hash(r.id, doc.metadata.source_hash, now, ip_address)
        r.verification_token = self._encryption.verification_token(r.signature_hash, doc.id)
        self._repo.save_recipient(r)
        self._audit.log_action(
            document_id=doc.id,
            event=AuditEvent.DOCUMENT_SIGNED,
            at=now,
            recipient=r,
            metadata={
                "fields": sorted(values),
                "signing_order": r.signing_order,
                "signature_hash": r.signature_hash,
                "signature_checksum": r.signature_checksum,
            },
        )

        completed = self._engine.should_complete(doc)
        if completed:
            doc.status = DocumentStatus.COMPLETED
            doc.completed_at = now
            self._audit.log_action(
                document_id=doc.id,
                event=AuditEvent.DOCUMENT_COMPLETED,
                at=now,
                metadata={"signers": [x.email for x in doc.required_recipients]},
            )
            self._repo.enqueue_outbox(DocumentCompleted.topic, DocumentCompleted(doc.id, now).as_payload())
        self._repo.save_document(doc)
        return doc, r, completed

    def _collect_values(self, own_fields: List[Field], r: Recipient,
                        field_values: Optional[Mapping[str, Any]], now: datetime) -> dict:
        by_id = {f.id: f for f in own_fields}
        values: dict = {}
        for key, raw in (field_values or {}).items():
            f = by_id.get(key)
            if f is None:
                raise ValidationError(f"field {key} is not assigned to this recipient")
            if f.type.is_image or raw is None:
                continue
            if isinstance(raw, bool):
                values[key] = "true" if raw else "false"
            else:
                values[key] = str(raw).strip()

        autofill = {
            FieldType.DATE_SIGNED: format_date(now, self._cfg.local_timezone),
            FieldType.NAME: r.name,
            FieldType.EMAIL: r.email,
        }
        for f in own_fields:
            if f.type in autofill and not has_value(f, values.get(f.id)):
                values[f.id] = autofill[f.type]
        return values

    def _audit_rejection(self, document_id: str, recipient_id: str, exc: SigningError,
                         ip_address: Optional[str], user_agent: Optional[str]) -> None:
        doc = self._repo.get_document(document_id)
        r = doc.recipient(recipient_id) if doc else None
        if r is None:
            return
        try:
            self._audit.log_rejected_attempt(document_id=document_id, recipient=r, code=exc.code,
                                             reason=exc.reason, ip_address=ip_address, user_agent=user_agent,
                                             at=self._now())
        except SigningError:
            logger.exception("Could not audit rejected signature for document %s", document_id)

    def record_decline(self, recipient_id: str, reason: Optional[str] = None,
                       ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> Recipient:
        """A required signer's decline fails the whole document."""
        doc, _ = self._require_recipient(recipient_id)
        self._raise_if_expired(doc)

        with self._repo.transaction():
            doc, r = self._require_recipient(recipient_id)
            self._engine.ensure_can_decline(doc, r)
            now = self._now()
            r.status = RecipientStatus.DECLINED
            r.declined_at = now
            r.declined_reason = reason
            r.ip_address = ip_address
            r.user_agent = user_agent
            self._repo.save_recipient(r)
            if r.is_required:
                doc.status = DocumentStatus.DECLINED
                doc.declined_at = now
                self._repo.save_document(doc)
            self._audit.log_action(
                document_id=doc.id,
                event=AuditEvent.DOCUMENT_DECLINED,
                at=now,
                recipient=r,
                metadata={"reason": reason, "document_declined": r.is_required},
            )
        logger.info("Recipient %s declined document %s", r.id, doc.id)
        self._notify(events.DOCUMENT_DECLINED, doc, r)
        return r

    def void_document(self, document_id: str, reason: str) -> SignatureDocument:
        if not str(reason or "").strip():
            raise ValidationError("a reason is required to void a document")
        with self._repo.transaction():
            doc = self._require_document(document_id)
            self._engine.ensure_can_void(doc)
            doc.status = DocumentStatus.VOIDED
            doc.voided_at = self._now()
            doc.voided_reason = reason.strip()
            self._repo.save_document(doc)
            self._audit.log_action(
                document_id=doc.id,
                event=AuditEvent.DOCUMENT_VOIDED,
                at=doc.voided_at,
                metadata={"reason": doc.voided_reason},
            )
        logger.info("Voided document %s", doc.id)
        return doc

    # ---- expiry -------------------------------------------------------------

    def _expire(self, document_id: str, now: datetime) -> bool:
        with self._repo.transaction():
            doc = self._require_document(document_id)
            if not self._engine.is_overdue(doc, now):
                return False
            doc.status = DocumentStatus.EXPIRED
            self._repo.save_document(doc)
            self._audit.log_action(
                document_id=doc.id,
                event=AuditEvent.DOCUMENT_EXPIRED,
                at=now,
                metadata={"expires_at": to_iso(doc.expires_at)},
            )
        logger.info("Document %s expired", document_id)
        return True

    def expire_overdue(self, now: Optional[datetime] = None) -> List[str]:
        """Sweep SENT documents past their expiry. Returns the expired ids."""
        now = ensure_utc(now) if now else self._now()
        return [doc_id for doc_id in self._repo.list_overdue(now) if self._expire(doc_id, now)]

    # ---- queries ------------------------------------------------------------

    def get_document(self, document_id: str) -> SignatureDocument:
        return self._require_document(document_id)

    def audit_trail(self, document_id: str) -> List[TrailItem]:
        return build_audit_trail(self._require_document(document_id))

    def audit_entries(self, document_id: str) -> List[AuditLogEntry]:
        self._require_document(document_id)
        return self._audit.entries(document_id)
