"""Completion pipeline.

Consumers of ``DocumentCompleted`` outbox events, in subscription order:
certificate pre-generation, at-rest PDF protection, notifications. Each
runs isolated; a failure is logged by the dispatcher and the certificate
stays derivable on demand.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from core.config.config_service import EncryptionConfig
from core.contracts.notifications import INotifier
from signing.exceptions.errors import DocumentNotFoundError
from signing.logic import events
from signing.logic.events import DocumentCompleted, OutboxDispatcher
from signing.models.document import SignatureDocument
from signing.repository.document_repository import DocumentRepository

if TYPE_CHECKING:
    from certificate.services.certificate_service import CertificateService
    from signature.services.encryption_service import EncryptionService
    from signature.services.render_service import DocumentRenderService

logger = logging.getLogger(__name__)


class CompletionPipeline:

    def __init__(
        self,
        *,
        repository: DocumentRepository,
        certificate_service: "CertificateService",
        render_service: "DocumentRenderService",
        encryption_service: "EncryptionService",
        notifier: Optional[INotifier] = None,
        encryption_config: Optional[EncryptionConfig] = None,
    ) -> None:
        self._repo = repository
        self._certs = certificate_service
        self._render = render_service
        self._encryption = encryption_service
        self._notifier = notifier
        self._enc_cfg = encryption_config or EncryptionConfig()

    def _document(self, event: DocumentCompleted) -> SignatureDocument:
        doc = self._repo.get_document(event.document_id)
        if doc is None:
            raise DocumentNotFoundError(f"document {event.document_id} not found")
        return doc

    def pregenerate_certificate(self, event: DocumentCompleted) -> None:
        cert = self._certs.generate_certificate(event.document_id)
        logger.info("Certificate %s ready for document %s", cert.certificate_id, event.document_id)

    def protect_document(self, event: DocumentCompleted) -> None:
        doc = self._document(event)
        wanted = doc.metadata.encrypt_on_completion
        if wanted is None:
            wanted = self._enc_cfg.encrypt_on_completion
        if not wanted:
            return
        self._render.final_document_bytes(doc.id)
        self._encryption.process_document_completion(doc.id)

    def notify_completion(self, event: DocumentCompleted) -> None:
        doc = self._document(event)
        payload = events.notification_payload(doc)
        events.notify_safely(self._notifier, events.DOCUMENT_COMPLETED, payload)
        if doc.metadata.trigger_kyc_on_completion:
            events.notify_safely(self._notifier, events.KYC_TRIGGER, payload)

    def register(self, dispatcher: OutboxDispatcher) -> OutboxDispatcher:
        dispatcher.subscribe(DocumentCompleted.topic, self.pregenerate_certificate)
        dispatcher.subscribe(DocumentCompleted.topic, self.protect_document)
        dispatcher.subscribe(DocumentCompleted.topic, self.notify_completion)
        return dispatcher


def build_pipeline(
    *,
    repository: DocumentRepository,
    dispatcher: OutboxDispatcher,
    certificate_service: "CertificateService",
    render_service: "DocumentRenderService",
    encryption_service: "EncryptionService",
    notifier: Optional[INotifier] = None,
    encryption_config: Optional[EncryptionConfig] = None,
) -> OutboxDispatcher:
    """Wire the default completion consumers onto ``dispatcher``."""
    pipeline = CompletionPipeline(
        repository=repository,
        certificate_service=certificate_service,
        render_service=render_service,
        encryption_service=encryption_service,
        notifier=notifier,
        encryption_config=encryption_config,
    )
    return pipeline.register(dispatcher)
