"""Composition root.

Builds the full service graph from configuration. The key provider is
created here, once, and injected; nothing below reads the environment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from certificate.repository.sqlite_certificate_repository import SQLiteCertificateRepository
from certificate.services.certificate_service import CertificateService
from core.config.config_service import ConfigService, get_config_service
from core.contracts.notifications import INotifier
from core.contracts.storage import IFileStorage
from core.logging.logic.log_setup import configure_logging
from signature.logic.field_renderer import FieldRenderer
from signature.logic.key_provider import EnvironmentKeyProvider, KeyProvider
from signature.services.encryption_service import EncryptionService
from signature.services.render_service import DocumentRenderService
from signing.adapters.filesystem_storage_adapter import FilesystemStorageAdapter
from signing.adapters.notifier import LoggingNotifier
from signing.logic.events import OutboxDispatcher
from signing.repository.sqlite_document_repository import SQLiteDocumentRepository
from signing.services.audit_service import AuditService
from signing.services.completion import build_pipeline
from signing.services.workflow_service import SigningWorkflowService


@dataclass
class SigningServices:
    repository: SQLiteDocumentRepository
    storage: IFileStorage
    audit: AuditService
    encryption: EncryptionService
    render: DocumentRenderService
    certificates: CertificateService
    dispatcher: OutboxDispatcher
    workflow: SigningWorkflowService

    def close(self) -> None:
        self.repository.close()


def build_services(
    config: Optional[ConfigService] = None,
    *,
    key_provider: Optional[KeyProvider] = None,
    storage: Optional[IFileStorage] = None,
    notifier: Optional[INotifier] = None,
) -> SigningServices:
    cfg = config or get_config_service()
    configure_logging(cfg.logging)

    repository = SQLiteDocumentRepository(cfg.database.path)
    storage = storage or FilesystemStorageAdapter(cfg.storage.root)
    keys = key_provider or EnvironmentKeyProvider(cfg.encryption.key_env)
    notifier = notifier or LoggingNotifier()
    audit = AuditService(repository)

    encryption = EncryptionService(
        repository=repository, storage=storage, key_provider=keys, audit=audit, config=cfg.encryption,
    )
    render = DocumentRenderService(
        repository=repository,
        storage=storage,
        encryption=encryption,
        audit=audit,
        renderer=FieldRenderer(cfg.rendering, tz_name=cfg.signing.local_timezone),
        config=cfg.signing,
    )
    certificates = CertificateService(
        repository=repository,
        certificates=SQLiteCertificateRepository(repository),
        storage=storage,
        render_service=render,
        audit=audit,
        config=cfg.certificate,
        organization_name=cfg.signing.organization_name,
        tz_name=cfg.signing.local_timezone,
    )
    dispatcher = build_pipeline(
        repository=repository,
        dispatcher=OutboxDispatcher(repository),
        certificate_service=certificates,
        render_service=render,
        encryption_service=encryption,
        notifier=notifier,
        encryption_config=cfg.encryption,
    )
    workflow = SigningWorkflowService(
        repository=repository,
        storage=storage,
        encryption=encryption,
        audit=audit,
        dispatcher=dispatcher,
        notifier=notifier,
        config=cfg.signing,
    )
    return SigningServices(repository, storage, audit, encryption, render, certificates, dispatcher, workflow)
