"""Final document rendering.

For a completed document the rendered artifact is stored once
(write-if-absent) as ``completed_file`` and every later call returns the
stored bytes. Documents still in signing get an on-the-fly preview.
The original upload is never overwritten.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Dict, Optional

from core.config.config_service import SigningConfig
from core.contracts.storage import IFileStorage
from signature.logic.field_renderer import FieldRenderer
from signature.services.encryption_service import EncryptionService
from signing.exceptions.errors import DocumentNotFoundError, RenderTimeoutError
from signing.models.audit_entry import AuditEvent
from signing.models.document import SignatureDocument, StorageRef
from signing.models.enums import DocumentStatus
from signing.repository.document_repository import DocumentRepository
from signing.services.audit_service import AuditService

logger = logging.getLogger(__name__)


class DocumentRenderService:
    """Produces the downloadable PDF with every field burned in."""

    def __init__(
        self,
        *,
        repository: DocumentRepository,
        storage: IFileStorage,
        encryption: EncryptionService,
        audit: AuditService,
        renderer: Optional[FieldRenderer] = None,
        config: Optional[SigningConfig] = None,
    ) -> None:
        self._repo = repository
        self._storage = storage
        self._encryption = encryption
        self._audit = audit
        self._cfg = config or SigningConfig()
        self._renderer = renderer or FieldRenderer(tz_name=self._cfg.local_timezone)

    def render_final_document(self, document_id: str) -> bytes:
        """Bytes for download endpoints; appends ``document_downloaded``."""
        data = self.final_document_bytes(document_id)
        self._audit.log_action(
            document_id=document_id,
            event=AuditEvent.DOCUMENT_DOWNLOADED,
            metadata={"bytes": len(data)},
        )
        return data

    def final_document_bytes(self, document_id: str) -> bytes:
        """Render (or load the stored) final artifact without auditing a download."""
        doc = self._repo.get_document(document_id)
        if doc is None:
            raise DocumentNotFoundError(f"document {document_id} not found")

        completed = doc.status == DocumentStatus.COMPLETED
        if completed and doc.completed_file and self._storage.exists(doc.completed_file):
            return self._storage.fetch_file_bytes(doc.completed_file)

        pdf = self._render_with_timeout(doc, completed=completed)
        if not completed:
            return pdf
        return self._store_once(doc, pdf)

    # ---- helpers ------------------------------------------------------------

    def _signature_images(self, doc: SignatureDocument) -> Dict[str, bytes]:
        return {
            r.id: self._encryption.decrypt_signature_image(doc.id, r.id, r.signature_image)
            for r in doc.recipients
            if r.signature_image
        }

    def _render(self, doc: SignatureDocument, completed: bool) -> bytes:
        source = self._storage.fetch_file_bytes(doc.file)
        return self._renderer.render(
            source,
            doc,
            self._signature_images(doc),
            include_certificate_strip=completed,
            strict=completed,
        )

    def _render_with_timeout(self, doc: SignatureDocument, *, completed: bool) -> bytes:
        timeout = self._cfg.render_timeout_seconds
        if not timeout or timeout <= 0:
            return self._render(doc, completed)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="render")
        try:
            future = pool.submit(self._render, doc, completed)
            try:
                return future.result(timeout=timeout)
            except FutureTimeout as exc:
                logger.warning("Rendering document %s exceeded %ss", doc.id, timeout)
                raise RenderTimeoutError(f"rendering exceeded {timeout} seconds",
                                         details={"document_id": doc.id}) from exc
        finally:
            pool.shutdown(wait=False)

    def _store_once(self, doc: SignatureDocument, pdf: bytes) -> bytes:
        """First writer wins; concurrent callers converge on the stored bytes."""
        ref = StorageRef(doc.file.storage_type, f"completed/{doc.id}.pdf")
        if not self._storage.put_file_bytes(ref, pdf, overwrite=False):
            pdf = self._storage.fetch_file_bytes(ref)
        with self._repo.transaction():
            fresh = self._repo.get_document(doc.id)
            if fresh is not None and fresh.completed_file is None:
                fresh.completed_file = ref
                self._repo.save_document(fresh)
        return pdf
