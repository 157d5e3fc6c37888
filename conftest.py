"""Shared pytest fixtures: throwaway config, storage, keys and sample files."""

from __future__ import annotations

from io import BytesIO
from typing import Any, Dict, List, Mapping, Tuple

import pytest
from PIL import Image
from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from core.config.config_service import ConfigService
from core.contracts.notifications import INotifier
from signature.logic.key_provider import StaticKeyProvider
from signing.dto.drafts import FieldDraft, RecipientDraft
from signing.models.document import StorageRef
from signing.models.enums import FieldType
from signing.services.container import build_services


class RecordingNotifier(INotifier):
    def __init__(self) -> None:
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        self.sent.append((event, dict(payload)))

    def events(self) -> List[str]:
        return [e for e, _ in self.sent]


def make_pdf(pages: int = 1, pagesize=letter) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=pagesize, invariant=1)
    for i in range(pages):
        c.setFont("Helvetica", 12)
        c.drawString(72, pagesize[1] - 72, f"Agreement page {i + 1}")
        c.showPage()
    c.save()
    return buf.getvalue()


def make_png(width: int = 200, height: int = 80, color=(20, 20, 120, 255)) -> bytes:
    img = Image.new("RGBA", (width, height), (255, 255, 255, 0))
    for x in range(10, width - 10):
        img.putpixel((x, height // 2), color)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def pdf_bytes() -> bytes:
    return make_pdf(pages=2)


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def config(tmp_path) -> ConfigService:
    env = {
        "SIGNFLOW_DATABASE__PATH": str(tmp_path / "signflow.db"),
        "SIGNFLOW_STORAGE__ROOT": str(tmp_path / "storage"),
        "SIGNFLOW_SIGNING__ORGANIZATION_NAME": "Acme Capital",
        "SIGNFLOW_SIGNING__RENDER_TIMEOUT_SECONDS": "30",
    }
    return ConfigService(environ=env)


@pytest.fixture
def key_provider() -> StaticKeyProvider:
    return StaticKeyProvider("unit-test-master-secret")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def services(config, key_provider, notifier):
    svc = build_services(config, key_provider=key_provider, notifier=notifier)
    yield svc
    svc.close()


@pytest.fixture
def source_ref(services, pdf_bytes) -> StorageRef:
    ref = StorageRef.local("uploads/agreement.pdf")
    services.storage.put_file_bytes(ref, pdf_bytes)
    return ref


def two_signer_document(services, source_ref, *, orders=(1, 2), metadata=None, company_required=False,
                        expires_at=None):
    """Two signers, each with a required signature box and a date box on page 1."""
    fields = [
        FieldDraft(FieldType.SIGNATURE, 1, 10, 70, 30, 8, recipient_index=0, label="Signature 1", required=True),
        FieldDraft(FieldType.DATE_SIGNED, 1, 45, 72, 20, 4, recipient_index=0, label="Date 1"),
        FieldDraft(FieldType.SIGNATURE, 2, 10, 70, 30, 8, recipient_index=1, label="Signature 2", required=True),
        FieldDraft(FieldType.NAME, 2, 45, 72, 25, 4, recipient_index=1, label="Name 2"),
    ]
    if company_required:
        fields.append(FieldDraft(FieldType.COMPANY, 1, 10, 80, 40, 4, recipient_index=0,
                                 label="Company Name", required=True))
    return services.workflow.create_document(
        team_id="team-1",
        title="Subscription Agreement",
        file=source_ref,
        page_count=2,
        recipients=[
            RecipientDraft("Alice Investor", "alice@example.com", signing_order=orders[0]),
            RecipientDraft("Bob Partner", "bob@example.com", signing_order=orders[1]),
        ],
        fields=fields,
        metadata=metadata,
        expires_at=expires_at,
    )


@pytest.fixture
def sent_document(services, source_ref):
    doc = two_signer_document(services, source_ref)
    return services.workflow.dispatch(doc.id)
