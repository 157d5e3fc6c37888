"""
signature/tests/test_field_renderer.py

Coordinate mapping, text fitting and PDF overlay rendering.
"""

from __future__ import annotations

import base64
import time
from dataclasses import replace
from io import BytesIO

import pytest
from pypdf import PdfReader

from conftest import make_pdf, make_png
from core.config.config_service import SigningConfig
from core.helpers.date_time_helper import utc_now
from signature.logic.field_renderer import FieldRenderer
from signature.logic.image_codec import decode_signature_image, image_size
from signature.models.field_placement import PageBox, PdfRect, field_rect
from signature.services.render_service import DocumentRenderService
from signing.exceptions.errors import RenderError, RenderTimeoutError, ValidationError
from signing.models.document import Field, Recipient, SignatureDocument, StorageRef
from signing.models.enums import DocumentStatus, FieldType, RecipientStatus

LETTER = PageBox(0, 0, 612, 792)


# ---- coordinates ----------------------------------------------------------------

def test_full_page_box():
    assert field_rect(0, 0, 100, 100, LETTER) == PdfRect(0, 0, 612, 792)


def test_top_left_origin_is_flipped():
    rect = field_rect(10, 10, 50, 5, LETTER)
    assert rect.x == pytest.approx(61.2)
    assert rect.width == pytest.approx(306)
    assert rect.height == pytest.approx(39.6)
    assert rect.y == pytest.approx(792 - 79.2 - 39.6)


def test_media_box_offset():
    page = PageBox(10, 20, 600, 800)
    rect = field_rect(0, 0, 10, 10, page)
    assert (rect.x, rect.y) == (10, pytest.approx(740))
    assert (rect.width, rect.height) == (pytest.approx(60), pytest.approx(80))


def test_overflow_is_clipped_and_offpage_is_none():
    rect = field_rect(90, 95, 20, 10, LETTER)
    assert rect.x + rect.width == pytest.approx(612)
    assert rect.y == pytest.approx(0)
    assert field_rect(100, 50, 10, 10, LETTER) is None
    assert field_rect(50, 100, 10, 10, LETTER) is None


# ---- text fitting ---------------------------------------------------------------

def test_font_size_follows_box_height():
    renderer = FieldRenderer()
    assert renderer.fit_text("Hi", PdfRect(0, 0, 300, 10)) == ("Hi", pytest.approx(6.0))
    assert renderer.fit_text("Hi", PdfRect(0, 0, 300, 100)) == ("Hi", 12.0)


def test_long_text_shrinks_then_truncates():
    renderer = FieldRenderer()
    text, size = renderer.fit_text("A fairly long company name", PdfRect(0, 0, 90, 30))
    assert size < 12.0
    text, size = renderer.fit_text("x" * 200, PdfRect(0, 0, 60, 30))
    assert size == 4.0
    assert text.endswith("...")
    assert renderer.fit_text("anything", PdfRect(0, 0, 5, 30)) == ("", 0.0)


# ---- rendering ------------------------------------------------------------------

def _completed_doc(fields, *, signed=True):
    now = utc_now()
    r = Recipient(id="r1", document_id="d1", name="Alice Investor", email="alice@example.com",
                  status=RecipientStatus.SIGNED if signed else RecipientStatus.SENT,
                  signed_at=now if signed else None, ip_address="203.0.113.7")
    return SignatureDocument(id="d1", team_id="t", title="Subscription Agreement",
                             file=StorageRef.local("a.pdf"), page_count=2,
                             status=DocumentStatus.COMPLETED if signed else DocumentStatus.SENT,
                             completed_at=now if signed else None, recipients=[r], fields=fields)


def _field(fid, ftype, page=1, value=None, required=False, x=10, y=10, w=30, h=5):
    return Field(id=fid, document_id="d1", type=ftype, page_number=page, x=x, y=y, width=w, height=h,
                 recipient_id="r1", value=value, required=required, label=fid)


def _text(pdf: bytes) -> list:
    return [p.extract_text() or "" for p in PdfReader(BytesIO(pdf)).pages]


def test_render_burns_fields_and_strip():
    fields = [
        _field("sig", FieldType.SIGNATURE, required=True),
        _field("company", FieldType.COMPANY, value="Acme Holdings"),
        _field("agree", FieldType.CHECKBOX, value="true", w=3, h=3),
        _field("page2", FieldType.TEXT, page=2, value="Second page note"),
    ]
    source = make_pdf(2)
    out = FieldRenderer().render(source, _completed_doc(fields), {"r1": make_png()},
                                 include_certificate_strip=True, strict=True)
    pages = _text(out)
    assert len(pages) == 2
    assert "Acme Holdings" in pages[0]
    assert "Second page note" in pages[1]
    assert "Certificate of Completion" in pages[1]
    assert "alice@example.com" in pages[1]
    assert "203.0.113.7" in pages[1]
    assert "Certificate of Completion" not in pages[0]


def test_strip_lines():
    lines = FieldRenderer().strip_lines(_completed_doc([]))
    assert lines[:2] == ["Certificate of Completion", "Document: Subscription Agreement"]
    assert lines[3] == "Signers:"
    assert lines[4].startswith("Alice Investor (alice@example.com) - Signed ")
    assert lines[4].endswith(" from 203.0.113.7")


def test_offpage_field_is_skipped_without_error():
    fields = [_field("edge", FieldType.TEXT, value="never drawn", x=100, y=50, w=10, h=5)]
    out = FieldRenderer().render(make_pdf(1), _completed_doc(fields), {})
    assert "never drawn" not in _text(out)[0]


def test_strict_render_refuses_empty_required_field():
    fields = [_field("company", FieldType.COMPANY, required=True)]
    with pytest.raises(RenderError):
        FieldRenderer().render(make_pdf(1), _completed_doc(fields), {}, strict=True)


def test_strict_render_checks_unassigned_fields():
    fund = replace(_field("fund", FieldType.TEXT, required=True), recipient_id=None)
    with pytest.raises(RenderError):
        FieldRenderer().render(make_pdf(1), _completed_doc([fund]), {}, strict=True)

    # unassigned values are checked even while the signer is still pending
    with pytest.raises(RenderError):
        FieldRenderer().render(make_pdf(1), _completed_doc([fund], signed=False), {}, strict=True)

    filled = replace(fund, value="Growth Fund III")
    out = FieldRenderer().render(make_pdf(1), _completed_doc([filled]), {}, strict=True)
    assert "Growth Fund III" in _text(out)[0]


def test_preview_skips_unsigned_fields():
    fields = [_field("sig", FieldType.SIGNATURE, required=True), _field("t", FieldType.TEXT, required=True)]
    out = FieldRenderer().render(make_pdf(1), _completed_doc(fields, signed=False), {}, strict=True)
    assert len(PdfReader(BytesIO(out)).pages) == 1


def test_unreadable_source_pdf():
    with pytest.raises(RenderError):
        FieldRenderer().render(b"not a pdf", _completed_doc([]), {})


def test_render_service_preview_and_final(services, sent_document, png_bytes):
    alice, bob = sent_document.ordered_recipients
    preview = services.render.final_document_bytes(sent_document.id)
    assert len(PdfReader(BytesIO(preview)).pages) == 2
    assert services.workflow.get_document(sent_document.id).completed_file is None

    services.workflow.record_signature(alice.id, {}, png_bytes)
    services.workflow.record_signature(bob.id, {}, png_bytes)
    doc = services.workflow.get_document(sent_document.id)
    assert doc.completed_file == StorageRef.local(f"completed/{doc.id}.pdf")

    first = services.render.render_final_document(doc.id)
    assert first == services.render.render_final_document(doc.id)
    assert first == services.storage.fetch_file_bytes(doc.completed_file)
    assert "Certificate of Completion" in _text(first)[-1]
    assert services.storage.fetch_file_bytes(doc.file) != first


# ---- image codec ----------------------------------------------------------------

def test_image_codec_accepts_common_encodings():
    png = make_png(40, 20)
    b64 = base64.b64encode(png).decode("ascii")
    assert decode_signature_image(png) == png
    assert decode_signature_image(b64) == png
    assert decode_signature_image(f"data:image/png;base64,{b64}") == png
    assert image_size(png) == (40, 20)


@pytest.mark.parametrize("value", [
    b"",
    "%%%",
    "data:image/png,plain",
    base64.b64encode(b"definitely not an image").decode("ascii"),
    12345,
])
def test_image_codec_rejects_garbage(value):
    with pytest.raises(ValidationError):
        decode_signature_image(value)


class _SlowRenderer(FieldRenderer):
    def render(self, *args, **kwargs):
        time.sleep(0.5)
        return super().render(*args, **kwargs)


def test_render_timeout(services, sent_document):
    slow = DocumentRenderService(
        repository=services.repository,
        storage=services.storage,
        encryption=services.encryption,
        audit=services.audit,
        renderer=_SlowRenderer(),
        config=SigningConfig(render_timeout_seconds=0.05),
    )
    with pytest.raises(RenderTimeoutError) as err:
        slow.final_document_bytes(sent_document.id)
    assert err.value.retryable
