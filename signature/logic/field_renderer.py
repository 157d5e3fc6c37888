# signature/logic/field_renderer.py
"""
Burns field values, signature images and the certificate strip into a
PDF: one reportlab overlay per page, merged onto the source page with pypdf.
"""
from __future__ import annotations
import logging
from collections import defaultdict
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, List, Mapping, Optional, Tuple

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

from core.config.config_service import RenderingConfig
from core.helpers.date_time_helper import format_display
from signing.exceptions.errors import RenderError
from signing.models.document import Field, SignatureDocument
from signing.models.enums import FieldType, RecipientStatus
from signing.logic.workflow_engine import has_value, is_checked
from signature.models.field_placement import PageBox, PdfRect, field_rect

logger = logging.getLogger(__name__)

MIN_FONT_SIZE = 4.0
ELLIPSIS = "..."
CHECK_MARK = "4"   # ZapfDingbats check


@dataclass
class StripStyle:
    """
    Geometry of the certificate strip drawn on the last page of a completed
    document (points, origin bottom-left).
    """
    margin: float = 20.0
    base_height: float = 80.0
    line_height: float = 14.0
    title_size: float = 11.0
    body_size: float = 9.0
    fill_rgb: Tuple[float, float, float] = (0.96, 0.96, 0.96)
    stroke_rgb: Tuple[float, float, float] = (0.6, 0.6, 0.6)


class FieldRenderer:
    """Burns field values and signature images into a PDF via overlay merge."""

    def __init__(self, config: Optional[RenderingConfig] = None, *, tz_name: str = "UTC",
                 strip_style: Optional[StripStyle] = None) -> None:
        self._cfg = config or RenderingConfig()
        self._tz = tz_name
        self._strip = strip_style or StripStyle()

    # ------------------------------------------------------------------ #
    def render(
        self,
        source_pdf: bytes,
        doc: SignatureDocument,
        signature_images: Mapping[str, bytes],
        *,
        include_certificate_strip: bool = False,
        strict: bool = False,
    ) -> bytes:
        """
        Reads ``source_pdf``, paints an overlay onto every page that carries
        fields and returns the merged PDF. The source bytes are not touched.

        ``strict`` turns an empty required field of a recipient who signed, or
        an empty required unassigned field, into a RenderError; otherwise it is
        skipped (preview of a document still in signing, or fields of an
        optional signer who never signed).
        """
        try:
            reader = PdfReader(BytesIO(source_pdf))
            if reader.is_encrypted and not reader.decrypt(""):
                raise RenderError("source PDF is password protected")
            pages = list(reader.pages)
        except (PyPdfError, ValueError) as exc:
            raise RenderError("source PDF cannot be read") from exc
        if not pages:
            raise RenderError("source PDF has no pages")

        by_page: Dict[int, List[Tuple[Field, object]]] = defaultdict(list)
        signed = {r.id for r in doc.recipients if r.status == RecipientStatus.SIGNED}
        for f in doc.fields:
            # unassigned fields carry their value from creation
            owned = f.recipient_id is None or f.recipient_id in signed
            content = self._content_for(f, signature_images, strict=strict and owned)
            if content is None:
                continue
            if f.page_number > len(pages):
                logger.warning("Field %s targets page %s of a %s-page PDF; skipped",
                               f.id, f.page_number, len(pages))
                continue
            by_page[f.page_number - 1].append((f, content))

        writer = PdfWriter()
        last = len(pages) - 1
        for i, page in enumerate(pages):
            items = by_page.get(i, [])
            strip = include_certificate_strip and i == last
            if items or strip:
                box = page.mediabox
                page_box = PageBox(float(box.left), float(box.bottom), float(box.width), float(box.height))
                overlay_pdf = self._make_overlay(page_box, items, doc if strip else None)
                overlay_reader = PdfReader(BytesIO(overlay_pdf))
                page.merge_page(overlay_reader.pages[0])
            writer.add_page(page)

        out = BytesIO()
        try:
            writer.write(out)
        except PyPdfError as exc:
            raise RenderError("rendered PDF cannot be written") from exc
        return out.getvalue()

    # ------------------------------------------------------------------ #
    @staticmethod
    def _content_for(f: Field, images: Mapping[str, bytes], *, strict: bool) -> object | None:
        if f.type.is_image:
            img = images.get(f.recipient_id or "")
            if img:
                return img
        elif has_value(f, f.value):
            return f.value
        if f.required and strict:
            raise RenderError(f"required field '{f.label or f.type.value}' has no value",
                              details={"field_id": f.id})
        return None

    def _make_overlay(self, page: PageBox, items: List[Tuple[Field, object]],
                      strip_doc: Optional[SignatureDocument]) -> bytes:
        """
        Overlay page the size of the target page; coordinates are the target
        page's user space so non-zero media box origins line up.
        """
        buf = BytesIO()
        c = canvas.Canvas(buf, pagesize=(page.right, page.top), invariant=1)

        for f, content in items:
            rect = field_rect(f.x, f.y, f.width, f.height, page)
            if rect is None:
                logger.debug("Field %s lies outside the page; skipped", f.id)
                continue
            if f.type.is_image:
                self._draw_image(c, content, rect)
            elif f.type == FieldType.CHECKBOX:
                if is_checked(content):
                    self._draw_check(c, rect)
            else:
                self._draw_text(c, str(content), rect)

        if strip_doc is not None:
            self._draw_certificate_strip(c, page, strip_doc)

        c.save()
        return buf.getvalue()

    # ---- primitives ---------------------------------------------------------

    @staticmethod
    def _draw_image(c: canvas.Canvas, data: bytes, rect: PdfRect) -> None:
        """Scale to fit (never stretch), centred in the box."""
        try:
            sig = Image.open(BytesIO(data)).convert("RGBA")
        except (UnidentifiedImageError, OSError) as exc:
            raise RenderError("signature image cannot be decoded") from exc
        if sig.width <= 0 or sig.height <= 0:
            return
        scale = min(rect.width / sig.width, rect.height / sig.height)
        w, h = sig.width * scale, sig.height * scale
        x = rect.x + (rect.width - w) / 2.0
        y = rect.y + (rect.height - h) / 2.0
        c.drawImage(ImageReader(sig), x, y, width=w, height=h, mask="auto")

    def fit_text(self, text: str, rect: PdfRect) -> Tuple[str, float]:
        """Font size min(h * ratio, cap), shrunk then truncated to the box width."""
        font = self._cfg.font_name
        size = min(rect.height * self._cfg.font_height_ratio, self._cfg.max_font_size)
        avail = rect.width - 2 * self._cfg.text_inset
        if avail <= 0 or size <= 0:
            return "", 0.0
        while size > MIN_FONT_SIZE and stringWidth(text, font, size) > avail:
            size = max(MIN_FONT_SIZE, size - 0.5)
        if stringWidth(text, font, size) <= avail:
            return text, size
        while text and stringWidth(text + ELLIPSIS, font, size) > avail:
            text = text[:-1]
        return (text + ELLIPSIS) if text else "", size

    def _draw_text(self, c: canvas.Canvas, text: str, rect: PdfRect) -> None:
        line = " ".join(text.split())
        fitted, size = self.fit_text(line, rect)
        if not fitted:
            return
        c.setFillColorRGB(0, 0, 0)
        c.setFont(self._cfg.font_name, size)
        c.drawString(rect.x + self._cfg.text_inset, rect.y + rect.height / 2.0 - size / 3.0, fitted)

    @staticmethod
    def _draw_check(c: canvas.Canvas, rect: PdfRect) -> None:
        size = min(rect.width, rect.height) * 0.8
        c.setFillColorRGB(0, 0, 0)
        c.setFont("ZapfDingbats", size)
        w = stringWidth(CHECK_MARK, "ZapfDingbats", size)
        c.drawString(rect.x + (rect.width - w) / 2.0, rect.y + (rect.height - size * 0.7) / 2.0, CHECK_MARK)

    def strip_lines(self, doc: SignatureDocument) -> List[str]:
        lines = [
            "Certificate of Completion",
            f"Document: {doc.title}",
            f"Completed: {format_display(doc.completed_at, self._tz)}",
            "Signers:",
        ]
        for r in doc.ordered_recipients:
            if r.status != RecipientStatus.SIGNED:
                continue
            lines.append(f"{r.name} ({r.email}) - Signed {format_display(r.signed_at, self._tz)}"
                         f" from {r.ip_address or 'unknown'}")
        return lines

    def _draw_certificate_strip(self, c: canvas.Canvas, page: PageBox, doc: SignatureDocument) -> None:
        st = self._strip
        lines = self.strip_lines(doc)
        signers = len(lines) - 4
        x = page.left + st.margin
        y = page.bottom + st.margin
        w = page.width - 2 * st.margin
        h = min(st.base_height + signers * st.line_height, page.height - 2 * st.margin)
        if w <= 0 or h <= 0:
            logger.warning("Page too small for certificate strip on document %s", doc.id)
            return

        c.setFillColorRGB(*st.fill_rgb)
        c.setStrokeColorRGB(*st.stroke_rgb)
        c.rect(x, y, w, h, fill=1, stroke=1)

        baseline = y + h - 16
        c.setFillColorRGB(0, 0, 0)
        for i, text in enumerate(lines):
            if baseline < y + 4:
                break
            bold = i in (0, 3)
            font = self._cfg.bold_font_name if bold else self._cfg.font_name
            size = st.title_size if i == 0 else st.body_size
            fitted, _ = self._fit_fixed(text, font, size, w - 20)
            c.setFont(font, size)
            c.drawString(x + 10, baseline, fitted)
            baseline -= st.line_height

    @staticmethod
    def _fit_fixed(text: str, font: str, size: float, avail: float) -> Tuple[str, float]:
        if stringWidth(text, font, size) <= avail:
            return text, size
        while text and stringWidth(text + ELLIPSIS, font, size) > avail:
            text = text[:-1]
        return text + ELLIPSIS, size
