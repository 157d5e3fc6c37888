"""Certificate of Completion PDF.

Letter page, 50pt margins. Sections: header, document information,
signers with evidence, audit trail excerpt, compliance statement; the
certificate hash is printed in every page footer.
"""

from __future__ import annotations

from io import BytesIO
from typing import List, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from certificate.models.certificate import CertificateRecord, SignerEvidence
from core.helpers.date_time_helper import format_display
from signing.models.audit_entry import AuditLogEntry

MARGIN = 50
MAX_AUDIT_ROWS = 40

_COMPLIANCE_TEXT = (
    "This certificate records the electronic signature process for the document named above. "
    "Each signer's identity evidence (email address, IP address, user agent) and the time of "
    "signing were captured when the signature was applied. The document hash identifies the "
    "exact signed file: any later change to that file produces a different hash and fails verification."
)


def _p(text: object, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape(str(text if text is not None else "-")), style)


class CertificatePdfBuilder:
    """Builds the standalone certificate document."""

    def __init__(self, *, organization_name: str = "", tz_name: str = "UTC") -> None:
        self._org = organization_name
        self._tz = tz_name
        styles = getSampleStyleSheet()
        self._title = styles["Title"]
        self._h2 = styles["Heading2"]
        self._body = styles["BodyText"]
        self._small = ParagraphStyle("small", parent=styles["BodyText"], fontSize=8, leading=10)
        self._head = ParagraphStyle("head", parent=self._small, fontName="Helvetica-Bold", textColor=colors.white)

    def build(
        self,
        *,
        record: CertificateRecord,
        document_title: str,
        completed_at,
        signers: Sequence[SignerEvidence],
        audit_events: Sequence[AuditLogEntry],
    ) -> bytes:
        buf = BytesIO()
        doc = SimpleDocTemplate(
            buf,
            pagesize=letter,
            leftMargin=MARGIN,
            rightMargin=MARGIN,
            topMargin=MARGIN,
            bottomMargin=MARGIN + 10,
            title=f"Certificate of Completion {record.certificate_id}",
            author=self._org or "signflow",
        )
        elements: List = [Paragraph("Certificate of Completion", self._title)]
        if self._org:
            elements.append(_p(self._org, self._body))
        elements.append(Spacer(1, 12))

        # --- Document
        elements.append(Paragraph("Document", self._h2))
        info = [
            ["Title", document_title],
            ["Certificate ID", record.certificate_id],
            ["Completed", format_display(completed_at, self._tz)],
            ["Generated", format_display(record.generated_at, self._tz)],
            ["Document hash", record.document_hash],
            ["Certificate version", record.version],
        ]
        elements.append(self._table([[_p(k, self._body), _p(v, self._small)] for k, v in info],
                                    col_widths=[120, None], header=False))
        elements.append(Spacer(1, 12))

        # --- Signers
        elements.append(Paragraph("Signers", self._h2))
        rows = [[_p(h, self._head) for h in ("Name / Email", "Role", "Signed", "IP / User agent", "Evidence")]]
        for s in signers:
            rows.append([
                Paragraph(f"{escape(s.name)}<br/>{escape(s.email)}", self._small),
                _p(f"{s.role} (#{s.signing_order})", self._small),
                _p(format_display(s.signed_at, self._tz), self._small),
                _p(f"{s.ip_address or 'unknown'} / {s.user_agent or '-'}", self._small),
                _p(f"hash {s.signature_hash or '-'} token {s.verification_token or '-'}", self._small),
            ])
        elements.append(self._table(rows, col_widths=[110, 60, 80, 110, None]))
        elements.append(Spacer(1, 12))

        # --- Audit trail excerpt
        elements.append(Paragraph("Audit trail", self._h2))
        rows = [[_p(h, self._head) for h in ("Time", "Event", "Recipient", "IP")]]
        for e in list(audit_events)[:MAX_AUDIT_ROWS]:
            rows.append([
                _p(format_display(e.created_at, self._tz), self._small),
                _p(e.event.value, self._small),
                _p(e.recipient_email or "-", self._small),
                _p(e.ip_address or "-", self._small),
            ])
        if len(audit_events) > MAX_AUDIT_ROWS:
            rows.append([_p(f"... {len(audit_events) - MAX_AUDIT_ROWS} more events", self._small), "", "", ""])
        elements.append(self._table(rows, col_widths=[110, 130, 160, None]))
        elements.append(Spacer(1, 12))

        # --- Compliance
        elements.append(Paragraph("Compliance", self._h2))
        elements.append(_p(_COMPLIANCE_TEXT, self._body))

        footer = f"Certificate {record.certificate_id} | SHA-256 {record.certificate_hash}"

        def _on_page(c, d) -> None:
            c.saveState()
            c.setFont("Helvetica", 7)
            c.setFillColor(colors.grey)
            c.drawString(MARGIN, MARGIN / 2, footer)
            c.drawRightString(letter[0] - MARGIN, MARGIN / 2, f"Page {d.page}")
            c.restoreState()

        doc.build(elements, onFirstPage=_on_page, onLaterPages=_on_page)
        return buf.getvalue()

    @staticmethod
    def _table(rows, *, col_widths, header: bool = True) -> Table:
        usable = letter[0] - 2 * MARGIN
        fixed = sum(w for w in col_widths if w)
        free = [w for w in col_widths if not w]
        widths = [w or (usable - fixed) / max(1, len(free)) for w in col_widths]
        table = Table(rows, colWidths=widths, repeatRows=1 if header else 0)
        style = [
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
            ("BACKGROUND", (0, 1 if header else 0), (-1, -1), colors.whitesmoke),
        ]
        if header:
            style.append(("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#2F5597")))
        table.setStyle(TableStyle(style))
        return table
