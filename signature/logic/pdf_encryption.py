# signature/logic/pdf_encryption.py
"""
Document-level PDF protection: open password + restricted permissions.
"""
from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from io import BytesIO

from pypdf import PdfReader, PdfWriter
from pypdf.constants import UserAccessPermissions
from pypdf.errors import PyPdfError

from signing.exceptions.errors import EncryptionError

PDF_ALGORITHM = "AES-256"
AUDIT_ALGORITHM = "PDF-AES-256"

_PASSWORD_ALPHABET = string.ascii_letters + string.digits


@dataclass(frozen=True)
class PdfPermissions:
    """What a reader may do once the document is open. Defaults: print only."""
    printing: bool = True
    modifying: bool = False
    copying: bool = False
    annotating: bool = False
    filling_forms: bool = False
    content_accessibility: bool = True
    document_assembly: bool = False

    def to_flag(self) -> int:
        # same starting point as pypdf's default: every permission bit set
        flag = (2 ** 31 - 1) - 3
        denied = {
            UserAccessPermissions.PRINT: not self.printing,
            UserAccessPermissions.PRINT_TO_REPRESENTATION: not self.printing,
            UserAccessPermissions.MODIFY: not self.modifying,
            UserAccessPermissions.EXTRACT: not self.copying,
            UserAccessPermissions.ADD_OR_MODIFY: not self.annotating,
            UserAccessPermissions.FILL_FORM_FIELDS: not self.filling_forms,
            UserAccessPermissions.EXTRACT_TEXT_AND_GRAPHICS: not self.content_accessibility,
            UserAccessPermissions.ASSEMBLE_DOC: not self.document_assembly,
        }
        for bit, deny in denied.items():
            if deny:
                flag &= ~int(bit)
        return flag


def generate_password(length: int = 24) -> str:
    if length < 8:
        raise ValueError("password length must be >= 8")
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def protect_pdf(data: bytes, *, user_password: str, owner_password: str,
                permissions: PdfPermissions | None = None) -> bytes:
    """
    Re-write ``data`` encrypted with AES-256. An empty user password opens
    without prompting but still enforces the permission set.
    """
    perms = permissions or PdfPermissions()
    try:
        reader = PdfReader(BytesIO(data))
        writer = PdfWriter()
        for page in reader.pages:
            writer.add_page(page)
        if reader.metadata:
            writer.add_metadata(dict(reader.metadata))
        writer.encrypt(
            user_password=user_password,
            owner_password=owner_password,
            permissions_flag=perms.to_flag(),
            algorithm=PDF_ALGORITHM,
        )
        out = BytesIO()
        writer.write(out)
        return out.getvalue()
    except (PyPdfError, ValueError) as exc:
        raise EncryptionError("PDF protection failed") from exc
