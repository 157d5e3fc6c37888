"""Input DTOs for document creation.

Fields reference their recipient by position in the recipient list
(``recipient_index``); ids are assigned by the workflow service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from signing.models.enums import FieldType, RecipientRole


@dataclass(frozen=True)
class RecipientDraft:
    name: str
    email: str
    role: RecipientRole = RecipientRole.SIGNER
    signing_order: int = 1
    required: bool = True
    access_code: Optional[str] = None


@dataclass(frozen=True)
class FieldDraft:
    type: FieldType
    page_number: int
    x: float
    y: float
    width: float
    height: float
    recipient_index: Optional[int] = None
    label: Optional[str] = None
    placeholder: Optional[str] = None
    required: bool = False
    value: Optional[str] = None
