# signature/models/field_placement.py
"""
Field placement geometry: percentage boxes (origin top-left) mapped to
PDF user-space rectangles (origin bottom-left).
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PageBox:
    """A page's media box in PDF points, origin bottom-left."""
    left: float
    bottom: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def top(self) -> float:
        return self.bottom + self.height


@dataclass(frozen=True)
class PdfRect:
    """
    Absolute rectangle on a PDF page (points; 1 pt = 1/72 inch), origin bottom-left.
    """
    x: float
    y: float
    width: float
    height: float


def field_rect(x_pct: float, y_pct: float, w_pct: float, h_pct: float,
               page: PageBox) -> Optional[PdfRect]:
    """
    Map a percentage box (origin top-left) to PDF points and clip it to the page.

    Returns None when nothing of the box lies on the page.
    """
    w = w_pct / 100.0 * page.width
    h = h_pct / 100.0 * page.height
    x = page.left + x_pct / 100.0 * page.width
    y = page.bottom + page.height - y_pct / 100.0 * page.height - h

    x0, x1 = max(x, page.left), min(x + w, page.right)
    y0, y1 = max(y, page.bottom), min(y + h, page.top)
    if x1 - x0 <= 0 or y1 - y0 <= 0:
        return None
    return PdfRect(x0, y0, x1 - x0, y1 - y0)
