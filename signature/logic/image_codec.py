# signature/logic/image_codec.py
"""
Signature image transport decoding.

Accepts raw bytes, a base64 string or a ``data:image/...;base64,`` URL.
Whatever arrives must decode to an image Pillow can open.
"""
from __future__ import annotations

import base64
import binascii
from io import BytesIO
from typing import Tuple, Union

from PIL import Image, UnidentifiedImageError

from signing.exceptions.errors import ValidationError

MAX_IMAGE_BYTES = 5 * 1024 * 1024


def decode_signature_image(value: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        text = value.strip()
        if text.startswith("data:"):
            header, sep, text = text.partition(",")
            if not sep or ";base64" not in header:
                raise ValidationError("signature image must be a base64 data URL")
        try:
            raw = base64.b64decode(text, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("malformed signature image encoding") from exc
    else:
        raise ValidationError("signature image must be bytes or a base64 string")

    if not raw:
        raise ValidationError("signature image is empty")
    if len(raw) > MAX_IMAGE_BYTES:
        raise ValidationError("signature image is too large")
    image_size(raw)
    return raw


def image_size(data: bytes) -> Tuple[int, int]:
    """(width, height); raises ValidationError for anything Pillow cannot read."""
    try:
        with Image.open(BytesIO(data)) as img:
            img.verify()
            size = img.size
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValidationError("signature image is not a readable image") from exc
    if size[0] <= 0 or size[1] <= 0:
        raise ValidationError("signature image has no pixels")
    return size
