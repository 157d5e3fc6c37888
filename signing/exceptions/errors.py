"""Signing feature exceptions.

Every error carries a human-readable ``reason`` (shown to the signer or
the API caller) and a stable ``code`` for translation at the web layer.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class SigningError(Exception):
    """Base exception for the signing core."""

    code = "signing_error"
    retryable = False

    def __init__(self, reason: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.details = dict(details or {})

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "reason": self.reason, "retryable": self.retryable, **self.details}


class InvalidStateError(SigningError):
    """Operation attempted from a state that forbids it."""

    code = "invalid_state"


class OrderViolationError(SigningError):
    """Signer attempted to sign before an earlier signer. Retry later."""

    code = "order_violation"
    retryable = True


class ValidationError(SigningError):
    """Malformed input: missing required field, bad image, bad coordinates."""

    code = "validation_error"


class DocumentNotFoundError(ValidationError):
    code = "not_found"


class RecipientNotFoundError(ValidationError):
    code = "not_found"


class IntegrityError(SigningError):
    """A recomputed hash or checksum does not match the recorded one."""

    code = "integrity_error"


class EncryptionError(SigningError):
    """Key or cipher failure. Never degraded to plaintext."""

    code = "encryption_error"


class StorageError(SigningError):
    """Persistence or file-fetch failure."""

    code = "storage_error"


class RenderError(SigningError):
    code = "render_error"


class RenderTimeoutError(RenderError):
    code = "render_timeout"
    retryable = True
