# signature/logic/encryption.py
"""
AES-256-GCM keyring.

- first key is the current key (used for ENCRYPT),
- remaining keys are legacy keys (used only for DECRYPT).

Sealed payloads are JSON with base64 fields so they can be stored in text
columns: ``{"ciphertext", "iv", "auth_tag", "version", "key_id"}``.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
from dataclasses import asdict, dataclass
from typing import List, Optional, Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from signing.exceptions.errors import EncryptionError

ALGORITHM = "AES-256-GCM"
PAYLOAD_VERSION = 1
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def _b64e(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64d(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def key_id_for(key: bytes) -> str:
    """Short public fingerprint of a key; never the key itself."""
    return hashlib.sha256(b"signflow-key-id:" + key).hexdigest()[:16]


@dataclass(frozen=True)
class SealedPayload:
    ciphertext: str
    iv: str
    auth_tag: str
    version: int
    key_id: str

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> "SealedPayload":
        try:
            data = json.loads(text)
            return cls(
                ciphertext=str(data["ciphertext"]),
                iv=str(data["iv"]),
                auth_tag=str(data["auth_tag"]),
                version=int(data["version"]),
                key_id=str(data["key_id"]),
            )
        except (TypeError, ValueError, KeyError) as exc:
            raise EncryptionError("malformed encrypted payload") from exc


class Keyring:
    """Authenticated encryption with key rotation support."""

    def __init__(self, current: bytes, legacy: Sequence[bytes] = ()) -> None:
        keys = [current, *legacy]
        for k in keys:
            if not isinstance(k, (bytes, bytearray)) or len(k) != KEY_SIZE:
                raise EncryptionError("encryption keys must be 32 bytes")
        self._keys: List[bytes] = [bytes(k) for k in keys]

    @property
    def current_key_id(self) -> str:
        return key_id_for(self._keys[0])

    def encrypt_bytes(self, data: bytes, *, associated_data: Optional[bytes] = None) -> SealedPayload:
        """
        Encrypt 'data' using the CURRENT key with a fresh random nonce.
        """
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(self._keys[0]).encrypt(nonce, data, associated_data)
        return SealedPayload(
            ciphertext=_b64e(sealed[:-TAG_SIZE]),
            iv=_b64e(nonce),
            auth_tag=_b64e(sealed[-TAG_SIZE:]),
            version=PAYLOAD_VERSION,
            key_id=key_id_for(self._keys[0]),
        )

    def decrypt_bytes(self, payload: SealedPayload, *, associated_data: Optional[bytes] = None) -> bytes:
        """
        Decrypt with the key named by ``key_id`` first, then every other key.
        Raises EncryptionError if no key authenticates the payload.
        """
        if payload.version != PAYLOAD_VERSION:
            raise EncryptionError(f"unsupported payload version {payload.version}")
        try:
            nonce = _b64d(payload.iv)
            blob = _b64d(payload.ciphertext) + _b64d(payload.auth_tag)
        except (binascii.Error, ValueError) as exc:
            raise EncryptionError("malformed encrypted payload") from exc
        if len(nonce) != NONCE_SIZE:
            raise EncryptionError("malformed encrypted payload")

        ordered = sorted(self._keys, key=lambda k: key_id_for(k) != payload.key_id)
        last_exc: Exception | None = None
        for key in ordered:
            try:
                return AESGCM(key).decrypt(nonce, blob, associated_data)
            except InvalidTag as exc:
                last_exc = exc
                continue
        raise EncryptionError("unable to decrypt payload: authentication failed") from last_exc
