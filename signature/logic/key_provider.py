# signature/logic/key_provider.py
"""
Key providers.

Crypto code never reads ambient configuration: a provider is built once at
the composition root and injected into the encryption service.
"""
from __future__ import annotations

import hashlib
import hmac
import os
from abc import ABC, abstractmethod
from typing import Mapping, Optional, Sequence, Tuple

from signature.logic.encryption import KEY_SIZE, Keyring
from signing.exceptions.errors import EncryptionError


def derive_key(secret: str | bytes) -> bytes:
    """
    64 hex chars are taken as the raw key; anything else is hashed to 32 bytes.
    """
    if isinstance(secret, str):
        text = secret.strip()
        if len(text) == KEY_SIZE * 2:
            try:
                return bytes.fromhex(text)
            except ValueError:
                pass
        secret = text.encode("utf-8")
    if len(secret) == KEY_SIZE:
        return bytes(secret)
    return hashlib.sha256(secret).digest()


class KeyProvider(ABC):

    @abstractmethod
    def current_key(self) -> bytes:
        ...

    def legacy_keys(self) -> Sequence[bytes]:
        return ()

    def keyring(self) -> Keyring:
        return Keyring(self.current_key(), self.legacy_keys())

    def mac_key(self) -> bytes:
        """Separate key for verification tokens, derived from the current key."""
        return hmac.new(self.current_key(), b"signflow/verification-token", hashlib.sha256).digest()


class StaticKeyProvider(KeyProvider):
    """Keys handed over explicitly (tests, secrets managers)."""

    def __init__(self, current: str | bytes, legacy: Sequence[str | bytes] = ()) -> None:
        self._current = derive_key(current)
        self._legacy: Tuple[bytes, ...] = tuple(derive_key(k) for k in legacy)

    def current_key(self) -> bytes:
        return self._current

    def legacy_keys(self) -> Sequence[bytes]:
        return self._legacy


class EnvironmentKeyProvider(StaticKeyProvider):
    """
    Reads the master secret from ``env_var`` once, at construction.
    Legacy secrets: comma-separated in ``<env_var>_LEGACY``.
    """

    def __init__(self, env_var: str, *, environ: Optional[Mapping[str, str]] = None) -> None:
        env = os.environ if environ is None else environ
        secret = env.get(env_var)
        if not secret:
            raise EncryptionError(f"encryption key not configured (set {env_var})")
        legacy = [s for s in (env.get(f"{env_var}_LEGACY") or "").split(",") if s.strip()]
        super().__init__(secret, legacy)
