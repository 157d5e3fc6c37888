"""core/contracts/storage.py
========================

File storage contract. Backends (local disk, object stores) are resolved
by the storage type carried in a ``StorageRef``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from signing.models.document import StorageRef


class IFileStorage(ABC):
    """Byte-level access to stored documents and artifacts."""

    @abstractmethod
    def fetch_file_bytes(self, ref: "StorageRef") -> bytes:
        """Return the raw bytes behind ``ref``.

        Raises:
            StorageError: if the object is missing or unreadable.
        """

    @abstractmethod
    def put_file_bytes(self, ref: "StorageRef", data: bytes, *, overwrite: bool = False) -> bool:
        """Store ``data`` under ``ref``.

        Args:
            ref: Target reference.
            data: Payload.
            overwrite: When False an existing object is left untouched.

        Returns:
            True if bytes were written, False if the object already existed.
        """

    @abstractmethod
    def exists(self, ref: "StorageRef") -> bool:
        ...
