"""Filesystem implementation of IFileStorage.

Stores blobs below a root directory; the ``StorageRef.key`` is the
relative path. Final artifacts are written once (write-if-absent).
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from core.contracts.storage import IFileStorage
from signing.exceptions.errors import StorageError
from signing.models.document import StorageRef
from signing.models.enums import StorageType

logger = logging.getLogger(__name__)


class FilesystemStorageAdapter(IFileStorage):
    """Local filesystem implementation of IFileStorage."""

    def __init__(self, root_path: str | Path):
        """
        Initialize filesystem storage.

        Args:
            root_path: Root directory for stored files
        """
        self._root = Path(root_path)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def _path(self, ref: StorageRef) -> Path:
        if ref.storage_type != StorageType.LOCAL:
            raise StorageError(f"unsupported storage type {ref.storage_type.value}")
        path = (self._root / ref.key).resolve()
        if self._root.resolve() not in path.parents:
            raise StorageError(f"storage key escapes root: {ref.key}")
        return path

    def fetch_file_bytes(self, ref: StorageRef) -> bytes:
        """Read file bytes; missing or unreadable files raise StorageError."""
        path = self._path(ref)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError(f"file not found: {ref}") from exc
        except OSError as exc:
            raise StorageError(f"cannot read {ref}") from exc

    def put_file_bytes(self, ref: StorageRef, data: bytes, *, overwrite: bool = False) -> bool:
        """Atomic write via temp file + rename. Returns False if kept existing file."""
        path = self._path(ref)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            if overwrite:
                os.replace(tmp, path)
                return True
            try:
                # hard link fails if the target exists: first writer wins
                os.link(tmp, path)
                return True
            except FileExistsError:
                logger.debug("Keeping existing file %s", ref)
                return False
            finally:
                os.unlink(tmp)
        except OSError as exc:
            raise StorageError(f"cannot write {ref}") from exc

    def exists(self, ref: StorageRef) -> bool:
        return self._path(ref).is_file()
