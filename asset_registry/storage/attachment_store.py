"""Attachment stores holding document bytes outside the tree.

Nodes only reference attachments by an opaque key (``AssetDocument.blob_key``).
The registry never inspects attachment contents.
"""

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

logger = logging.getLogger(__name__)


class AttachmentStore(ABC):
    """Key/value store for attachment bytes."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Store ``data`` under ``key``, replacing any previous value."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the bytes stored under ``key``, or None if absent."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; removing an absent key is not an error."""


class InMemoryAttachmentStore(AttachmentStore):
    """Thread-safe in-memory store, used by the MCP server and tests."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = threading.RLock()

    def put(self, key: str, data: bytes) -> None:
        with self._lock:
            self._blobs[key] = bytes(data)

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._blobs.get(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self._blobs.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._blobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._blobs)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._blobs.keys()))


class DirectoryAttachmentStore(AttachmentStore):
    """One file per attachment under a directory.

    File names are the SHA-256 of the key, so arbitrary keys (``doc:<uuid>``)
    map to safe, fixed-length names.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / f"{digest}.bin"

    def put(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "wb") as f:
            f.write(data)
        tmp_path.replace(path)
        logger.debug(f"Stored attachment '{key}' ({len(data)} bytes)")

    def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        if not path.exists():
            return None
        with open(path, "rb") as f:
            return f.read()

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        if path.exists():
            path.unlink()
            logger.debug(f"Deleted attachment '{key}'")
