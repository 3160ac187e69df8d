"""
Content Store
=============

Durable storage for uploaded originals, addressed by SHA-256.

Layout:
    <upload_dir>/<64 lowercase hex chars>

Design Rules:
    - Objects are immutable once written
    - Identical bytes map to one file (write-if-absent)
    - No in-memory shared state; the filesystem arbitrates concurrent puts
    - Missing objects raise NotFound, I/O failures raise StorageUnavailable
"""

import asyncio
import hashlib
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Union

from canvas.errors import NotFound, StorageUnavailable


logger = logging.getLogger(__name__)

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


class ContentStore:
    """
    Content-addressed file store for original images.

    Writes land in a temporary file first and are hard-linked into place,
    so a reader never observes a partially written object and a second
    writer of the same bytes fails harmlessly with FileExistsError.

    Example:
        store = ContentStore("uploads")
        digest = await store.put(data)
        original = await store.get(digest)
    """

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def ensure_root(self) -> None:
        """Create the storage directory if it does not exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create storage root {self.root}: {e}")

    @staticmethod
    def hash_bytes(data: bytes) -> str:
        """Lowercase hex SHA-256 of `data`."""
        return hashlib.sha256(data).hexdigest()

    @staticmethod
    def is_valid_hash(digest: str) -> bool:
        return bool(_HASH_RE.match(digest))

    def path_for(self, digest: str) -> Path:
        """Location of the object for `digest` (which must be well-formed)."""
        return self.root / digest

    # -------------------------------------------------------------------------
    # Async API
    # -------------------------------------------------------------------------

    async def put(self, data: bytes) -> str:
        """
        Store bytes if not already present.

        Args:
            data: Raw original image bytes

        Returns:
            Content hash of `data`

        Raises:
            StorageUnavailable: If the object cannot be written
        """
        return await asyncio.to_thread(self._put_sync, data)

    async def get(self, digest: str) -> bytes:
        """
        Read an original.

        Raises:
            NotFound: If the hash is malformed or was never stored
            StorageUnavailable: If the file exists but cannot be read
        """
        return await asyncio.to_thread(self._get_sync, digest)

    async def exists(self, digest: str) -> bool:
        if not self.is_valid_hash(digest):
            return False
        return await asyncio.to_thread(self.path_for(digest).is_file)

    # -------------------------------------------------------------------------
    # Blocking implementations
    # -------------------------------------------------------------------------

    def _put_sync(self, data: bytes) -> str:
        digest = self.hash_bytes(data)
        target = self.path_for(digest)

        if target.exists():
            logger.debug(f"Original {digest} already stored")
            return digest

        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.root, prefix=".incoming-")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.link(tmp_path, target)
            logger.info(f"Stored original {digest} ({len(data)} bytes)")
        except FileExistsError:
            # Concurrent upload of the same bytes won the race
            logger.debug(f"Original {digest} written concurrently")
        except OSError as e:
            raise StorageUnavailable(f"Failed to store original {digest}: {e}")
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass

        return digest

    def _get_sync(self, digest: str) -> bytes:
        if not self.is_valid_hash(digest):
            raise NotFound(f"Image {digest} was not found")

        try:
            return self.path_for(digest).read_bytes()
        except FileNotFoundError:
            raise NotFound(f"Image {digest} was not found")
        except OSError as e:
            raise StorageUnavailable(f"Failed to read original {digest}: {e}")
