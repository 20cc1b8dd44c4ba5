# =============================================================================
# artfolio/storage.py - Local Object Store
# =============================================================================
# Image files live under a single root directory and are addressed by keys
# relative to it ("3f2a..._thumb_1718000000000.jpg"). Keys are opaque to the
# rest of the app; only this module turns them into filesystem paths.
# =============================================================================

import asyncio
import logging
from pathlib import Path

from .errors import StorageError

logger = logging.getLogger(__name__)


class LocalObjectStore:
    """
    Filesystem-backed object store.

    Blocking file calls run in worker threads so callers can await several
    writes at once.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def resolve(self, key: str) -> Path | None:
        """
        Map a key to a path inside the root.

        Returns None for anything that is not a plain relative key under the
        root (URLs, absolute paths, "../" escapes).
        """
        if not key or "://" in key or key.startswith(("/", "\\")):
            return None
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root) or path == self.root:
            return None
        return path

    def _path_or_raise(self, key: str) -> Path:
        path = self.resolve(key)
        if path is None:
            raise StorageError(f"Invalid storage key: {key!r}", details={"key": key})
        return path

    async def write(self, key: str, data: bytes) -> str:
        path = self._path_or_raise(key)

        def _write():
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error(f"Storage write failed for {key}: {e}")
            raise StorageError(f"Failed to write file to storage: {e}", details={"key": key}) from e
        return key

    async def read(self, key: str) -> bytes:
        path = self._path_or_raise(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise StorageError(f"Failed to read file from storage: {e}", details={"key": key}) from e

    async def delete(self, key: str) -> bool:
        """Remove one file. Returns False when there was nothing to remove."""
        path = self._path_or_raise(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete file from storage: {e}", details={"key": key}) from e
        return True

    def exists(self, key: str) -> bool:
        path = self.resolve(key)
        return path is not None and path.is_file()
