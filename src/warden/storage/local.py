"""Filesystem-backed object storage for development and single-host deploys.

Learn: Writes go to a temp file in the same directory and are moved into
place with os.replace(), which is atomic on POSIX. A reader never sees a
half-written avatar, and a retried put() simply replaces the file.
Blocking file I/O runs in a worker thread via asyncio.to_thread.

Keys carry no extension, so the content type given to put() is kept in
a small sidecar under <root>/.meta/<key>, the way S3 keeps it as object
metadata. MediaFiles serves objects with that type and never serves the
sidecars themselves.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Optional

import structlog
from fastapi.staticfiles import StaticFiles

from warden.storage.base import ObjectStorage, StorageError, StoredObject

logger = structlog.get_logger()

META_DIR = ".meta"


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".upload-")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class LocalStorage(ObjectStorage):
    name = "local"

    def __init__(self, root: str):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Key escapes storage root: {key!r}")
        return path

    def _meta_path(self, key: str) -> Path:
        return self._path(f"{META_DIR}/{key}")

    def _write(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        meta = self._meta_path(key)
        _atomic_write(path, data)
        _atomic_write(meta, content_type.encode("utf-8"))

    def _delete(self, key: str) -> bool:
        path = self._path(key)
        meta = self._meta_path(key)
        if meta.exists():
            meta.unlink()
        if path.exists():
            path.unlink()
            return True
        return False

    def read_content_type(self, key: str) -> Optional[str]:
        """Content type recorded by put(), or None for unknown keys."""
        try:
            return self._meta_path(key).read_text(encoding="utf-8").strip() or None
        except (OSError, StorageError):
            return None

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        try:
            await asyncio.to_thread(self._write, key, data, content_type)
        except OSError as e:
            raise StorageError(f"Local write failed for {key}: {e}") from e
        logger.debug("storage.put", backend=self.name, key=key, size=len(data))
        return StoredObject(key=key, size=len(data), content_type=content_type)

    async def delete(self, key: str) -> bool:
        try:
            return await asyncio.to_thread(self._delete, key)
        except OSError as e:
            raise StorageError(f"Local delete failed for {key}: {e}") from e

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._path(key).exists)


class MediaFiles(StaticFiles):
    """Static mount over a LocalStorage root that answers with stored content types."""

    def __init__(self, storage: LocalStorage):
        super().__init__(directory=storage.root, check_dir=False)
        self.storage = storage

    def lookup_path(self, path: str):
        if Path(path).parts[:1] == (META_DIR,):
            return "", None
        return super().lookup_path(path)

    def file_response(self, full_path, stat_result, scope, status_code: int = 200):
        response = super().file_response(full_path, stat_result, scope, status_code)
        if response.status_code == 304:
            return response
        root = self.storage.root.resolve()
        key = Path(full_path).resolve().relative_to(root).as_posix()
        content_type = self.storage.read_content_type(key)
        if content_type:
            response.headers["content-type"] = content_type
        return response
