"""Object storage interface.

Learn: The avatar coordinator only ever needs three things from a blob
store: put bytes under a key, delete a key, and check a key exists.
put() must be idempotent: writing the same bytes to the same key twice
leaves one object. The coordinator retries it blindly.

Backends raise StorageError for anything transient or unexpected. The
coordinator retries on StorageError and nothing else.
"""

import abc
from dataclasses import dataclass
from typing import Optional


class StorageError(Exception):
    """The object store failed or is unreachable."""


@dataclass(frozen=True)
class StoredObject:
    key: str
    size: int
    content_type: str


class ObjectStorage(abc.ABC):
    """Key → bytes store used for avatars."""

    name: str = "abstract"

    @abc.abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        """Write `data` under `key`, replacing any previous object."""

    @abc.abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove `key`. Returns False if nothing was there."""

    @abc.abstractmethod
    async def exists(self, key: str) -> bool:
        ...


def public_url(key: Optional[str], version: Optional[str], base_url: str) -> Optional[str]:
    """URL a client fetches the avatar from. The version busts caches."""
    if not key:
        return None
    url = f"{base_url.rstrip('/')}/{key}"
    if version:
        url = f"{url}?v={version}"
    return url
