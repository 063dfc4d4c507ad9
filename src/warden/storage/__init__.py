"""Object storage backends and the FastAPI dependency that picks one.

Learn: The backend is chosen once from WARDEN_STORAGE_BACKEND and cached
for the process. Tests swap it out with
app.dependency_overrides[get_storage].
"""

from functools import lru_cache

from warden.config import settings
from warden.storage.base import ObjectStorage, StorageError, StoredObject, public_url


def build_storage() -> ObjectStorage:
    if settings.storage_backend == "s3":
        from warden.storage.s3 import S3Storage

        return S3Storage(
            settings.s3_bucket,
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
        )

    from warden.storage.local import LocalStorage

    return LocalStorage(settings.storage_local_dir)


@lru_cache(maxsize=1)
def get_storage() -> ObjectStorage:
    """FastAPI dependency — the process-wide storage backend."""
    return build_storage()


__all__ = [
    "ObjectStorage",
    "StorageError",
    "StoredObject",
    "build_storage",
    "get_storage",
    "public_url",
]
