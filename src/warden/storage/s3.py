"""S3-compatible object storage (AWS S3, MinIO, R2).

Learn: boto3 is synchronous, so every call is pushed to a worker thread
with asyncio.to_thread. botocore's own retry layer is kept small
(standard mode, 2 attempts) because the avatar coordinator already
retries put() with backoff and a hard deadline; stacking two generous
retry loops would blow through that deadline.
"""

import asyncio

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from warden.storage.base import ObjectStorage, StorageError, StoredObject

logger = structlog.get_logger()


class S3Storage(ObjectStorage):
    name = "s3"

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        region: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ):
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=region or None,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            config=Config(
                retries={"max_attempts": 2, "mode": "standard"},
                connect_timeout=5,
                read_timeout=10,
            ),
        )

    async def put(self, key: str, data: bytes, content_type: str) -> StoredObject:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 put failed for {key}: {e}") from e
        logger.debug("storage.put", backend=self.name, key=key, size=len(data))
        return StoredObject(key=key, size=len(data), content_type=content_type)

    async def delete(self, key: str) -> bool:
        try:
            await asyncio.to_thread(
                self.client.delete_object, Bucket=self.bucket, Key=key
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 delete failed for {key}: {e}") from e
        # S3 deletes are idempotent and don't report whether the key existed.
        return True

    async def exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(
                self.client.head_object, Bucket=self.bucket, Key=key
            )
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"S3 head failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 head failed for {key}: {e}") from e
        return True
