"""
S3 Storage Service

Stores registration images in an S3 bucket under unique keys and derives
their public URLs. Blocking boto3 calls run in the thread pool.
"""
import uuid
import logging
from dataclasses import dataclass

from fastapi.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredImage:
    key: str
    url: str
    bucket: str


class S3Storage:
    """
    Thin wrapper around an S3 client bound to one bucket.

    Every upload creates a new object; identical bytes are not deduplicated.
    """

    def __init__(self, client, bucket: str, region: str, key_prefix: str = "faces/"):
        self._client = client
        self.bucket = bucket
        self.region = region
        prefix = (key_prefix or "").strip().rstrip("/")
        self.key_prefix = f"{prefix}/" if prefix else ""

    def url_for(self, key: str) -> str:
        """Public URL of an object. No network call."""
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def new_key(self, file_name: str) -> str:
        return f"{self.key_prefix}{uuid.uuid4()}-{file_name}"

    async def upload(self, image_bytes: bytes, file_name: str, content_type: str = "image/jpeg") -> StoredImage:
        key = self.new_key(file_name)
        await run_in_threadpool(
            self._client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=image_bytes,
            ContentType=content_type,
        )
        logger.info(f"Uploaded {len(image_bytes)} bytes to s3://{self.bucket}/{key}")
        return StoredImage(key=key, url=self.url_for(key), bucket=self.bucket)

    async def delete(self, key: str) -> None:
        """Delete an object. Missing keys are not an error on S3."""
        await run_in_threadpool(self._client.delete_object, Bucket=self.bucket, Key=key)
        logger.info(f"Deleted s3://{self.bucket}/{key}")

    async def download(self, key: str) -> bytes:
        response = await run_in_threadpool(self._client.get_object, Bucket=self.bucket, Key=key)
        body = response["Body"]
        try:
            return await run_in_threadpool(body.read)
        finally:
            body.close()
