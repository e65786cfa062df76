"""
Application context: the database and AWS gateways a request works with.

The context is built once at startup, attached to the FastAPI app and handed
to each request through `get_context`. Nothing here connects at import time.
"""
import logging
from dataclasses import dataclass

import boto3
from fastapi import Request

from faceauth.config import (
    AWS_REGION,
    AWS_ACCESS_KEY_ID,
    AWS_SECRET_ACCESS_KEY,
    S3_BUCKET,
    S3_KEY_PREFIX,
    REKOGNITION_COLLECTION_ID,
    DATABASE_URL,
    DB_POOL_SIZE,
    DB_MAX_OVERFLOW
)
from faceauth.database import Database
from faceauth.rekognition import RekognitionGateway
from faceauth.storage import S3Storage

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    database: Database
    faces: RekognitionGateway
    storage: S3Storage

    async def startup(self) -> None:
        await self.database.connect()

    async def shutdown(self) -> None:
        await self.database.close()


def build_context() -> AppContext:
    """Build the production context from configuration."""
    if not S3_BUCKET or not REKOGNITION_COLLECTION_ID:
        raise RuntimeError("Incomplete AWS configuration: AWS_S3_BUCKET and REKOGNITION_COLLECTION_ID are required")

    session = boto3.session.Session(
        aws_access_key_id=AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=AWS_SECRET_ACCESS_KEY or None,
        region_name=AWS_REGION,
    )
    logger.info(f"Using bucket {S3_BUCKET} and collection {REKOGNITION_COLLECTION_ID} in {AWS_REGION}")

    return AppContext(
        database=Database(DATABASE_URL, pool_size=DB_POOL_SIZE, max_overflow=DB_MAX_OVERFLOW),
        faces=RekognitionGateway(session.client("rekognition"), REKOGNITION_COLLECTION_ID, S3_BUCKET),
        storage=S3Storage(session.client("s3"), S3_BUCKET, AWS_REGION, S3_KEY_PREFIX),
    )


def get_context(request: Request) -> AppContext:
    """Dependency returning the context attached at startup."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise RuntimeError("Application context is not initialized")
    return context
