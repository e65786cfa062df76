"""
SQLAlchemy ORM Models for the user registry

Defines the users table:
CREATE TABLE users (
    id VARCHAR(36) PRIMARY KEY,
    name TEXT NOT NULL,
    face_id VARCHAR(36) UNIQUE,          -- correlation id sent to Rekognition
    s3_image_key TEXT NOT NULL,
    s3_image_url TEXT NOT NULL,
    rekognition_face_id VARCHAR(64),
    bounding_box JSON,
    confidence DOUBLE PRECISION,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Float, DateTime, Text, JSON, Index

from faceauth.database import Base


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class UserDB(Base):
    """
    SQLAlchemy model for the users table.

    `face_id` ties a row to the ExternalImageId of its indexed face; it is
    unique but nullable, so rows without one never collide.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(Text, nullable=False, index=True)
    face_id = Column(String(36), nullable=True, unique=True)
    s3_image_key = Column(Text, nullable=False)
    s3_image_url = Column(Text, nullable=False)
    rekognition_face_id = Column(String(64), nullable=True, index=True)
    bounding_box = Column(JSON, nullable=True)
    confidence = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<UserDB(id={self.id}, name='{self.name}', face_id={self.face_id})>"


# Newest-first listing
Index("ix_users_created_at_desc", UserDB.created_at.desc())
