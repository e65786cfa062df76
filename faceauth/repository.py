"""
User Registry Repository

Database operations for the users table using SQLAlchemy async.
Provides CRUD operations and the lookups the face workflows join on.
"""
import uuid
from typing import Optional, List, Any
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from faceauth.models import UserDB, utcnow
from faceauth.schemas import UserSummary, UserDetail

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "name",
    "face_id",
    "s3_image_key",
    "s3_image_url",
    "rekognition_face_id",
    "bounding_box",
    "confidence",
}


class UserRepository:
    """
    Repository class for users table operations.

    All methods are async and require an AsyncSession. Every write commits.
    """

    @staticmethod
    async def create(
        session: AsyncSession,
        name: str,
        face_id: str,
        s3_image_key: str,
        s3_image_url: str,
        rekognition_face_id: str,
        bounding_box: Optional[dict] = None,
        confidence: Optional[float] = None,
        user_id: Optional[str] = None
    ) -> UserDB:
        """
        Create a new user record in the database.

        Args:
            session: Database session
            name: User name
            face_id: Correlation id the face was indexed under
            s3_image_key: Key of the stored registration image
            s3_image_url: Public URL of the stored image
            rekognition_face_id: FaceId assigned by Rekognition
            bounding_box: Face geometry reported by Rekognition
            confidence: Face confidence reported by Rekognition
            user_id: Explicit id, generated when omitted

        Returns:
            Created UserDB instance
        """
        now = utcnow()
        db_user = UserDB(
            id=user_id or str(uuid.uuid4()),
            name=name,
            face_id=face_id,
            s3_image_key=s3_image_key,
            s3_image_url=s3_image_url,
            rekognition_face_id=rekognition_face_id,
            bounding_box=bounding_box,
            confidence=confidence,
            created_at=now,
            updated_at=now
        )

        session.add(db_user)
        await session.commit()
        await session.refresh(db_user)

        logger.info(f"Created user {db_user.id} ('{name}')")
        return db_user

    @staticmethod
    async def get_by_id(session: AsyncSession, user_id: str) -> Optional[UserDB]:
        """Get a user by id."""
        result = await session.execute(select(UserDB).where(UserDB.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_face_id(session: AsyncSession, face_id: str) -> Optional[UserDB]:
        """Get a user by the correlation id its face was indexed under."""
        if not face_id:
            return None
        result = await session.execute(select(UserDB).where(UserDB.face_id == face_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_rekognition_face_id(session: AsyncSession, rekognition_face_id: str) -> Optional[UserDB]:
        """Get a user by its Rekognition FaceId."""
        result = await session.execute(
            select(UserDB).where(UserDB.rekognition_face_id == rekognition_face_id)
        )
        return result.scalars().first()

    @staticmethod
    async def get_by_name(session: AsyncSession, name: str) -> Optional[UserDB]:
        """Get the first user with the given name. Names are not unique."""
        result = await session.execute(
            select(UserDB)
            .where(UserDB.name == name)
            .order_by(UserDB.created_at.asc())
        )
        return result.scalars().first()

    @staticmethod
    async def get_all(
        session: AsyncSession,
        limit: int = 100,
        skip: int = 0,
        newest_first: bool = True
    ) -> List[UserDB]:
        """Get users with pagination."""
        order = UserDB.created_at.desc() if newest_first else UserDB.created_at.asc()
        query = select(UserDB).order_by(order, UserDB.id).offset(skip).limit(limit)

        result = await session.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def count(session: AsyncSession) -> int:
        """Get total count of users."""
        result = await session.execute(select(func.count(UserDB.id)))
        return result.scalar() or 0

    @staticmethod
    async def delete_by_id(session: AsyncSession, user_id: str) -> bool:
        """
        Permanently delete a user.

        Returns:
            True if deleted, False if not found
        """
        result = await session.execute(delete(UserDB).where(UserDB.id == user_id))
        await session.commit()

        if result.rowcount > 0:
            logger.info(f"Deleted user {user_id}")
            return True
        return False

    @staticmethod
    async def delete_by_rekognition_face_id(session: AsyncSession, rekognition_face_id: str) -> bool:
        """Delete the user owning a Rekognition FaceId."""
        result = await session.execute(
            delete(UserDB).where(UserDB.rekognition_face_id == rekognition_face_id)
        )
        await session.commit()

        if result.rowcount > 0:
            logger.info(f"Deleted user with Rekognition face {rekognition_face_id}")
            return True
        return False

    @staticmethod
    async def update(session: AsyncSession, user_id: str, **fields: Any) -> bool:
        """
        Update fields of a user. `updated_at` is always refreshed.

        Returns:
            True if a row was updated, False if not found
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        fields["updated_at"] = utcnow()
        result = await session.execute(
            update(UserDB)
            .where(UserDB.id == user_id)
            .values(**fields)
        )
        await session.commit()
        return result.rowcount > 0

    @staticmethod
    def to_summary(db_user: UserDB) -> UserSummary:
        """Convert database model to the listing schema."""
        return UserSummary(
            user_id=db_user.id,
            name=db_user.name,
            image_url=db_user.s3_image_url,
            created_at=db_user.created_at
        )

    @staticmethod
    def to_detail(db_user: UserDB) -> UserDetail:
        """Convert database model to the detail schema."""
        return UserDetail(
            user_id=db_user.id,
            name=db_user.name,
            image_url=db_user.s3_image_url,
            confidence=db_user.confidence,
            created_at=db_user.created_at,
            updated_at=db_user.updated_at
        )
