"""
Face registration, authentication and verification workflows

Each workflow sequences calls to Rekognition, S3 and the user registry.
Expected rejections are raised as `APIError`s; provider and database
failures propagate to the HTTP boundary untouched.
"""
import re
import time
import uuid
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from faceauth.config import (
    DEFAULT_SIMILARITY_THRESHOLD,
    DUPLICATE_SIMILARITY_THRESHOLD,
    AUTHENTICATE_MAX_MATCHES,
    VERIFY_MAX_MATCHES
)
from faceauth.context import AppContext
from faceauth.errors import BadRequestError, UnauthorizedError, NotFoundError, ConflictError
from faceauth.models import UserDB
from faceauth.repository import UserRepository
from faceauth.schemas import (
    RegisteredUser,
    AuthenticatedUser,
    VerifiedUser,
    UserDetail,
    UserPage,
    Pagination,
    DeletedUser
)
from faceauth.steps import StepPlan

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
}


def image_file_name(name: str, content_type: Optional[str] = None, now_ms: Optional[int] = None) -> str:
    """Storage file name for a registration image, e.g. `mary-ann-1700000000000.jpg`."""
    slug = re.sub(r"\s+", "-", name.strip()).lower()
    slug = re.sub(r"[^a-z0-9_-]", "", slug) or "user"
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    ext = CONTENT_TYPE_EXTENSIONS.get((content_type or "").lower(), "jpg")
    return f"{slug}-{now_ms}.{ext}"


class FaceAuthService:
    """
    Workflows over one request's database session.

    Rekognition's collection is a derived index of the users table: a face
    is only indexed for a user that is about to be persisted, and a search
    hit only counts once it resolves to a stored user.
    """

    def __init__(self, context: AppContext, session: AsyncSession):
        if context is None:
            raise RuntimeError("FaceAuthService requires an application context")
        self.context = context
        self.session = session
        self.faces = context.faces
        self.storage = context.storage

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    async def register(self, name: str, image_bytes: bytes, content_type: str = "image/jpeg") -> RegisteredUser:
        """
        Register a face under a name.

        Pipeline:
        1. Require exactly one face in the image
        2. Reject faces already in the collection (similarity >= 95)
        3. Upload the image to S3
        4. Index the stored image under a fresh correlation id
           (the upload is removed again if indexing fails)
        5. Persist the user
        """
        name = (name or "").strip()
        if not name:
            raise BadRequestError("Name is required")

        faces = await self.faces.detect_faces(image_bytes)
        if len(faces) == 0:
            raise BadRequestError("No face detected in the image. Please provide a clear face image.")
        if len(faces) > 1:
            raise BadRequestError("Multiple faces detected. Please provide an image with only one face.")

        existing = await self.faces.search_faces_by_image(image_bytes, 1, DUPLICATE_SIMILARITY_THRESHOLD)
        if existing.no_face:
            raise BadRequestError(existing.error)
        if existing.matches:
            matched = await UserRepository.get_by_face_id(self.session, existing.best.external_image_id)
            logger.info(f"Rejected registration of '{name}': face already registered")
            raise ConflictError(
                "This face is already registered",
                existingUser={"id": matched.id, "name": matched.name} if matched else None,
            )

        face_id = str(uuid.uuid4())
        stored = await self.storage.upload(image_bytes, image_file_name(name, content_type), content_type)

        rollback = StepPlan(f"register {face_id}")
        rollback.add("delete-image", lambda: self.storage.delete(stored.key))
        try:
            indexed = await self.faces.index_face(stored.key, face_id)
        except Exception as e:
            logger.warning(f"Indexing failed for '{name}', rolling back upload: {e}")
            failed = await rollback.run_best_effort()
            if failed:
                logger.error(f"Orphaned image s3://{stored.bucket}/{stored.key} left after failed registration")
            raise

        user = await UserRepository.create(
            self.session,
            name=name,
            face_id=face_id,
            s3_image_key=stored.key,
            s3_image_url=stored.url,
            rekognition_face_id=indexed.face_id,
            bounding_box=indexed.bounding_box,
            confidence=indexed.confidence,
        )
        logger.info(f"Registered '{name}' as {user.id} (face {indexed.face_id})")

        return RegisteredUser(
            user_id=user.id,
            name=user.name,
            face_id=user.face_id,
            image_url=user.s3_image_url,
            confidence=user.confidence,
            created_at=user.created_at,
        )

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    async def authenticate(self, image_bytes: bytes, threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> AuthenticatedUser:
        """Identify the registered user shown in an image."""
        result = await self.faces.search_faces_by_image(image_bytes, AUTHENTICATE_MAX_MATCHES, threshold)

        if result.no_face:
            raise BadRequestError(result.error, authenticated=False)

        match = result.best
        if match is None:
            logger.info(f"Authentication failed: no match at threshold {threshold}")
            raise UnauthorizedError("Face not recognized. User not registered.", authenticated=False)

        user = await UserRepository.get_by_face_id(self.session, match.external_image_id)
        if user is None:
            logger.warning(f"Rekognition face {match.face_id} has no user record")
            raise UnauthorizedError("User record not found", authenticated=False)

        logger.info(f"Authenticated {user.id} ('{user.name}') with similarity {match.similarity:.2f}")
        return AuthenticatedUser(
            user_id=user.id,
            name=user.name,
            similarity=match.similarity,
            confidence=match.confidence,
            image_url=user.s3_image_url,
        )

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------
    async def verify(self, user_id: str, image_bytes: bytes, threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> VerifiedUser:
        """Check that an image shows the given user."""
        user = await UserRepository.get_by_id(self.session, user_id)
        if user is None:
            raise NotFoundError("User not found", verified=False)

        result = await self.faces.search_faces_by_image(image_bytes, VERIFY_MAX_MATCHES, threshold)
        if result.no_face:
            raise BadRequestError(result.error, verified=False)

        match = next(
            (m for m in result.matches if user.face_id and m.external_image_id == user.face_id),
            None,
        )
        if match is None:
            logger.info(f"Verification failed for {user.id}")
            raise UnauthorizedError(
                "Face does not match the registered user",
                verified=False,
                userId=user.id,
                userName=user.name,
            )

        logger.info(f"Verified {user.id} with similarity {match.similarity:.2f}")
        return VerifiedUser(
            user_id=user.id,
            name=user.name,
            similarity=match.similarity,
            confidence=match.confidence,
        )

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    async def list_users(self, limit: int, skip: int) -> UserPage:
        users = await UserRepository.get_all(self.session, limit=limit, skip=skip)
        total = await UserRepository.count(self.session)
        return UserPage(
            users=[UserRepository.to_summary(u) for u in users],
            pagination=Pagination(
                total=total,
                limit=limit,
                skip=skip,
                has_more=skip + len(users) < total,
            ),
        )

    async def get_user(self, user_id: str) -> UserDetail:
        user = await UserRepository.get_by_id(self.session, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return UserRepository.to_detail(user)

    def deletion_plan(self, user: UserDB) -> StepPlan:
        """External resources first, the local record last."""
        plan = StepPlan(f"delete user {user.id}")
        if user.rekognition_face_id:
            plan.add("delete-face", lambda: self.faces.delete_face(user.rekognition_face_id))
        if user.s3_image_key:
            plan.add("delete-image", lambda: self.storage.delete(user.s3_image_key))
        plan.add("delete-record", lambda: UserRepository.delete_by_id(self.session, user.id))
        return plan

    async def delete_user(self, user_id: str) -> DeletedUser:
        user = await UserRepository.get_by_id(self.session, user_id)
        if user is None:
            raise NotFoundError("User not found")

        await self.deletion_plan(user).run()
        logger.info(f"Deleted user {user.id} ('{user.name}')")
        return DeletedUser(user_id=user.id, name=user.name)
