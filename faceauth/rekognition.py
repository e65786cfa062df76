"""
Rekognition Face Service

This module wraps every call made to AWS Rekognition:
- Lazy creation of the face collection
- Face detection on raw image bytes
- Indexing a stored S3 image under an external correlation id
- Searching the collection by image
- Removing faces and the collection

Search outcomes are returned as tagged `SearchResult`s so callers can tell a
query image without a face apart from an empty match list. Other provider
failures propagate as botocore `ClientError`.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List

from botocore.exceptions import ClientError
from fastapi.concurrency import run_in_threadpool

from faceauth.errors import FaceNotIndexedError, FaceDeletionError

logger = logging.getLogger(__name__)

NO_FACE_ERROR = "No face detected in the provided image"


@dataclass(frozen=True)
class DetectedFace:
    bounding_box: Optional[dict]
    confidence: Optional[float]


@dataclass(frozen=True)
class IndexedFace:
    face_id: str
    bounding_box: Optional[dict]
    confidence: Optional[float]
    image_id: Optional[str]
    external_image_id: Optional[str]


@dataclass(frozen=True)
class FaceMatch:
    face_id: str
    external_image_id: Optional[str]
    similarity: float
    confidence: Optional[float]


class SearchStatus(str, Enum):
    OK = "ok"
    NO_FACE = "no_face"


@dataclass
class SearchResult:
    status: SearchStatus
    matches: List[FaceMatch] = field(default_factory=list)
    searched_face_bounding_box: Optional[dict] = None
    searched_face_confidence: Optional[float] = None
    error: Optional[str] = None

    @property
    def no_face(self) -> bool:
        return self.status is SearchStatus.NO_FACE

    @property
    def best(self) -> Optional[FaceMatch]:
        return self.matches[0] if self.matches else None

    @classmethod
    def no_face_in_image(cls) -> "SearchResult":
        return cls(status=SearchStatus.NO_FACE, error=NO_FACE_ERROR)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _error_message(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Message", str(error))


class RekognitionGateway:
    """
    Face operations against one Rekognition collection.

    The collection is created on first use; once confirmed it is not
    re-checked for the lifetime of the gateway.
    """

    def __init__(self, client, collection_id: str, bucket: str):
        self._client = client
        self.collection_id = collection_id
        self.bucket = bucket
        self._collection_ready = False

    async def ensure_collection(self) -> None:
        """Create the collection if it does not exist yet (idempotent)."""
        if self._collection_ready:
            return

        if not await self._collection_exists():
            try:
                await run_in_threadpool(self._client.create_collection, CollectionId=self.collection_id)
                logger.info(f"Created Rekognition collection: {self.collection_id}")
            except ClientError as e:
                # Another worker created it between our list and create
                if _error_code(e) != "ResourceAlreadyExistsException":
                    raise
        self._collection_ready = True

    async def _collection_exists(self) -> bool:
        kwargs = {}
        while True:
            response = await run_in_threadpool(self._client.list_collections, **kwargs)
            if self.collection_id in response.get("CollectionIds", []):
                return True
            token = response.get("NextToken")
            if not token:
                return False
            kwargs = {"NextToken": token}

    async def _collection_call(self, method, **kwargs):
        """Call a collection operation; a vanished collection is re-checked next time."""
        try:
            return await run_in_threadpool(method, CollectionId=self.collection_id, **kwargs)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                logger.warning(f"Rekognition collection {self.collection_id} is missing")
                self._collection_ready = False
            raise

    async def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]:
        response = await run_in_threadpool(
            self._client.detect_faces,
            Image={"Bytes": image_bytes},
            Attributes=["ALL"],
        )
        return [
            DetectedFace(
                bounding_box=detail.get("BoundingBox"),
                confidence=detail.get("Confidence"),
            )
            for detail in response.get("FaceDetails", [])
        ]

    async def index_face(self, s3_key: str, external_image_id: str) -> IndexedFace:
        """
        Index the face in a stored S3 object, tagged with `external_image_id`.

        Raises:
            FaceNotIndexedError: Rekognition returned no face record. The
                message carries the rejection reasons when reported.
        """
        await self.ensure_collection()

        response = await self._collection_call(
            self._client.index_faces,
            Image={"S3Object": {"Bucket": self.bucket, "Name": s3_key}},
            ExternalImageId=external_image_id,
            MaxFaces=1,
            QualityFilter="AUTO",
            DetectionAttributes=["ALL"],
        )

        face_records = response.get("FaceRecords", [])
        if not face_records:
            unindexed = response.get("UnindexedFaces", [])
            if unindexed:
                reasons = unindexed[0].get("Reasons", [])
                reason = ", ".join(reasons) or "Unknown reason"
                raise FaceNotIndexedError(f"Face could not be indexed: {reason}", reasons)
            raise FaceNotIndexedError("No face detected in the image")

        face = face_records[0]["Face"]
        logger.info(f"Indexed face {face['FaceId']} for external id {external_image_id}")
        return IndexedFace(
            face_id=face["FaceId"],
            bounding_box=face.get("BoundingBox"),
            confidence=face.get("Confidence"),
            image_id=face.get("ImageId"),
            external_image_id=face.get("ExternalImageId"),
        )

    async def search_faces_by_image(
        self,
        image_bytes: bytes,
        max_faces: int = 1,
        threshold: float = 80.0
    ) -> SearchResult:
        """Search the collection for faces similar to the largest face in the image."""
        await self.ensure_collection()

        try:
            response = await self._collection_call(
                self._client.search_faces_by_image,
                Image={"Bytes": image_bytes},
                MaxFaces=max_faces,
                FaceMatchThreshold=threshold,
            )
        except ClientError as e:
            if _error_code(e) == "InvalidParameterException" and "no faces" in _error_message(e).lower():
                return SearchResult.no_face_in_image()
            raise

        matches = [
            FaceMatch(
                face_id=match["Face"]["FaceId"],
                external_image_id=match["Face"].get("ExternalImageId"),
                similarity=float(match.get("Similarity", 0.0)),
                confidence=match["Face"].get("Confidence"),
            )
            for match in response.get("FaceMatches", [])
        ]
        return SearchResult(
            status=SearchStatus.OK,
            matches=matches,
            searched_face_bounding_box=response.get("SearchedFaceBoundingBox"),
            searched_face_confidence=response.get("SearchedFaceConfidence"),
        )

    async def delete_face(self, face_id: str) -> List[str]:
        """
        Remove a face from the collection.

        Returns the ids actually deleted; a face that is already gone yields
        an empty list.

        Raises:
            FaceDeletionError: Rekognition kept the face for any reason other
                than it not being found.
        """
        try:
            response = await run_in_threadpool(
                self._client.delete_faces,
                CollectionId=self.collection_id,
                FaceIds=[face_id],
            )
        except ClientError as e:
            # No collection means no face either
            if _error_code(e) != "ResourceNotFoundException":
                raise
            self._collection_ready = False
            response = {}

        for failure in response.get("UnsuccessfulFaceDeletions", []):
            reasons = failure.get("Reasons", [])
            if any(reason != "FACE_NOT_FOUND" for reason in reasons):
                raise FaceDeletionError(
                    f"Face {failure.get('FaceId', face_id)} could not be deleted: {', '.join(reasons)}",
                    reasons
                )

        deleted = response.get("DeletedFaces", [])
        if deleted:
            logger.info(f"Deleted face {face_id} from {self.collection_id}")
        else:
            logger.warning(f"Face {face_id} was not in {self.collection_id}")
        return deleted

    async def delete_collection(self) -> None:
        """Delete the whole collection. The next index/search recreates it."""
        await run_in_threadpool(self._client.delete_collection, CollectionId=self.collection_id)
        self._collection_ready = False
        logger.info(f"Deleted Rekognition collection: {self.collection_id}")
