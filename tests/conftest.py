"""
Shared fixtures: in-memory stand-ins for Rekognition and S3, and an app
running against a temporary SQLite registry.

Fake images are plain bytes:
- b"face:alice" shows one person, "alice"
- b"faces:alice,bob" shows several people
- anything else shows nobody
"""
import uuid
from collections import Counter

import pytest
from fastapi.testclient import TestClient

from faceauth.context import AppContext
from faceauth.database import Database
from faceauth.errors import FaceNotIndexedError
from faceauth.main import create_app
from faceauth.rekognition import DetectedFace, IndexedFace, FaceMatch, SearchResult, SearchStatus
from faceauth.storage import StoredImage


def people_in(image_bytes: bytes):
    text = image_bytes.decode("utf-8", errors="ignore")
    if text.startswith("face:"):
        return [text[len("face:"):]]
    if text.startswith("faces:"):
        return [p for p in text[len("faces:"):].split(",") if p]
    return []


class FakeStorage:

    def __init__(self, bucket="test-bucket", region="ap-south-1"):
        self.bucket = bucket
        self.region = region
        self.objects = {}
        self.calls = Counter()
        self.fail_delete = False

    def url_for(self, key):
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def upload(self, image_bytes, file_name, content_type="image/jpeg"):
        self.calls["upload"] += 1
        key = f"faces/{uuid.uuid4()}-{file_name}"
        self.objects[key] = image_bytes
        return StoredImage(key=key, url=self.url_for(key), bucket=self.bucket)

    async def delete(self, key):
        self.calls["delete"] += 1
        if self.fail_delete:
            raise RuntimeError("S3 unavailable")
        self.objects.pop(key, None)

    async def download(self, key):
        return self.objects[key]


class FakeFaces:
    """Rekognition stand-in. Every indexed face of the same person matches at `similarity`."""

    def __init__(self, storage):
        self.storage = storage
        self.indexed = {}  # face_id -> (person, external_image_id)
        self.calls = Counter()
        self.similarity = 99.0
        self.index_error = None
        self.delete_error = None

    async def ensure_collection(self):
        self.calls["ensure_collection"] += 1

    async def detect_faces(self, image_bytes):
        self.calls["detect_faces"] += 1
        return [DetectedFace(bounding_box=None, confidence=99.9) for _ in people_in(image_bytes)]

    async def index_face(self, s3_key, external_image_id):
        self.calls["index_face"] += 1
        if self.index_error is not None:
            raise self.index_error
        people = people_in(self.storage.objects[s3_key])
        if not people:
            raise FaceNotIndexedError("No face detected in the image")
        face_id = str(uuid.uuid4())
        self.indexed[face_id] = (people[0], external_image_id)
        return IndexedFace(
            face_id=face_id,
            bounding_box={"Width": 0.4, "Height": 0.5, "Left": 0.3, "Top": 0.2},
            confidence=99.9,
            image_id=str(uuid.uuid4()),
            external_image_id=external_image_id,
        )

    async def search_faces_by_image(self, image_bytes, max_faces=1, threshold=80.0):
        self.calls["search_faces_by_image"] += 1
        people = people_in(image_bytes)
        if not people:
            return SearchResult.no_face_in_image()
        if self.similarity < threshold:
            return SearchResult(status=SearchStatus.OK)
        matches = [
            FaceMatch(face_id=face_id, external_image_id=external_id, similarity=self.similarity, confidence=99.9)
            for face_id, (person, external_id) in self.indexed.items()
            if person == people[0]
        ]
        return SearchResult(status=SearchStatus.OK, matches=matches[:max_faces], searched_face_confidence=99.9)

    async def delete_face(self, face_id):
        self.calls["delete_face"] += 1
        if self.delete_error is not None:
            raise self.delete_error
        if self.indexed.pop(face_id, None) is None:
            return []
        return [face_id]


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def faces(storage):
    return FakeFaces(storage)


@pytest.fixture
def context(tmp_path, faces, storage):
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'faceauth.db'}")
    return AppContext(database=database, faces=faces, storage=storage)


@pytest.fixture
def client(context):
    app = create_app(lambda: context)
    with TestClient(app) as test_client:
        yield test_client


def image_upload(data: bytes, filename: str = "face.jpg", content_type: str = "image/jpeg"):
    return {"image": (filename, data, content_type)}
