"""
Tests for the S3 storage gateway against a stubbed boto3 client.
"""
import asyncio
import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber, ANY

from faceauth.storage import S3Storage

BUCKET = "test-bucket"
REGION = "ap-south-1"


@pytest.fixture
def client():
    return boto3.client(
        "s3",
        region_name=REGION,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(client):
    with Stubber(client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def storage(client):
    return S3Storage(client, BUCKET, REGION)


def test_url_for_is_deterministic(storage):
    assert storage.url_for("faces/abc-alice.jpg") == (
        "https://test-bucket.s3.ap-south-1.amazonaws.com/faces/abc-alice.jpg"
    )


def test_key_prefix_is_normalised(client):
    assert S3Storage(client, BUCKET, REGION, "uploads").key_prefix == "uploads/"
    assert S3Storage(client, BUCKET, REGION, "").key_prefix == ""


def test_upload(stubber, storage):
    stubber.add_response(
        "put_object",
        {"ETag": '"9b2cf535f27731c974343645a3985328"'},
        {"Bucket": BUCKET, "Key": ANY, "Body": ANY, "ContentType": "image/png"},
    )

    stored = asyncio.run(storage.upload(b"image-bytes", "alice-1700000000000.png", "image/png"))

    assert stored.bucket == BUCKET
    assert stored.key.startswith("faces/")
    assert stored.key.endswith("-alice-1700000000000.png")
    assert stored.url == storage.url_for(stored.key)


def test_uploads_never_share_keys(storage):
    assert storage.new_key("same.jpg") != storage.new_key("same.jpg")


def test_delete(stubber, storage):
    stubber.add_response("delete_object", {}, {"Bucket": BUCKET, "Key": "faces/abc-alice.jpg"})

    asyncio.run(storage.delete("faces/abc-alice.jpg"))


def test_download(stubber, storage):
    data = b"stored-image"
    stubber.add_response(
        "get_object",
        {"Body": StreamingBody(io.BytesIO(data), len(data)), "ContentLength": len(data)},
        {"Bucket": BUCKET, "Key": "faces/abc-alice.jpg"},
    )

    assert asyncio.run(storage.download("faces/abc-alice.jpg")) == data
