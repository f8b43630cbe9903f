"""Tests for S3Client object and bucket operations against the fake S3 service."""

import asyncio
import xml.etree.ElementTree as ET
from datetime import timedelta

import pytest
from fake_s3 import Upload
from httpx import ASGITransport, AsyncClient

from s3courier.client import S3Client
from s3courier.conditions import ByteRange, ConditionSet
from s3courier.config import S3CourierConfig
from s3courier.errors import (
    BucketNotEmpty,
    NoSuchBucket,
    NoSuchKey,
    NoSuchUpload,
    NotModified,
    PreconditionFailed,
    StreamSizeMismatch,
)
from s3courier.objects import object_request
from s3courier.request import with_query

BUCKET = "test-bucket"
ENDPOINT = "http://testserver"


class TestBuckets:
    """Bucket lifecycle."""

    async def test_bucket_exists(self, client):
        assert await client.bucket_exists(BUCKET)
        assert not await client.bucket_exists("no-such-bucket")

    async def test_make_and_remove(self, client, state):
        await client.make_bucket("fresh-bucket")
        assert "fresh-bucket" in state.buckets
        assert state.requests_for("PUT")[-1].body == b""
        await client.remove_bucket("fresh-bucket")
        assert "fresh-bucket" not in state.buckets

    async def test_make_bucket_in_region(self, client, state):
        """Buckets outside us-east-1 name their region in the request body."""
        await client.make_bucket("eu-bucket", region="eu-west-1")
        root = ET.fromstring(state.requests_for("PUT")[-1].body)
        assert root.find("{http://s3.amazonaws.com/doc/2006-03-01/}LocationConstraint").text == (
            "eu-west-1"
        )

    async def test_remove_non_empty(self, client, state):
        state.put(BUCKET, "k", b"1")
        with pytest.raises(BucketNotEmpty) as exc_info:
            await client.remove_bucket(BUCKET)
        assert exc_info.value.http_status == 409
        assert exc_info.value.request_id == "fake"

    async def test_remove_missing(self, client):
        with pytest.raises(NoSuchBucket):
            await client.remove_bucket("no-such-bucket")


class TestReads:
    """Stat, get and streaming reads."""

    async def test_stat(self, client, state):
        obj = state.put(
            BUCKET, "doc.txt", b"0123456789", {"content-type": "text/plain", "x-amz-meta-a": "1"}
        )
        stat = await client.stat_object(BUCKET, "doc.txt")
        assert stat.size == 10
        assert stat.etag == obj.etag.strip('"')
        assert stat.content_type == "text/plain"
        assert stat.metadata == {"a": "1"}
        assert stat.version_id == obj.version_id
        assert stat.last_modified == obj.last_modified.replace(microsecond=0)

    async def test_stat_missing(self, client):
        with pytest.raises(NoSuchKey):
            await client.stat_object(BUCKET, "missing")

    async def test_get(self, client, state):
        state.put(BUCKET, "doc.txt", b"0123456789")
        assert await client.get_object(BUCKET, "doc.txt") == b"0123456789"

    @pytest.mark.parametrize(
        "byte_range,expected",
        [
            (ByteRange(offset=7), b"789"),
            (ByteRange(length=3), b"789"),
            (ByteRange(offset=2, length=3), b"234"),
        ],
    )
    async def test_get_range(self, client, state, byte_range, expected):
        state.put(BUCKET, "doc.txt", b"0123456789")
        data = await client.get_object(
            BUCKET, "doc.txt", conditions=ConditionSet(byte_range=byte_range)
        )
        assert data == expected

    async def test_get_version(self, client, state):
        old = state.put(BUCKET, "doc.txt", b"old")
        state.put(BUCKET, "doc.txt", b"new")
        assert await client.get_object(BUCKET, "doc.txt", version_id=old.version_id) == b"old"

    async def test_if_match_failure(self, client, state):
        state.put(BUCKET, "doc.txt", b"data")
        with pytest.raises(PreconditionFailed):
            await client.get_object(BUCKET, "doc.txt", conditions=ConditionSet(match_etag="x"))

    async def test_if_none_match_not_modified(self, client, state):
        obj = state.put(BUCKET, "doc.txt", b"data")
        with pytest.raises(NotModified):
            await client.get_object(
                BUCKET, "doc.txt", conditions=ConditionSet(not_match_etag=obj.etag)
            )

    async def test_if_modified_since_on_stat(self, client, state):
        obj = state.put(BUCKET, "doc.txt", b"data")
        later = obj.last_modified + timedelta(hours=1)
        with pytest.raises(NotModified):
            await client.stat_object(
                BUCKET, "doc.txt", conditions=ConditionSet(modified_since=later)
            )
        earlier = obj.last_modified - timedelta(hours=1)
        stat = await client.stat_object(
            BUCKET, "doc.txt", conditions=ConditionSet(modified_since=earlier)
        )
        assert stat.size == 4

    async def test_iter_object(self, client, state):
        data = bytes(range(256)) * 1024
        state.put(BUCKET, "blob", data)
        chunks = [chunk async for chunk in client.iter_object(BUCKET, "blob")]
        assert b"".join(chunks) == data


class TestFget:
    """Atomic downloads to a file."""

    async def test_download(self, client, state, tmp_path):
        data = bytes(range(256)) * 100
        state.put(BUCKET, "blob", data)
        target = tmp_path / "out" / "blob.bin"
        stat = await client.fget_object(BUCKET, "blob", target)
        assert target.read_bytes() == data
        assert stat.size == len(data)
        assert list(target.parent.iterdir()) == [target]

    async def test_existing_file_replaced(self, client, state, tmp_path):
        state.put(BUCKET, "blob", b"new contents")
        target = tmp_path / "blob.bin"
        target.write_bytes(b"old")
        await client.fget_object(BUCKET, "blob", target)
        assert target.read_bytes() == b"new contents"

    async def test_ranged_download(self, client, state, tmp_path):
        state.put(BUCKET, "blob", b"0123456789")
        target = tmp_path / "part.bin"
        await client.fget_object(
            BUCKET, "blob", target, conditions=ConditionSet(byte_range=ByteRange(offset=5))
        )
        assert target.read_bytes() == b"56789"

    async def test_missing_object_leaves_nothing(self, client, tmp_path):
        target = tmp_path / "missing.bin"
        with pytest.raises(NoSuchKey):
            await client.fget_object(BUCKET, "missing", target)
        assert list(tmp_path.iterdir()) == []

    async def test_size_mismatch_removes_temp(self, client, state, tmp_path, monkeypatch):
        """A short body fails the download and leaves the target untouched."""
        state.put(BUCKET, "blob", b"0123456789")
        target = tmp_path / "blob.bin"
        target.write_bytes(b"keep")

        async def short_body(*args, **kwargs):
            yield b"01234"

        monkeypatch.setattr(client, "iter_object", short_body)
        with pytest.raises(StreamSizeMismatch):
            await client.fget_object(BUCKET, "blob", target)
        assert target.read_bytes() == b"keep"
        assert list(tmp_path.iterdir()) == [target]

    async def test_cancelled_download_removes_temp(self, client, state, tmp_path, monkeypatch):
        state.put(BUCKET, "blob", b"0123456789")
        target = tmp_path / "blob.bin"
        started = asyncio.Event()

        async def stalled_body(*args, **kwargs):
            yield b"01234"
            started.set()
            await asyncio.sleep(60)
            yield b"56789"

        monkeypatch.setattr(client, "iter_object", stalled_body)
        task = asyncio.create_task(client.fget_object(BUCKET, "blob", target))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert list(tmp_path.iterdir()) == []


class TestTags:
    """Object tagging."""

    async def test_get_and_set(self, client, state):
        state.put(BUCKET, "doc.txt", b"1", tags={"a": "1"})
        assert await client.get_object_tags(BUCKET, "doc.txt") == {"a": "1"}
        await client.set_object_tags(BUCKET, "doc.txt", {"b": "2 & 3"})
        assert state.buckets[BUCKET]["doc.txt"].tags == {"b": "2 & 3"}
        assert await client.get_object_tags(BUCKET, "doc.txt") == {"b": "2 & 3"}


class TestDeletes:
    """Single and batched deletes."""

    async def test_remove_object(self, client, state):
        state.put(BUCKET, "doc.txt", b"1")
        await client.remove_object(BUCKET, "doc.txt")
        assert "doc.txt" not in state.buckets[BUCKET]

    async def test_remove_objects_batches(self, client, state):
        """Deletes are sent 1000 keys per request, each with Content-MD5."""
        keys = [f"k/{i:04d}" for i in range(2500)]
        for key in keys:
            state.put(BUCKET, key, b"")
        errors = await client.remove_objects(BUCKET, keys)
        assert errors == []
        assert state.buckets[BUCKET] == {}
        batches = state.requests_for("POST", "delete")
        assert len(batches) == 3
        assert all("content-md5" in r.headers for r in batches)
        assert [r.body.count(b"<Object>") for r in batches] == [1000, 1000, 500]

    async def test_remove_objects_reports_errors(self, client, state):
        state.put(BUCKET, "locked/a", b"")
        state.put(BUCKET, "free", b"")
        errors = await client.remove_objects(BUCKET, ["locked/a", ("free", None)])
        assert [(e.key, e.code) for e in errors] == [("locked/a", "AccessDenied")]
        assert "free" not in state.buckets[BUCKET]

    async def test_remove_incomplete_upload(self, client, state):
        for upload_id in ("one", "two"):
            state.uploads[upload_id] = Upload(
                bucket=BUCKET, key="video.mp4", upload_id=upload_id, headers={}, tags={}
            )
        state.uploads["other"] = Upload(
            bucket=BUCKET, key="video.mp4.bak", upload_id="other", headers={}, tags={}
        )
        assert await client.remove_incomplete_upload(BUCKET, "video.mp4") == 2
        assert list(state.uploads) == ["other"]

    async def test_abort_unknown_upload(self, client):
        request = with_query(
            object_request("AbortMultipartUpload", "DELETE", BUCKET, "k"), {"uploadId": "nope"}
        )
        with pytest.raises(NoSuchUpload):
            await client.transport.execute(request)


class TestConstruction:
    """Building clients."""

    async def test_from_config(self, app):
        config = S3CourierConfig()
        config.endpoint.url = ENDPOINT
        config.credentials.access_key = "AKID"
        config.credentials.secret_key = "SECRET"
        async with AsyncClient(transport=ASGITransport(app=app), base_url=ENDPOINT) as h:
            async with S3Client.from_config(config, http_client=h) as client:
                assert client.transport.credentials.access_key == "AKID"
                assert client.engine.config is config.transfer
                assert await client.bucket_exists(BUCKET)

    async def test_anonymous_requests_unsigned(self, app, state):
        async with AsyncClient(transport=ASGITransport(app=app), base_url=ENDPOINT) as h:
            async with S3Client(ENDPOINT, http_client=h) as client:
                await client.bucket_exists(BUCKET)
        assert "authorization" not in state.requests[-1].headers
