"""High-level asynchronous S3 client.

:class:`S3Client` ties the transport, the transfer engine, the pagination
cursor and the presigned access signer together behind one object::

    async with S3Client("https://s3.example.com", "AKID", "SECRET") as client:
        await client.put_object("photos", "cat.jpg", data, length=len(data))
        async for item in client.list_objects("photos", prefix="c"):
            print(item.key)
"""

from __future__ import annotations

import asyncio
import logging
import os
import uuid
from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path

import httpx

from s3courier import listing, metrics, objects
from s3courier.conditions import ConditionSet
from s3courier.config import S3CourierConfig, TransferConfig
from s3courier.encryption import Encryption, SseCustomerKey
from s3courier.errors import NoSuchBucket, StreamSizeMismatch
from s3courier.models import (
    CopySource,
    DeleteError,
    IncompleteUpload,
    ObjectInfo,
    ObjectStat,
    ObjectWriteResult,
    Retention,
    TransferSpec,
)
from s3courier.planner import UNKNOWN_SIZE
from s3courier.presign import (
    DEFAULT_EXPIRY,
    PostPolicy,
    PresignedGrant,
    presign_post_policy,
    presign_url,
)
from s3courier.request import RequestDescriptor, with_body, with_headers, with_query
from s3courier.signer import Credentials
from s3courier.transfer import Source, TransferEngine
from s3courier.transport import Transport
from s3courier.validation import validate_bucket_name
from s3courier.xml_utils import render_create_bucket_configuration, render_tagging

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class S3Client:
    """Asynchronous client for an S3-compatible service.

    Attributes:
        transport: Executes signed requests.
        engine: Runs uploads and copies.
    """

    def __init__(
        self,
        endpoint: str,
        access_key: str = "",
        secret_key: str = "",
        session_token: str = "",
        region: str = "us-east-1",
        transfer: TransferConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        credentials = Credentials(access_key, secret_key, session_token) if access_key else None
        self.transport = Transport(
            endpoint,
            credentials=credentials,
            region=region,
            http_client=http_client,
            timeout=timeout,
        )
        self.engine = TransferEngine(self.transport, transfer)

    @classmethod
    def from_config(
        cls, config: S3CourierConfig, http_client: httpx.AsyncClient | None = None
    ) -> S3Client:
        """Build a client from a loaded configuration.

        Registers the Prometheus collectors when
        ``observability.metrics`` is enabled.
        """
        if config.observability.metrics:
            metrics.init_metrics()
        return cls(
            config.endpoint.url,
            access_key=config.credentials.access_key,
            secret_key=config.credentials.secret_key,
            session_token=config.credentials.session_token,
            region=config.endpoint.region,
            transfer=config.transfer,
            http_client=http_client,
            timeout=config.transfer.timeout,
        )

    async def __aenter__(self) -> S3Client:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.transport.aclose()

    # -- Buckets -------------------------------------------------------------------

    async def bucket_exists(self, bucket: str) -> bool:
        validate_bucket_name(bucket)
        request = RequestDescriptor(operation="HeadBucket", method="HEAD", bucket=bucket)
        try:
            await self.transport.execute(request)
        except NoSuchBucket:
            return False
        return True

    async def make_bucket(self, bucket: str, region: str | None = None) -> None:
        validate_bucket_name(bucket)
        request = RequestDescriptor(operation="CreateBucket", method="PUT", bucket=bucket)
        region = region or self.transport.region
        if region != "us-east-1":
            request = with_headers(request, {"Content-Type": "application/xml"})
            request = with_body(
                request, render_create_bucket_configuration(region).encode("utf-8")
            )
        await self.transport.execute(request)

    async def remove_bucket(self, bucket: str) -> None:
        validate_bucket_name(bucket)
        await self.transport.execute(
            RequestDescriptor(operation="DeleteBucket", method="DELETE", bucket=bucket)
        )

    # -- Reads ---------------------------------------------------------------------

    async def stat_object(
        self,
        bucket: str,
        key: str,
        version_id: str | None = None,
        conditions: ConditionSet | None = None,
        sse: SseCustomerKey | None = None,
    ) -> ObjectStat:
        return await objects.stat_object(
            self.transport, bucket, key, version_id, conditions, sse
        )

    async def get_object(
        self,
        bucket: str,
        key: str,
        version_id: str | None = None,
        conditions: ConditionSet | None = None,
        sse: SseCustomerKey | None = None,
    ) -> bytes:
        return await objects.get_object(
            self.transport, bucket, key, version_id, conditions, sse
        )

    def iter_object(
        self,
        bucket: str,
        key: str,
        version_id: str | None = None,
        conditions: ConditionSet | None = None,
        sse: SseCustomerKey | None = None,
    ) -> AsyncIterator[bytes]:
        return objects.iter_object(self.transport, bucket, key, version_id, conditions, sse)

    async def fget_object(
        self,
        bucket: str,
        key: str,
        file_path: str | Path,
        version_id: str | None = None,
        conditions: ConditionSet | None = None,
        sse: SseCustomerKey | None = None,
    ) -> ObjectStat:
        """Download an object into a file.

        The body is written to a temporary sibling file, fsynced, and renamed
        over ``file_path`` only once complete.  On any failure, including
        cancellation, the temporary file is removed and ``file_path`` is left
        untouched.

        Raises:
            StreamSizeMismatch: If fewer bytes arrived than the object holds.
        """
        stat = await self.stat_object(bucket, key, version_id, sse=sse)
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex[:8]}")
        try:
            with open(tmp, "wb") as fh:
                async for chunk in self.iter_object(
                    bucket, key, version_id or stat.version_id, conditions, sse
                ):
                    fh.write(chunk)
                fh.flush()
                os.fsync(fh.fileno())
            written = tmp.stat().st_size
            ranged = conditions is not None and conditions.byte_range is not None
            if not ranged and written != stat.size:
                raise StreamSizeMismatch(stat.size, written)
            os.replace(tmp, path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        return stat

    async def get_object_tags(
        self, bucket: str, key: str, version_id: str | None = None
    ) -> dict[str, str]:
        return await objects.get_object_tags(self.transport, bucket, key, version_id)

    async def set_object_tags(
        self, bucket: str, key: str, tags: dict[str, str], version_id: str | None = None
    ) -> None:
        request = objects.object_request("PutObjectTagging", "PUT", bucket, key, version_id)
        request = with_query(request, {"tagging": ""})
        request = with_headers(request, {"Content-Type": "application/xml"})
        request = with_body(request, render_tagging(tags).encode("utf-8"))
        await self.transport.execute(request)

    # -- Writes --------------------------------------------------------------------

    async def put_object(
        self,
        bucket: str,
        key: str,
        data: Source,
        length: int = UNKNOWN_SIZE,
        content_type: str = DEFAULT_CONTENT_TYPE,
        metadata: dict[str, str] | None = None,
        tags: dict[str, str] | None = None,
        sse: Encryption | None = None,
        retention: Retention | None = None,
        legal_hold: bool | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ObjectWriteResult:
        """Upload an object.

        Args:
            bucket: Destination bucket.
            key: Destination key.
            data: Bytes, a readable binary stream, or a file path.
            length: Size of ``data`` in bytes; -1 when unknown.  Ignored for
                bytes, whose length is known.
            content_type: MIME type stored with the object.
            metadata: User metadata; unrecognised keys gain ``x-amz-meta-``.
            tags: Object tags.
            sse: Server-side encryption for the stored object.
            retention: Object lock retention.
            legal_hold: Object lock legal hold.
            cancel: Event that cancels a multipart upload once set.

        Returns:
            The write result.  A cancelled upload has outcome CANCELLED and
            its multipart session has already been aborted.
        """
        if isinstance(data, (bytes, bytearray, memoryview)):
            length = len(data)
        elif isinstance(data, Path) and length == UNKNOWN_SIZE:
            length = data.stat().st_size
        spec = TransferSpec(
            bucket=bucket,
            key=key,
            size=length,
            content_type=content_type,
            metadata=dict(metadata or {}),
            tags=dict(tags or {}),
            retention=retention,
            legal_hold=legal_hold,
            sse=sse,
        )
        return await self.engine.put(spec, data, cancel=cancel)

    async def fput_object(
        self,
        bucket: str,
        key: str,
        file_path: str | Path,
        content_type: str = DEFAULT_CONTENT_TYPE,
        metadata: dict[str, str] | None = None,
        tags: dict[str, str] | None = None,
        sse: Encryption | None = None,
        retention: Retention | None = None,
        legal_hold: bool | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ObjectWriteResult:
        """Upload a file; multipart parts are read from the file independently."""
        path = Path(file_path)
        return await self.put_object(
            bucket,
            key,
            path,
            length=path.stat().st_size,
            content_type=content_type,
            metadata=metadata,
            tags=tags,
            sse=sse,
            retention=retention,
            legal_hold=legal_hold,
            cancel=cancel,
        )

    async def copy_object(
        self,
        bucket: str,
        key: str,
        source: CopySource,
        metadata: dict[str, str] | None = None,
        tags: dict[str, str] | None = None,
        content_type: str = DEFAULT_CONTENT_TYPE,
        sse: Encryption | None = None,
        retention: Retention | None = None,
        legal_hold: bool | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ObjectWriteResult:
        """Copy an object on the server side.

        Passing ``metadata`` replaces the destination's metadata with exactly
        that map; leaving it None carries the source's metadata forward.
        ``tags`` behaves the same way for object tags.
        """
        spec = TransferSpec(
            bucket=bucket,
            key=key,
            content_type=content_type,
            metadata=dict(metadata or {}),
            tags=dict(tags or {}),
            retention=retention,
            legal_hold=legal_hold,
            sse=sse,
        )
        return await self.engine.copy(
            spec,
            source,
            replace_metadata=metadata is not None,
            replace_tags=tags is not None,
            cancel=cancel,
        )

    async def remove_object(self, bucket: str, key: str, version_id: str | None = None) -> None:
        await objects.remove_object(self.transport, bucket, key, version_id)

    async def remove_objects(
        self, bucket: str, keys: list[str | tuple[str, str | None]]
    ) -> list[DeleteError]:
        """Delete many objects, 1000 per request; returns per-key failures."""
        pairs = [(k, None) if isinstance(k, str) else k for k in keys]
        return await objects.remove_objects(self.transport, bucket, pairs)

    # -- Listings ------------------------------------------------------------------

    def list_objects(
        self,
        bucket: str,
        prefix: str = "",
        recursive: bool = True,
        use_v1: bool = False,
        include_versions: bool = False,
    ) -> AsyncIterator[ObjectInfo]:
        return listing.iter_objects(
            self.transport,
            bucket,
            prefix=prefix,
            recursive=recursive,
            use_v1=use_v1,
            include_versions=include_versions,
        )

    def list_object_versions(
        self, bucket: str, prefix: str = "", recursive: bool = True
    ) -> AsyncIterator[ObjectInfo]:
        return listing.iter_object_versions(
            self.transport, bucket, prefix=prefix, recursive=recursive
        )

    def list_incomplete_uploads(
        self, bucket: str, prefix: str = "", recursive: bool = True
    ) -> AsyncIterator[IncompleteUpload]:
        return listing.iter_incomplete_uploads(
            self.transport, bucket, prefix=prefix, recursive=recursive
        )

    async def remove_incomplete_upload(self, bucket: str, key: str) -> int:
        """Abort every incomplete multipart upload of ``key``.

        Returns:
            The number of uploads aborted.
        """
        uploads = [
            upload
            async for upload in listing.iter_incomplete_uploads(self.transport, bucket, key=key)
        ]
        for upload in uploads:
            request = objects.object_request("AbortMultipartUpload", "DELETE", bucket, key)
            request = with_query(request, {"uploadId": upload.upload_id})
            await self.transport.execute(request)
            logger.info(
                "Removed incomplete upload %s of %s/%s",
                upload.upload_id,
                bucket,
                key,
                extra={"upload_id": upload.upload_id},
            )
        return len(uploads)

    # -- Presigned access ----------------------------------------------------------

    def presigned_get_object(
        self,
        bucket: str,
        key: str,
        expires: int = DEFAULT_EXPIRY,
        request_time: datetime | None = None,
        version_id: str | None = None,
        response_headers: dict[str, str] | None = None,
    ) -> PresignedGrant:
        return presign_url(
            self.transport,
            "GET",
            bucket,
            key,
            expires=expires,
            request_time=request_time,
            version_id=version_id,
            query=response_headers,
        )

    def presigned_put_object(
        self,
        bucket: str,
        key: str,
        expires: int = DEFAULT_EXPIRY,
        request_time: datetime | None = None,
    ) -> PresignedGrant:
        return presign_url(
            self.transport, "PUT", bucket, key, expires=expires, request_time=request_time
        )

    def presigned_post_policy(
        self, policy: PostPolicy, request_time: datetime | None = None
    ) -> PresignedGrant:
        return presign_post_policy(self.transport, policy, request_time=request_time)
