"""Single-shot and multipart object transfers.

The engine decides between one request and a multipart session, then drives
the session through initiate, concurrent part transfers, and completion.
A session that does not complete is always aborted before the call returns,
whether it was cancelled, a part failed, or the calling task was cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import BinaryIO, Optional, Union

import httpx

from s3courier import metrics
from s3courier.config import TransferConfig
from s3courier.encryption import part_encryption_headers
from s3courier.errors import EntityTooLarge, InvalidRange, S3Error, StreamSizeMismatch
from s3courier.models import (
    CopySource,
    ObjectWriteResult,
    PartDescriptor,
    SessionState,
    TransferOutcome,
    TransferSpec,
    UploadSession,
)
from s3courier.objects import get_object_tags, stat_object, strip_etag
from s3courier.planner import MAX_SINGLE_COPY_SIZE, UNKNOWN_SIZE, plan_parts
from s3courier.request import (
    RequestDescriptor,
    apply_conditions,
    apply_copy_source_encryption,
    apply_encryption,
    apply_legal_hold,
    apply_metadata,
    apply_retention,
    apply_tagging,
    carried_headers,
    with_body,
    with_headers,
    with_query,
)
from s3courier.transport import Transport
from s3courier.validation import validate_part_number
from s3courier.xml_utils import (
    parse_complete_multipart_upload,
    parse_copy_result,
    parse_initiate_multipart_upload,
    render_complete_multipart_upload,
)

logger = logging.getLogger(__name__)

Source = Union[bytes, bytearray, memoryview, BinaryIO, Path]
NextPart = Callable[[int], Optional[tuple[PartDescriptor, Optional[bytes]]]]
SendPart = Callable[[PartDescriptor, Optional[bytes]], Awaitable[str]]


# -- Part sources ----------------------------------------------------------------


class _BytesReader:
    """Random-access reader over an in-memory payload."""

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = bytes(data)

    def read(self, offset: int, size: int) -> bytes:
        return self._data[offset : offset + size]


class _FileReader:
    """Reopens the file for every part so parts can be read independently."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def read(self, offset: int, size: int) -> bytes:
        with open(self._path, "rb") as f:
            f.seek(offset)
            return f.read(size)


class _StreamReader:
    """Buffers a forward-only stream one part at a time.

    Parts must be requested in order; short reads from the underlying stream
    are retried until the part is full or the stream ends.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self._position = 0

    def read(self, offset: int, size: int) -> bytes:
        if offset != self._position:
            raise ValueError(f"stream read at {offset}, expected {self._position}")
        chunks: list[bytes] = []
        remaining = size
        while remaining > 0:
            chunk = self._stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        data = b"".join(chunks)
        self._position += len(data)
        return data


def _reader_for(source: Source) -> _BytesReader | _FileReader | _StreamReader:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return _BytesReader(source)
    if isinstance(source, Path):
        return _FileReader(source)
    return _StreamReader(source)


def _cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


# -- Engine ----------------------------------------------------------------------


class TransferEngine:
    """Runs PUT and COPY transfers against one transport.

    Attributes:
        transport: Transport used for every request.
        config: Multipart threshold and concurrency bound.
    """

    def __init__(self, transport: Transport, config: TransferConfig | None = None) -> None:
        self.transport = transport
        self.config = config or TransferConfig()

    # -- Request composition -------------------------------------------------

    def _describe(
        self,
        operation: str,
        method: str,
        spec: TransferSpec,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
        tags: dict[str, str] | None = None,
    ) -> RequestDescriptor:
        """Describe a request that writes ``spec``'s destination object."""
        request = RequestDescriptor(
            operation=operation, method=method, bucket=spec.bucket, key=spec.key
        )
        if content_type:
            request = with_headers(request, {"content-type": content_type})
        request = apply_metadata(request, metadata)
        request = apply_tagging(request, tags)
        request = apply_retention(request, spec.retention)
        request = apply_legal_hold(request, spec.legal_hold)
        return apply_encryption(request, spec.sse)

    def _session_request(
        self, operation: str, method: str, session: UploadSession
    ) -> RequestDescriptor:
        request = RequestDescriptor(
            operation=operation,
            method=method,
            bucket=session.spec.bucket,
            key=session.spec.key,
        )
        return with_query(request, {"uploadId": session.upload_id})

    def _part_request(
        self, operation: str, session: UploadSession, part: PartDescriptor
    ) -> RequestDescriptor:
        validate_part_number(part.part_number)
        request = self._session_request(operation, "PUT", session)
        return with_query(request, {"partNumber": part.part_number})

    # -- PUT -------------------------------------------------------------------

    async def put(
        self,
        spec: TransferSpec,
        source: Source,
        cancel: asyncio.Event | None = None,
    ) -> ObjectWriteResult:
        """Upload an object from bytes, a file path, or a readable stream.

        Objects of known size up to the multipart threshold go in a single
        PUT.  Larger objects and streams of unknown size use a multipart
        session, unless an unknown-size stream ends within its first part.

        Args:
            spec: Destination and attributes of the object.
            source: Payload to upload.
            cancel: Event that, once set, stops new part uploads.

        Returns:
            The write result; its outcome is CANCELLED if ``cancel`` fired.

        Raises:
            ConfigurationError: If ``spec`` is invalid.
            EntityTooLarge: If the object cannot be stored by any transfer.
            StreamSizeMismatch: If the source ends before ``spec.size`` bytes.
            S3Error: If the service rejects a request.
        """
        spec.validate()
        if _cancelled(cancel):
            return ObjectWriteResult(spec.bucket, spec.key, outcome=TransferOutcome.CANCELLED)

        reader = _reader_for(source)
        if spec.size != UNKNOWN_SIZE and spec.size <= self.config.multipart_threshold:
            data = reader.read(0, spec.size)
            if len(data) != spec.size:
                raise StreamSizeMismatch(spec.size, len(data))
            return await self._put_single(spec, data)

        plan = plan_parts(spec.size)
        first: bytes | None = None
        if spec.size == UNKNOWN_SIZE:
            first = reader.read(0, plan.part_size)
            if len(first) < plan.part_size:
                return await self._put_single(spec.with_size(len(first)), first)

        stream_ended = False

        def next_part(number: int) -> tuple[PartDescriptor, bytes] | None:
            nonlocal stream_ended
            offset = (number - 1) * plan.part_size
            if number == 1 and first is not None:
                return PartDescriptor(number, 0, len(first)), first
            if stream_ended:
                return None
            if number > plan.part_count:
                if spec.size == UNKNOWN_SIZE and reader.read(offset, 1):
                    raise EntityTooLarge(offset + 1, plan.total_size)
                return None
            _, size = plan.part_range(number)
            data = reader.read(offset, size)
            if spec.size == UNKNOWN_SIZE:
                stream_ended = len(data) < size
                if not data:
                    return None
            elif len(data) != size:
                raise StreamSizeMismatch(spec.size, offset + len(data))
            return PartDescriptor(number, offset, len(data)), data

        async def send_part(part: PartDescriptor, data: bytes | None) -> str:
            request = self._part_request("UploadPart", session, part)
            request = with_headers(request, part_encryption_headers(spec.sse))
            request = with_body(request, data or b"")
            response = await self.transport.execute(request)
            return response.headers.get("etag", "")

        initiate = with_query(
            self._describe(
                "CreateMultipartUpload",
                "POST",
                spec,
                content_type=spec.content_type,
                metadata=spec.metadata,
                tags=spec.tags,
            ),
            {"uploads": ""},
        )
        session = await self._initiate(spec, initiate)
        return await self._drive(session, next_part, send_part, cancel)

    async def _put_single(self, spec: TransferSpec, data: bytes) -> ObjectWriteResult:
        request = self._describe(
            "PutObject",
            "PUT",
            spec,
            content_type=spec.content_type,
            metadata=spec.metadata,
            tags=spec.tags,
        )
        request = with_body(request, data)
        response = await self.transport.execute(request)
        return ObjectWriteResult(
            bucket=spec.bucket,
            key=spec.key,
            etag=strip_etag(response.headers.get("etag")),
            version_id=response.headers.get("x-amz-version-id"),
        )

    # -- COPY ------------------------------------------------------------------

    async def copy(
        self,
        spec: TransferSpec,
        source: CopySource,
        replace_metadata: bool = False,
        replace_tags: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> ObjectWriteResult:
        """Copy an object, or a byte range of it, on the server side.

        The copy is multipart when it exceeds the single-copy maximum or
        when the source range selects less than the whole object.  Without
        ``replace_metadata`` the source's metadata is carried to the
        destination; without ``replace_tags`` so are its tags.

        Raises:
            ConfigurationError: If ``spec`` or ``source`` is invalid.
            InvalidRange: If the source range falls outside the source object.
            S3Error: If the service rejects a request.
        """
        spec.validate()
        source.validate()
        if _cancelled(cancel):
            return ObjectWriteResult(spec.bucket, spec.key, outcome=TransferOutcome.CANCELLED)

        stat = await stat_object(
            self.transport, source.bucket, source.key, source.version_id, sse=source.sse
        )
        start = source.offset or 0
        length = stat.size
        if source.has_range:
            if start >= stat.size:
                raise InvalidRange(f"copy offset {start} is beyond source size {stat.size}")
            length = source.length if source.length is not None else stat.size - start
            if start + length > stat.size:
                raise InvalidRange(
                    f"copy range {start}+{length} is beyond source size {stat.size}"
                )

        if length > MAX_SINGLE_COPY_SIZE or (source.has_range and length < stat.size):
            return await self._copy_multipart(
                spec, source, stat.headers, start, length, replace_metadata, replace_tags, cancel
            )
        return await self._copy_single(spec, source, replace_metadata, replace_tags)

    def _copy_source_headers(
        self, request: RequestDescriptor, source: CopySource
    ) -> RequestDescriptor:
        request = with_headers(request, {"x-amz-copy-source": source.header_value()})
        request = apply_conditions(request, source.conditions, copy_source=True)
        return apply_copy_source_encryption(request, source.sse)

    async def _copy_single(
        self,
        spec: TransferSpec,
        source: CopySource,
        replace_metadata: bool,
        replace_tags: bool,
    ) -> ObjectWriteResult:
        if replace_metadata:
            request = self._describe(
                "CopyObject",
                "PUT",
                spec,
                content_type=spec.content_type,
                metadata=spec.metadata,
                tags=spec.tags if replace_tags else None,
            )
        else:
            request = self._describe(
                "CopyObject", "PUT", spec, tags=spec.tags if replace_tags else None
            )
        request = with_headers(
            request,
            {
                "x-amz-metadata-directive": "REPLACE" if replace_metadata else "COPY",
                "x-amz-tagging-directive": "REPLACE" if replace_tags else "COPY",
            },
        )
        request = self._copy_source_headers(request, source)
        response = await self.transport.execute(request)
        etag, _ = parse_copy_result(response.content)
        return ObjectWriteResult(
            bucket=spec.bucket,
            key=spec.key,
            etag=strip_etag(etag),
            version_id=response.headers.get("x-amz-version-id"),
        )

    async def _copy_multipart(
        self,
        spec: TransferSpec,
        source: CopySource,
        source_headers: dict[str, str],
        start: int,
        length: int,
        replace_metadata: bool,
        replace_tags: bool,
        cancel: asyncio.Event | None,
    ) -> ObjectWriteResult:
        if replace_metadata:
            content_type, metadata = spec.content_type, spec.metadata
        else:
            content_type, metadata = None, carried_headers(source_headers)
        if replace_tags:
            tags = spec.tags
        else:
            tags = await get_object_tags(
                self.transport, source.bucket, source.key, source.version_id
            )

        plan = plan_parts(length, is_copy=True)

        def next_part(number: int) -> tuple[PartDescriptor, None] | None:
            if number > plan.part_count:
                return None
            offset, size = plan.part_range(number)
            return PartDescriptor(number, offset, size), None

        async def send_part(part: PartDescriptor, data: bytes | None) -> str:
            first_byte = start + part.offset
            last_byte = first_byte + part.size - 1
            request = self._part_request("UploadPartCopy", session, part)
            request = self._copy_source_headers(request, source)
            request = with_headers(
                request, {"x-amz-copy-source-range": f"bytes={first_byte}-{last_byte}"}
            )
            request = with_headers(request, part_encryption_headers(spec.sse))
            response = await self.transport.execute(request)
            etag, _ = parse_copy_result(response.content)
            return etag

        initiate = with_query(
            self._describe(
                "CreateMultipartUpload",
                "POST",
                spec,
                content_type=content_type,
                metadata=metadata,
                tags=tags,
            ),
            {"uploads": ""},
        )
        session = await self._initiate(spec, initiate)
        return await self._drive(session, next_part, send_part, cancel)

    # -- Session lifecycle -----------------------------------------------------

    async def _initiate(self, spec: TransferSpec, request: RequestDescriptor) -> UploadSession:
        response = await self.transport.execute(request)
        upload_id = parse_initiate_multipart_upload(response.content)
        logger.info(
            "Initiated multipart upload %s for %s/%s",
            upload_id,
            spec.bucket,
            spec.key,
            extra={"bucket": spec.bucket, "key": spec.key, "upload_id": upload_id},
        )
        return UploadSession(upload_id=upload_id, spec=spec)

    async def _drive(
        self,
        session: UploadSession,
        next_part: NextPart,
        send_part: SendPart,
        cancel: asyncio.Event | None,
    ) -> ObjectWriteResult:
        """Transfer every part, then complete; abort on any other exit."""
        spec = session.spec
        completed = False
        try:
            finished = await self._run_parts(session, next_part, send_part, cancel)
            if not finished:
                logger.info(
                    "Multipart upload %s for %s/%s cancelled after %d parts",
                    session.upload_id,
                    spec.bucket,
                    spec.key,
                    len(session.parts),
                    extra={"upload_id": session.upload_id},
                )
                return ObjectWriteResult(
                    bucket=spec.bucket,
                    key=spec.key,
                    upload_id=session.upload_id,
                    part_count=len(session.parts),
                    outcome=TransferOutcome.CANCELLED,
                )
            result = await self._complete(session)
            completed = True
            return result
        finally:
            if not completed:
                await self._abort(session)

    async def _run_parts(
        self,
        session: UploadSession,
        next_part: NextPart,
        send_part: SendPart,
        cancel: asyncio.Event | None,
    ) -> bool:
        """Dispatch parts with bounded concurrency.

        A slot is acquired before a part is read, so at most
        ``max_concurrency`` part buffers exist at once.

        Returns:
            True once every part is stored, False if ``cancel`` fired.

        Raises:
            The first part failure, after in-flight parts are cancelled.
        """
        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        pending: set[asyncio.Task] = set()
        failures: list[Exception] = []

        async def run(part: PartDescriptor, data: bytes | None) -> None:
            try:
                etag = await send_part(part, data)
                session.record_etag(part.part_number, etag)
                logger.debug(
                    "Stored part %d of upload %s",
                    part.part_number,
                    session.upload_id,
                    extra={"upload_id": session.upload_id, "part_number": part.part_number},
                )
            except Exception as exc:
                failures.append(exc)
            finally:
                semaphore.release()

        session.state = SessionState.PARTS_IN_FLIGHT
        number = 1
        cancelled = False
        try:
            while True:
                await semaphore.acquire()
                if failures:
                    semaphore.release()
                    break
                if _cancelled(cancel):
                    semaphore.release()
                    cancelled = True
                    break
                item = next_part(number)
                if item is None:
                    semaphore.release()
                    break
                part, data = item
                session.add_part(part)
                task = asyncio.create_task(run(part, data))
                pending.add(task)
                task.add_done_callback(pending.discard)
                number += 1
            await asyncio.gather(*pending)
        except BaseException:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise

        if failures:
            raise failures[0]
        return not cancelled

    async def _complete(self, session: UploadSession) -> ObjectWriteResult:
        body = render_complete_multipart_upload(session.manifest()).encode("utf-8")
        request = self._session_request("CompleteMultipartUpload", "POST", session)
        request = with_headers(request, {"Content-Type": "application/xml"})
        request = with_body(request, body)
        response = await self.transport.execute(request)
        etag = parse_complete_multipart_upload(response.content)
        session.state = SessionState.COMPLETED
        logger.info(
            "Completed multipart upload %s for %s/%s with %d parts",
            session.upload_id,
            session.spec.bucket,
            session.spec.key,
            len(session.parts),
            extra={"upload_id": session.upload_id},
        )
        return ObjectWriteResult(
            bucket=session.spec.bucket,
            key=session.spec.key,
            etag=strip_etag(etag),
            version_id=response.headers.get("x-amz-version-id"),
            upload_id=session.upload_id,
            part_count=len(session.parts),
        )

    async def _abort(self, session: UploadSession) -> None:
        """Abort the session so the service releases its stored parts.

        A failed abort is logged and never replaces the error that caused it.
        """
        request = self._session_request("AbortMultipartUpload", "DELETE", session)
        try:
            await self.transport.execute(request)
        except (S3Error, httpx.HTTPError):
            logger.warning(
                "Failed to abort multipart upload %s for %s/%s",
                session.upload_id,
                session.spec.bucket,
                session.spec.key,
                exc_info=True,
                extra={"upload_id": session.upload_id},
            )
            return
        session.state = SessionState.ABORTED
        metrics.record_abort()
        logger.info(
            "Aborted multipart upload %s for %s/%s",
            session.upload_id,
            session.spec.bucket,
            session.spec.key,
            extra={"upload_id": session.upload_id},
        )
