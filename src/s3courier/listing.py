"""Paginated bucket listings.

A :class:`ListingCursor` is an immutable position within a listing.
:func:`next_page` fetches one page of up to 1000 entries and returns the
advanced cursor; the ``iter_*`` async generators walk a listing to its end.
A listing restarts from ``(bucket, prefix, delimiter, recursive)`` alone and
cannot be rewound mid-sequence.
"""

from __future__ import annotations

import enum
import logging
import urllib.parse
from collections.abc import AsyncIterator
from dataclasses import dataclass, replace

from s3courier.errors import S3CourierError
from s3courier.models import IncompleteUpload, ListPage, ObjectInfo
from s3courier.request import RequestDescriptor
from s3courier.transport import Transport
from s3courier.validation import validate_bucket_name
from s3courier.xml_utils import (
    parse_list_multipart_uploads,
    parse_list_object_versions,
    parse_list_objects,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000


class ListingKind(str, enum.Enum):
    V1 = "v1"
    V2 = "v2"
    VERSIONS = "versions"
    UPLOADS = "uploads"


@dataclass(frozen=True)
class ListingCursor:
    """Position within a paginated listing.

    Attributes:
        bucket: Bucket being listed.
        prefix: Only keys starting with this prefix are listed.
        delimiter: Grouping delimiter; empty for a recursive listing.
        recursive: Whether keys below a delimiter are listed individually.
        kind: Which listing API the cursor drives.
        marker: V1 marker, V2 continuation token, or key marker.
        start_after: V2 start key used when a server omits the token.
        version_id_marker: Version marker of a version listing.
        upload_id_marker: Upload id marker of an upload listing.
        is_truncated: Whether the last response reported more pages.
        started: Whether a page has been fetched.
    """

    bucket: str
    prefix: str = ""
    delimiter: str = ""
    recursive: bool = True
    kind: ListingKind = ListingKind.V2
    marker: str | None = None
    start_after: str | None = None
    version_id_marker: str | None = None
    upload_id_marker: str | None = None
    is_truncated: bool = False
    started: bool = False

    @classmethod
    def start(
        cls,
        bucket: str,
        prefix: str = "",
        recursive: bool = True,
        kind: ListingKind = ListingKind.V2,
        delimiter: str = "/",
    ) -> ListingCursor:
        """Create a cursor positioned before the first page."""
        validate_bucket_name(bucket)
        return cls(
            bucket=bucket,
            prefix=prefix,
            delimiter="" if recursive else delimiter,
            recursive=recursive,
            kind=kind,
        )

    @property
    def done(self) -> bool:
        return self.started and not self.is_truncated


def _page_request(cursor: ListingCursor) -> RequestDescriptor:
    query: dict[str, str] = {"prefix": cursor.prefix, "encoding-type": "url"}
    if cursor.delimiter:
        query["delimiter"] = cursor.delimiter

    if cursor.kind is ListingKind.V2:
        operation = "ListObjectsV2"
        query["list-type"] = "2"
        query["max-keys"] = str(PAGE_SIZE)
        if cursor.marker:
            query["continuation-token"] = cursor.marker
        elif cursor.start_after:
            query["start-after"] = cursor.start_after
    elif cursor.kind is ListingKind.V1:
        operation = "ListObjects"
        query["max-keys"] = str(PAGE_SIZE)
        if cursor.marker:
            query["marker"] = cursor.marker
    elif cursor.kind is ListingKind.VERSIONS:
        operation = "ListObjectVersions"
        query["versions"] = ""
        query["max-keys"] = str(PAGE_SIZE)
        if cursor.marker:
            query["key-marker"] = cursor.marker
        if cursor.version_id_marker:
            query["version-id-marker"] = cursor.version_id_marker
    else:
        operation = "ListMultipartUploads"
        query["uploads"] = ""
        query["max-uploads"] = str(PAGE_SIZE)
        if cursor.marker:
            query["key-marker"] = cursor.marker
        if cursor.upload_id_marker:
            query["upload-id-marker"] = cursor.upload_id_marker

    return RequestDescriptor(operation=operation, method="GET", bucket=cursor.bucket, query=query)


def _unquote(value: str | None) -> str | None:
    if value is None:
        return None
    return urllib.parse.unquote(value)


def _decode_page(page: ListPage, kind: ListingKind) -> ListPage:
    """Percent-decode keys, prefixes and markers of a url-encoded page."""
    if (page.encoding_type or "").lower() != "url":
        return page
    for item in page.items:
        item.key = urllib.parse.unquote(item.key)
    page.prefixes = [urllib.parse.unquote(p) for p in page.prefixes]
    # V2 continuation tokens are opaque and never encoded.
    if kind is not ListingKind.V2:
        page.next_marker = _unquote(page.next_marker)
    return page


def _advance(cursor: ListingCursor, page: ListPage) -> ListingCursor:
    """Compute the cursor for the page after ``page``.

    Explicit next markers win; otherwise the last entry of the page supplies
    them.
    """
    if not page.is_truncated:
        return replace(cursor, started=True, is_truncated=False)

    last_item = page.items[-1] if page.items else None
    last_key = last_item.key if last_item is not None else None
    if page.prefixes:
        last_prefix = page.prefixes[-1]
        if last_key is None or last_prefix > last_key:
            # A prefix has no version or upload id to pair with.
            last_key = last_prefix
            last_item = None

    if cursor.kind is ListingKind.V2:
        if page.next_marker:
            advanced = replace(cursor, marker=page.next_marker, start_after=None)
        else:
            advanced = replace(cursor, marker=None, start_after=last_key)
    elif cursor.kind is ListingKind.V1:
        advanced = replace(cursor, marker=page.next_marker or last_key)
    elif cursor.kind is ListingKind.VERSIONS:
        advanced = replace(
            cursor,
            marker=page.next_marker or last_key,
            version_id_marker=page.next_version_id_marker
            or (last_item.version_id if last_item is not None else None),
        )
    else:
        advanced = replace(
            cursor,
            marker=page.next_marker or last_key,
            upload_id_marker=page.next_upload_id_marker
            or (last_item.upload_id if last_item is not None else None),
        )

    if (advanced.marker, advanced.start_after) == (cursor.marker, cursor.start_after) and (
        advanced.version_id_marker,
        advanced.upload_id_marker,
    ) == (cursor.version_id_marker, cursor.upload_id_marker):
        raise S3CourierError(
            f"listing of bucket {cursor.bucket!r} is truncated but did not advance"
        )
    return replace(advanced, started=True, is_truncated=True)


async def next_page(transport: Transport, cursor: ListingCursor) -> tuple[ListPage, ListingCursor]:
    """Fetch the page at ``cursor``.

    Returns:
        The decoded page and the cursor positioned after it.  Calling this
        with a finished cursor returns an empty page and the same cursor.
    """
    if cursor.done:
        return ListPage(), cursor

    response = await transport.execute(_page_request(cursor))
    if cursor.kind in (ListingKind.V1, ListingKind.V2):
        page = parse_list_objects(response.content)
    elif cursor.kind is ListingKind.VERSIONS:
        page = parse_list_object_versions(response.content)
    else:
        page = parse_list_multipart_uploads(response.content)

    page = _decode_page(page, cursor.kind)
    logger.debug(
        "Listed %d entries from %s (truncated=%s)",
        len(page.items) + len(page.prefixes),
        cursor.bucket,
        page.is_truncated,
        extra={"bucket": cursor.bucket},
    )
    return page, _advance(cursor, page)


async def _walk(transport: Transport, cursor: ListingCursor) -> AsyncIterator[ListPage]:
    while not cursor.done:
        page, cursor = await next_page(transport, cursor)
        yield page


async def iter_objects(
    transport: Transport,
    bucket: str,
    prefix: str = "",
    recursive: bool = True,
    use_v1: bool = False,
    include_versions: bool = False,
) -> AsyncIterator[ObjectInfo]:
    """Yield every object (or version) under ``prefix``.

    A non-recursive listing also yields each common prefix as an
    ``ObjectInfo`` with ``is_dir`` set.
    """
    if include_versions:
        kind = ListingKind.VERSIONS
    else:
        kind = ListingKind.V1 if use_v1 else ListingKind.V2
    cursor = ListingCursor.start(bucket, prefix=prefix, recursive=recursive, kind=kind)
    async for page in _walk(transport, cursor):
        for item in page.items:
            yield item
        for common_prefix in page.prefixes:
            yield ObjectInfo(key=common_prefix, is_dir=True)


async def iter_object_versions(
    transport: Transport, bucket: str, prefix: str = "", recursive: bool = True
) -> AsyncIterator[ObjectInfo]:
    async for item in iter_objects(
        transport, bucket, prefix=prefix, recursive=recursive, include_versions=True
    ):
        yield item


async def iter_incomplete_uploads(
    transport: Transport,
    bucket: str,
    prefix: str = "",
    recursive: bool = True,
    key: str | None = None,
) -> AsyncIterator[IncompleteUpload]:
    """Yield multipart uploads that were initiated but never finished.

    When ``key`` is given only uploads of exactly that key are yielded.
    """
    cursor = ListingCursor.start(
        bucket, prefix=key or prefix, recursive=recursive, kind=ListingKind.UPLOADS
    )
    async for page in _walk(transport, cursor):
        for upload in page.items:
            if key is None or upload.key == key:
                yield upload
