"""Single-request object operations: stat, get, tags and delete.

Each function builds one request descriptor, executes it through the
transport and decodes the response.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from collections.abc import AsyncIterator
from email.utils import parsedate_to_datetime

import httpx

from s3courier.conditions import ConditionSet
from s3courier.encryption import SseCustomerKey
from s3courier.models import DeleteError, ObjectStat
from s3courier.request import (
    RequestDescriptor,
    apply_conditions,
    apply_encryption,
    apply_version,
    user_metadata,
    with_body,
    with_headers,
    with_query,
)
from s3courier.transport import Transport
from s3courier.validation import validate_bucket_name, validate_object_key
from s3courier.xml_utils import (
    parse_delete_result,
    parse_tagging,
    render_delete_objects,
)

logger = logging.getLogger(__name__)

DELETE_BATCH_SIZE = 1000


def strip_etag(etag: str | None) -> str:
    return (etag or "").strip('"')


def stat_from_headers(bucket: str, key: str, headers: httpx.Headers) -> ObjectStat:
    """Build an ObjectStat from HEAD or GET response headers."""
    last_modified = headers.get("last-modified")
    lowered = {name.lower(): value for name, value in headers.items()}
    return ObjectStat(
        bucket=bucket,
        key=key,
        size=int(headers.get("content-length", "0")),
        etag=strip_etag(headers.get("etag")),
        last_modified=parsedate_to_datetime(last_modified) if last_modified else None,
        content_type=headers.get("content-type"),
        version_id=headers.get("x-amz-version-id"),
        metadata=user_metadata(lowered),
        headers=lowered,
    )


def object_request(
    operation: str,
    method: str,
    bucket: str,
    key: str,
    version_id: str | None = None,
    conditions: ConditionSet | None = None,
    sse: SseCustomerKey | None = None,
) -> RequestDescriptor:
    """Describe a request addressed to one object version."""
    validate_bucket_name(bucket)
    validate_object_key(key)
    request = RequestDescriptor(operation=operation, method=method, bucket=bucket, key=key)
    request = apply_version(request, version_id)
    request = apply_conditions(request, conditions)
    return apply_encryption(request, sse)


async def stat_object(
    transport: Transport,
    bucket: str,
    key: str,
    version_id: str | None = None,
    conditions: ConditionSet | None = None,
    sse: SseCustomerKey | None = None,
) -> ObjectStat:
    request = object_request("HeadObject", "HEAD", bucket, key, version_id, conditions, sse)
    response = await transport.execute(request)
    return stat_from_headers(bucket, key, response.headers)


async def get_object(
    transport: Transport,
    bucket: str,
    key: str,
    version_id: str | None = None,
    conditions: ConditionSet | None = None,
    sse: SseCustomerKey | None = None,
) -> bytes:
    """Read a whole object, or the range selected by ``conditions``, into memory."""
    request = object_request("GetObject", "GET", bucket, key, version_id, conditions, sse)
    response = await transport.execute(request)
    return response.content


async def iter_object(
    transport: Transport,
    bucket: str,
    key: str,
    version_id: str | None = None,
    conditions: ConditionSet | None = None,
    sse: SseCustomerKey | None = None,
    chunk_size: int = 64 * 1024,
) -> AsyncIterator[bytes]:
    """Yield an object's body in chunks without buffering it whole."""
    request = object_request("GetObject", "GET", bucket, key, version_id, conditions, sse)
    async with transport.stream(request) as response:
        async for chunk in response.aiter_bytes(chunk_size):
            yield chunk


async def get_object_tags(
    transport: Transport, bucket: str, key: str, version_id: str | None = None
) -> dict[str, str]:
    request = object_request("GetObjectTagging", "GET", bucket, key, version_id)
    request = with_query(request, {"tagging": ""})
    response = await transport.execute(request)
    return parse_tagging(response.content)


async def remove_object(
    transport: Transport, bucket: str, key: str, version_id: str | None = None
) -> None:
    request = object_request("DeleteObject", "DELETE", bucket, key, version_id)
    await transport.execute(request)


async def remove_objects(
    transport: Transport,
    bucket: str,
    objects: list[tuple[str, str | None]],
) -> list[DeleteError]:
    """Delete many objects with batched multi-object delete requests.

    Args:
        transport: Transport to execute requests with.
        bucket: Bucket holding the objects.
        objects: ``(key, version_id)`` pairs; version id may be None.

    Returns:
        Every failure the server reported, across all batches.
    """
    validate_bucket_name(bucket)
    errors: list[DeleteError] = []
    for start in range(0, len(objects), DELETE_BATCH_SIZE):
        batch = objects[start : start + DELETE_BATCH_SIZE]
        for key, _ in batch:
            validate_object_key(key)
        body = render_delete_objects(batch).encode("utf-8")
        request = RequestDescriptor(
            operation="DeleteObjects", method="POST", bucket=bucket, query={"delete": ""}
        )
        request = with_headers(
            request,
            {
                "Content-Type": "application/xml",
                "Content-MD5": base64.b64encode(hashlib.md5(body).digest()).decode("ascii"),
            },
        )
        request = with_body(request, body)
        response = await transport.execute(request)
        errors.extend(parse_delete_result(response.content))
    if errors:
        logger.warning("%d objects could not be deleted from %s", len(errors), bucket)
    return errors
