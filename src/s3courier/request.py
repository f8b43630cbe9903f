"""Immutable request descriptors and the functions that decorate them.

A :class:`RequestDescriptor` describes exactly one HTTP request.  Shared
concerns (preconditions, encryption, tagging, object lock, user metadata)
are applied by free functions, each returning a new descriptor.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass, field, replace
from typing import Any

from s3courier.conditions import (
    ConditionSet,
    condition_headers,
    copy_source_condition_headers,
)
from s3courier.encryption import (
    Encryption,
    SseCustomerKey,
    encryption_headers,
    is_encryption_header,
)
from s3courier.models import Retention

META_PREFIX = "x-amz-meta-"

# Headers stored with an object that are not user metadata.
STANDARD_HEADERS = frozenset(
    {
        "cache-control",
        "content-disposition",
        "content-encoding",
        "content-language",
        "content-type",
        "expires",
        "x-amz-acl",
        "x-amz-storage-class",
        "x-amz-website-redirect-location",
    }
)


@dataclass(frozen=True)
class RequestDescriptor:
    """One S3 request: target, headers, query parameters and body.

    Attributes:
        operation: Operation name used for logging and metrics.
        method: HTTP method.
        bucket: Target bucket, empty for service-level requests.
        key: Target object key, empty for bucket-level requests.
        headers: Request headers.
        query: Query parameters.  A value of ``""`` renders as ``name=``.
        body: Request payload.
    """

    operation: str
    method: str
    bucket: str = ""
    key: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def path(self) -> str:
        if not self.bucket:
            return "/"
        if not self.key:
            return f"/{self.bucket}"
        return f"/{self.bucket}/{self.key}"


def with_headers(request: RequestDescriptor, headers: dict[str, str]) -> RequestDescriptor:
    """Return ``request`` with ``headers`` merged over its current headers."""
    if not headers:
        return request
    return replace(request, headers={**request.headers, **headers})


def with_query(request: RequestDescriptor, query: dict[str, Any]) -> RequestDescriptor:
    """Return ``request`` with parameters added; ``None`` values are dropped."""
    merged = dict(request.query)
    for name, value in query.items():
        if value is not None:
            merged[name] = str(value)
    return replace(request, query=merged)


def with_body(request: RequestDescriptor, body: bytes) -> RequestDescriptor:
    return replace(request, body=body)


def apply_version(request: RequestDescriptor, version_id: str | None) -> RequestDescriptor:
    return with_query(request, {"versionId": version_id})


def apply_conditions(
    request: RequestDescriptor,
    conditions: ConditionSet | None,
    copy_source: bool = False,
) -> RequestDescriptor:
    """Apply preconditions to the request target, or to the copy source."""
    if copy_source:
        return with_headers(request, copy_source_condition_headers(conditions))
    return with_headers(request, condition_headers(conditions))


def apply_encryption(request: RequestDescriptor, sse: Encryption | None) -> RequestDescriptor:
    return with_headers(request, encryption_headers(sse))


def apply_copy_source_encryption(
    request: RequestDescriptor, sse: SseCustomerKey | None
) -> RequestDescriptor:
    if sse is None:
        return request
    return with_headers(request, sse.copy_source_headers())


def encode_tags(tags: dict[str, str]) -> str:
    return urllib.parse.urlencode(sorted(tags.items()), quote_via=urllib.parse.quote)


def apply_tagging(request: RequestDescriptor, tags: dict[str, str] | None) -> RequestDescriptor:
    """Attach tags as the URL-encoded ``x-amz-tagging`` header."""
    if not tags:
        return request
    return with_headers(request, {"x-amz-tagging": encode_tags(tags)})


def apply_retention(
    request: RequestDescriptor, retention: Retention | None
) -> RequestDescriptor:
    if retention is None:
        return request
    until = retention.retain_until.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
    return with_headers(
        request,
        {
            "x-amz-object-lock-mode": retention.mode.value,
            "x-amz-object-lock-retain-until-date": until,
        },
    )


def apply_legal_hold(request: RequestDescriptor, legal_hold: bool | None) -> RequestDescriptor:
    if legal_hold is None:
        return request
    return with_headers(
        request, {"x-amz-object-lock-legal-hold": "ON" if legal_hold else "OFF"}
    )


def normalize_metadata(metadata: dict[str, str] | None) -> dict[str, str]:
    """Namespace user metadata keys.

    Standard content headers, SSE headers and keys already carrying the
    ``x-amz-meta-`` prefix pass through unchanged.  Any other key is sent as
    ``x-amz-meta-<lowercased key>``.
    """
    if not metadata:
        return {}
    headers: dict[str, str] = {}
    for name, value in metadata.items():
        lower = name.lower()
        if lower.startswith(META_PREFIX) or lower in STANDARD_HEADERS:
            headers[lower] = value
        elif is_encryption_header(name):
            headers[name] = value
        else:
            headers[META_PREFIX + lower] = value
    return headers


def apply_metadata(
    request: RequestDescriptor, metadata: dict[str, str] | None
) -> RequestDescriptor:
    return with_headers(request, normalize_metadata(metadata))


def user_metadata(headers: dict[str, str]) -> dict[str, str]:
    """Extract ``x-amz-meta-*`` headers with the prefix stripped."""
    result: dict[str, str] = {}
    for name, value in headers.items():
        lower = name.lower()
        if lower.startswith(META_PREFIX):
            result[lower[len(META_PREFIX) :]] = value
    return result


def carried_headers(headers: dict[str, str]) -> dict[str, str]:
    """Headers of a stored object that a copy carries to its destination.

    Includes user metadata and standard content headers, lowercased.
    """
    result: dict[str, str] = {}
    for name, value in headers.items():
        lower = name.lower()
        if lower.startswith(META_PREFIX) or (lower in STANDARD_HEADERS and lower != "x-amz-acl"):
            result[lower] = value
    return result
