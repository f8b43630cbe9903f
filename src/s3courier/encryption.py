"""Server-side encryption selections and their request headers.

Three variants exist: a customer-supplied key (SSE-C), a service-managed key
(SSE-S3), and a KMS-managed key (SSE-KMS).  A request carries at most one of
them for its target, plus optionally an SSE-C key for the source of a copy.
"""

from __future__ import annotations

import base64
import hashlib
import json
from dataclasses import dataclass, field
from typing import Union

from s3courier.errors import InvalidEncryptionKey

SSE_HEADER = "X-Amz-Server-Side-Encryption"
SSE_C_ALGORITHM = "X-Amz-Server-Side-Encryption-Customer-Algorithm"
SSE_C_KEY = "X-Amz-Server-Side-Encryption-Customer-Key"
SSE_C_KEY_MD5 = "X-Amz-Server-Side-Encryption-Customer-Key-MD5"
SSE_KMS_KEY_ID = "X-Amz-Server-Side-Encryption-Aws-Kms-Key-Id"
SSE_KMS_CONTEXT = "X-Amz-Server-Side-Encryption-Context"
COPY_SOURCE_PREFIX = "X-Amz-Copy-Source-"
_AMZ_PREFIX = "X-Amz-"


def copy_source_header(name: str) -> str:
    """Map an SSE header name to its copy-source counterpart."""
    return COPY_SOURCE_PREFIX + name[len(_AMZ_PREFIX) :]


# Lowercased names whose values must never reach a log line.
SECRET_HEADERS = frozenset(
    {
        SSE_C_KEY.lower(),
        copy_source_header(SSE_C_KEY).lower(),
    }
)


@dataclass(frozen=True)
class SseCustomerKey:
    """SSE-C: the caller supplies a 256-bit key with every request."""

    key: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if len(self.key) != 32:
            raise InvalidEncryptionKey(
                f"customer encryption key must be 32 bytes, got {len(self.key)}"
            )

    def __repr__(self) -> str:
        return "SseCustomerKey(key=<redacted>)"

    def headers(self) -> dict[str, str]:
        md5 = hashlib.md5(self.key).digest()
        return {
            SSE_C_ALGORITHM: "AES256",
            SSE_C_KEY: base64.b64encode(self.key).decode("ascii"),
            SSE_C_KEY_MD5: base64.b64encode(md5).decode("ascii"),
        }

    def copy_source_headers(self) -> dict[str, str]:
        """Headers that let the server decrypt an SSE-C encrypted copy source."""
        return {copy_source_header(name): value for name, value in self.headers().items()}


@dataclass(frozen=True)
class SseS3:
    """SSE-S3: the service encrypts with keys it manages."""

    def headers(self) -> dict[str, str]:
        return {SSE_HEADER: "AES256"}


@dataclass(frozen=True)
class SseKms:
    """SSE-KMS: the service encrypts with a key held in a key management service.

    Attributes:
        key_id: The KMS key id.
        context: Optional encryption context, sent as base64 encoded JSON.
    """

    key_id: str
    context: dict[str, str] | None = None

    def headers(self) -> dict[str, str]:
        headers = {SSE_HEADER: "aws:kms", SSE_KMS_KEY_ID: self.key_id}
        if self.context:
            blob = json.dumps(self.context, separators=(",", ":"), sort_keys=True)
            headers[SSE_KMS_CONTEXT] = base64.b64encode(blob.encode("utf-8")).decode("ascii")
        return headers


Encryption = Union[SseCustomerKey, SseS3, SseKms]


def encryption_headers(sse: Encryption | None) -> dict[str, str]:
    if sse is None:
        return {}
    return sse.headers()


def is_encryption_header(name: str) -> bool:
    """True for any destination or copy-source SSE header name."""
    lower = name.lower()
    if lower.startswith(COPY_SOURCE_PREFIX.lower()):
        lower = _AMZ_PREFIX.lower() + lower[len(COPY_SOURCE_PREFIX) :]
    return lower.startswith(SSE_HEADER.lower())


def part_encryption_headers(sse: Encryption | None) -> dict[str, str]:
    """Encryption headers repeated on each upload part.

    Only SSE-C needs the key on every part; SSE-S3 and SSE-KMS are declared
    once when the multipart upload is initiated.
    """
    if isinstance(sse, SseCustomerKey):
        return sse.headers()
    return {}


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """Copy of ``headers`` with customer key material masked."""
    return {
        name: ("<redacted>" if name.lower() in SECRET_HEADERS else value)
        for name, value in headers.items()
    }
