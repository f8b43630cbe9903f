"""Data models for transfers, listings and operation results.

These are plain dataclasses used to pass structured data between the
transfer engine, the pagination cursor, the XML codec and callers.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime

from s3courier.conditions import ConditionSet
from s3courier.encryption import Encryption, SseCustomerKey
from s3courier.errors import ConfigurationError, InvalidRange
from s3courier.planner import UNKNOWN_SIZE
from s3courier.signer import uri_encode
from s3courier.validation import validate_bucket_name, validate_object_key


class RetentionMode(str, enum.Enum):
    GOVERNANCE = "GOVERNANCE"
    COMPLIANCE = "COMPLIANCE"


@dataclass(frozen=True)
class Retention:
    """Object lock retention applied to a written object."""

    mode: RetentionMode
    retain_until: datetime


@dataclass(frozen=True)
class TransferSpec:
    """Everything needed to write one object.

    Attributes:
        bucket: Destination bucket name.
        key: Destination object key.
        version_id: Object version the transfer refers to, when pinned.
        size: Content length in bytes, or -1 when unknown.
        content_type: MIME type of the object.
        metadata: User metadata and standard headers to store with it.
        tags: Object tags.
        retention: Object lock retention, if any.
        legal_hold: Object lock legal hold flag, if any.
        sse: Server-side encryption selection for the destination.
    """

    bucket: str
    key: str
    version_id: str | None = None
    size: int = UNKNOWN_SIZE
    content_type: str = "application/octet-stream"
    metadata: dict[str, str] = field(default_factory=dict)
    tags: dict[str, str] = field(default_factory=dict)
    retention: Retention | None = None
    legal_hold: bool | None = None
    sse: Encryption | None = None

    def validate(self) -> TransferSpec:
        """Check names and size before any request is issued."""
        validate_bucket_name(self.bucket)
        validate_object_key(self.key)
        if self.size < UNKNOWN_SIZE:
            raise ConfigurationError(f"invalid object size {self.size}")
        return self

    def with_size(self, size: int) -> TransferSpec:
        return replace(self, size=size)


class SessionState(str, enum.Enum):
    INITIATED = "INITIATED"
    PARTS_IN_FLIGHT = "PARTS_IN_FLIGHT"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


@dataclass
class PartDescriptor:
    """One part of a multipart session.

    Attributes:
        part_number: 1-based position of the part.
        offset: Byte offset of the part within the object.
        size: Size of the part in bytes.
        etag: ETag returned by the server once the part is stored.
    """

    part_number: int
    offset: int
    size: int
    etag: str | None = None


@dataclass
class UploadSession:
    """Client-side state of a multipart upload.

    Parts are keyed by part number; completion requires every part in
    ``1..len(parts)`` to carry an ETag.
    """

    upload_id: str
    spec: TransferSpec
    parts: dict[int, PartDescriptor] = field(default_factory=dict)
    state: SessionState = SessionState.INITIATED

    def add_part(self, part: PartDescriptor) -> None:
        expected = len(self.parts) + 1
        if part.part_number != expected:
            raise ConfigurationError(
                f"part {part.part_number} added out of order, expected {expected}"
            )
        self.parts[part.part_number] = part

    def record_etag(self, part_number: int, etag: str) -> None:
        self.parts[part_number].etag = etag

    @property
    def is_complete(self) -> bool:
        return bool(self.parts) and all(part.etag for part in self.parts.values())

    def manifest(self) -> list[tuple[int, str]]:
        """Ordered ``(part_number, etag)`` pairs for the completion request."""
        if not self.is_complete:
            missing = [n for n, part in self.parts.items() if not part.etag]
            raise ConfigurationError(f"cannot complete upload, parts without ETag: {missing}")
        return [(n, self.parts[n].etag) for n in sorted(self.parts)]


class TransferOutcome(str, enum.Enum):
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


@dataclass
class ObjectWriteResult:
    """Result of a PUT or COPY, single-shot or multipart."""

    bucket: str
    key: str
    etag: str | None = None
    version_id: str | None = None
    upload_id: str | None = None
    part_count: int = 1
    outcome: TransferOutcome = TransferOutcome.COMPLETED

    @property
    def cancelled(self) -> bool:
        return self.outcome is TransferOutcome.CANCELLED


@dataclass
class ObjectStat:
    """Object attributes returned by HEAD."""

    bucket: str
    key: str
    size: int
    etag: str
    last_modified: datetime | None = None
    content_type: str | None = None
    version_id: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ObjectInfo:
    """One entry of an object or version listing.

    ``is_dir`` marks a common prefix returned by a delimited listing.
    """

    key: str
    size: int = 0
    etag: str | None = None
    last_modified: datetime | None = None
    storage_class: str | None = None
    version_id: str | None = None
    is_latest: bool = False
    is_delete_marker: bool = False
    is_dir: bool = False


@dataclass
class IncompleteUpload:
    """A multipart upload that was initiated but neither completed nor aborted."""

    key: str
    upload_id: str
    initiated: datetime | None = None
    storage_class: str | None = None


@dataclass
class ListPage:
    """One decoded listing response.

    Attributes:
        items: Objects, versions, or incomplete uploads on this page.
        prefixes: Common prefixes on this page.
        is_truncated: Whether more pages follow.
        next_marker: Marker, continuation token, or key marker for the next page.
        next_version_id_marker: Version marker for version listings.
        next_upload_id_marker: Upload id marker for upload listings.
        encoding_type: ``url`` when the server percent-encoded values.
    """

    items: list = field(default_factory=list)
    prefixes: list[str] = field(default_factory=list)
    is_truncated: bool = False
    next_marker: str | None = None
    next_version_id_marker: str | None = None
    next_upload_id_marker: str | None = None
    encoding_type: str | None = None


@dataclass
class DeleteError:
    """A key that a multi-object delete could not remove."""

    key: str
    code: str
    message: str
    version_id: str | None = None


@dataclass(frozen=True)
class CopySource:
    """The object a server-side copy reads from.

    Attributes:
        bucket: Source bucket.
        key: Source object key.
        version_id: Source version, when pinned.
        conditions: Preconditions sent as ``x-amz-copy-source-if-*``.
        offset: First byte to copy.
        length: Number of bytes to copy from ``offset``.
        sse: Customer key the source object is encrypted with.
    """

    bucket: str
    key: str
    version_id: str | None = None
    conditions: ConditionSet | None = None
    offset: int | None = None
    length: int | None = None
    sse: SseCustomerKey | None = None

    def validate(self) -> CopySource:
        validate_bucket_name(self.bucket)
        validate_object_key(self.key)
        if self.offset is not None and self.offset < 0:
            raise InvalidRange(f"copy offset cannot be negative, got {self.offset}")
        if self.length is not None and self.length <= 0:
            raise InvalidRange(f"copy length must be positive, got {self.length}")
        return self

    @property
    def has_range(self) -> bool:
        return self.offset is not None or self.length is not None

    def header_value(self) -> str:
        """Value of the ``x-amz-copy-source`` header."""
        source = "/" + uri_encode(self.bucket) + "/" + uri_encode(self.key, encode_slash=False)
        if self.version_id:
            source += "?versionId=" + uri_encode(self.version_id)
        return source
