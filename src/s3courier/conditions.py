"""Conditional request headers shared by stat, get and copy."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime

from s3courier.errors import ConflictingConditions, InvalidRange


def _http_date(value: datetime) -> str:
    """Format a datetime as an RFC 1123 HTTP date in GMT."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def _quote_etag(etag: str) -> str:
    if etag == "*" or etag.startswith('"'):
        return etag
    return f'"{etag}"'


@dataclass(frozen=True)
class ByteRange:
    """A byte range selected by offset, length, or both."""

    offset: int | None = None
    length: int | None = None

    def __post_init__(self) -> None:
        if self.offset is not None and self.offset < 0:
            raise InvalidRange(f"range offset cannot be negative, got {self.offset}")
        if self.length is not None and self.length <= 0:
            raise InvalidRange(f"range length must be positive, got {self.length}")
        if self.offset is None and self.length is None:
            raise InvalidRange("range needs an offset, a length, or both")

    def header_value(self) -> str:
        """Render the ``Range`` header value.

        Offset only gives an open-ended range, length only a suffix range,
        and both a closed range ending at ``offset + length - 1``.
        """
        if self.length is None:
            return f"bytes={self.offset}-"
        if self.offset is None:
            return f"bytes=-{self.length}"
        return f"bytes={self.offset}-{self.offset + self.length - 1}"


@dataclass(frozen=True)
class ConditionSet:
    """Preconditions evaluated by the server against the target object.

    Attributes:
        match_etag: Proceed only if the current ETag matches.
        not_match_etag: Proceed only if the current ETag differs.
        modified_since: Proceed only if modified after this time.
        unmodified_since: Proceed only if not modified after this time.
        byte_range: Restrict a read to part of the object.
    """

    match_etag: str | None = None
    not_match_etag: str | None = None
    modified_since: datetime | None = None
    unmodified_since: datetime | None = None
    byte_range: ByteRange | None = None

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Reject contradictory preconditions.

        Raises:
            ConflictingConditions: If both ETag fields or both date fields
                are set.
        """
        if self.match_etag and self.not_match_etag:
            raise ConflictingConditions("match_etag", "not_match_etag")
        if self.modified_since is not None and self.unmodified_since is not None:
            raise ConflictingConditions("modified_since", "unmodified_since")

    @property
    def is_empty(self) -> bool:
        return (
            not self.match_etag
            and not self.not_match_etag
            and self.modified_since is None
            and self.unmodified_since is None
            and self.byte_range is None
        )


def condition_headers(conditions: ConditionSet | None) -> dict[str, str]:
    """Build request headers for a ConditionSet targeting the request object."""
    if conditions is None:
        return {}
    conditions.validate()
    headers: dict[str, str] = {}
    if conditions.match_etag:
        headers["If-Match"] = _quote_etag(conditions.match_etag)
    if conditions.not_match_etag:
        headers["If-None-Match"] = _quote_etag(conditions.not_match_etag)
    if conditions.modified_since is not None:
        headers["If-Modified-Since"] = _http_date(conditions.modified_since)
    if conditions.unmodified_since is not None:
        headers["If-Unmodified-Since"] = _http_date(conditions.unmodified_since)
    if conditions.byte_range is not None:
        headers["Range"] = conditions.byte_range.header_value()
    return headers


def copy_source_condition_headers(conditions: ConditionSet | None) -> dict[str, str]:
    """Build ``x-amz-copy-source-if-*`` headers for the source of a copy.

    The byte range is not emitted here; copies express it through
    ``x-amz-copy-source-range`` on each part.
    """
    if conditions is None:
        return {}
    conditions.validate()
    headers: dict[str, str] = {}
    if conditions.match_etag:
        headers["x-amz-copy-source-if-match"] = _quote_etag(conditions.match_etag)
    if conditions.not_match_etag:
        headers["x-amz-copy-source-if-none-match"] = _quote_etag(conditions.not_match_etag)
    if conditions.modified_since is not None:
        headers["x-amz-copy-source-if-modified-since"] = _http_date(conditions.modified_since)
    if conditions.unmodified_since is not None:
        headers["x-amz-copy-source-if-unmodified-since"] = _http_date(
            conditions.unmodified_since
        )
    return headers


def range_header(offset: int | None = None, length: int | None = None) -> dict[str, str]:
    """Return a ``Range`` header for a read, or nothing when neither is given."""
    if offset is None and length is None:
        return {}
    return {"Range": ByteRange(offset=offset, length=length).header_value()}
