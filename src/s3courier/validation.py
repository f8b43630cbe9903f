"""Argument validation helpers for s3courier.

Every check runs before a request is built, so invalid input never costs a
network round trip.  Each function raises a ``ConfigurationError`` subclass.
"""

import re

from s3courier.errors import (
    InvalidBucketName,
    InvalidExpiry,
    InvalidObjectName,
    InvalidPartNumber,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BUCKET_RE = re.compile(r"^[a-z0-9][a-z0-9.\-]{1,61}[a-z0-9]$")
_IP_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")

_MAX_KEY_BYTES = 1024

MAX_PART_NUMBER = 10000
MAX_EXPIRY_SECONDS = 7 * 24 * 3600


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def validate_bucket_name(name: str) -> None:
    """Validate a bucket name against the S3 naming rules.

    Args:
        name: The candidate bucket name.

    Raises:
        InvalidBucketName: If the name violates a naming rule.
    """
    if not name:
        raise InvalidBucketName(name, "bucket name cannot be empty")

    if len(name) < 3 or len(name) > 63:
        raise InvalidBucketName(name, "bucket name must be 3 to 63 characters long")

    if not _BUCKET_RE.match(name):
        raise InvalidBucketName(name, "bucket name contains invalid characters")

    if _IP_RE.match(name):
        raise InvalidBucketName(name, "bucket name cannot be an IP address")

    if ".." in name:
        raise InvalidBucketName(name, "bucket name cannot contain consecutive periods")


def validate_object_key(key: str) -> None:
    """Validate an object key.

    Raises:
        InvalidObjectName: If the key is empty or longer than 1024 UTF-8 bytes.
    """
    if not key:
        raise InvalidObjectName(key, "object name cannot be empty")
    if len(key.encode("utf-8")) > _MAX_KEY_BYTES:
        raise InvalidObjectName(key, f"object name exceeds {_MAX_KEY_BYTES} bytes")


def validate_part_number(part_number: int) -> None:
    if part_number < 1 or part_number > MAX_PART_NUMBER:
        raise InvalidPartNumber(part_number)


def validate_expiry(expires: int) -> None:
    """Validate a presigned grant lifetime in seconds.

    Raises:
        InvalidExpiry: Unless ``1 <= expires <= 604800``.
    """
    if expires < 1 or expires > MAX_EXPIRY_SECONDS:
        raise InvalidExpiry(expires, MAX_EXPIRY_SECONDS)
