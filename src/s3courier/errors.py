"""Error definitions for s3courier.

Local errors (configuration, size limits, stream contracts) are raised before
or instead of a network round trip.  Remote errors carry the code and message
the server returned in its XML error document.
"""


class S3CourierError(Exception):
    """Base class for every error raised by s3courier."""


# -- Local errors --------------------------------------------------------------


class ConfigurationError(S3CourierError, ValueError):
    """An operation was configured with invalid or contradictory arguments."""


class ConflictingConditions(ConfigurationError):
    """Both members of a mutually exclusive condition pair were set."""

    def __init__(self, first: str, second: str) -> None:
        super().__init__(f"{first} and {second} are mutually exclusive")
        self.first = first
        self.second = second


class InvalidExpiry(ConfigurationError):
    """A presigned grant expiry is outside the allowed window."""

    def __init__(self, expires: int, maximum: int) -> None:
        super().__init__(f"expiry must be between 1 and {maximum} seconds, got {expires}")
        self.expires = expires
        self.maximum = maximum


class InvalidBucketName(ConfigurationError):
    """The bucket name cannot be used in a request."""

    def __init__(self, bucket: str, reason: str) -> None:
        super().__init__(f"invalid bucket name {bucket!r}: {reason}")
        self.bucket = bucket


class InvalidObjectName(ConfigurationError):
    """The object key cannot be used in a request."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"invalid object name {key!r}: {reason}")
        self.key = key


class InvalidPartNumber(ConfigurationError):
    """A part number falls outside 1..10000."""

    def __init__(self, part_number: int) -> None:
        super().__init__(f"part number must be between 1 and 10000, got {part_number}")
        self.part_number = part_number


class InvalidRange(ConfigurationError):
    """A byte range has a negative offset or a non-positive length."""


class InvalidEncryptionKey(ConfigurationError):
    """A customer-supplied encryption key is not 256 bits long."""


class EntityTooLarge(S3CourierError):
    """The object exceeds the largest size a transfer can carry."""

    def __init__(self, size: int, maximum: int) -> None:
        super().__init__(f"object size {size} exceeds the maximum of {maximum} bytes")
        self.size = size
        self.maximum = maximum


class StreamSizeMismatch(S3CourierError):
    """The source stream produced a different number of bytes than declared."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"expected {expected} bytes from stream, got {actual}")
        self.expected = expected
        self.actual = actual


# -- Remote errors ---------------------------------------------------------------


class S3Error(S3CourierError):
    """An error response decoded from an S3-compatible service.

    Attributes:
        code: The S3 error code string (e.g. "NoSuchBucket", "AccessDenied").
        message: Human-readable error description from the server.
        http_status: The HTTP status code of the response.
        resource: The resource the error refers to, when reported.
        request_id: The server request id, when reported.
        host_id: The server host id, when reported.
        extra_fields: Any additional elements of the error document.
    """

    default_code = ""

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 400,
        resource: str = "",
        request_id: str = "",
        host_id: str = "",
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        """Initialize the S3 error.

        Args:
            code: S3 error code.
            message: Error description.
            http_status: HTTP status code (default 400).
            resource: Resource named by the server.
            request_id: Value of the RequestId element.
            host_id: Value of the HostId element.
            extra_fields: Remaining elements of the error document.
        """
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.resource = resource
        self.request_id = request_id
        self.host_id = host_id
        self.extra_fields = extra_fields or {}


# -- Common pre-defined errors ------------------------------------------------


class AccessDenied(S3Error):
    default_code = "AccessDenied"


class NoSuchBucket(S3Error):
    default_code = "NoSuchBucket"


class NoSuchKey(S3Error):
    default_code = "NoSuchKey"


class NoSuchUpload(S3Error):
    default_code = "NoSuchUpload"


class NoSuchVersion(S3Error):
    default_code = "NoSuchVersion"


class PreconditionFailed(S3Error):
    default_code = "PreconditionFailed"


class NotModified(S3Error):
    """The object was not modified since the supplied date or ETag."""

    default_code = "NotModified"


class InvalidPart(S3Error):
    default_code = "InvalidPart"


class InvalidPartOrder(S3Error):
    default_code = "InvalidPartOrder"


class BucketAlreadyOwnedByYou(S3Error):
    default_code = "BucketAlreadyOwnedByYou"


class BucketNotEmpty(S3Error):
    default_code = "BucketNotEmpty"


_ERROR_CLASSES: dict[str, type[S3Error]] = {
    cls.default_code: cls
    for cls in (
        AccessDenied,
        NoSuchBucket,
        NoSuchKey,
        NoSuchUpload,
        NoSuchVersion,
        PreconditionFailed,
        NotModified,
        InvalidPart,
        InvalidPartOrder,
        BucketAlreadyOwnedByYou,
        BucketNotEmpty,
    )
}

# Codes inferred for bodiless responses (HEAD requests, 304).
_STATUS_CODES: dict[int, tuple[str, str]] = {
    304: ("NotModified", "Not Modified"),
    400: ("BadRequest", "Bad Request"),
    403: ("AccessDenied", "Access Denied"),
    404: ("NoSuchKey", "The specified key does not exist."),
    405: ("MethodNotAllowed", "Method Not Allowed"),
    409: ("Conflict", "Conflict"),
    412: ("PreconditionFailed", "At least one of the pre-conditions you specified did not hold"),
    416: ("InvalidRange", "The requested range is not satisfiable"),
    501: ("NotImplemented", "Not Implemented"),
}


def make_error(
    code: str,
    message: str,
    http_status: int,
    resource: str = "",
    request_id: str = "",
    host_id: str = "",
    extra_fields: dict[str, str] | None = None,
) -> S3Error:
    """Build the most specific S3Error subclass for an error code."""
    cls = _ERROR_CLASSES.get(code, S3Error)
    return cls(
        code=code,
        message=message,
        http_status=http_status,
        resource=resource,
        request_id=request_id,
        host_id=host_id,
        extra_fields=extra_fields,
    )


def error_for_status(http_status: int, resource: str = "", request_id: str = "") -> S3Error:
    """Build an S3Error for a response that carried no error document.

    Args:
        http_status: The HTTP status code of the response.
        resource: The request path, used as the error resource.
        request_id: Value of the x-amz-request-id header, if any.

    Returns:
        An S3Error subclass matching the status code.
    """
    code, message = _STATUS_CODES.get(http_status, ("UnknownError", f"HTTP {http_status}"))
    if http_status == 404 and resource.count("/") <= 1:
        code, message = "NoSuchBucket", "The specified bucket does not exist."
    return make_error(code, message, http_status, resource=resource, request_id=request_id)
