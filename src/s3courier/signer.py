"""AWS Signature Version 4 request signing for s3courier.

Implements the client half of SigV4: header-based signing of outgoing
requests, query-string signing of presigned URLs, and the signature of a
browser POST policy document.

References:
    - https://docs.aws.amazon.com/AmazonS3/latest/API/sig-v4-authenticating-requests.html
"""

import hashlib
import hmac
import re
import urllib.parse
from dataclasses import dataclass, field
from datetime import datetime, timezone

# Constants
ALGORITHM = "AWS4-HMAC-SHA256"
KEY_PREFIX = "AWS4"
SCOPE_TERMINATOR = "aws4_request"
SERVICE_NAME = "s3"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
SCOPE_DATE_FORMAT = "%Y%m%d"


@dataclass(frozen=True)
class Credentials:
    """Static credentials used to sign requests.

    Attributes:
        access_key: The access key id.
        secret_key: The secret access key.
        session_token: Temporary session token, if the credentials have one.
    """

    access_key: str
    secret_key: str = field(repr=False)
    session_token: str = field(default="", repr=False)

    @property
    def anonymous(self) -> bool:
        return not self.access_key


def derive_signing_key(secret_key: str, date: str, region: str, service: str) -> bytes:
    """Derive the SigV4 signing key via the HMAC-SHA256 chain.

    Args:
        secret_key: The secret access key.
        date: Date string (YYYYMMDD).
        region: AWS region.
        service: AWS service name.

    Returns:
        The 32-byte signing key.
    """
    k_date = hmac.new(
        (KEY_PREFIX + secret_key).encode("utf-8"),
        date.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    k_region = hmac.new(k_date, region.encode("utf-8"), hashlib.sha256).digest()
    k_service = hmac.new(k_region, service.encode("utf-8"), hashlib.sha256).digest()
    return hmac.new(k_service, SCOPE_TERMINATOR.encode("utf-8"), hashlib.sha256).digest()


def credential_scope(date: str, region: str) -> str:
    return f"{date}/{region}/{SERVICE_NAME}/{SCOPE_TERMINATOR}"


def uri_encode(s: str, encode_slash: bool = True) -> str:
    """S3-compatible URI encoding.

    Characters A-Z, a-z, 0-9, '-', '_', '.', '~' are not encoded.
    All other characters are percent-encoded with uppercase hex.
    Spaces become %20 (not +).
    """
    safe = "-_.~" if encode_slash else "-_.~/"
    return urllib.parse.quote(s, safe=safe)


def uri_encode_path(path: str) -> str:
    """URI-encode a path, preserving forward slashes."""
    if not path:
        return "/"
    encoded = "/".join(uri_encode(segment, encode_slash=False) for segment in path.split("/"))
    if not encoded.startswith("/"):
        encoded = "/" + encoded
    return encoded


def canonical_query_string(query: dict[str, str]) -> str:
    """Build the canonical query string from decoded parameters.

    Parameters are sorted by name, then value.  Names and values are
    URI-encoded; parameters without a value render as ``name=``.  The result
    doubles as the query string actually sent, so the signed and transmitted
    forms never diverge.
    """
    pairs = sorted((str(name), str(value)) for name, value in query.items())
    return "&".join(f"{uri_encode(name)}={uri_encode(value)}" for name, value in pairs)


def _trim_header_value(value: str) -> str:
    """Strip surrounding whitespace and collapse runs of spaces."""
    return re.sub(r" +", " ", value.strip())


def build_canonical_request(
    method: str,
    path: str,
    query: dict[str, str],
    headers: dict[str, str],
    signed_headers: list[str],
    payload_hash: str,
) -> str:
    """Build the canonical request string.

    Args:
        method: HTTP method (uppercase).
        path: Decoded request path, e.g. ``/bucket/key``.
        query: Decoded query parameters.
        headers: Request headers (names may be mixed case).
        signed_headers: Lowercase names of the headers to sign.
        payload_hash: SHA-256 hex digest of the body, or UNSIGNED-PAYLOAD.

    Returns:
        The canonical request string.
    """
    lower_headers: dict[str, str] = {}
    for name, value in headers.items():
        lower_name = name.lower()
        if lower_name in lower_headers:
            lower_headers[lower_name] += "," + _trim_header_value(value)
        else:
            lower_headers[lower_name] = _trim_header_value(value)

    sorted_signed = sorted(signed_headers)
    canonical_headers = "".join(
        f"{name}:{lower_headers.get(name, '')}\n" for name in sorted_signed
    )
    parts = [
        method,
        uri_encode_path(path),
        canonical_query_string(query),
        canonical_headers,
        ";".join(sorted_signed),
        payload_hash,
    ]
    return "\n".join(parts)


def build_string_to_sign(timestamp: str, scope: str, canonical_request: str) -> str:
    canonical_hash = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return f"{ALGORITHM}\n{timestamp}\n{scope}\n{canonical_hash}"


def compute_signature(signing_key: bytes, string_to_sign: str) -> str:
    return hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sign_headers(
    method: str,
    host: str,
    path: str,
    query: dict[str, str],
    headers: dict[str, str],
    payload_hash: str,
    credentials: Credentials,
    region: str,
    now: datetime | None = None,
) -> dict[str, str]:
    """Sign a request with an ``Authorization`` header.

    Args:
        method: HTTP method.
        host: Value of the Host header (host[:port]).
        path: Decoded request path.
        query: Decoded query parameters.
        headers: Headers that will be sent.
        payload_hash: SHA-256 hex digest of the body, or UNSIGNED-PAYLOAD.
        credentials: Signing credentials.
        region: Signing region.
        now: Signing time; defaults to the current UTC time.

    Returns:
        A new header mapping including Host, x-amz-date,
        x-amz-content-sha256, the session token if any, and Authorization.
    """
    now = now or _utcnow()
    amz_date = now.strftime(AMZ_DATE_FORMAT)
    date = now.strftime(SCOPE_DATE_FORMAT)

    signed = dict(headers)
    signed["Host"] = host
    signed["x-amz-date"] = amz_date
    signed["x-amz-content-sha256"] = payload_hash
    if credentials.session_token:
        signed["x-amz-security-token"] = credentials.session_token

    signed_names = sorted(
        {
            name.lower()
            for name in signed
            if name.lower() in ("host", "content-md5", "content-type")
            or name.lower().startswith("x-amz-")
        }
    )
    canonical_request = build_canonical_request(
        method, path, query, signed, signed_names, payload_hash
    )
    scope = credential_scope(date, region)
    string_to_sign = build_string_to_sign(amz_date, scope, canonical_request)
    signing_key = derive_signing_key(credentials.secret_key, date, region, SERVICE_NAME)
    signature = compute_signature(signing_key, string_to_sign)

    signed["Authorization"] = (
        f"{ALGORITHM} Credential={credentials.access_key}/{scope}, "
        f"SignedHeaders={';'.join(signed_names)}, Signature={signature}"
    )
    return signed


def presign_query(
    method: str,
    host: str,
    path: str,
    query: dict[str, str],
    credentials: Credentials,
    region: str,
    expires: int,
    now: datetime | None = None,
) -> dict[str, str]:
    """Sign a request in its query string.

    Only the Host header is signed and the payload is UNSIGNED-PAYLOAD, so
    the resulting URL can be used by any HTTP client.

    Returns:
        The query parameters, including ``X-Amz-Signature``.
    """
    now = now or _utcnow()
    amz_date = now.strftime(AMZ_DATE_FORMAT)
    date = now.strftime(SCOPE_DATE_FORMAT)
    scope = credential_scope(date, region)

    params = dict(query)
    params["X-Amz-Algorithm"] = ALGORITHM
    params["X-Amz-Credential"] = f"{credentials.access_key}/{scope}"
    params["X-Amz-Date"] = amz_date
    params["X-Amz-Expires"] = str(expires)
    params["X-Amz-SignedHeaders"] = "host"
    if credentials.session_token:
        params["X-Amz-Security-Token"] = credentials.session_token

    canonical_request = build_canonical_request(
        method, path, params, {"host": host}, ["host"], UNSIGNED_PAYLOAD
    )
    string_to_sign = build_string_to_sign(amz_date, scope, canonical_request)
    signing_key = derive_signing_key(credentials.secret_key, date, region, SERVICE_NAME)
    params["X-Amz-Signature"] = compute_signature(signing_key, string_to_sign)
    return params


def sign_policy(policy_b64: str, credentials: Credentials, region: str, now: datetime) -> str:
    """Sign a base64-encoded POST policy document.

    The string to sign for a POST policy is the encoded policy itself.
    """
    signing_key = derive_signing_key(
        credentials.secret_key, now.strftime(SCOPE_DATE_FORMAT), region, SERVICE_NAME
    )
    return compute_signature(signing_key, policy_b64)
