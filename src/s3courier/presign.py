"""Presigned URLs and browser POST policies.

A presigned grant lets a holder perform one operation without owning
credentials.  GET and PUT grants are URLs signed in their query string; a
POST grant is a signed policy document plus the form fields a browser must
submit with the upload.  Nothing in this module sends a request.
"""

from __future__ import annotations

import base64
import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

from s3courier.errors import ConfigurationError
from s3courier.signer import (
    ALGORITHM,
    AMZ_DATE_FORMAT,
    SCOPE_DATE_FORMAT,
    Credentials,
    credential_scope,
    presign_query,
    sign_policy,
)
from s3courier.transport import Transport
from s3courier.validation import (
    MAX_EXPIRY_SECONDS,
    validate_bucket_name,
    validate_expiry,
    validate_object_key,
)

DEFAULT_EXPIRY = MAX_EXPIRY_SECONDS


@dataclass(frozen=True)
class PresignedGrant:
    """A signed, time-bounded permission.

    Attributes:
        method: HTTP method the grant allows.
        url: Presigned URL, or the form submission target for POST.
        expires: Lifetime in seconds.
        request_time: Time the grant was signed at.
        form_fields: Fields to submit with a POST upload; empty otherwise.
    """

    method: str
    url: str
    expires: int
    request_time: datetime
    form_fields: dict[str, str] = field(default_factory=dict)

    @property
    def expires_at(self) -> datetime:
        return self.request_time + timedelta(seconds=self.expires)

    def policy_document(self) -> dict[str, Any]:
        """Decode the policy carried by a POST grant."""
        if "policy" not in self.form_fields:
            raise ConfigurationError("grant has no POST policy")
        return json.loads(base64.b64decode(self.form_fields["policy"]))


def _require_credentials(transport: Transport) -> Credentials:
    credentials = transport.credentials
    if credentials is None or credentials.anonymous:
        raise ConfigurationError("presigning requires credentials")
    return credentials


def _utc(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def presign_url(
    transport: Transport,
    method: str,
    bucket: str,
    key: str,
    expires: int = DEFAULT_EXPIRY,
    request_time: datetime | None = None,
    version_id: str | None = None,
    query: dict[str, str] | None = None,
) -> PresignedGrant:
    """Presign a request to one object.

    Args:
        transport: Supplies the endpoint, region and credentials.
        method: HTTP method, e.g. GET or PUT.
        bucket: Bucket name.
        key: Object key.
        expires: Lifetime in seconds, between 1 and 604800.
        request_time: Signing time; defaults to now.
        version_id: Object version to address, if any.
        query: Extra query parameters to sign, e.g. response overrides.

    Raises:
        InvalidExpiry: If ``expires`` is out of range.
        ConfigurationError: If names are invalid or credentials are missing.
    """
    validate_expiry(expires)
    validate_bucket_name(bucket)
    validate_object_key(key)
    credentials = _require_credentials(transport)
    now = _utc(request_time)

    params = dict(query or {})
    if version_id:
        params["versionId"] = version_id
    path = f"/{bucket}/{key}"
    signed = presign_query(
        method.upper(), transport.host, path, params, credentials, transport.region, expires, now
    )
    return PresignedGrant(
        method=method.upper(),
        url=transport.url_for(path, signed),
        expires=expires,
        request_time=now,
    )


def presign_get(transport: Transport, bucket: str, key: str, **kwargs: Any) -> PresignedGrant:
    return presign_url(transport, "GET", bucket, key, **kwargs)


def presign_put(transport: Transport, bucket: str, key: str, **kwargs: Any) -> PresignedGrant:
    return presign_url(transport, "PUT", bucket, key, **kwargs)


# -- POST policy -------------------------------------------------------------------

_OPERATORS = ("eq", "starts-with")


@dataclass(frozen=True)
class PostPolicy:
    """Immutable builder for a browser POST upload policy.

    Every ``with_*`` method returns a new policy, so a partially built
    policy can be shared and extended safely.
    """

    bucket: str = ""
    expiration: datetime | None = None
    conditions: tuple[tuple[str, str, str], ...] = ()
    form_fields: tuple[tuple[str, str], ...] = ()
    content_length_range: tuple[int, int] | None = None

    def with_condition(
        self, operator: str, element: str, value: str, form_value: str | None = None
    ) -> PostPolicy:
        """Add a condition, replacing any earlier one on the same element.

        Args:
            operator: ``eq`` or ``starts-with``.
            element: Form element, written with a leading ``$``.
            value: Value or prefix the element must match.
            form_value: Value to submit as a form field; defaults to ``value``.
        """
        if operator not in _OPERATORS:
            raise ConfigurationError(f"unsupported policy operator {operator!r}")
        if not element.startswith("$") or len(element) < 2:
            raise ConfigurationError(f"policy element must start with '$', got {element!r}")
        name = element[1:]
        conditions = tuple(c for c in self.conditions if c[1].lower() != element.lower())
        fields = tuple(f for f in self.form_fields if f[0].lower() != name.lower())
        if name.lower() != "bucket":
            fields += ((name, value if form_value is None else form_value),)
        return replace(
            self,
            conditions=conditions + ((operator, element, value),),
            form_fields=fields,
        )

    def with_bucket(self, bucket: str) -> PostPolicy:
        validate_bucket_name(bucket)
        return replace(self.with_condition("eq", "$bucket", bucket), bucket=bucket)

    def with_key(self, key: str) -> PostPolicy:
        validate_object_key(key)
        return self.with_condition("eq", "$key", key)

    def with_key_starts_with(self, prefix: str) -> PostPolicy:
        return self.with_condition("starts-with", "$key", prefix)

    def with_content_type(self, content_type: str) -> PostPolicy:
        if not content_type:
            raise ConfigurationError("content type cannot be empty")
        return self.with_condition("eq", "$Content-Type", content_type)

    def with_content_type_starts_with(self, prefix: str) -> PostPolicy:
        return self.with_condition("starts-with", "$Content-Type", prefix)

    def with_success_action_status(self, status: int) -> PostPolicy:
        return self.with_condition("eq", "$success_action_status", str(status))

    def with_user_metadata(self, name: str, value: str) -> PostPolicy:
        return self.with_condition("eq", f"$x-amz-meta-{name.lower()}", value)

    def with_content_length_range(self, minimum: int, maximum: int) -> PostPolicy:
        if minimum < 0 or maximum < minimum:
            raise ConfigurationError(
                f"invalid content length range {minimum}..{maximum}"
            )
        return replace(self, content_length_range=(minimum, maximum))

    def with_expiration(self, expiration: datetime) -> PostPolicy:
        return replace(self, expiration=_utc(expiration))

    @property
    def has_key_condition(self) -> bool:
        return any(element == "$key" for _, element, _ in self.conditions)

    def validate(self) -> None:
        if not self.bucket:
            raise ConfigurationError("POST policy requires a bucket")
        if not self.has_key_condition:
            raise ConfigurationError("POST policy requires a key or key prefix")
        if self.expiration is None:
            raise ConfigurationError("POST policy requires an expiration")


def format_expiration(value: datetime) -> str:
    """Render a policy expiration as ISO 8601 with milliseconds and ``Z``."""
    value = _utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def presign_post_policy(
    transport: Transport,
    policy: PostPolicy,
    request_time: datetime | None = None,
) -> PresignedGrant:
    """Sign a POST policy.

    Signing adds the algorithm, credential and date conditions, serializes
    ``{"expiration": ..., "conditions": [...]}``, base64-encodes it and signs
    the encoded text.

    Returns:
        A grant whose ``url`` is the bucket URL to POST to and whose
        ``form_fields`` hold every field the upload form must carry.

    Raises:
        ConfigurationError: If the policy is incomplete or credentials are missing.
        InvalidExpiry: If the expiration is not 1 second to 7 days after
            ``request_time``.
    """
    policy.validate()
    now = _utc(request_time)
    expires = math.ceil((policy.expiration - now).total_seconds())
    validate_expiry(expires)
    credentials = _require_credentials(transport)

    amz_date = now.strftime(AMZ_DATE_FORMAT)
    scope = credential_scope(now.strftime(SCOPE_DATE_FORMAT), transport.region)
    credential = f"{credentials.access_key}/{scope}"

    conditions: list[list[Any]] = [list(c) for c in policy.conditions]
    if policy.content_length_range is not None:
        conditions.append(["content-length-range", *policy.content_length_range])
    conditions.append(["eq", "$x-amz-algorithm", ALGORITHM])
    conditions.append(["eq", "$x-amz-credential", credential])
    conditions.append(["eq", "$x-amz-date", amz_date])
    if credentials.session_token:
        conditions.append(["eq", "$x-amz-security-token", credentials.session_token])

    document = {"expiration": format_expiration(policy.expiration), "conditions": conditions}
    encoded = base64.b64encode(
        json.dumps(document, separators=(",", ":")).encode("utf-8")
    ).decode("ascii")

    fields = dict(policy.form_fields)
    fields["policy"] = encoded
    fields["x-amz-algorithm"] = ALGORITHM
    fields["x-amz-credential"] = credential
    fields["x-amz-date"] = amz_date
    if credentials.session_token:
        fields["x-amz-security-token"] = credentials.session_token
    fields["x-amz-signature"] = sign_policy(encoded, credentials, transport.region, now)

    return PresignedGrant(
        method="POST",
        url=transport.url_for(f"/{policy.bucket}"),
        expires=expires,
        request_time=now,
        form_fields=fields,
    )
