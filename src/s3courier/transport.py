"""HTTP execution of request descriptors.

The transport turns a :class:`RequestDescriptor` into one signed HTTP
exchange over ``httpx.AsyncClient``, records metrics and logs, and raises a
typed :class:`S3Error` for any non-success response.  It never retries.
"""

from __future__ import annotations

import hashlib
import logging
import time
import xml.etree.ElementTree as ET
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from s3courier import metrics
from s3courier.encryption import redact_headers
from s3courier.errors import S3Error, error_for_status
from s3courier.request import RequestDescriptor
from s3courier.signer import (
    EMPTY_SHA256,
    Credentials,
    canonical_query_string,
    sign_headers,
    uri_encode_path,
)
from s3courier.xml_utils import parse_error

logger = logging.getLogger(__name__)


def _host_header(url: httpx.URL) -> str:
    default_port = {"http": 80, "https": 443}.get(url.scheme)
    if url.port is None or url.port == default_port:
        return url.host
    return f"{url.host}:{url.port}"


class Transport:
    """Executes requests against a single S3-compatible endpoint.

    Attributes:
        endpoint: Base URL of the service, e.g. ``https://s3.example.com``.
        region: Region used in signatures.
        credentials: Signing credentials, or None for anonymous requests.
    """

    def __init__(
        self,
        endpoint: str,
        credentials: Credentials | None = None,
        region: str = "us-east-1",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the transport.

        Args:
            endpoint: Base URL of the service.
            credentials: Signing credentials; anonymous when None.
            region: Signing region.
            http_client: Client to send requests with.  When omitted the
                transport creates and owns one.
            timeout: Request timeout for an owned client, in seconds.
        """
        self.endpoint = endpoint.rstrip("/")
        self.region = region
        self.credentials = credentials
        url = httpx.URL(self.endpoint)
        self.scheme = url.scheme
        self.host = _host_header(url)
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def url_for(self, path: str, query: dict[str, str] | None = None) -> str:
        """Build the request URL exactly as it is signed."""
        url = f"{self.scheme}://{self.host}{uri_encode_path(path)}"
        if query:
            url += "?" + canonical_query_string(query)
        return url

    def _prepare(self, request: RequestDescriptor) -> httpx.Request:
        payload_hash = (
            hashlib.sha256(request.body).hexdigest() if request.body else EMPTY_SHA256
        )
        headers = dict(request.headers)
        if self.credentials is not None and not self.credentials.anonymous:
            headers = sign_headers(
                request.method,
                self.host,
                request.path,
                request.query,
                headers,
                payload_hash,
                self.credentials,
                self.region,
            )
        else:
            headers["Host"] = self.host
        return self._client.build_request(
            request.method,
            self.url_for(request.path, request.query),
            headers=headers,
            content=request.body or None,
        )

    async def _raise_for_status(self, request: RequestDescriptor, response: httpx.Response) -> None:
        if response.status_code < 300:
            return
        body = await response.aread()
        request_id = response.headers.get("x-amz-request-id", "")
        error: S3Error
        if body and request.method != "HEAD":
            try:
                error = parse_error(body, response.status_code, resource=request.path)
            except ET.ParseError:
                logger.debug("Non-XML error body for %s %s", request.method, request.path)
                error = error_for_status(response.status_code, request.path, request_id)
        else:
            error = error_for_status(response.status_code, request.path, request_id)
        raise error

    def _observe(
        self, request: RequestDescriptor, response: httpx.Response, started: float
    ) -> None:
        duration_ms = round((time.monotonic() - started) * 1000, 2)
        received = 0
        if request.method != "HEAD":
            received = int(response.headers.get("content-length", "0") or 0)
        metrics.record_request(
            request.operation, response.status_code, sent=len(request.body), received=received
        )
        logger.debug(
            "%s %s -> %d",
            request.method,
            request.path,
            response.status_code,
            extra={
                "operation": request.operation,
                "method": request.method,
                "bucket": request.bucket or None,
                "key": request.key or None,
                "status": response.status_code,
                "duration_ms": duration_ms,
            },
        )

    async def execute(self, request: RequestDescriptor) -> httpx.Response:
        """Send a request and return the fully read response.

        Raises:
            S3Error: If the service answered with a non-2xx status.
            httpx.HTTPError: On transport failures.
        """
        http_request = self._prepare(request)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Sending %s %s headers=%s",
                request.method,
                request.path,
                redact_headers(request.headers),
            )
        started = time.monotonic()
        response = await self._client.send(http_request)
        self._observe(request, response, started)
        await self._raise_for_status(request, response)
        return response

    @asynccontextmanager
    async def stream(self, request: RequestDescriptor) -> AsyncIterator[httpx.Response]:
        """Send a request and yield the response with its body unread.

        The response is closed when the context exits.
        """
        http_request = self._prepare(request)
        started = time.monotonic()
        response = await self._client.send(http_request, stream=True)
        try:
            self._observe(request, response, started)
            await self._raise_for_status(request, response)
            yield response
        finally:
            await response.aclose()
