"""Tests for Prometheus client metrics."""

from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from s3courier import metrics
from s3courier.client import S3Client
from s3courier.config import S3CourierConfig

ENDPOINT = "http://testserver"


def _value(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestInitMetrics:
    """Collectors are registered once, on demand."""

    def test_idempotent(self):
        metrics.init_metrics()
        counter = metrics.requests_total
        metrics.init_metrics()
        assert metrics.requests_total is counter
        assert metrics._initialized

    def test_record_request(self):
        metrics.init_metrics()
        labels = {"operation": "TestOperation", "status": "200"}
        before = _value("s3courier_requests_total", labels)
        sent = _value("s3courier_bytes_sent_total")
        received = _value("s3courier_bytes_received_total")
        metrics.record_request("TestOperation", 200, sent=10, received=25)
        assert _value("s3courier_requests_total", labels) == before + 1
        assert _value("s3courier_bytes_sent_total") == sent + 10
        assert _value("s3courier_bytes_received_total") == received + 25

    def test_record_abort(self):
        metrics.init_metrics()
        before = _value("s3courier_multipart_aborts_total")
        metrics.record_abort()
        assert _value("s3courier_multipart_aborts_total") == before + 1

    def test_disabled_is_noop(self, monkeypatch):
        metrics.init_metrics()
        monkeypatch.setattr(metrics, "_initialized", False)
        labels = {"operation": "Disabled", "status": "200"}
        metrics.record_request("Disabled", 200)
        metrics.record_abort()
        assert REGISTRY.get_sample_value("s3courier_requests_total", labels) is None


class TestClientMetrics:
    """Requests issued through the client are counted."""

    async def test_from_config_enables_metrics(self, app):
        config = S3CourierConfig()
        config.endpoint.url = ENDPOINT
        config.observability.metrics = True
        labels = {"operation": "HeadBucket", "status": "200"}
        async with AsyncClient(transport=ASGITransport(app=app), base_url=ENDPOINT) as h:
            async with S3Client.from_config(config, http_client=h) as client:
                assert metrics._initialized
                before = _value("s3courier_requests_total", labels)
                await client.bucket_exists("test-bucket")
        assert _value("s3courier_requests_total", labels) == before + 1
