"""
Tests for Prometheus metrics and structured logging helpers.
"""

from unittest.mock import MagicMock, patch

import pytest
from prometheus_client import REGISTRY

from objcache.core.config import Settings
from objcache.core.logging import get_contextual_logger, log_cache_operation, setup_structured_logging
from objcache.monitoring.prometheus import (
    CacheMetrics,
    record_cache_hit,
    record_cache_miss,
    record_reconnect_attempt,
    set_connection_status,
)


@pytest.fixture
def metrics_enabled():
    with patch(
        "objcache.monitoring.prometheus.get_settings",
        return_value=Settings(enable_metrics=True),
    ):
        yield


@pytest.mark.unit
class TestCacheMetrics:
    """Test metric exposition and the record helpers."""

    def test_metrics_payload_is_cached(self):
        """Test the payload is reused within the cache TTL."""
        metrics = CacheMetrics(cache_ttl=60)
        first = metrics.get_metrics()
        assert b"objcache_hits_total" in first or b"objcache_connected" in first
        assert metrics.get_metrics() is first

    def test_content_type(self):
        """Test the Prometheus text content type is advertised."""
        assert CacheMetrics.get_metrics_content_type().startswith("text/plain")

    def test_hits_and_misses(self, metrics_enabled):
        """Test hits and misses are counted per group kind."""
        before_hits = REGISTRY.get_sample_value("objcache_hits_total", {"group_kind": "global"}) or 0
        before_misses = REGISTRY.get_sample_value("objcache_misses_total", {"group_kind": "global"}) or 0

        record_cache_hit("global")
        record_cache_miss("global")
        record_cache_miss("global")

        assert REGISTRY.get_sample_value("objcache_hits_total", {"group_kind": "global"}) == before_hits + 1
        assert REGISTRY.get_sample_value("objcache_misses_total", {"group_kind": "global"}) == before_misses + 2

    def test_disabled_metrics_are_not_recorded(self):
        """Test nothing is recorded when metrics are disabled."""
        before = REGISTRY.get_sample_value("objcache_reconnect_attempts_total") or 0
        with patch(
            "objcache.monitoring.prometheus.get_settings",
            return_value=Settings(enable_metrics=False),
        ):
            record_reconnect_attempt()
        assert (REGISTRY.get_sample_value("objcache_reconnect_attempts_total") or 0) == before

    def test_connection_gauge(self):
        """Test the connection gauge follows the connection state."""
        set_connection_status(True)
        assert REGISTRY.get_sample_value("objcache_connected") == 1
        set_connection_status(False)
        assert REGISTRY.get_sample_value("objcache_connected") == 0


@pytest.mark.unit
class TestLogging:
    """Test the structured logging helpers."""

    def test_successful_operation_logs_debug(self):
        """Test successful operations are logged at debug level."""
        logger = MagicMock()
        log_cache_operation(logger, "get", "site1:default:k", success=True, duration_ms=0.12345)

        logger.debug.assert_called_once()
        kwargs = logger.debug.call_args.kwargs
        assert kwargs["wire_key"] == "site1:default:k"
        assert kwargs["duration_ms"] == 0.123
        logger.warning.assert_not_called()

    def test_failed_operation_logs_warning(self):
        """Test failures carrying an error are logged as warnings."""
        logger = MagicMock()
        log_cache_operation(logger, "set", None, success=False, error="[E2003] down")
        assert logger.warning.call_args.kwargs["error"] == "[E2003] down"

    def test_setup_structured_logging(self, caplog):
        """Test JSON log lines carry the service context."""
        setup_structured_logging(Settings(log_json=True, log_level="INFO"))
        with caplog.at_level("INFO"):
            get_contextual_logger("objcache.test", request_id="r1").info("hello")

        output = caplog.text
        assert '"event": "hello"' in output
        assert '"request_id": "r1"' in output
        assert '"service": "objcache"' in output

    def test_service_context_comes_from_given_settings(self, caplog):
        """Test log lines carry the service and session of the settings passed in."""
        settings = Settings(log_json=True, service_name="blog-cache", persistent_id="sess-7")
        setup_structured_logging(settings)
        with caplog.at_level("INFO"):
            get_contextual_logger("objcache.test.context").info("configured")

        output = caplog.text
        assert '"service": "blog-cache"' in output
        assert '"session": "sess-7"' in output
        setup_structured_logging(Settings(log_json=True))
