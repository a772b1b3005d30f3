"""
Unit tests for connection management.

Tests cover the host allow-list, the verification probe, the library
version check and the bounded reconnect behavior of the failure callback.
"""

from unittest.mock import patch

import pytest

from objcache.core.config import Settings
from objcache.models import ConnectionState
from objcache.services.admin_notice import DegradedModeNotice
from objcache.services.connection_manager import ConnectionManager
from objcache.services.memcache_backends import PymemcacheBackend
from objcache.utils.error_codes import ErrorCode
from objcache.utils.exceptions import TransientServerError


@pytest.fixture
def notice(notification_host):
    return DegradedModeNotice(notification_host)


@pytest.fixture
def manager(cache_settings, backend, notice, sleeps):
    return ConnectionManager(cache_settings.cache, backend=backend, notice=notice, sleep=sleeps.append)


@pytest.mark.unit
class TestConnect:
    """Test connection establishment."""

    def test_connect_verifies_with_probe(self, manager, fake_client):
        """Test a probe key is written, read back and deleted."""
        assert manager.connect() == ConnectionState.CONNECTED
        assert manager.is_connected
        assert [call[0] for call in fake_client.calls] == ["set", "get", "delete"]
        assert fake_client.store == {}

    def test_host_not_allowed(self, fake_client, notice):
        """Test a host outside the allow-list is refused without I/O."""
        settings = Settings(host="10.0.0.9", allowed_hosts=["127.0.0.1"], enable_metrics=False)
        backend = PymemcacheBackend(settings.cache, client_factory=lambda: fake_client)
        manager = ConnectionManager(settings.cache, backend=backend, notice=notice)

        assert manager.connect() == ConnectionState.DISCONNECTED
        assert ErrorCode.HOST_NOT_ALLOWED.value in manager.last_error
        assert fake_client.calls == []

    def test_unreachable_server(self, manager, fake_client, sleeps):
        """Test a failing probe leaves the manager disconnected without retrying."""
        fake_client.fail = True
        assert manager.connect() == ConnectionState.DISCONNECTED
        assert manager.last_error is not None
        assert manager.retries == 0
        assert sleeps == []

    def test_probe_value_mismatch(self, manager, fake_client):
        """Test a server that loses the probe value is not trusted."""
        fake_client.get = lambda key: None
        assert manager.connect() == ConnectionState.DISCONNECTED
        assert ErrorCode.VERIFICATION_FAILED.value in manager.last_error

    def test_unknown_backend(self, notice):
        """Test an unusable adapter name leaves the manager disconnected."""
        settings = Settings(backend="none", enable_metrics=False)
        manager = ConnectionManager(settings.cache, notice=notice)
        assert manager.connect() == ConnectionState.DISCONNECTED
        assert ErrorCode.BACKEND_UNAVAILABLE.value in manager.last_error

    def test_outdated_library_only_warns(self, manager):
        """Test an old client library is logged but does not block connecting."""
        with patch.object(PymemcacheBackend, "library_version", "1.0.0"), patch(
            "objcache.services.connection_manager.logger"
        ) as mock_logger:
            assert manager.connect() == ConnectionState.CONNECTED

        warnings = [call.args[0] for call in mock_logger.warning.call_args_list]
        assert "Memcached client library is outdated" in warnings

    def test_ensure_connection_is_idempotent(self, manager, fake_client):
        """Test ensure_connection does nothing once connected."""
        assert manager.ensure_connection() is True
        calls = len(fake_client.calls)
        assert manager.ensure_connection() is True
        assert len(fake_client.calls) == calls

    def test_ensure_connection_failure_raises_notice(self, manager, fake_client, notice):
        """Test a failed lazy connect opens a degraded-mode episode."""
        fake_client.fail = True
        assert manager.ensure_connection() is False
        assert notice.active

    def test_close(self, manager, fake_client):
        """Test close disconnects the client."""
        manager.connect()
        assert manager.close() is True
        assert fake_client.disconnected
        assert manager.state == ConnectionState.DISCONNECTED


@pytest.mark.unit
class TestFailureCallback:
    """Test bounded reconnects after mid-session failures."""

    def test_reconnects_after_transient_failure(self, manager, fake_client, sleeps):
        """Test one failure sleeps the retry delay and reconnects."""
        manager.connect()
        manager.handle_failure("127.0.0.1:11211", OSError("reset"))

        assert sleeps == [0.1]
        assert manager.retries == 0
        assert manager.state == ConnectionState.CONNECTED

    def test_retries_are_bounded(self, manager, fake_client, sleeps, notice):
        """Test no reconnect happens after max_retries failure callbacks."""
        manager.connect()
        fake_client.fail = True

        manager.handle_failure("127.0.0.1:11211", OSError("down"))
        manager.handle_failure("127.0.0.1:11211", OSError("down"))
        assert manager.retries == 2
        assert manager.state == ConnectionState.DEGRADED

        calls = len(fake_client.calls)
        manager.handle_failure("127.0.0.1:11211", OSError("down"))
        assert len(sleeps) == 2
        assert len(fake_client.calls) == calls
        assert notice.active

    def test_ensure_connection_resumes_after_exhaustion(self, manager, fake_client, notice):
        """Test an explicit ensure_connection reconnects and resets the counter."""
        manager.connect()
        fake_client.fail = True
        for _ in range(3):
            manager.handle_failure("127.0.0.1:11211", OSError("down"))

        fake_client.fail = False
        assert manager.ensure_connection() is True
        assert manager.retries == 0
        assert manager.last_error is None
        assert not notice.active

    def test_zero_retries(self, cache_settings, backend, notice, sleeps, fake_client):
        """Test max_retries=0 degrades immediately."""
        settings = Settings(
            key_prefix="site1:", allowed_hosts=["127.0.0.1"], max_retries=0, enable_metrics=False
        )
        manager = ConnectionManager(settings.cache, backend=backend, notice=notice, sleep=sleeps.append)
        manager.connect()
        manager.handle_failure("127.0.0.1:11211", OSError("down"))
        assert sleeps == []
        assert manager.state == ConnectionState.DEGRADED

    def test_failure_during_connect_does_not_recurse(self, manager, fake_client, sleeps):
        """Test a failing probe never re-enters the failure callback."""
        fake_client.fail = True
        manager.connect()
        assert sleeps == []
        assert manager.retries == 0

    def test_backend_operation_triggers_callback(self, manager, fake_client, sleeps):
        """Test the adapter invokes the callback when the server drops out."""
        manager.connect()
        fake_client.fail_next = 1
        with pytest.raises(TransientServerError):
            manager.backend.get("site1:default:k")
        assert sleeps == [0.1]
        assert manager.is_connected

    def test_ignore_failures_suppresses_notice(self, backend, notification_host, sleeps, fake_client):
        """Test ignore_failures keeps the notice from being registered."""
        settings = Settings(
            allowed_hosts=["127.0.0.1"], max_retries=0, ignore_failures=True, enable_metrics=False
        )
        notice = DegradedModeNotice(notification_host, ignore_failures=True)
        manager = ConnectionManager(settings.cache, backend=backend, notice=notice, sleep=sleeps.append)
        manager.connect()
        manager.handle_failure("127.0.0.1:11211", OSError("down"))
        assert manager.state == ConnectionState.DEGRADED
        assert notification_host.actions == []
