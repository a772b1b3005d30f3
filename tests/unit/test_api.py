"""
Unit tests for the process-wide cache_* functions.
"""

import pytest

from objcache import api
from objcache.core.config import Settings
from objcache.models import FailureKind
from objcache.services.key_builder import GroupPolicy
from objcache.services.object_cache import NullObjectCache, ObjectCache


@pytest.fixture(autouse=True)
def reset_installed_cache(monkeypatch):
    """Make sure every test starts and ends without an installed cache."""
    monkeypatch.setattr(api, "_policy", GroupPolicy())
    monkeypatch.setattr(api, "_metrics", None)
    api.cache_close()
    yield
    api.cache_close()


@pytest.mark.unit
class TestCacheApi:
    """Test forwarding to the installed cache."""

    def test_calls_before_init_fail(self):
        """Test the functions answer with failures before cache_init."""
        assert not api.cache_set("k", "v")
        assert not api.cache_get("k").found
        assert isinstance(api.get_cache(), NullObjectCache)
        assert api.cache_stats().connected is False

    def test_init_and_forward(self, cache_settings, backend, notification_host):
        """Test the functions forward to the installed facade."""
        cache = api.cache_init(cache_settings, host=notification_host, backend=backend)
        assert isinstance(cache, ObjectCache)
        assert cache.connection.is_connected

        assert api.cache_add("foo", "bar")
        assert not api.cache_add("foo", "baz")
        assert api.cache_set("n", 5, "counters")
        assert api.cache_increment("n", 3, "counters").value == 8
        assert api.cache_decrement("n", 1, "counters").value == 7
        assert api.cache_replace("foo", "qux")
        assert api.cache_get("foo").value == "qux"
        assert api.cache_get_multiple(["foo", "n"], "default")["foo"].value == "qux"
        assert api.cache_delete("foo")
        assert api.cache_flush()

        stats = api.cache_stats()
        assert stats.connected is True
        assert stats.hits == 2

    def test_group_registration(self, cache_settings, backend, notification_host, fake_client):
        """Test group registration is forwarded."""
        api.cache_init(cache_settings, host=notification_host, backend=backend)
        api.cache_add_global_groups(["users"])
        api.cache_add_non_persistent_groups("plugins")

        api.cache_set("1", "alice", "users")
        assert "users:1" in fake_client.store
        assert api.cache_set("x", 1, "plugins").failure == FailureKind.IGNORED_GROUP

    def test_backend_none_installs_null_cache(self, notification_host):
        """Test a disabled backend installs the stand-in and raises a notice."""
        settings = Settings(backend="none", enable_metrics=False)
        cache = api.cache_init(settings, host=notification_host)

        assert isinstance(cache, NullObjectCache)
        assert not api.cache_set("k", "v")
        assert len(notification_host.actions) == 1

    def test_unreachable_store_at_init(self, cache_settings, backend, notification_host, fake_client):
        """Test init with a dead server keeps every call failing quietly."""
        fake_client.fail = True
        api.cache_init(cache_settings, host=notification_host, backend=backend)

        assert not api.cache_set("k", "v")
        stats = api.cache_stats()
        assert stats.connected is False
        assert stats.last_error is not None

    def test_close_uninstalls(self, cache_settings, backend, notification_host):
        """Test cache_close releases the facade."""
        api.cache_init(cache_settings, host=notification_host, backend=backend)
        assert api.cache_close()
        assert api._cache is None

    def test_runtime_groups_survive_reinit(self, cache_settings, backend, notification_host, fake_client):
        """Test groups registered at runtime still apply after cache_init runs again."""
        api.cache_init(cache_settings, host=notification_host, backend=backend)
        api.cache_add_global_groups(["users"])
        api.cache_add_non_persistent_groups("plugins")

        api.cache_init(cache_settings, host=notification_host, backend=backend)
        api.cache_set("1", "alice", "users")
        assert "users:1" in fake_client.store
        assert api.cache_set("x", 1, "plugins").failure == FailureKind.IGNORED_GROUP

    def test_runtime_groups_survive_close(self, cache_settings, backend, notification_host, fake_client):
        """Test groups registered before init or after close are kept."""
        api.cache_add_global_groups("users")
        api.cache_init(cache_settings, host=notification_host, backend=backend)
        api.cache_close()
        api.cache_add_non_persistent_groups("plugins")

        assert api.cache_stats().global_groups == ("users",)
        api.cache_init(cache_settings, host=notification_host, backend=backend)
        stats = api.cache_stats()
        assert "users" in stats.global_groups
        assert "plugins" in stats.ignored_groups

    def test_configured_groups_are_appended(self, backend, notification_host):
        """Test configured groups join the runtime registrations."""
        api.cache_add_global_groups("users")
        settings = Settings(
            host="127.0.0.1",
            allowed_hosts=["127.0.0.1"],
            global_groups=["site-options"],
            enable_metrics=False,
        )
        api.cache_init(settings, host=notification_host, backend=backend)
        assert api.cache_stats().global_groups == ("users", "site-options")


@pytest.mark.unit
class TestCacheMetricsApi:
    """Test the metrics exposition function."""

    def test_payload_and_content_type(self, cache_settings, backend, notification_host):
        """Test the Prometheus payload is served with its content type."""
        api.cache_init(cache_settings, host=notification_host, backend=backend)
        payload, content_type = api.cache_metrics()

        assert b"objcache_connected" in payload
        assert content_type.startswith("text/plain")

    def test_payload_is_cached(self):
        """Test the payload is reused within the configured TTL."""
        first, _ = api.cache_metrics()
        second, _ = api.cache_metrics()
        assert second is first
