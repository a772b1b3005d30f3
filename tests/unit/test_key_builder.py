"""
Unit tests for wire key construction.

Tests cover sanitization, group resolution, global and ignored group
registration and key validation.
"""

import pytest

from objcache.models import GroupKind
from objcache.services.key_builder import MAX_KEY_LENGTH, GroupPolicy, KeyBuilder, sanitize
from objcache.utils.error_codes import ErrorCode
from objcache.utils.exceptions import KeyValidationError


@pytest.fixture
def policy():
    return GroupPolicy()


@pytest.fixture
def builder(policy):
    return KeyBuilder("site1:", policy)


@pytest.mark.unit
class TestSanitize:
    """Test character filtering and truncation."""

    def test_strips_invalid_characters(self):
        """Test only letters, digits, underscore, hyphen and colon survive."""
        assert sanitize("user id/42?x=é") == "userid42x"
        assert sanitize("a_b-c:d") == "a_b-c:d"

    def test_truncates(self):
        """Test long values are cut at the key limit."""
        assert len(sanitize("k" * 400)) == MAX_KEY_LENGTH


@pytest.mark.unit
class TestKeyBuilder:
    """Test KeyBuilder functionality."""

    def test_build_default_group(self, builder):
        """Test the prefix, group and key are joined with a colon."""
        assert builder.build("post_1") == "site1:default:post_1"

    def test_build_is_deterministic(self, builder):
        """Test repeated builds with an unchanged policy are identical."""
        assert builder.build("k", "posts") == builder.build("k", "posts")

    def test_build_sanitizes_key_and_group(self, builder):
        """Test both parts are sanitized."""
        assert builder.build("my key!", "my group") == "site1:mygroup:mykey"

    def test_composite_group(self, builder):
        """Test sub-groups are joined with a hyphen."""
        assert builder.build("k", ["users", "meta data"]) == "site1:users-metadata:k"
        assert builder.build("k", ("a", "", "b")) == "site1:a-b:k"

    @pytest.mark.parametrize("group", [None, "", "!!!", []])
    def test_empty_group_falls_back_to_default(self, builder, group):
        """Test empty groups resolve to the default group."""
        assert builder.build("k", group) == "site1:default:k"

    def test_global_group_has_no_prefix(self, builder, policy):
        """Test registering a group as global removes the instance prefix."""
        assert builder.build("k", "users") == "site1:users:k"
        policy.add_global_groups(["users"])
        assert builder.build("k", "users") == "users:k"

    def test_wire_key_length_is_capped(self, builder):
        """Test the complete wire key never exceeds the key limit."""
        wire_key = builder.build("k" * 300, "g" * 300)
        assert len(wire_key) == MAX_KEY_LENGTH

    @pytest.mark.parametrize("key", ["", None, 42, b"bytes"])
    def test_rejects_empty_or_non_string_keys(self, builder, key):
        """Test invalid raw keys are validation failures."""
        with pytest.raises(KeyValidationError) as exc_info:
            builder.build(key)
        assert exc_info.value.code == ErrorCode.INVALID_KEY

    def test_rejects_key_empty_after_sanitization(self, builder):
        """Test all-punctuation keys are rejected instead of aliasing."""
        with pytest.raises(KeyValidationError) as exc_info:
            builder.build("?!/ ")
        assert exc_info.value.code == ErrorCode.EMPTY_KEY


@pytest.mark.unit
class TestGroupPolicy:
    """Test global and ignored group registration."""

    def test_registration_is_monotonic(self, policy):
        """Test repeated registration is a no-op and never removes a group."""
        policy.add_global_groups(["users", "options"])
        policy.add_global_groups("users")
        policy.add_global_groups([])
        assert policy.global_groups == ("users", "options")

    def test_accepts_string(self, policy):
        """Test a single group name is accepted."""
        policy.add_ignored_groups("counts")
        assert policy.is_ignored("counts")

    def test_names_are_sanitized(self, policy):
        """Test registered names match the group part of wire keys."""
        policy.add_ignored_groups(["plugin cache"])
        assert policy.ignored_groups == ("plugincache",)

    def test_classify(self, policy):
        """Test classification, with ignored taking precedence over global."""
        policy.add_global_groups(["shared", "both"])
        policy.add_ignored_groups(["local", "both"])
        assert policy.classify("other") == GroupKind.NORMAL
        assert policy.classify("shared") == GroupKind.GLOBAL
        assert policy.classify("local") == GroupKind.IGNORED
        assert policy.classify("both") == GroupKind.IGNORED

    def test_initial_groups(self):
        """Test groups passed at construction are registered."""
        policy = GroupPolicy(global_groups=["users"], ignored_groups=["counts"])
        assert policy.is_global("users")
        assert policy.is_ignored("counts")
