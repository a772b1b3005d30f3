"""
Wire key construction and group policy.

A cache entry is addressed by a raw key and a group. The `KeyBuilder`
turns that pair into the single string sent to memcached:

    [instance prefix] + group + ":" + key

Both parts are reduced to the characters memcached accepts everywhere
(letters, digits, underscore, hyphen and colon) and the result is capped at
memcached's 250 byte key limit. Groups registered as global skip the instance
prefix so every installation sharing the server sees the same entry.
"""

import re
import threading
from typing import Iterable, List, Tuple, Union

from objcache.models import GroupKind
from objcache.utils.error_codes import ErrorCode
from objcache.utils.exceptions import KeyValidationError

MAX_KEY_LENGTH = 250
KEY_SEPARATOR = ":"
SUBGROUP_SEPARATOR = "-"
DEFAULT_GROUP = "default"

_INVALID_CHARS = re.compile(r"[^A-Za-z0-9_:\-]")

GroupSpec = Union[str, Iterable[str], None]


def sanitize(value: str) -> str:
    """Strips characters outside ``[A-Za-z0-9_:-]`` and truncates to the key limit.

    Args:
        value: A raw key or group name.

    Returns:
        The sanitized string, possibly empty.
    """
    return _INVALID_CHARS.sub("", value)[:MAX_KEY_LENGTH]


class GroupPolicy:
    """Process-wide registry of global and ignored groups.

    Registration only ever appends: a group cannot be removed from either set
    once added, and registering it again is a no-op. Group names are stored
    sanitized so lookups match the group part of the wire key.
    """

    def __init__(self, global_groups: Iterable[str] = (), ignored_groups: Iterable[str] = ()):
        self._lock = threading.Lock()
        self._global: List[str] = []
        self._ignored: List[str] = []
        self.add_global_groups(global_groups)
        self.add_ignored_groups(ignored_groups)

    @staticmethod
    def _normalize(groups: Union[str, Iterable[str]]) -> List[str]:
        if isinstance(groups, str):
            groups = [groups]
        return [name for name in (sanitize(str(group)) for group in groups) if name]

    def _append(self, target: List[str], groups: Union[str, Iterable[str]]) -> None:
        with self._lock:
            for name in self._normalize(groups):
                if name not in target:
                    target.append(name)

    def add_global_groups(self, groups: Union[str, Iterable[str]]) -> None:
        """Registers groups whose keys are shared by every installation."""
        self._append(self._global, groups)

    def add_ignored_groups(self, groups: Union[str, Iterable[str]]) -> None:
        """Registers groups that must never reach the backing store."""
        self._append(self._ignored, groups)

    def classify(self, group: str) -> GroupKind:
        """Returns how a resolved (sanitized) group is treated.

        A group registered both ways is ignored: nothing about it may leave
        the process.
        """
        if group in self._ignored:
            return GroupKind.IGNORED
        if group in self._global:
            return GroupKind.GLOBAL
        return GroupKind.NORMAL

    def is_global(self, group: str) -> bool:
        return group in self._global

    def is_ignored(self, group: str) -> bool:
        return group in self._ignored

    @property
    def global_groups(self) -> Tuple[str, ...]:
        return tuple(self._global)

    @property
    def ignored_groups(self) -> Tuple[str, ...]:
        return tuple(self._ignored)


class KeyBuilder:
    """Builds namespaced wire keys from (key, group) pairs.

    The builder is a pure function of its inputs, the instance prefix and the
    group policy: identical input always yields the same wire key for as long
    as the policy is unchanged.
    """

    def __init__(self, prefix: str, policy: GroupPolicy):
        """Initializes the key builder.

        Args:
            prefix: Instance key prefix (usually the installation fingerprint).
            policy: Group policy deciding which groups are global.
        """
        self.prefix = sanitize(prefix)
        self.policy = policy

    def resolve_group(self, group: GroupSpec) -> str:
        """Resolves a plain or composite group into its sanitized name.

        Composite groups (any iterable of names) are joined from their
        sanitized parts with ``-``. Empty groups fall back to ``default``.

        Args:
            group: A group name, a sequence of sub-group names or None.

        Returns:
            The sanitized group name.
        """
        if group is None:
            return DEFAULT_GROUP
        if isinstance(group, str):
            resolved = sanitize(group)
        else:
            parts = [sanitize(str(part)) for part in group]
            resolved = sanitize(SUBGROUP_SEPARATOR.join(part for part in parts if part))
        return resolved or DEFAULT_GROUP

    def build(self, key: str, group: GroupSpec = DEFAULT_GROUP) -> str:
        """Builds the wire key for a raw key and group.

        Args:
            key: The caller's key. Must be a non-empty string.
            group: The caller's group.

        Returns:
            The namespaced wire key, at most 250 characters long.

        Raises:
            KeyValidationError: If the key is not a string, is empty, or
                contains no usable characters after sanitization.
        """
        if not isinstance(key, str) or not key:
            raise KeyValidationError(
                f"Cache key must be a non-empty string, got {type(key).__name__}",
                context={"key": repr(key)[:80]},
            )

        clean_key = sanitize(key)
        if not clean_key:
            raise KeyValidationError(
                "Cache key is empty after sanitization",
                code=ErrorCode.EMPTY_KEY,
                context={"key": key[:80]},
            )

        resolved_group = self.resolve_group(group)
        prefix = "" if self.policy.is_global(resolved_group) else self.prefix
        return f"{prefix}{resolved_group}{KEY_SEPARATOR}{clean_key}"[:MAX_KEY_LENGTH]
