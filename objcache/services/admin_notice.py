"""
Admin-visible notices for degraded caching.

When the backing store cannot be reached the application keeps running
without a cache. The only user-visible trace of that is a notice rendered on
administrative screens, registered with the host's ``admin_notices`` hook.
"""

import html
import threading
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from objcache.core.logging import get_logger
from objcache.interfaces import INotificationHost, NoticeRenderer

logger = get_logger(__name__)

ADMIN_NOTICES_HOOK = "admin_notices"


class NoticeBoard(INotificationHost):
    """In-process notification host.

    Used when the embedding application does not provide its own hook
    system: callbacks are kept per hook and rendered on demand.
    """

    def __init__(self):
        self._actions: Dict[str, List[NoticeRenderer]] = defaultdict(list)
        self._lock = threading.Lock()

    def add_action(self, hook: str, callback: NoticeRenderer) -> None:
        with self._lock:
            self._actions[hook].append(callback)

    def render(self, screen: str, hook: str = ADMIN_NOTICES_HOOK) -> str:
        """Renders every callback registered for a hook on the given screen."""
        with self._lock:
            callbacks = list(self._actions.get(hook, ()))
        return "".join(callback(screen) for callback in callbacks)


class DegradedModeNotice:
    """One-shot notice raised when caching is disabled by connection failures.

    A notice is registered at most once per failed-connection episode; the
    episode ends with the next successful connect. With ``ignore_failures``
    the notice is never registered and the failure is only logged at info
    level.
    """

    def __init__(
        self,
        host: Optional[INotificationHost],
        screens: Iterable[str] = ("dashboard", "plugins"),
        ignore_failures: bool = False,
    ):
        """Initializes the notice.

        Args:
            host: Notification host receiving the rendering callback.
            screens: Admin screen ids the notice may render on.
            ignore_failures: Suppress the notice and log quietly instead.
        """
        self.host = host
        self.screens = frozenset(screens)
        self.ignore_failures = ignore_failures
        self._message: Optional[str] = None
        self._episode_open = False
        self._registered = False
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        """Whether a failure episode is currently open."""
        return self._episode_open

    def raise_notice(self, message: str) -> bool:
        """Opens a failure episode and registers the notice once.

        Args:
            message: Text shown to administrators.

        Returns:
            True if this call registered a new notice.
        """
        with self._lock:
            if self._episode_open:
                return False
            self._episode_open = True
            self._message = message

            if self.ignore_failures:
                logger.info("Object cache unavailable; failure notices are ignored", reason=message)
                return False

            logger.error("Object cache unavailable; caching is disabled", reason=message)
            if self.host is None or self._registered:
                return False
            self.host.add_action(ADMIN_NOTICES_HOOK, self.render)
            self._registered = True
            return True

    def resolve(self) -> None:
        """Ends the current failure episode; the notice stops rendering."""
        with self._lock:
            if self._episode_open:
                logger.info("Object cache connection restored")
            self._episode_open = False
            self._message = None

    def render(self, screen: str) -> str:
        """Rendering callback invoked by the host.

        Args:
            screen: Id of the admin screen being rendered.

        Returns:
            The notice HTML, or an empty string when there is nothing to show
            on this screen.
        """
        if not self._episode_open or self.ignore_failures or screen not in self.screens:
            return ""
        return (
            '<div class="notice notice-error"><p>'
            f"{html.escape(self._message or '')}"
            "</p></div>"
        )
