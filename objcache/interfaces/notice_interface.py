"""
Interface for the host notification system.

The cache does not render anything itself. When it wants an administrator to
see a message it registers a rendering callback with the host; the host calls
it later, passing the id of the screen being rendered.
"""

from abc import ABC, abstractmethod
from typing import Callable

NoticeRenderer = Callable[[str], str]


class INotificationHost(ABC):
    """
    Interface for the host application's hook system.
    """

    @abstractmethod
    def add_action(self, hook: str, callback: NoticeRenderer) -> None:
        """
        Register a callback for a hook.

        Args:
            hook: Hook name (the cache uses ``admin_notices``)
            callback: Receives the current screen id, returns HTML or ""
        """
        pass
