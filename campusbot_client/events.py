"""
events.py — Change Notification and the Authorization Event Bus

Observable:
    Base class of the four state containers. Subscribers are plain callables
    receiving the component after every visible state change.

AuthEventBus:
    Explicit channel for authorization failures. Authorized-call wrappers
    publish on it when a service answers 401; the Session Manager is the
    subscriber that clears its own state in response.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

log = logging.getLogger(__name__)


class Observable:
    """Minimal subscriber list with ordered, synchronous delivery."""

    def __init__(self):
        self._subscribers: List[Callable] = []

    def subscribe(self, callback: Callable) -> Callable[[], None]:
        """
        Registers a change callback.

        Args:
            callback (Callable): Called with the component after each change.

        Returns:
            Callable[[], None]: Unsubscribe function. Calling it twice is harmless.
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self):
        for callback in list(self._subscribers):
            callback(self)


@dataclass(frozen=True)
class SessionInvalidated:
    """
    Published when a service rejected the session credential.

    Attributes:
        method (str): HTTP method of the rejected request.
        path (str): Request path.
        reason (str): Server-provided message.
        token (str, optional): Credential the rejected request carried.
    """
    method: str
    path: str
    reason: str
    token: Optional[str] = None


class AuthEventBus:
    """Process-wide publish/subscribe channel for SessionInvalidated events."""

    def __init__(self):
        self._handlers: List[Callable[[SessionInvalidated], None]] = []

    def subscribe(self, handler: Callable[[SessionInvalidated], None]) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: SessionInvalidated):
        log.warning(f"[Auth] Session invalidated by {event.method} {event.path}: {event.reason}")
        for handler in list(self._handlers):
            handler(event)
