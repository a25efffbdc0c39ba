"""
Audit event system.

Security-relevant things that happen in the auth core (registrations,
logins, lockouts, token rotation, role changes) are published here.
Subscribers can forward them to an audit log, metrics, or notifications.
"""

from __future__ import annotations

import fnmatch
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

# Type for event handlers
EventHandler = Callable[["Event"], Awaitable[None]]


@dataclass
class Event:
    """
    An immutable record of something that happened.

    Payloads must never contain passwords or raw tokens.
    """

    event_type: str  # e.g., "user.login_failed", "token.replay_detected"
    user_id: str | None = None
    tenant_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        return {
            "id": self.id,
            "event_type": self.event_type,
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Subscription:
    """A subscription to events matching a pattern."""

    pattern: str  # e.g., "user.*" or "token.replay_detected"
    handler: EventHandler
    filter: dict[str, Any] = field(default_factory=dict)

    def matches(self, event: Event) -> bool:
        """Check if this subscription matches the given event."""
        if not fnmatch.fnmatch(event.event_type, self.pattern):
            return False

        for key, value in self.filter.items():
            if key == "user_id" and event.user_id != value:
                return False
            if key == "tenant_id" and event.tenant_id != value:
                return False
            if key.startswith("payload."):
                if event.payload.get(key[8:]) != value:
                    return False

        return True


class EventBus:
    """
    In-memory event bus.

    Suitable for a single instance. Handlers run in subscription order;
    a failing handler is logged and does not stop the others, and never
    fails the operation that published the event.
    """

    def __init__(self, max_history: int = 10000):
        self._subscriptions: list[Subscription] = []
        self._event_history: list[Event] = []
        self._max_history = max_history

    def subscribe(
        self,
        pattern: str,
        handler: EventHandler,
        filter: dict[str, Any] | None = None,
    ) -> Subscription:
        """
        Subscribe to events matching a pattern.

        Args:
            pattern: Event type pattern (supports wildcards like "user.*")
            handler: Async function to handle matching events
            filter: Additional filters (e.g., {"user_id": "user_123"})

        Returns:
            The subscription object (can be used to unsubscribe)
        """
        subscription = Subscription(
            pattern=pattern,
            handler=handler,
            filter=filter or {},
        )
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a subscription."""
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def publish(self, event: Event) -> None:
        """Record an event and dispatch it to matching subscribers."""
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]

        for subscription in [s for s in self._subscriptions if s.matches(event)]:
            try:
                await subscription.handler(event)
            except Exception:
                logger.exception("Error in event handler for %s", event.event_type)

    async def emit(
        self,
        event_type: str,
        user_id: str | None = None,
        tenant_id: str | None = None,
        **payload: Any,
    ) -> Event:
        """Build and publish an event in one call."""
        event = Event(
            event_type=event_type,
            user_id=user_id,
            tenant_id=tenant_id,
            payload=payload,
        )
        await self.publish(event)
        return event

    def get_history(
        self,
        event_type: str | None = None,
        user_id: str | None = None,
        limit: int = 100,
    ) -> list[Event]:
        """Query event history with optional filters."""
        results = self._event_history

        if event_type:
            results = [e for e in results if fnmatch.fnmatch(e.event_type, event_type)]

        if user_id:
            results = [e for e in results if e.user_id == user_id]

        return results[-limit:]
