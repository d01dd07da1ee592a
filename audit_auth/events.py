"""
Domain events raised by sessions and accounts.

Entities append events to an outbound list while they are mutated; the
lifecycle engine drains that list once the write has been persisted and
publishes each event on an EventBus.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Type

from audit_auth.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    """Base class for every domain event."""
    occurred_at: datetime = field(default_factory=utcnow, kw_only=True)

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class SessionCreated(DomainEvent):
    session_id: str
    account_id: str
    current_role: str
    ip_address: Optional[str] = None


@dataclass(frozen=True)
class SessionInvalidated(DomainEvent):
    session_id: str
    account_id: str


@dataclass(frozen=True)
class SessionRoleSwitched(DomainEvent):
    session_id: str
    account_id: str
    previous_role: str
    new_role: str


@dataclass(frozen=True)
class PasswordChanged(DomainEvent):
    account_id: str


@dataclass(frozen=True)
class AccountLocked(DomainEvent):
    account_id: str
    lock_until: datetime


class EventRecorder:
    """
    Mixin giving an entity an outbound list of domain events.

    The list is created lazily because the ORM does not call ``__init__``
    when it loads a row.
    """

    def _record_event(self, event: DomainEvent) -> None:
        events = self.__dict__.get("_domain_events")
        if events is None:
            events = []
            self.__dict__["_domain_events"] = events
        events.append(event)

    @property
    def domain_events(self) -> List[DomainEvent]:
        return list(self.__dict__.get("_domain_events") or [])

    # PUBLIC_INTERFACE
    def pull_domain_events(self) -> List[DomainEvent]:
        """
        Drain the recorded events.

        Returns:
            The events recorded since the last drain, oldest first.
        """
        events = self.__dict__.get("_domain_events") or []
        self.__dict__["_domain_events"] = []
        return list(events)


EventHandler = Callable[[DomainEvent], Awaitable[None]]


async def log_event(event: DomainEvent) -> None:
    """Default handler writing every event to the log."""
    logger.info(f"Domain event {event.name}: {event}")


class EventBus:
    """In-process publisher for domain events."""

    def __init__(self):
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}

    # PUBLIC_INTERFACE
    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        """
        Register an async handler for an event type and its subclasses.

        Args:
            event_type: Event class to listen for. DomainEvent listens to everything.
            handler: Coroutine function receiving the event.
        """
        self._handlers.setdefault(event_type, []).append(handler)

    # PUBLIC_INTERFACE
    async def publish(self, event: DomainEvent) -> None:
        """
        Deliver an event to every matching handler.

        A failing handler is logged and does not stop the others.

        Args:
            event: Event to publish.
        """
        handlers = [
            handler
            for event_type, registered in self._handlers.items()
            if isinstance(event, event_type)
            for handler in registered
        ]
        results = await asyncio.gather(*(h(event) for h in handlers), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Event handler failed for {event.name}: {result}")

    async def publish_all(self, events: List[DomainEvent]) -> None:
        for event in events:
            await self.publish(event)


# PUBLIC_INTERFACE
def create_event_bus() -> EventBus:
    """Event bus with the logging handler subscribed to every event."""
    bus = EventBus()
    bus.subscribe(DomainEvent, log_event)
    return bus
