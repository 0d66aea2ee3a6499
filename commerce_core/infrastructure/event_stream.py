"""
Event Stream - Where Committed Events Go

The store publishes an event only after the unit of work that produced it
has committed. A publish failure is logged by the store and never undoes
the commit: the stores are the source of truth, the stream is a feed.

Topics are per aggregate type: events.buyer, events.merchant,
events.product, events.order, events.settlement.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

from commerce_core.domain.events import DomainEvent

EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventStream(Protocol):
    """Interface for event streaming (Kafka, Redis Streams, etc.)."""

    async def publish(self, topic: str, event: DomainEvent) -> None:
        """Publish event to stream."""
        ...

    async def subscribe(self, topic: str, handler: EventHandler) -> None:
        """Subscribe to events on topic."""
        ...


class InMemoryEventStream:
    """In-memory event stream for testing and local runs."""

    def __init__(self):
        self._subscribers: dict[str, list[EventHandler]] = {}
        self._published_events: list[tuple[str, DomainEvent]] = []

    async def publish(self, topic: str, event: DomainEvent) -> None:
        self._published_events.append((topic, event))

        # Notify subscribers
        for handler in self._subscribers.get(topic, []):
            await handler(event)

    async def subscribe(self, topic: str, handler: EventHandler) -> None:
        self._subscribers.setdefault(topic, []).append(handler)

    def get_published_events(self, topic: Optional[str] = None) -> list[DomainEvent]:
        """Helper for testing: Get all published events."""
        if topic is None:
            return [e for _, e in self._published_events]
        return [e for t, e in self._published_events if t == topic]

    def event_types(self) -> list[str]:
        return [e.metadata.event_type for _, e in self._published_events]

    def clear(self) -> None:
        self._published_events.clear()
