"""
Stores and Unit of Work

Two rules make multi-aggregate atomicity work without a database:

1. COPY ON LOAD. load() hands out a private deep copy; the stored object is
   never shared. A caller mutates its copy and either commits it or drops
   it. Dropping it IS the rollback.

2. VERIFY ALL, THEN WRITE ALL. UnitOfWork.commit() checks every version
   and every uniqueness key first. Only when nothing can fail does it write,
   and the write phase never awaits, so no other task can observe half of it.

Example race prevented:
    T0: purchase A loads buyer (version 3)
    T0: a recharge saves buyer directly (version 3 → 4)
    T1: purchase A commits buyer at version 3 → ConflictError, nothing written

Production would back these with a transactional database; the protocols
below are what the services depend on.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import uuid
from datetime import date, datetime
from typing import Any, Generic, Iterable, Optional, Protocol, TypeVar

import structlog

from commerce_core.domain.aggregates import Buyer, Merchant, Product
from commerce_core.domain.errors import (
    ConflictError,
    DuplicateResourceError,
    InternalError,
    ResourceNotFoundError,
)
from commerce_core.domain.events import DomainEvent
from commerce_core.domain.orders import Order, OrderStatus
from commerce_core.domain.settlement import Settlement
from commerce_core.infrastructure.event_stream import EventStream
from commerce_core.infrastructure.locking import LockManager
from commerce_core.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

A = TypeVar("A")


# ============================================================================
# STORE INTERFACES
# ============================================================================


class Repository(Protocol[A]):
    """Key-indexed store for one aggregate type."""

    async def load(self, key: int) -> A:
        """Private copy of the aggregate. Raises ResourceNotFoundError."""
        ...

    async def exists(self, key: int) -> bool:
        ...

    async def save(self, aggregate: A) -> None:
        """Write back a loaded copy. Raises ConflictError on a stale version."""
        ...

    async def add(self, aggregate: A) -> A:
        """Insert a new aggregate and assign its id. Raises DuplicateResourceError."""
        ...


class ProductStore(Repository[Product], Protocol):
    async def load_by_sku(self, sku: str) -> Product:
        ...

    async def exists_sku(self, sku: str) -> bool:
        ...

    async def list_by_merchant(self, merchant_id: int) -> list[Product]:
        ...


class OrderStore(Repository[Order], Protocol):
    async def load_by_number(self, order_number: str) -> Order:
        ...

    async def exists_number(self, order_number: str) -> bool:
        ...

    async def list_completed_for_merchant(
        self, merchant_id: int, start: datetime, end: datetime
    ) -> list[Order]:
        ...


# ============================================================================
# IN-MEMORY IMPLEMENTATIONS
# ============================================================================


class InMemoryRepository(Generic[A]):
    """
    In-memory store for one aggregate type.

    Subclasses name the resource and, where the aggregate has one, its
    secondary unique key (SKU, order number).
    """

    resource: str = "aggregate"

    def __init__(self):
        self._items: dict[int, A] = {}
        self._index: dict[str, int] = {}
        self._ids = itertools.count(1)

    def secondary_key(self, aggregate: A) -> Optional[str]:
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def load(self, key: int) -> A:
        stored = self._items.get(key)
        if stored is None:
            raise ResourceNotFoundError(self.resource, key)
        return copy.deepcopy(stored)

    async def exists(self, key: int) -> bool:
        return key in self._items

    async def save(self, aggregate: A) -> None:
        self.check_save(aggregate)
        self.write_save(aggregate)

    async def add(self, aggregate: A) -> A:
        self.check_add(aggregate)
        self.write_add(aggregate)
        return aggregate

    async def list_all(self) -> list[A]:
        return [copy.deepcopy(item) for item in self._items.values()]

    def count(self) -> int:
        return len(self._items)

    # ------------------------------------------------------------------
    # Two-phase primitives (used by UnitOfWork.commit)
    # ------------------------------------------------------------------

    def check_save(self, aggregate: A) -> None:
        key = aggregate.id  # type: ignore[attr-defined]
        stored = self._items.get(key) if key is not None else None
        if stored is None:
            raise ResourceNotFoundError(self.resource, key)
        expected = aggregate.audit.version  # type: ignore[attr-defined]
        current = stored.audit.version  # type: ignore[attr-defined]
        if expected != current:
            raise ConflictError(self.resource, key, expected_version=expected, current_version=current)

    def check_add(self, aggregate: A) -> None:
        if aggregate.id is not None:  # type: ignore[attr-defined]
            raise DuplicateResourceError(self.resource, aggregate.id)  # type: ignore[attr-defined]
        secondary = self.secondary_key(aggregate)
        if secondary is not None and secondary in self._index:
            raise DuplicateResourceError(self.resource, secondary)

    def write_save(self, aggregate: A) -> None:
        new_audit = aggregate.audit.with_version(aggregate.audit.version + 1)  # type: ignore[attr-defined]
        aggregate.audit = new_audit  # type: ignore[attr-defined]
        self._items[aggregate.id] = self._snapshot(aggregate)  # type: ignore[attr-defined]

    def write_add(self, aggregate: A) -> None:
        aggregate.id = next(self._ids)  # type: ignore[attr-defined]
        aggregate.audit = aggregate.audit.with_version(1)  # type: ignore[attr-defined]
        self._items[aggregate.id] = self._snapshot(aggregate)  # type: ignore[attr-defined]
        secondary = self.secondary_key(aggregate)
        if secondary is not None:
            self._index[secondary] = aggregate.id  # type: ignore[attr-defined]

    @staticmethod
    def _snapshot(aggregate: A) -> A:
        snapshot = copy.deepcopy(aggregate)
        # Pending events belong to the caller's copy, never to the store
        snapshot.mark_events_committed()  # type: ignore[attr-defined]
        return snapshot

    def _load_by_secondary(self, key: str) -> A:
        item_id = self._index.get(key)
        if item_id is None:
            raise ResourceNotFoundError(self.resource, key)
        return copy.deepcopy(self._items[item_id])


class BuyerRepository(InMemoryRepository[Buyer]):
    resource = "buyer"


class MerchantRepository(InMemoryRepository[Merchant]):
    resource = "merchant"

    async def list_active(self) -> list[Merchant]:
        return [copy.deepcopy(m) for m in self._items.values() if m.is_active()]


class ProductRepository(InMemoryRepository[Product]):
    resource = "product"

    def secondary_key(self, aggregate: Product) -> Optional[str]:
        return aggregate.sku

    async def load_by_sku(self, sku: str) -> Product:
        return self._load_by_secondary(sku)

    async def exists_sku(self, sku: str) -> bool:
        return sku in self._index

    async def list_by_merchant(self, merchant_id: int) -> list[Product]:
        return [copy.deepcopy(p) for p in self._items.values() if p.merchant_id == merchant_id]


class OrderRepository(InMemoryRepository[Order]):
    resource = "order"

    def secondary_key(self, aggregate: Order) -> Optional[str]:
        return aggregate.order_number

    async def load_by_number(self, order_number: str) -> Order:
        return self._load_by_secondary(order_number)

    async def exists_number(self, order_number: str) -> bool:
        return order_number in self._index

    async def list_by_buyer(self, buyer_id: int) -> list[Order]:
        return [copy.deepcopy(o) for o in self._items.values() if o.buyer_id == buyer_id]

    async def list_completed_for_merchant(
        self, merchant_id: int, start: datetime, end: datetime
    ) -> list[Order]:
        """COMPLETED orders of the merchant with start <= completed_time < end."""
        return [
            copy.deepcopy(o)
            for o in self._items.values()
            if o.merchant_id == merchant_id
            and o.status == OrderStatus.COMPLETED
            and o.completed_time is not None
            and start <= o.completed_time < end
        ]


class SettlementRepository(InMemoryRepository[Settlement]):
    resource = "settlement"

    async def list_for_merchant(self, merchant_id: int) -> list[Settlement]:
        return [copy.deepcopy(s) for s in self._items.values() if s.merchant_id == merchant_id]

    async def find_for_merchant_on(self, merchant_id: int, settlement_date: date) -> Optional[Settlement]:
        """Latest settlement recorded for the merchant on that date, if any."""
        matches = [
            s
            for s in self._items.values()
            if s.merchant_id == merchant_id and s.settlement_date == settlement_date
        ]
        if not matches:
            return None
        return copy.deepcopy(max(matches, key=lambda s: s.id))


# ============================================================================
# UNIT OF WORK
# ============================================================================


class UnitOfWork:
    """
    All-or-nothing commit of several aggregates.

    Usage:
        async with store.unit_of_work() as uow:
            buyer = await store.buyers.load(buyer_id)
            buyer.recharge(amount)
            uow.track(buyer)
            await uow.commit()

    Leaving the block without commit() discards every tracked copy.
    """

    def __init__(self, store: InMemoryStore, correlation_id: Optional[str] = None):
        self._store = store
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self._tracked: list[tuple[InMemoryRepository[Any], Any]] = []
        self._added: list[tuple[InMemoryRepository[Any], Any]] = []
        self.committed = False

    def track(self, *aggregates: Any) -> None:
        """Register loaded copies to be written back on commit."""
        for aggregate in aggregates:
            if not any(a is aggregate for _, a in self._tracked):
                self._tracked.append((self._store.repository_for(aggregate), aggregate))

    def add(self, *aggregates: Any) -> None:
        """Register new aggregates to be inserted on commit."""
        for aggregate in aggregates:
            if not any(a is aggregate for _, a in self._added):
                self._added.append((self._store.repository_for(aggregate), aggregate))

    async def commit(self) -> None:
        """
        Verify every version and key, then write everything.

        Raises:
            ConflictError: a tracked aggregate was saved by someone else
            DuplicateResourceError: a new aggregate clashes on its unique key
        """
        if self.committed:
            raise InternalError("Unit of work already committed")

        async with self._store.commit_lock:
            self._verify()
            # No await from here on: the write phase is indivisible
            for repository, aggregate in self._tracked:
                repository.write_save(aggregate)
            for repository, aggregate in self._added:
                repository.write_add(aggregate)
            self.committed = True

        events = self._drain_events()
        logger.info(
            "unit_of_work_committed",
            correlation_id=self.correlation_id,
            saved=len(self._tracked),
            added=len(self._added),
            events=len(events),
        )
        await self._store.publish(events, self.correlation_id)

    def rollback(self) -> None:
        """Forget every tracked copy. The stores were never touched."""
        self._tracked.clear()
        self._added.clear()

    def _verify(self) -> None:
        for repository, aggregate in self._tracked:
            try:
                repository.check_save(aggregate)
            except ConflictError as e:
                logger.warning(
                    "unit_of_work_conflict",
                    correlation_id=self.correlation_id,
                    resource=repository.resource,
                    key=aggregate.id,
                    expected_version=e.expected_version,
                    current_version=e.current_version,
                )
                metrics.record_commit_conflict(repository.resource)
                raise

        pending_keys: set[tuple[str, str]] = set()
        for repository, aggregate in self._added:
            repository.check_add(aggregate)
            secondary = repository.secondary_key(aggregate)
            if secondary is not None:
                if (repository.resource, secondary) in pending_keys:
                    raise DuplicateResourceError(repository.resource, secondary)
                pending_keys.add((repository.resource, secondary))

    def _drain_events(self) -> list[DomainEvent]:
        events: list[DomainEvent] = []
        for _, aggregate in itertools.chain(self._tracked, self._added):
            events.extend(aggregate.get_uncommitted_events())
            aggregate.mark_events_committed()
        return events

    async def __aenter__(self) -> UnitOfWork:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if not self.committed:
            if self._tracked or self._added:
                logger.info(
                    "unit_of_work_rolled_back",
                    correlation_id=self.correlation_id,
                    discarded=len(self._tracked) + len(self._added),
                    error=str(exc) if exc else None,
                )
            self.rollback()


class InMemoryStore:
    """
    The five stores, their locks and the event stream, created together.

    Each test builds its own instance; nothing is module-level state.
    """

    def __init__(
        self,
        stream: Optional[EventStream] = None,
        lock_timeout_seconds: Optional[float] = None,
    ):
        self.buyers = BuyerRepository()
        self.merchants = MerchantRepository()
        self.products = ProductRepository()
        self.orders = OrderRepository()
        self.settlements = SettlementRepository()
        self.locks = LockManager(default_timeout=lock_timeout_seconds)
        self.stream = stream
        self._commit_lock: Optional[asyncio.Lock] = None
        self._repositories: dict[type, InMemoryRepository[Any]] = {
            Buyer: self.buyers,
            Merchant: self.merchants,
            Product: self.products,
            Order: self.orders,
            Settlement: self.settlements,
        }

    @property
    def commit_lock(self) -> asyncio.Lock:
        if self._commit_lock is None:
            self._commit_lock = asyncio.Lock()
        return self._commit_lock

    def unit_of_work(self, correlation_id: Optional[str] = None) -> UnitOfWork:
        return UnitOfWork(self, correlation_id=correlation_id)

    def repository_for(self, aggregate: Any) -> InMemoryRepository[Any]:
        repository = self._repositories.get(type(aggregate))
        if repository is None:
            raise InternalError(f"No store for {type(aggregate).__name__}")
        return repository

    async def publish(self, events: Iterable[DomainEvent], correlation_id: Optional[str] = None) -> None:
        """Send committed events to the stream. Failures are logged, never raised."""
        if self.stream is None:
            return
        for event in events:
            stamped = event.with_metadata(correlation_id=correlation_id) if correlation_id else event
            try:
                await self.stream.publish(stamped.topic, stamped)
            except Exception as e:
                # Log but don't fail - the stores are the source of truth
                logger.error(
                    "event_publish_failed",
                    error=str(e),
                    topic=stamped.topic,
                    event_type=stamped.metadata.event_type,
                    correlation_id=correlation_id,
                )
