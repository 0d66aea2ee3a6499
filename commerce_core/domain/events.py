"""
Domain Events - Immutable Facts About What Happened

Every mutation of an aggregate records one event. Events stay on the
aggregate copy until the unit of work commits; only then are they published.

Why this matters:
- A rolled-back purchase publishes nothing (the copies and their events are dropped)
- A committed purchase publishes BuyerCharged, InventoryReduced,
  MerchantIncomeReceived and the order lifecycle events, all sharing one
  correlation id
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from commerce_core.domain.value_objects import utc_now

AggregateType = Literal["buyer", "merchant", "product", "order", "settlement"]


class EventMetadata(BaseModel):
    """Metadata attached to every event."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_type: str
    aggregate_id: str  # id, SKU or order number - whatever identifies it at record time
    aggregate_type: AggregateType
    occurred_at: datetime = Field(default_factory=utc_now)
    correlation_id: Optional[str] = None  # Shared by every event of one operation


class DomainEvent(BaseModel):
    """
    Base class for all domain events.

    Events are IMMUTABLE and describe PAST FACTS.
    - Good: BuyerCharged (past tense, immutable fact)
    - Bad: ChargeBuyer (command, not event)
    """

    model_config = ConfigDict(frozen=True)

    metadata: EventMetadata

    def with_metadata(self, **kwargs: Any) -> DomainEvent:
        """Update metadata (used to stamp the correlation id at publish time)."""
        metadata_dict = self.metadata.model_dump()
        metadata_dict.update(kwargs)
        return self.model_copy(update={"metadata": EventMetadata(**metadata_dict)})

    @property
    def topic(self) -> str:
        return f"events.{self.metadata.aggregate_type}"


# ============================================================================
# ACCOUNT EVENTS
# ============================================================================


class BuyerRecharged(DomainEvent):
    buyer_id: Optional[int]
    amount: Decimal
    currency: str
    balance_after: Decimal


class BuyerCharged(DomainEvent):
    """Money left the buyer's balance (purchase)."""

    buyer_id: Optional[int]
    amount: Decimal
    currency: str
    balance_after: Decimal


class MerchantIncomeReceived(DomainEvent):
    """Balance and lifetime income grew by the same amount."""

    merchant_id: Optional[int]
    amount: Decimal
    currency: str
    balance_after: Decimal
    total_income_after: Decimal


class MerchantWithdrawal(DomainEvent):
    merchant_id: Optional[int]
    amount: Decimal
    currency: str
    balance_after: Decimal


# ============================================================================
# CATALOG EVENTS
# ============================================================================


class InventoryAdded(DomainEvent):
    sku: str
    quantity: int
    inventory_after: int


class InventoryReduced(DomainEvent):
    sku: str
    quantity: int
    inventory_after: int


# ============================================================================
# ORDER LIFECYCLE EVENTS
# ============================================================================


class OrderConfirmed(DomainEvent):
    """Order left PENDING with its items fixed (inventory is now owed)."""

    order_number: str
    buyer_id: int
    merchant_id: int
    total_amount: Decimal
    currency: str
    item_count: int


class OrderPaid(DomainEvent):
    order_number: str
    total_amount: Decimal
    currency: str


class OrderCompleted(DomainEvent):
    order_number: str
    completed_time: datetime


class OrderCancelled(DomainEvent):
    order_number: str
    reason: str
    previous_status: str


# ============================================================================
# SETTLEMENT EVENTS
# ============================================================================


class SettlementRecorded(DomainEvent):
    merchant_id: int
    settlement_date: date
    status: str
    difference: Decimal
    difference_kind: str
    currency: str


class SettlementProcessed(DomainEvent):
    settlement_id: Optional[int]
    merchant_id: int
    previous_status: str


def create_event_metadata(
    event_type: str,
    aggregate_id: Any,
    aggregate_type: AggregateType,
    correlation_id: Optional[str] = None,
) -> EventMetadata:
    """Factory for creating consistent event metadata."""
    return EventMetadata(
        event_type=event_type,
        aggregate_id=str(aggregate_id),
        aggregate_type=aggregate_type,
        correlation_id=correlation_id,
    )
