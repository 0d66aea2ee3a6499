"""
Order Aggregate - The Purchase Record and its State Machine

State machine:
    PENDING → CONFIRMED → PAID → COMPLETED
       ↓          ↓         ↓
       └──────────┴─────────┴──→ CANCELLED

Nothing reaches COMPLETED without passing CONFIRMED and PAID, in that order.
COMPLETED and CANCELLED are terminal.

Every transition checks the current state FIRST and raises
InvalidOrderStateError without touching anything when it is wrong.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from commerce_core.domain.aggregates import EventRecorder, require_positive_quantity
from commerce_core.domain.errors import InvalidOrderStateError, ValidationError
from commerce_core.domain.events import (
    DomainEvent,
    OrderCancelled,
    OrderCompleted,
    OrderConfirmed,
    OrderPaid,
    create_event_metadata,
)
from commerce_core.domain.value_objects import AuditInfo, Currency, Money, utc_now


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PAID = "PAID"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


CANCELLABLE_STATES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PAID})
REFUND_STATES = frozenset({OrderStatus.PAID, OrderStatus.COMPLETED})
INVENTORY_RESERVED_STATES = frozenset({OrderStatus.CONFIRMED, OrderStatus.PAID, OrderStatus.COMPLETED})


@dataclass(frozen=True)
class OrderItem:
    """One order line. total_price = unit_price × quantity."""

    sku: str
    product_name: str
    unit_price: Money
    quantity: int

    def __post_init__(self) -> None:
        if not self.sku or not self.sku.strip():
            raise ValidationError("Order item SKU cannot be empty")
        if not self.product_name or not self.product_name.strip():
            raise ValidationError("Order item product name cannot be empty", sku=self.sku)
        if not isinstance(self.unit_price, Money) or not self.unit_price.is_positive():
            raise ValidationError(
                f"Order item unit price must be positive, got {self.unit_price}",
                sku=self.sku,
            )
        require_positive_quantity(self.quantity)

    @property
    def total_price(self) -> Money:
        return self.unit_price.multiply(self.quantity)


@dataclass
class Order(EventRecorder):
    """
    Order Aggregate Root.

    total_amount is always recomputed from items, never set directly.
    """

    order_number: str
    buyer_id: int
    merchant_id: int
    total_amount: Money
    items: list[OrderItem] = field(default_factory=list)
    status: OrderStatus = OrderStatus.PENDING
    order_time: datetime = field(default_factory=utc_now)
    completed_time: Optional[datetime] = None
    cancelled_time: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    id: Optional[int] = None
    audit: AuditInfo = field(default_factory=AuditInfo.new)
    _uncommitted_events: list[DomainEvent] = field(default_factory=list, repr=False)

    @classmethod
    def create(
        cls,
        order_number: str,
        buyer_id: int,
        merchant_id: int,
        currency: Currency | str,
    ) -> Order:
        """Factory method: a new, empty PENDING order."""
        if not order_number or not order_number.strip():
            raise ValidationError("Order number cannot be empty")
        return cls(
            order_number=order_number,
            buyer_id=buyer_id,
            merchant_id=merchant_id,
            total_amount=Money.zero(currency),
        )

    @property
    def currency(self) -> Currency:
        return self.total_amount.currency

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def add_item(self, sku: str, product_name: str, unit_price: Money, quantity: int) -> OrderItem:
        self._require_status("add_item", OrderStatus.PENDING, "Items can only be added to a pending order")
        item = OrderItem(sku=sku, product_name=product_name, unit_price=unit_price, quantity=quantity)
        # Raises CurrencyMismatchError before the item is appended
        new_total = self.total_amount.add(item.total_price)
        self.items.append(item)
        self.total_amount = new_total
        self.touch()
        return item

    def confirm(self) -> None:
        self._require_status("confirm", OrderStatus.PENDING, "Only pending orders can be confirmed")
        if not self.items:
            raise InvalidOrderStateError(
                "Cannot confirm an order without items",
                operation="confirm",
                current_status=self.status,
            )
        self.status = OrderStatus.CONFIRMED
        self._record(
            OrderConfirmed(
                metadata=create_event_metadata("OrderConfirmed", self.order_number, "order"),
                order_number=self.order_number,
                buyer_id=self.buyer_id,
                merchant_id=self.merchant_id,
                total_amount=self.total_amount.amount,
                currency=self.currency.value,
                item_count=len(self.items),
            )
        )

    def process_payment(self) -> None:
        self._require_status("process_payment", OrderStatus.CONFIRMED, "Only confirmed orders can be paid")
        self.status = OrderStatus.PAID
        self._record(
            OrderPaid(
                metadata=create_event_metadata("OrderPaid", self.order_number, "order"),
                order_number=self.order_number,
                total_amount=self.total_amount.amount,
                currency=self.currency.value,
            )
        )

    def complete(self) -> None:
        self._require_status("complete", OrderStatus.PAID, "Only paid orders can be completed")
        self.status = OrderStatus.COMPLETED
        self.completed_time = utc_now()
        self._record(
            OrderCompleted(
                metadata=create_event_metadata("OrderCompleted", self.order_number, "order"),
                order_number=self.order_number,
                completed_time=self.completed_time,
            )
        )

    def cancel(self, reason: str) -> None:
        if not self.can_be_cancelled():
            raise InvalidOrderStateError(
                f"Order {self.order_number} cannot be cancelled in status {self.status.value}",
                operation="cancel",
                current_status=self.status,
            )
        previous = self.status
        self.status = OrderStatus.CANCELLED
        self.cancel_reason = reason or ""
        self.cancelled_time = utc_now()
        self._record(
            OrderCancelled(
                metadata=create_event_metadata("OrderCancelled", self.order_number, "order"),
                order_number=self.order_number,
                reason=self.cancel_reason,
                previous_status=previous.value,
            )
        )

    # ------------------------------------------------------------------
    # Predicates (pure state queries)
    # ------------------------------------------------------------------

    def needs_refund(self) -> bool:
        """Money was taken from the buyer."""
        return self.status in REFUND_STATES

    def needs_inventory_restore(self) -> bool:
        """Inventory was reserved at confirm time."""
        return self.status in INVENTORY_RESERVED_STATES

    def can_be_paid(self) -> bool:
        return self.status == OrderStatus.CONFIRMED

    def can_be_cancelled(self) -> bool:
        return self.status in CANCELLABLE_STATES

    def is_completed(self) -> bool:
        return self.status == OrderStatus.COMPLETED

    def is_cancelled(self) -> bool:
        return self.status == OrderStatus.CANCELLED

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    def _require_status(self, operation: str, expected: OrderStatus, message: str) -> None:
        if self.status != expected:
            raise InvalidOrderStateError(
                f"{message} (order {self.order_number} is {self.status.value})",
                operation=operation,
                current_status=self.status,
            )
