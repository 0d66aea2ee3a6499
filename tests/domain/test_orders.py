"""
Unit tests for the order state machine.

PENDING → CONFIRMED → PAID → COMPLETED, CANCELLED from the first three.
"""
import pytest

from commerce_core.domain.errors import CurrencyMismatchError, ErrorKind, InvalidOrderStateError, ValidationError
from commerce_core.domain.events import OrderCancelled, OrderCompleted, OrderConfirmed, OrderPaid
from commerce_core.domain.orders import Order, OrderItem, OrderStatus
from commerce_core.domain.value_objects import Money


def cny(amount: str) -> Money:
    return Money.of(amount, "CNY")


def new_order() -> Order:
    return Order.create("ORD-TEST-1", buyer_id=1, merchant_id=2, currency="CNY")


def order_in(status: OrderStatus) -> Order:
    order = new_order()
    order.add_item("SKU-001", "Keyboard", cny("100.00"), 2)
    path = {
        OrderStatus.PENDING: [],
        OrderStatus.CONFIRMED: [order.confirm],
        OrderStatus.PAID: [order.confirm, order.process_payment],
        OrderStatus.COMPLETED: [order.confirm, order.process_payment, order.complete],
        OrderStatus.CANCELLED: [lambda: order.cancel("changed my mind")],
    }[status]
    for step in path:
        step()
    return order


class TestOrderItems:
    @pytest.mark.unit
    def test_total_is_recomputed_from_items(self) -> None:
        order = new_order()
        order.add_item("SKU-001", "Keyboard", cny("100.00"), 2)
        order.add_item("SKU-002", "Mouse", cny("25.50"), 1)

        assert order.total_amount == cny("225.50")
        assert order.total_quantity == 3
        assert order.items[1].total_price == cny("25.50")

    @pytest.mark.unit
    def test_items_only_while_pending(self) -> None:
        order = order_in(OrderStatus.CONFIRMED)

        with pytest.raises(InvalidOrderStateError):
            order.add_item("SKU-002", "Mouse", cny("25.50"), 1)

        assert len(order.items) == 1
        assert order.total_amount == cny("200.00")

    @pytest.mark.unit
    def test_item_in_other_currency_is_not_appended(self) -> None:
        order = new_order()

        with pytest.raises(CurrencyMismatchError):
            order.add_item("SKU-003", "Cable", Money.of("5.00", "USD"), 1)

        assert order.items == []
        assert order.total_amount.is_zero()

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "sku, name, price, quantity",
        [
            ("", "Keyboard", "1.00", 1),
            ("SKU-1", " ", "1.00", 1),
            ("SKU-1", "Keyboard", "0.00", 1),
            ("SKU-1", "Keyboard", "1.00", 0),
        ],
    )
    def test_invalid_items_are_rejected(self, sku: str, name: str, price: str, quantity: int) -> None:
        with pytest.raises(ValidationError):
            OrderItem(sku=sku, product_name=name, unit_price=cny(price), quantity=quantity)


class TestOrderTransitions:
    @pytest.mark.unit
    def test_happy_path_records_lifecycle_events(self) -> None:
        order = order_in(OrderStatus.COMPLETED)

        assert order.status == OrderStatus.COMPLETED
        assert order.completed_time is not None
        assert [type(e) for e in order.get_uncommitted_events()] == [
            OrderConfirmed,
            OrderPaid,
            OrderCompleted,
        ]

    @pytest.mark.unit
    def test_confirm_without_items_fails(self) -> None:
        order = new_order()

        with pytest.raises(InvalidOrderStateError, match="without items") as exc_info:
            order.confirm()

        assert order.status == OrderStatus.PENDING
        assert exc_info.value.kind == ErrorKind.INVALID_ORDER_STATE

    @pytest.mark.unit
    def test_payment_before_confirm_fails(self) -> None:
        order = order_in(OrderStatus.PENDING)

        with pytest.raises(InvalidOrderStateError):
            order.process_payment()

        assert order.status == OrderStatus.PENDING

    @pytest.mark.unit
    def test_complete_requires_paid(self) -> None:
        order = order_in(OrderStatus.CONFIRMED)

        with pytest.raises(InvalidOrderStateError):
            order.complete()

        assert order.completed_time is None

    @pytest.mark.unit
    def test_cancel_after_complete_fails_without_mutation(self) -> None:
        order = order_in(OrderStatus.COMPLETED)
        events_before = len(order.get_uncommitted_events())

        with pytest.raises(InvalidOrderStateError) as exc_info:
            order.cancel("late request")

        assert order.status == OrderStatus.COMPLETED
        assert order.cancel_reason is None
        assert len(order.get_uncommitted_events()) == events_before
        assert exc_info.value.details["current_status"] == "COMPLETED"

    @pytest.mark.unit
    def test_cancel_twice_fails(self) -> None:
        order = order_in(OrderStatus.CANCELLED)

        with pytest.raises(InvalidOrderStateError):
            order.cancel("again")

    @pytest.mark.unit
    @pytest.mark.parametrize("status", [OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PAID])
    def test_cancel_from_open_states(self, status: OrderStatus) -> None:
        order = order_in(status)

        order.cancel("customer request")

        assert order.is_cancelled()
        assert order.cancel_reason == "customer request"
        cancelled = order.get_uncommitted_events()[-1]
        assert isinstance(cancelled, OrderCancelled)
        assert cancelled.previous_status == status.value


class TestOrderPredicates:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "status, refund, restore, payable",
        [
            (OrderStatus.PENDING, False, False, False),
            (OrderStatus.CONFIRMED, False, True, True),
            (OrderStatus.PAID, True, True, False),
            (OrderStatus.COMPLETED, True, True, False),
            (OrderStatus.CANCELLED, False, False, False),
        ],
    )
    def test_predicates(self, status: OrderStatus, refund: bool, restore: bool, payable: bool) -> None:
        order = order_in(status)

        assert order.needs_refund() is refund
        assert order.needs_inventory_restore() is restore
        assert order.can_be_paid() is payable
