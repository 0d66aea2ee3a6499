"""
Purchase orchestration with per-aggregate locking and all-or-nothing commit.

Orchestrates the complete purchase flow:
1. Load buyer, product (by SKU) and the product's merchant
2. Validate all three are active and the quantity is positive
3. Price the purchase
4. Check the buyer can pay
5. Check the product has the stock
6. Create the order, add the line, confirm it
7. Reduce inventory
8. Charge the buyer
9. Credit the merchant
10. Pay and complete the order
11. Commit buyer, product, merchant and order as one unit
12. Return the receipt

Steps 1-5 mutate nothing. Steps 6-10 mutate private copies only, so a
failure anywhere (including a version conflict at step 11) leaves the
stores exactly as they were.
"""
import time
from typing import Literal, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict

from commerce_core.core.order_numbers import OrderNumberGenerator, TimestampOrderNumberGenerator
from commerce_core.domain.aggregates import Buyer, Merchant, Product, require_positive_quantity
from commerce_core.domain.errors import (
    CommerceError,
    ErrorKind,
    InsufficientBalanceError,
    InsufficientInventoryError,
    InvalidOrderStateError,
    OperationFailure,
    ResourceInactiveError,
)
from commerce_core.domain.orders import Order
from commerce_core.domain.value_objects import Money
from commerce_core.infrastructure.repositories import InMemoryStore
from commerce_core.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class PurchaseReceipt(BaseModel):
    """Caller-facing success payload of one purchase."""

    model_config = ConfigDict(frozen=True)

    order_number: str
    buyer_id: int
    merchant_id: int
    sku: str
    quantity: int
    total_amount: Money
    status: Literal["SUCCESS"] = "SUCCESS"

    @property
    def ok(self) -> bool:
        return True


PurchaseResult = Union[PurchaseReceipt, OperationFailure]


class PurchaseOrchestrator:
    """
    Main purchase orchestrator.

    purchase() never raises for a rejected purchase: it returns an
    OperationFailure carrying the error kind. cancel_order() raises
    CommerceError subclasses.
    """

    def __init__(
        self,
        store: InMemoryStore,
        order_numbers: Optional[OrderNumberGenerator] = None,
        lock_timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            store: Stores, locks and event stream
            order_numbers: Order number generator (default: timestamp + random hex)
            lock_timeout_seconds: Bound on each lock wait (default: the store's)
        """
        self.store = store
        self.order_numbers = order_numbers or TimestampOrderNumberGenerator()
        self.lock_timeout_seconds = lock_timeout_seconds

    async def purchase(self, buyer_id: int, sku: str, quantity: int) -> PurchaseResult:
        """
        Execute one purchase atomically.

        Returns:
            PurchaseReceipt on success, OperationFailure otherwise
        """
        started = time.perf_counter()
        uow = self.store.unit_of_work()
        log = logger.bind(correlation_id=uow.correlation_id, buyer_id=buyer_id, sku=sku, quantity=quantity)
        log.info("purchase_started")

        try:
            receipt = await self._purchase(uow, buyer_id, sku, quantity)
        except CommerceError as e:
            log.warning("purchase_rejected", error_kind=e.kind.value, error=e.message)
            metrics.record_purchase(e.kind.value, time.perf_counter() - started)
            return e.to_failure()
        except Exception as e:
            log.exception("purchase_failed_unexpectedly", error=str(e))
            metrics.record_purchase(ErrorKind.INTERNAL_ERROR.value, time.perf_counter() - started)
            return OperationFailure(
                kind=ErrorKind.INTERNAL_ERROR,
                message=f"Unexpected error during purchase: {e}",
                details={"buyer_id": buyer_id, "sku": sku},
            )

        log.info(
            "purchase_completed",
            order_number=receipt.order_number,
            merchant_id=receipt.merchant_id,
            total_amount=str(receipt.total_amount),
        )
        metrics.record_purchase(receipt.status, time.perf_counter() - started)
        return receipt

    async def _purchase(self, uow, buyer_id: int, sku: str, quantity: int) -> PurchaseReceipt:
        # The product names its merchant; peek before locking to know which one
        await self.store.buyers.load(buyer_id)
        merchant_id = (await self.store.products.load_by_sku(sku)).merchant_id

        async with self.store.locks.acquire(
            ("buyer", buyer_id),
            ("product", sku),
            ("merchant", merchant_id),
            timeout=self.lock_timeout_seconds,
        ):
            async with uow:
                # Step 1: Load (fresh copies under the locks)
                buyer = await self.store.buyers.load(buyer_id)
                product = await self.store.products.load_by_sku(sku)
                merchant = await self.store.merchants.load(product.merchant_id)

                # Step 2: Validate
                self._validate(buyer, product, merchant, quantity)

                # Step 3: Price
                total = product.calculate_total_price(quantity)

                # Step 4: Balance
                if not buyer.can_afford(total):
                    raise InsufficientBalanceError(required=total, available=buyer.balance, buyer_id=buyer.id)

                # Step 5: Stock
                if not product.has_enough_inventory(quantity):
                    raise InsufficientInventoryError(sku, quantity, product.available_inventory)

                # Step 6: Order
                order_number = await self.order_numbers.next_number(self.store.orders)
                order = Order.create(order_number, buyer.id, merchant.id, total.currency)
                order.add_item(product.sku, product.name, product.price, quantity)
                order.confirm()

                # Steps 7-10: Move stock and money, finish the order
                product.reduce_inventory(quantity)
                buyer.deduct(total)
                merchant.receive_income(total)
                order.process_payment()
                order.complete()

                # Step 11: Commit all four or none
                uow.track(buyer, product, merchant)
                uow.add(order)
                await uow.commit()

        # Step 12
        return PurchaseReceipt(
            order_number=order.order_number,
            buyer_id=buyer.id,
            merchant_id=merchant.id,
            sku=product.sku,
            quantity=quantity,
            total_amount=total,
        )

    @staticmethod
    def _validate(buyer: Buyer, product: Product, merchant: Merchant, quantity: int) -> None:
        if not buyer.is_active():
            raise ResourceInactiveError("buyer", buyer.id)
        if not product.is_active():
            raise ResourceInactiveError("product", product.sku)
        if not merchant.is_active():
            raise ResourceInactiveError("merchant", merchant.id)
        require_positive_quantity(quantity)

    async def cancel_order(self, order_number: str, reason: str) -> Order:
        """
        Cancel an order and undo whatever it had already done.

        - needs_refund(): money goes back from merchant to buyer
        - needs_inventory_restore(): each line's quantity goes back to its product

        Raises:
            ResourceNotFoundError: unknown order
            InvalidOrderStateError: order is COMPLETED or already CANCELLED
            InsufficientFundsError: merchant can no longer cover the refund
        """
        log = logger.bind(order_number=order_number)
        log.info("order_cancellation_started", reason=reason)

        try:
            order = await self._cancel_order(order_number, reason)
        except CommerceError as e:
            log.warning("order_cancellation_rejected", error_kind=e.kind.value, error=e.message)
            metrics.record_cancellation(e.kind.value)
            raise

        log.info(
            "order_cancelled",
            buyer_id=order.buyer_id,
            merchant_id=order.merchant_id,
            total_amount=str(order.total_amount),
        )
        metrics.record_cancellation("SUCCESS")
        return order

    async def _cancel_order(self, order_number: str, reason: str) -> Order:
        peeked = await self.store.orders.load_by_number(order_number)
        lock_keys = [
            ("order", order_number),
            ("buyer", peeked.buyer_id),
            ("merchant", peeked.merchant_id),
        ]
        lock_keys.extend(("product", item.sku) for item in peeked.items)

        async with self.store.locks.acquire(*lock_keys, timeout=self.lock_timeout_seconds):
            async with self.store.unit_of_work() as uow:
                order = await self.store.orders.load_by_number(order_number)
                if not order.can_be_cancelled():
                    raise InvalidOrderStateError(
                        f"Order {order_number} cannot be cancelled in status {order.status.value}",
                        operation="cancel",
                        current_status=order.status,
                    )

                if order.needs_refund():
                    buyer = await self.store.buyers.load(order.buyer_id)
                    merchant = await self.store.merchants.load(order.merchant_id)
                    merchant.withdraw(order.total_amount)
                    buyer.recharge(order.total_amount)
                    uow.track(buyer, merchant)

                if order.needs_inventory_restore():
                    restock: dict[str, int] = {}
                    for item in order.items:
                        restock[item.sku] = restock.get(item.sku, 0) + item.quantity
                    for sku, quantity in restock.items():
                        product = await self.store.products.load_by_sku(sku)
                        product.add_inventory(quantity)
                        uow.track(product)

                order.cancel(reason)
                uow.track(order)
                await uow.commit()

        return order
