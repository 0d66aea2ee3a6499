"""
Concurrency tests: many purchases and cancellations at once.

Invariants checked after every burst:
- stock never goes below zero, no unit sold twice
- money is conserved: what buyers lost, the merchant gained
"""
import asyncio

import pytest

from commerce_core.core.accounts import AccountService
from commerce_core.core.purchase import PurchaseOrchestrator, PurchaseReceipt
from commerce_core.domain.errors import ErrorKind
from commerce_core.domain.orders import Order
from commerce_core.domain.value_objects import Money
from commerce_core.infrastructure.repositories import InMemoryStore


def cny(amount: str) -> Money:
    return Money.of(amount, "CNY")


class TestConcurrentPurchases:
    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_no_overselling(
        self, orchestrator: PurchaseOrchestrator, accounts: AccountService, store: InMemoryStore, marketplace
    ) -> None:
        buyers = []
        for i in range(20):
            buyer = await accounts.register_buyer(f"Buyer {i}", f"buyer{i}@example.com")
            buyers.append(await accounts.recharge(buyer.id, cny("100.00")))

        results = await asyncio.gather(*(orchestrator.purchase(b.id, "SKU-001", 1) for b in buyers))

        successes = [r for r in results if isinstance(r, PurchaseReceipt)]
        failures = [r for r in results if not r.ok]
        assert len(successes) == 10
        assert {f.kind for f in failures} == {ErrorKind.INSUFFICIENT_INVENTORY}
        assert (await accounts.get_product("SKU-001")).available_inventory == 0
        assert await accounts.merchant_balance(marketplace.merchant.id) == cny("1000.00")
        assert store.orders.count() == 10

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_one_buyer_cannot_overspend(
        self, orchestrator: PurchaseOrchestrator, accounts: AccountService, marketplace
    ) -> None:
        # 500.00 buys at most five keyboards
        results = await asyncio.gather(
            *(orchestrator.purchase(marketplace.buyer.id, "SKU-001", 1) for _ in range(8))
        )

        assert sum(1 for r in results if r.ok) == 5
        assert {r.kind for r in results if not r.ok} == {ErrorKind.INSUFFICIENT_BALANCE}
        assert await accounts.buyer_balance(marketplace.buyer.id) == cny("0.00")
        assert (await accounts.get_product("SKU-001")).available_inventory == 5

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_money_is_conserved_across_products_and_merchants(
        self, orchestrator: PurchaseOrchestrator, accounts: AccountService, store: InMemoryStore, marketplace
    ) -> None:
        other = await accounts.register_merchant("Cable Co", "BL-003")
        await accounts.create_product("SKU-002", "USB Cable", "", cny("15.50"), other.id, stock=4)
        buyer = await accounts.register_buyer("Dave", "dave@example.com")
        await accounts.recharge(buyer.id, cny("120.00"))

        calls = []
        for _ in range(6):
            calls.append(orchestrator.purchase(marketplace.buyer.id, "SKU-002", 1))
            calls.append(orchestrator.purchase(buyer.id, "SKU-001", 1))
            calls.append(orchestrator.purchase(buyer.id, "SKU-002", 1))
        await asyncio.gather(*calls)

        buyers_total = cny("0.00")
        for b in await store.buyers.list_all():
            buyers_total = buyers_total + b.balance
        merchants_total = cny("0.00")
        for m in await store.merchants.list_all():
            merchants_total = merchants_total + m.balance

        assert buyers_total + merchants_total == cny("620.00")
        cables = await accounts.get_product("SKU-002")
        keyboards = await accounts.get_product("SKU-001")
        assert cables.available_inventory >= 0
        assert await accounts.merchant_balance(other.id) == cny("15.50") * (4 - cables.available_inventory)
        assert await accounts.merchant_balance(marketplace.merchant.id) == cny("100.00") * (
            10 - keyboards.available_inventory
        )


class TestConcurrentCancellation:
    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_double_cancel_restocks_once(
        self, orchestrator: PurchaseOrchestrator, accounts: AccountService, store: InMemoryStore, marketplace
    ) -> None:
        order = Order.create("ORD-RACE-1", marketplace.buyer.id, marketplace.merchant.id, "CNY")
        order.add_item("SKU-001", "Mechanical Keyboard", cny("100.00"), 1)
        order.confirm()
        await store.orders.add(order)

        results = await asyncio.gather(
            orchestrator.cancel_order("ORD-RACE-1", "first"),
            orchestrator.cancel_order("ORD-RACE-1", "second"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert errors[0].kind == ErrorKind.INVALID_ORDER_STATE
        # Confirmed order: no refund, one restock
        assert (await accounts.get_product("SKU-001")).available_inventory == 11
