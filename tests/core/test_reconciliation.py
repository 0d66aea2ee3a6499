"""
Tests for settlement reconciliation and the daily settlement run.
"""
import asyncio
from datetime import date, datetime, timedelta

import pytest

from commerce_core.core.accounts import AccountService
from commerce_core.core.purchase import PurchaseOrchestrator, PurchaseReceipt
from commerce_core.core.reconciliation import (
    CompletedOrderIncomeQuery,
    SettlementReconciler,
    SettlementService,
)
from commerce_core.domain.errors import CurrencyMismatchError, InternalError, ResourceNotFoundError
from commerce_core.domain.settlement import DifferenceKind, SettlementStatus
from commerce_core.domain.value_objects import Currency, Money, utc_now
from commerce_core.infrastructure.event_stream import InMemoryEventStream
from commerce_core.infrastructure.repositories import InMemoryStore

TODAY = date(2026, 10, 19)


def cny(amount: str) -> Money:
    return Money.of(amount, "CNY")


def shortly_after_now() -> datetime:
    return utc_now() + timedelta(seconds=1)


class FlakyIncomeQuery:
    """Fails for one merchant, reports zero income for the rest."""

    def __init__(self, failing_merchant_id: int):
        self.failing_merchant_id = failing_merchant_id

    async def expected_income(self, merchant_id: int, start: datetime, end: datetime, currency: Currency) -> Money:
        if merchant_id == self.failing_merchant_id:
            raise InternalError("order history unavailable")
        return Money.zero(currency)


class InterleavingIncomeQuery(CompletedOrderIncomeQuery):
    """Starts a purchase for the same merchant once the income is summed, then yields."""

    def __init__(self, store: InMemoryStore, orchestrator: PurchaseOrchestrator, buyer_id: int):
        super().__init__(store.orders)
        self.orchestrator = orchestrator
        self.buyer_id = buyer_id
        self.purchase_task = None

    async def expected_income(self, merchant_id: int, start: datetime, end: datetime, currency: Currency) -> Money:
        income = await super().expected_income(merchant_id, start, end, currency)
        self.purchase_task = asyncio.create_task(self.orchestrator.purchase(self.buyer_id, "SKU-001", 1))
        await asyncio.sleep(0.05)
        return income


class TestSettlementReconciler:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_matched_balance(
        self, reconciler: SettlementReconciler, orchestrator: PurchaseOrchestrator, marketplace
    ) -> None:
        await orchestrator.purchase(marketplace.buyer.id, "SKU-001", 2)

        settlement = await reconciler.reconcile(marketplace.merchant.id, TODAY, cny("200.00"))

        assert settlement.id is not None
        assert settlement.status == SettlementStatus.MATCHED
        assert settlement.difference == cny("0.00")
        assert settlement.actual_balance == cny("200.00")
        assert settlement.notes == "Actual balance: 200.00 CNY, Balance matched"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_surplus(
        self,
        reconciler: SettlementReconciler,
        orchestrator: PurchaseOrchestrator,
        accounts: AccountService,
        marketplace,
    ) -> None:
        await orchestrator.purchase(marketplace.buyer.id, "SKU-001", 2)
        await accounts.withdraw(marketplace.merchant.id, cny("50.00"))

        settlement = await reconciler.reconcile(
            marketplace.merchant.id, TODAY, cny("0.00"), notes="Manual check"
        )

        assert settlement.status == SettlementStatus.SURPLUS
        assert settlement.difference == cny("150.00")
        assert settlement.notes == "Manual check, Actual balance: 150.00 CNY, Surplus of 150.00 CNY"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_deficit(
        self,
        reconciler: SettlementReconciler,
        orchestrator: PurchaseOrchestrator,
        accounts: AccountService,
        marketplace,
    ) -> None:
        await orchestrator.purchase(marketplace.buyer.id, "SKU-001", 2)
        await accounts.withdraw(marketplace.merchant.id, cny("50.00"))

        settlement = await reconciler.reconcile(marketplace.merchant.id, TODAY, cny("200.00"))

        assert settlement.status == SettlementStatus.DEFICIT
        assert settlement.difference == cny("50.00")
        assert settlement.difference_kind == DifferenceKind.DEFICIT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_reconcile_does_not_touch_the_merchant(
        self, reconciler: SettlementReconciler, accounts: AccountService, marketplace
    ) -> None:
        before = await accounts.get_merchant(marketplace.merchant.id)

        await reconciler.reconcile(marketplace.merchant.id, TODAY, cny("999.00"))

        after = await accounts.get_merchant(marketplace.merchant.id)
        assert after.balance == before.balance
        assert after.version == before.version

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_expected_income_is_matched(
        self, reconciler: SettlementReconciler, marketplace
    ) -> None:
        settlement = await reconciler.reconcile(marketplace.merchant.id, TODAY, None)

        assert settlement.is_matched()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_expected_income_in_other_currency(
        self, reconciler: SettlementReconciler, store: InMemoryStore, marketplace
    ) -> None:
        with pytest.raises(CurrencyMismatchError):
            await reconciler.reconcile(marketplace.merchant.id, TODAY, Money.of("1.00", "USD"))

        assert store.settlements.count() == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_merchant(self, reconciler: SettlementReconciler) -> None:
        with pytest.raises(ResourceNotFoundError):
            await reconciler.reconcile(404, TODAY, cny("1.00"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_process_and_notes(
        self, reconciler: SettlementReconciler, stream: InMemoryEventStream, marketplace
    ) -> None:
        settlement = await reconciler.reconcile(marketplace.merchant.id, TODAY, cny("10.00"))

        await reconciler.add_notes(settlement.id, "Investigated: refund pending")
        processed = await reconciler.process(settlement.id)

        stored = await reconciler.get(settlement.id)
        assert processed.is_processed()
        assert stored.status == SettlementStatus.PROCESSED
        assert stored.notes == "Investigated: refund pending"
        assert stored.difference == cny("10.00")
        assert stream.event_types() == ["SettlementRecorded", "SettlementProcessed"]


class TestSettlementService:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_first_settlement_uses_recent_orders(
        self, store: InMemoryStore, orchestrator: PurchaseOrchestrator, marketplace
    ) -> None:
        service = SettlementService(store, clock=shortly_after_now)
        await orchestrator.purchase(marketplace.buyer.id, "SKU-001", 2)

        settlement = await service.settle_merchant(marketplace.merchant.id)

        assert settlement.is_matched()
        assert settlement.expected_income == cny("200.00")
        assert settlement.notes.startswith("No previous settlement found, Recent orders income: 200.00 CNY")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_previous_settlement_carries_its_balance_forward(
        self,
        store: InMemoryStore,
        reconciler: SettlementReconciler,
        orchestrator: PurchaseOrchestrator,
        marketplace,
    ) -> None:
        service = SettlementService(store, reconciler=reconciler, clock=shortly_after_now)
        today = shortly_after_now().date()
        await orchestrator.purchase(marketplace.buyer.id, "SKU-001", 2)
        await reconciler.reconcile(marketplace.merchant.id, today - timedelta(days=1), cny("200.00"))
        await orchestrator.purchase(marketplace.buyer.id, "SKU-001", 1)

        settlement = await service.settle_merchant(marketplace.merchant.id, today)

        assert settlement.expected_income == cny("300.00")
        assert settlement.is_matched()
        assert settlement.notes.startswith(
            "Previous balance: 200.00 CNY, Orders since previous settlement: 100.00 CNY, "
            "Expected balance: 300.00 CNY"
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_withdrawal_shows_as_deficit(
        self,
        store: InMemoryStore,
        orchestrator: PurchaseOrchestrator,
        accounts: AccountService,
        marketplace,
    ) -> None:
        service = SettlementService(store, clock=shortly_after_now)
        await orchestrator.purchase(marketplace.buyer.id, "SKU-001", 2)
        await accounts.withdraw(marketplace.merchant.id, cny("50.00"))

        settlement = await service.settle_merchant(marketplace.merchant.id)

        assert settlement.has_deficit()
        assert settlement.difference == cny("50.00")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_daily_run_counts_failures_and_continues(
        self, store: InMemoryStore, accounts: AccountService, marketplace
    ) -> None:
        second = await accounts.register_merchant("Cable Co", "BL-003")
        dormant = await accounts.register_merchant("Closed Shop", "BL-004")
        await accounts.deactivate_merchant(dormant.id)
        service = SettlementService(store, income_query=FlakyIncomeQuery(marketplace.merchant.id))

        summary = await service.run_daily_settlement(TODAY)

        assert summary.settlement_date == TODAY
        assert summary.merchants == 2
        assert summary.settled == 1
        assert summary.failed == 1
        assert summary.statuses == {"MATCHED": 1}
        assert summary.failures == {marketplace.merchant.id: "order history unavailable"}
        assert await store.settlements.find_for_merchant_on(second.id, TODAY) is not None
        assert await store.settlements.find_for_merchant_on(dormant.id, TODAY) is None

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_purchase_during_income_query_waits_for_the_balance_read(
        self, store: InMemoryStore, orchestrator: PurchaseOrchestrator, marketplace
    ) -> None:
        await orchestrator.purchase(marketplace.buyer.id, "SKU-001", 2)
        income_query = InterleavingIncomeQuery(store, orchestrator, marketplace.buyer.id)
        service = SettlementService(store, income_query=income_query, clock=shortly_after_now)

        settlement = await service.settle_merchant(marketplace.merchant.id)

        assert settlement.status == SettlementStatus.MATCHED
        assert settlement.expected_income == cny("200.00")
        assert settlement.actual_balance == cny("200.00")

        receipt = await income_query.purchase_task
        assert isinstance(receipt, PurchaseReceipt)
        assert (await store.merchants.load(marketplace.merchant.id)).balance == cny("300.00")
