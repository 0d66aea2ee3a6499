"""
Settlement reconciliation for comparing merchant balances with expected income.

Runs per merchant (on demand) or for every active merchant (daily) to detect:
- Surplus: the merchant holds more than its orders explain
- Deficit: the merchant holds less than its orders explain

Three pieces:
- SettlementReconciler: compare + classify + record (expected income is an input)
- CompletedOrderIncomeQuery: the expected income, from completed orders in a window
- SettlementService: picks the window, computes expected, runs the reconciler
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

from commerce_core.domain.errors import CommerceError
from commerce_core.domain.settlement import Settlement
from commerce_core.domain.value_objects import Currency, Money, utc_now
from commerce_core.infrastructure.repositories import InMemoryStore, OrderStore
from commerce_core.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class IncomeQuery(Protocol):
    """Supplies the expected income for a merchant over a time window."""

    async def expected_income(
        self, merchant_id: int, start: datetime, end: datetime, currency: Currency
    ) -> Money:
        ...


class CompletedOrderIncomeQuery:
    """Sum of COMPLETED orders' totals with start <= completed_time < end."""

    def __init__(self, orders: OrderStore):
        self.orders = orders

    async def expected_income(
        self, merchant_id: int, start: datetime, end: datetime, currency: Currency
    ) -> Money:
        completed = await self.orders.list_completed_for_merchant(merchant_id, start, end)
        total = Money.zero(currency)
        for order in completed:
            total = total.add(order.total_amount)

        logger.debug(
            "expected_income_calculated",
            merchant_id=merchant_id,
            orders=len(completed),
            start=start.isoformat(),
            end=end.isoformat(),
            expected_income=str(total),
        )
        return total


class SettlementReconciler:
    """
    Compares a merchant's actual balance with a caller-supplied expected income.

    The merchant is read under its own lock so the balance is a consistent
    snapshot; buyers and products are never touched.
    """

    def __init__(self, store: InMemoryStore, lock_timeout_seconds: Optional[float] = None):
        self.store = store
        self.lock_timeout_seconds = lock_timeout_seconds

    async def reconcile(
        self,
        merchant_id: int,
        settlement_date: date,
        expected_income: Optional[Money],
        notes: Optional[str] = None,
    ) -> Settlement:
        """
        Classify actual vs expected and record the settlement.

        Args:
            merchant_id: Merchant to reconcile
            settlement_date: Business date of the settlement
            expected_income: What the merchant should hold (None: unknown)
            notes: Calculation context, prefixed to the classification summary

        Returns:
            Settlement: The recorded settlement (id assigned)

        Raises:
            ResourceNotFoundError: unknown merchant
            CurrencyMismatchError: expected income not in the merchant's currency
        """
        async with self.merchant_lock(merchant_id):
            return await self.record(merchant_id, settlement_date, expected_income, notes)

    def merchant_lock(self, merchant_id: int):
        """The merchant's lock, bounded by this reconciler's timeout."""
        return self.store.locks.acquire(("merchant", merchant_id), timeout=self.lock_timeout_seconds)

    async def record(
        self,
        merchant_id: int,
        settlement_date: date,
        expected_income: Optional[Money],
        notes: Optional[str] = None,
    ) -> Settlement:
        """Read the balance and record the settlement. The caller holds the merchant lock."""
        async with self.store.unit_of_work() as uow:
            merchant = await self.store.merchants.load(merchant_id)
            actual_balance = merchant.balance

            settlement = Settlement.create(
                merchant_id=merchant_id,
                settlement_date=settlement_date,
                expected_income=expected_income,
                actual_balance=actual_balance,
                currency=merchant.currency,
            )
            summary = f"Actual balance: {actual_balance}, {settlement.summary()}"
            settlement.add_notes(f"{notes}, {summary}" if notes else summary)

            uow.add(settlement)
            await uow.commit()

        log = logger.bind(
            settlement_id=settlement.id,
            merchant_id=merchant_id,
            settlement_date=settlement_date.isoformat(),
            expected_income=str(expected_income) if expected_income is not None else None,
            actual_balance=str(actual_balance),
            status=settlement.status.value,
            difference=str(settlement.difference),
        )
        if settlement.is_matched():
            log.info("settlement_recorded")
        else:
            log.warning("settlement_mismatch_recorded", difference_kind=settlement.difference_kind.value)
        metrics.record_settlement(settlement.status.value)
        return settlement

    async def add_notes(self, settlement_id: int, notes: str) -> Settlement:
        """Replace a recorded settlement's notes."""
        async with self.store.locks.acquire(("settlement", settlement_id), timeout=self.lock_timeout_seconds):
            async with self.store.unit_of_work() as uow:
                settlement = await self.store.settlements.load(settlement_id)
                settlement.add_notes(notes)
                uow.track(settlement)
                await uow.commit()
        return settlement

    async def process(self, settlement_id: int) -> Settlement:
        """Mark a settlement PROCESSED. Nothing is recomputed."""
        async with self.store.locks.acquire(("settlement", settlement_id), timeout=self.lock_timeout_seconds):
            async with self.store.unit_of_work() as uow:
                settlement = await self.store.settlements.load(settlement_id)
                settlement.mark_as_processed()
                uow.track(settlement)
                await uow.commit()

        logger.info("settlement_processed", settlement_id=settlement_id, merchant_id=settlement.merchant_id)
        return settlement

    async def get(self, settlement_id: int) -> Settlement:
        return await self.store.settlements.load(settlement_id)


class SettlementRunSummary(BaseModel):
    """Outcome of one daily settlement run."""

    settlement_date: date
    merchants: int = 0
    settled: int = 0
    failed: int = 0
    statuses: dict[str, int] = Field(default_factory=dict)
    failures: dict[int, str] = Field(default_factory=dict)


class SettlementService:
    """
    Daily settlement for merchants.

    Window and expected balance:
    - a settlement exists for the previous day: the window starts at its
      creation time and expected = its actual balance + income since then
    - otherwise: the window starts at the previous day's midnight (UTC) and
      expected = income in the window
    The window ends at the settlement time.
    """

    def __init__(
        self,
        store: InMemoryStore,
        reconciler: Optional[SettlementReconciler] = None,
        income_query: Optional[IncomeQuery] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize settlement service.

        Args:
            store: Stores, locks and event stream
            reconciler: Settlement reconciler (default: one over `store`)
            income_query: Expected income source (default: completed orders)
            clock: Current time source (tests pin it)
        """
        self.store = store
        self.reconciler = reconciler or SettlementReconciler(store)
        self.income_query = income_query or CompletedOrderIncomeQuery(store.orders)
        self.clock = clock

    async def settle_merchant(
        self,
        merchant_id: int,
        settlement_date: Optional[date] = None,
    ) -> Settlement:
        """
        Settle one merchant.

        The merchant lock is held from the settlement time point through the
        income query and the balance read, so no purchase can land in the
        balance without also landing in the income window.

        Raises:
            ResourceNotFoundError: unknown merchant
            BusyError: merchant lock not acquired in time
        """
        async with self.reconciler.merchant_lock(merchant_id):
            settlement_time = self.clock()
            settlement_date = settlement_date or settlement_time.date()
            previous_date = settlement_date - timedelta(days=1)

            merchant = await self.store.merchants.load(merchant_id)
            previous = await self.store.settlements.find_for_merchant_on(merchant_id, previous_date)

            if previous is not None and previous.actual_balance is not None:
                start = previous.audit.created_at
            else:
                start = datetime.combine(previous_date, time.min, tzinfo=timezone.utc)

            income = await self.income_query.expected_income(
                merchant_id, start, settlement_time, merchant.currency
            )

            if previous is not None and previous.actual_balance is not None:
                expected = previous.actual_balance.add(income)
                notes = (
                    f"Previous balance: {previous.actual_balance}, "
                    f"Orders since previous settlement: {income}, "
                    f"Expected balance: {expected}"
                )
            else:
                expected = income
                notes = f"No previous settlement found, Recent orders income: {income}"

            logger.info(
                "merchant_settlement_calculated",
                merchant_id=merchant_id,
                settlement_date=settlement_date.isoformat(),
                window_start=start.isoformat(),
                window_end=settlement_time.isoformat(),
                previous_settlement_id=previous.id if previous else None,
                expected_balance=str(expected),
            )

            return await self.reconciler.record(merchant_id, settlement_date, expected, notes=notes)

    async def run_daily_settlement(self, settlement_date: Optional[date] = None) -> SettlementRunSummary:
        """
        Settle every active merchant.

        One merchant failing is logged and counted; the run continues.
        """
        settlement_date = settlement_date or self.clock().date()
        merchants = await self.store.merchants.list_active()
        summary = SettlementRunSummary(settlement_date=settlement_date, merchants=len(merchants))

        logger.info(
            "daily_settlement_started",
            settlement_date=settlement_date.isoformat(),
            merchants=len(merchants),
        )

        for merchant in merchants:
            try:
                settlement = await self.settle_merchant(merchant.id, settlement_date)
            except CommerceError as e:
                logger.warning(
                    "merchant_settlement_failed",
                    merchant_id=merchant.id,
                    merchant_name=merchant.name,
                    error_kind=e.kind.value,
                    error=e.message,
                )
                summary.failed += 1
                summary.failures[merchant.id] = e.message
                continue
            except Exception as e:
                logger.exception(
                    "merchant_settlement_failed_unexpectedly",
                    merchant_id=merchant.id,
                    merchant_name=merchant.name,
                    error=str(e),
                )
                summary.failed += 1
                summary.failures[merchant.id] = str(e)
                continue

            summary.settled += 1
            status = settlement.status.value
            summary.statuses[status] = summary.statuses.get(status, 0) + 1

        logger.info(
            "daily_settlement_completed",
            settlement_date=settlement_date.isoformat(),
            settled=summary.settled,
            failed=summary.failed,
            statuses=summary.statuses,
        )
        return summary
