"""
Pytest configuration and fixtures.

Every test gets its own InMemoryStore: nothing is shared between tests.
"""
from dataclasses import dataclass

import pytest
import pytest_asyncio

from commerce_core.core.accounts import AccountService
from commerce_core.core.purchase import PurchaseOrchestrator
from commerce_core.core.reconciliation import SettlementReconciler, SettlementService
from commerce_core.domain.aggregates import Buyer, Merchant, Product
from commerce_core.domain.value_objects import Money
from commerce_core.infrastructure.event_stream import InMemoryEventStream
from commerce_core.infrastructure.repositories import InMemoryStore


@dataclass
class Marketplace:
    """One buyer, one merchant, one product - the purchase scenarios' starting point."""

    buyer: Buyer
    merchant: Merchant
    product: Product


@pytest.fixture
def stream() -> InMemoryEventStream:
    return InMemoryEventStream()


@pytest.fixture
def store(stream: InMemoryEventStream) -> InMemoryStore:
    """Isolated store with a short lock timeout."""
    return InMemoryStore(stream=stream, lock_timeout_seconds=1.0)


@pytest.fixture
def accounts(store: InMemoryStore) -> AccountService:
    return AccountService(store, default_currency="CNY")


@pytest.fixture
def orchestrator(store: InMemoryStore) -> PurchaseOrchestrator:
    return PurchaseOrchestrator(store)


@pytest.fixture
def reconciler(store: InMemoryStore) -> SettlementReconciler:
    return SettlementReconciler(store)


@pytest.fixture
def settlement_service(store: InMemoryStore, reconciler: SettlementReconciler) -> SettlementService:
    return SettlementService(store, reconciler=reconciler)


@pytest_asyncio.fixture
async def marketplace(accounts: AccountService, stream: InMemoryEventStream) -> Marketplace:
    """
    Buyer with 500.00 CNY, merchant with nothing, product SKU-001 at 100.00 CNY x 10.
    """
    buyer = await accounts.register_buyer("Alice", "alice@example.com")
    buyer = await accounts.recharge(buyer.id, Money.of("500.00", "CNY"))
    merchant = await accounts.register_merchant("Acme Store", "BL-001")
    product = await accounts.create_product(
        sku="SKU-001",
        name="Mechanical Keyboard",
        description="Tenkeyless, brown switches",
        price=Money.of("100.00", "CNY"),
        merchant_id=merchant.id,
        stock=10,
    )
    stream.clear()
    return Marketplace(buyer=buyer, merchant=merchant, product=product)
