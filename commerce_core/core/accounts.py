"""
Account and catalog operations.

Single-aggregate operations: register buyers and merchants, move money in
and out of one account, manage product stock and prices. Each one locks
the aggregate it touches, mutates a private copy and commits it through a
unit of work, so a rejected call changes nothing.
"""
from typing import Any, Callable, Optional, TypeVar

import structlog

from commerce_core.config import get_settings
from commerce_core.domain.aggregates import Buyer, Merchant, Product
from commerce_core.domain.errors import CurrencyMismatchError, DuplicateResourceError, ValidationError
from commerce_core.domain.value_objects import Currency, Money
from commerce_core.infrastructure.repositories import InMemoryStore

logger = structlog.get_logger(__name__)

A = TypeVar("A")


class AccountService:
    """Buyers, merchants and the product catalog."""

    def __init__(
        self,
        store: InMemoryStore,
        default_currency: Optional[str] = None,
        lock_timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize account service.

        Args:
            store: Stores, locks and event stream
            default_currency: Currency for new accounts (default from settings)
            lock_timeout_seconds: Bound on each lock wait (default: the store's)
        """
        self.store = store
        self.default_currency = Currency.parse(default_currency or get_settings().default_currency)
        self.lock_timeout_seconds = lock_timeout_seconds

    async def _update(
        self,
        aggregate_type: str,
        key: Any,
        load: Callable[[Any], Any],
        mutate: Callable[[A], None],
    ) -> A:
        """Lock, load a copy, mutate it, commit it."""
        async with self.store.locks.acquire((aggregate_type, key), timeout=self.lock_timeout_seconds):
            async with self.store.unit_of_work() as uow:
                aggregate = await load(key)
                mutate(aggregate)
                uow.track(aggregate)
                await uow.commit()
        return aggregate

    # ========================================================================
    # BUYERS
    # ========================================================================

    async def register_buyer(self, name: str, email: str, currency: Optional[str] = None) -> Buyer:
        """
        Create a buyer with a zero balance.

        Raises:
            DuplicateResourceError: email already registered
        """
        buyer = Buyer.register(name, email, currency or self.default_currency)
        async with self.store.locks.acquire(("buyer_email", buyer.email.lower()), timeout=self.lock_timeout_seconds):
            for existing in await self.store.buyers.list_all():
                if existing.email.lower() == buyer.email.lower():
                    raise DuplicateResourceError("buyer", buyer.email)
            async with self.store.unit_of_work() as uow:
                uow.add(buyer)
                await uow.commit()

        logger.info("buyer_registered", buyer_id=buyer.id, currency=buyer.currency.value)
        return buyer

    async def get_buyer(self, buyer_id: int) -> Buyer:
        return await self.store.buyers.load(buyer_id)

    async def buyer_balance(self, buyer_id: int) -> Money:
        return (await self.store.buyers.load(buyer_id)).balance

    async def recharge(self, buyer_id: int, amount: Money) -> Buyer:
        buyer = await self._update("buyer", buyer_id, self.store.buyers.load, lambda b: b.recharge(amount))
        logger.info("buyer_recharged", buyer_id=buyer_id, amount=str(amount), balance=str(buyer.balance))
        return buyer

    async def activate_buyer(self, buyer_id: int) -> Buyer:
        return await self._update("buyer", buyer_id, self.store.buyers.load, lambda b: b.activate())

    async def deactivate_buyer(self, buyer_id: int) -> Buyer:
        buyer = await self._update("buyer", buyer_id, self.store.buyers.load, lambda b: b.deactivate())
        logger.info("buyer_deactivated", buyer_id=buyer_id)
        return buyer

    # ========================================================================
    # MERCHANTS
    # ========================================================================

    async def register_merchant(
        self, name: str, business_license: str, currency: Optional[str] = None
    ) -> Merchant:
        """
        Create a merchant with zero balance and zero lifetime income.

        Raises:
            DuplicateResourceError: business license already registered
        """
        merchant = Merchant.register(name, business_license, currency or self.default_currency)
        async with self.store.locks.acquire(
            ("merchant_license", merchant.business_license), timeout=self.lock_timeout_seconds
        ):
            for existing in await self.store.merchants.list_all():
                if existing.business_license == merchant.business_license:
                    raise DuplicateResourceError("merchant", merchant.business_license)
            async with self.store.unit_of_work() as uow:
                uow.add(merchant)
                await uow.commit()

        logger.info("merchant_registered", merchant_id=merchant.id, currency=merchant.currency.value)
        return merchant

    async def get_merchant(self, merchant_id: int) -> Merchant:
        return await self.store.merchants.load(merchant_id)

    async def merchant_balance(self, merchant_id: int) -> Money:
        return (await self.store.merchants.load(merchant_id)).balance

    async def withdraw(self, merchant_id: int, amount: Money) -> Merchant:
        """
        Raises:
            InsufficientFundsError: amount exceeds the balance
        """
        merchant = await self._update(
            "merchant", merchant_id, self.store.merchants.load, lambda m: m.withdraw(amount)
        )
        logger.info(
            "merchant_withdrawal",
            merchant_id=merchant_id,
            amount=str(amount),
            balance=str(merchant.balance),
        )
        return merchant

    async def activate_merchant(self, merchant_id: int) -> Merchant:
        return await self._update("merchant", merchant_id, self.store.merchants.load, lambda m: m.activate())

    async def deactivate_merchant(self, merchant_id: int) -> Merchant:
        merchant = await self._update(
            "merchant", merchant_id, self.store.merchants.load, lambda m: m.deactivate()
        )
        logger.info("merchant_deactivated", merchant_id=merchant_id)
        return merchant

    # ========================================================================
    # CATALOG
    # ========================================================================

    async def create_product(
        self,
        sku: str,
        name: str,
        description: str,
        price: Money,
        merchant_id: int,
        stock: int = 0,
    ) -> Product:
        """
        Add a product to a merchant's catalog.

        Raises:
            DuplicateResourceError: SKU already exists
            ResourceNotFoundError: unknown merchant
            CurrencyMismatchError: price not in the merchant's currency
        """
        product = Product.create(
            sku=sku,
            name=name,
            price=price,
            merchant_id=merchant_id,
            description=description,
            initial_inventory=stock,
        )
        async with self.store.locks.acquire(("product", product.sku), timeout=self.lock_timeout_seconds):
            if await self.store.products.exists_sku(product.sku):
                raise DuplicateResourceError("product", product.sku)
            merchant = await self.store.merchants.load(merchant_id)
            if price.currency != merchant.currency:
                raise CurrencyMismatchError(price.currency.value, merchant.currency.value)
            async with self.store.unit_of_work() as uow:
                uow.add(product)
                await uow.commit()

        logger.info(
            "product_created",
            product_id=product.id,
            sku=product.sku,
            merchant_id=merchant_id,
            price=str(price),
            stock=stock,
        )
        return product

    async def get_product(self, sku: str) -> Product:
        return await self.store.products.load_by_sku(sku)

    async def add_inventory(self, sku: str, quantity: int) -> Product:
        return await self._update(
            "product", sku, self.store.products.load_by_sku, lambda p: p.add_inventory(quantity)
        )

    async def reduce_inventory(self, sku: str, quantity: int) -> Product:
        """
        Raises:
            InsufficientInventoryError: quantity exceeds the stock
        """
        return await self._update(
            "product", sku, self.store.products.load_by_sku, lambda p: p.reduce_inventory(quantity)
        )

    async def set_inventory(self, sku: str, quantity: int) -> Product:
        """Set absolute stock, applied as an add or reduce of the difference."""
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise ValidationError(f"Inventory must be a non-negative integer, got {quantity!r}", sku=sku)

        def apply(product: Product) -> None:
            delta = quantity - product.available_inventory
            if delta > 0:
                product.add_inventory(delta)
            elif delta < 0:
                product.reduce_inventory(-delta)

        product = await self._update("product", sku, self.store.products.load_by_sku, apply)
        logger.info("inventory_set", sku=sku, inventory=product.available_inventory)
        return product

    async def update_price(self, sku: str, new_price: Money) -> Product:
        product = await self._update(
            "product", sku, self.store.products.load_by_sku, lambda p: p.update_price(new_price)
        )
        logger.info("product_price_updated", sku=sku, price=str(new_price))
        return product

    async def update_product_info(
        self, sku: str, name: Optional[str] = None, description: Optional[str] = None
    ) -> Product:
        return await self._update(
            "product",
            sku,
            self.store.products.load_by_sku,
            lambda p: p.update_info(name=name, description=description),
        )

    async def activate_product(self, sku: str) -> Product:
        return await self._update("product", sku, self.store.products.load_by_sku, lambda p: p.activate())

    async def deactivate_product(self, sku: str) -> Product:
        return await self._update("product", sku, self.store.products.load_by_sku, lambda p: p.deactivate())

    async def available_products(self) -> list[Product]:
        """Active products with at least one unit in stock."""
        return [p for p in await self.store.products.list_all() if p.is_available()]

    async def merchant_products(self, merchant_id: int) -> list[Product]:
        return await self.store.products.list_by_merchant(merchant_id)

    async def search_products(self, term: str, available_only: bool = False) -> list[Product]:
        """Case-insensitive match on SKU, name or description."""
        needle = (term or "").strip().lower()
        products = await self.store.products.list_all()
        matches = [
            p
            for p in products
            if needle in p.sku.lower() or needle in p.name.lower() or needle in p.description.lower()
        ]
        if available_only:
            matches = [p for p in matches if p.is_available()]
        return matches
