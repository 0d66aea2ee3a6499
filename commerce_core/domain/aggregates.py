"""
Aggregates - Consistency Boundaries

An aggregate is a cluster of domain objects that must be consistent.
Each one here owns a balance or an inventory and enforces its own rules:

- Buyer: balance never goes below zero
- Merchant: balance <= total_income, total_income never decreases
- Product: inventory never goes below zero, deltas are always positive

Every rule is checked BEFORE the field changes, so a rejected call leaves
the aggregate exactly as it was. Cross-aggregate atomicity (one purchase
touching four aggregates) is the unit of work's job, not theirs.

Identity and audit stamps are composed in (AuditInfo), not inherited.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from commerce_core.domain.errors import (
    InsufficientBalanceError,
    InsufficientFundsError,
    InsufficientInventoryError,
    ResourceInactiveError,
    ValidationError,
)
from commerce_core.domain.events import (
    BuyerCharged,
    BuyerRecharged,
    DomainEvent,
    InventoryAdded,
    InventoryReduced,
    MerchantIncomeReceived,
    MerchantWithdrawal,
    create_event_metadata,
)
from commerce_core.domain.value_objects import AuditInfo, Currency, Money


class AggregateStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class EventRecorder:
    """
    Pending-event bookkeeping shared by every aggregate.

    Subclasses are dataclasses declaring `audit` and `_uncommitted_events`.
    """

    audit: AuditInfo
    _uncommitted_events: list[DomainEvent]

    def _record(self, event: DomainEvent) -> None:
        self._uncommitted_events.append(event)
        self.touch()

    def touch(self) -> None:
        self.audit = self.audit.touched()

    def get_uncommitted_events(self) -> list[DomainEvent]:
        """Get events that haven't been published yet."""
        return self._uncommitted_events.copy()

    def mark_events_committed(self) -> None:
        """Clear uncommitted events after commit."""
        self._uncommitted_events.clear()

    @property
    def version(self) -> int:
        return self.audit.version


def require_positive_amount(amount: Money, what: str) -> None:
    if not isinstance(amount, Money):
        raise ValidationError(f"{what} must be Money, got {type(amount).__name__}")
    if not amount.is_positive():
        raise ValidationError(f"{what} must be positive, got {amount}", amount=str(amount))


def require_positive_quantity(quantity: int, what: str = "Quantity") -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"{what} must be an integer, got {quantity!r}", quantity=repr(quantity))
    if quantity <= 0:
        raise ValidationError(f"{what} must be positive, got {quantity}", quantity=quantity)


@dataclass
class Buyer(EventRecorder):
    """
    Buyer (user) account.

    Created with a zero balance in one currency. Only recharge() adds money
    and only deduct() takes it away.
    """

    name: str
    email: str
    balance: Money
    status: AggregateStatus = AggregateStatus.ACTIVE
    id: Optional[int] = None
    audit: AuditInfo = field(default_factory=AuditInfo.new)
    _uncommitted_events: list[DomainEvent] = field(default_factory=list, repr=False)

    @classmethod
    def register(cls, name: str, email: str, currency: Currency | str) -> Buyer:
        if not name or not name.strip():
            raise ValidationError("Buyer name cannot be empty")
        if not email or "@" not in email:
            raise ValidationError(f"Invalid email: {email!r}", email=email)
        return cls(name=name.strip(), email=email.strip(), balance=Money.zero(currency))

    @property
    def currency(self) -> Currency:
        return self.balance.currency

    def is_active(self) -> bool:
        return self.status == AggregateStatus.ACTIVE

    def can_afford(self, amount: Money) -> bool:
        return self.balance >= amount

    def recharge(self, amount: Money) -> None:
        self._require_active()
        require_positive_amount(amount, "Recharge amount")
        self.balance = self.balance.add(amount)
        self._record(
            BuyerRecharged(
                metadata=create_event_metadata("BuyerRecharged", self.id, "buyer"),
                buyer_id=self.id,
                amount=amount.amount,
                currency=amount.currency.value,
                balance_after=self.balance.amount,
            )
        )

    def deduct(self, amount: Money) -> None:
        """
        Take money from the balance.

        Raises:
            ResourceInactiveError: buyer deactivated
            ValidationError: non-positive amount or wrong currency
            InsufficientBalanceError: amount > balance
        """
        self._require_active()
        require_positive_amount(amount, "Deduct amount")
        if not self.can_afford(amount):
            raise InsufficientBalanceError(required=amount, available=self.balance, buyer_id=self.id)
        self.balance = self.balance.subtract(amount)
        self._record(
            BuyerCharged(
                metadata=create_event_metadata("BuyerCharged", self.id, "buyer"),
                buyer_id=self.id,
                amount=amount.amount,
                currency=amount.currency.value,
                balance_after=self.balance.amount,
            )
        )

    def activate(self) -> None:
        self.status = AggregateStatus.ACTIVE
        self.touch()

    def deactivate(self) -> None:
        self.status = AggregateStatus.INACTIVE
        self.touch()

    def _require_active(self) -> None:
        if not self.is_active():
            raise ResourceInactiveError("buyer", self.id)


@dataclass
class Merchant(EventRecorder):
    """
    Merchant (seller) account.

    total_income is a lifetime counter: receive_income() grows it together
    with balance, withdraw() only shrinks balance. Hence balance <= total_income.
    """

    name: str
    business_license: str
    balance: Money
    total_income: Money
    status: AggregateStatus = AggregateStatus.ACTIVE
    id: Optional[int] = None
    audit: AuditInfo = field(default_factory=AuditInfo.new)
    _uncommitted_events: list[DomainEvent] = field(default_factory=list, repr=False)

    @classmethod
    def register(cls, name: str, business_license: str, currency: Currency | str) -> Merchant:
        if not name or not name.strip():
            raise ValidationError("Merchant name cannot be empty")
        if not business_license or not business_license.strip():
            raise ValidationError("Business license cannot be empty")
        zero = Money.zero(currency)
        return cls(
            name=name.strip(),
            business_license=business_license.strip(),
            balance=zero,
            total_income=zero,
        )

    @property
    def currency(self) -> Currency:
        return self.balance.currency

    def is_active(self) -> bool:
        return self.status == AggregateStatus.ACTIVE

    def can_withdraw(self, amount: Money) -> bool:
        return self.balance >= amount

    def receive_income(self, amount: Money) -> None:
        self._require_active()
        require_positive_amount(amount, "Income amount")
        # Both computed before either is assigned
        balance = self.balance.add(amount)
        total_income = self.total_income.add(amount)
        self.balance = balance
        self.total_income = total_income
        self._record(
            MerchantIncomeReceived(
                metadata=create_event_metadata("MerchantIncomeReceived", self.id, "merchant"),
                merchant_id=self.id,
                amount=amount.amount,
                currency=amount.currency.value,
                balance_after=self.balance.amount,
                total_income_after=self.total_income.amount,
            )
        )

    def withdraw(self, amount: Money) -> None:
        """
        Take money out of the balance. total_income is untouched.

        Raises:
            InsufficientFundsError: amount > balance
        """
        self._require_active()
        require_positive_amount(amount, "Withdraw amount")
        if not self.can_withdraw(amount):
            raise InsufficientFundsError(required=amount, available=self.balance, merchant_id=self.id)
        self.balance = self.balance.subtract(amount)
        self._record(
            MerchantWithdrawal(
                metadata=create_event_metadata("MerchantWithdrawal", self.id, "merchant"),
                merchant_id=self.id,
                amount=amount.amount,
                currency=amount.currency.value,
                balance_after=self.balance.amount,
            )
        )

    def activate(self) -> None:
        self.status = AggregateStatus.ACTIVE
        self.touch()

    def deactivate(self) -> None:
        self.status = AggregateStatus.INACTIVE
        self.touch()

    def _require_active(self) -> None:
        if not self.is_active():
            raise ResourceInactiveError("merchant", self.id)


@dataclass
class Product(EventRecorder):
    """
    Product with its stock.

    SKU is the stable business key; id is assigned by the store.
    Inactive products reject every mutating call except activate().
    """

    sku: str
    name: str
    price: Money
    merchant_id: int
    description: str = ""
    available_inventory: int = 0
    status: AggregateStatus = AggregateStatus.ACTIVE
    id: Optional[int] = None
    audit: AuditInfo = field(default_factory=AuditInfo.new)
    _uncommitted_events: list[DomainEvent] = field(default_factory=list, repr=False)

    @classmethod
    def create(
        cls,
        sku: str,
        name: str,
        price: Money,
        merchant_id: int,
        description: str = "",
        initial_inventory: int = 0,
    ) -> Product:
        if not sku or not sku.strip():
            raise ValidationError("SKU cannot be empty")
        if not name or not name.strip():
            raise ValidationError("Product name cannot be empty")
        require_positive_amount(price, "Price")
        if isinstance(initial_inventory, bool) or not isinstance(initial_inventory, int) or initial_inventory < 0:
            raise ValidationError(
                f"Initial inventory must be a non-negative integer, got {initial_inventory!r}",
                initial_inventory=repr(initial_inventory),
            )
        return cls(
            sku=sku.strip(),
            name=name.strip(),
            price=price,
            merchant_id=merchant_id,
            description=description or "",
            available_inventory=initial_inventory,
        )

    def is_active(self) -> bool:
        return self.status == AggregateStatus.ACTIVE

    def is_available(self) -> bool:
        """Active and at least one unit in stock."""
        return self.is_active() and self.available_inventory > 0

    def has_enough_inventory(self, quantity: int) -> bool:
        return self.available_inventory >= quantity

    def calculate_total_price(self, quantity: int) -> Money:
        require_positive_quantity(quantity)
        return self.price.multiply(quantity)

    def add_inventory(self, quantity: int) -> None:
        self._require_active()
        require_positive_quantity(quantity)
        self.available_inventory += quantity
        self._record(
            InventoryAdded(
                metadata=create_event_metadata("InventoryAdded", self.sku, "product"),
                sku=self.sku,
                quantity=quantity,
                inventory_after=self.available_inventory,
            )
        )

    def reduce_inventory(self, quantity: int) -> None:
        """
        Remove stock.

        Raises:
            InsufficientInventoryError: quantity > available_inventory
        """
        self._require_active()
        require_positive_quantity(quantity)
        if not self.has_enough_inventory(quantity):
            raise InsufficientInventoryError(self.sku, quantity, self.available_inventory)
        self.available_inventory -= quantity
        self._record(
            InventoryReduced(
                metadata=create_event_metadata("InventoryReduced", self.sku, "product"),
                sku=self.sku,
                quantity=quantity,
                inventory_after=self.available_inventory,
            )
        )

    def update_price(self, new_price: Money) -> None:
        self._require_active()
        require_positive_amount(new_price, "Price")
        if new_price.currency != self.price.currency:
            raise ValidationError(
                f"Price currency cannot change: {self.price.currency.value} -> {new_price.currency.value}",
                sku=self.sku,
            )
        self.price = new_price
        self.touch()

    def update_info(self, name: Optional[str] = None, description: Optional[str] = None) -> None:
        self._require_active()
        if name is not None:
            if not name.strip():
                raise ValidationError("Product name cannot be empty", sku=self.sku)
            self.name = name.strip()
        if description is not None:
            self.description = description
        self.touch()

    def activate(self) -> None:
        self.status = AggregateStatus.ACTIVE
        self.touch()

    def deactivate(self) -> None:
        self.status = AggregateStatus.INACTIVE
        self.touch()

    def _require_active(self) -> None:
        if not self.is_active():
            raise ResourceInactiveError("product", self.sku)
