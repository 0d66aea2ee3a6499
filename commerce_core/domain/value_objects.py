"""
Value Objects - Immutable Domain Concepts

Value objects have no identity - two value objects are equal if their values are equal.

Example:
- Money.of("100.00", "CNY") == Money.of("100", "CNY") ✓
- Money.of("100.00", "CNY") == Money.of("100.00", "USD") → CurrencyMismatchError, not False

Why the mismatch raises:
- A silent False hides the bug (comparing a CNY balance to a USD price)
- Every binary operation demands the same currency; equality is no exception
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, field_validator

from commerce_core.domain.errors import (
    CurrencyMismatchError,
    NegativeAmountError,
    ValidationError,
)

MONEY_SCALE = Decimal("0.01")

Factor = Union[int, Decimal]


def utc_now() -> datetime:
    """Timezone-aware UTC now. All domain timestamps go through here."""
    return datetime.now(timezone.utc)


class Currency(str, Enum):
    """ISO 4217 currency codes we can hold."""

    CNY = "CNY"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    JPY = "JPY"
    HKD = "HKD"
    SGD = "SGD"
    AUD = "AUD"
    CAD = "CAD"

    @classmethod
    def parse(cls, value: Union[str, Currency]) -> Currency:
        """Normalize a currency code ('cny ' -> Currency.CNY)."""
        if isinstance(value, Currency):
            return value
        if not isinstance(value, str) or not value.strip():
            raise ValidationError("Currency cannot be empty", currency=value)
        normalized = value.strip().upper()
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(
                f"Unsupported currency: {value}. Supported currencies: {[c.value for c in cls]}",
                currency=value,
            ) from None


class Money(BaseModel):
    """
    Money value object with currency.

    CRITICAL: Never use raw Decimal for money - always include currency!

    Invariants:
    - amount is exact (Decimal, 2 places, HALF_UP) and never negative
    - every binary operation requires the same currency
    - immutable: every operation returns a new value

    Build with Money.of("12.50", "CNY") or Money.zero("CNY").
    Floats are refused - 0.1 + 0.2 is not a price.
    """

    model_config = ConfigDict(frozen=True)

    amount: Decimal
    currency: Currency

    @field_validator("amount", mode="before")
    @classmethod
    def reject_float(cls, v: object) -> object:
        if isinstance(v, float):
            raise ValueError("Money amount must not be a float - pass a decimal string")
        return v

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        """Ensure proper decimal precision and a non-negative amount."""
        if not v.is_finite():
            raise ValueError(f"Money amount must be finite, got {v}")
        quantized = v.quantize(MONEY_SCALE, rounding=ROUND_HALF_UP)
        if quantized < 0:
            raise ValueError(f"Money amount cannot be negative, got {v}")
        return quantized

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def of(cls, amount: Union[str, Decimal, int], currency: Union[str, Currency]) -> Money:
        """
        Build money from a decimal string (or Decimal/int).

        Raises:
            ValidationError: float input, unparseable amount, unsupported currency
            NegativeAmountError: amount below zero
        """
        if isinstance(amount, bool) or isinstance(amount, float):
            raise ValidationError(
                "Money amount must be a decimal string, Decimal or int, not float",
                amount=repr(amount),
            )
        try:
            value = Decimal(amount) if not isinstance(amount, Decimal) else amount
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"Invalid money amount: {amount!r}", amount=repr(amount)) from None
        if not value.is_finite():
            raise ValidationError(f"Invalid money amount: {amount!r}", amount=repr(amount))
        if value < 0:
            raise NegativeAmountError(f"Money amount cannot be negative: {amount}", amount=str(amount))
        return cls(amount=value, currency=Currency.parse(currency))

    @classmethod
    def zero(cls, currency: Union[str, Currency]) -> Money:
        return cls(amount=Decimal("0"), currency=Currency.parse(currency))

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add(self, other: Money) -> Money:
        self._require_same_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def subtract(self, other: Money) -> Money:
        """
        Subtract money (same currency, result must stay >= 0).

        A negative Money is never produced. Callers needing a signed gap
        compare first and subtract the smaller from the larger.
        """
        self._require_same_currency(other)
        result = self.amount - other.amount
        if result < 0:
            raise NegativeAmountError(
                f"Cannot subtract {other} from {self}: result would be negative",
                minuend=str(self),
                subtrahend=str(other),
            )
        return Money(amount=result, currency=self.currency)

    def multiply(self, factor: Factor) -> Money:
        """Multiply by a non-negative int or Decimal (unit price × quantity)."""
        if isinstance(factor, bool) or not isinstance(factor, (int, Decimal)):
            raise ValidationError(
                f"Money factor must be int or Decimal, got {type(factor).__name__}",
                factor=repr(factor),
            )
        if factor < 0:
            raise ValidationError(
                f"Factor cannot be negative in money operations. Factor: {factor}",
                factor=str(factor),
            )
        return Money(amount=self.amount * Decimal(factor), currency=self.currency)

    def __add__(self, other: Money) -> Money:
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        return self.subtract(other)

    def __mul__(self, factor: Factor) -> Money:
        return self.multiply(factor)

    __rmul__ = __mul__

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def compare(self, other: Money) -> int:
        """-1, 0 or 1. Raises CurrencyMismatchError across currencies."""
        self._require_same_currency(other)
        if self.amount < other.amount:
            return -1
        if self.amount > other.amount:
            return 1
        return 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.compare(other) == 0

    def __ne__(self, other: object) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.compare(other) != 0

    def __lt__(self, other: Money) -> bool:
        return self.compare(other) < 0

    def __le__(self, other: Money) -> bool:
        return self.compare(other) <= 0

    def __gt__(self, other: Money) -> bool:
        return self.compare(other) > 0

    def __ge__(self, other: Money) -> bool:
        return self.compare(other) >= 0

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def _require_same_currency(self, other: Money) -> None:
        if not isinstance(other, Money):
            raise ValidationError(f"Expected Money, got {type(other).__name__}")
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency.value, other.currency.value)

    def __str__(self) -> str:
        return f"{self.amount:.2f} {self.currency.value}"

    def __repr__(self) -> str:
        return f"Money({self.amount}, {self.currency.value})"


class AuditInfo(BaseModel):
    """
    Identity/audit stamp embedded in every aggregate.

    version is the persisted version: the store compares it on save
    (optimistic concurrency) and hands back version + 1.
    """

    model_config = ConfigDict(frozen=True)

    created_at: datetime
    updated_at: datetime
    version: int = 0

    @classmethod
    def new(cls) -> AuditInfo:
        now = utc_now()
        return cls(created_at=now, updated_at=now, version=0)

    def touched(self) -> AuditInfo:
        """Stamp a mutation (version is advanced by the store, not here)."""
        return self.model_copy(update={"updated_at": utc_now()})

    def with_version(self, version: int) -> AuditInfo:
        return self.model_copy(update={"version": version})
