"""
Unit tests for Money and AuditInfo.
"""
from decimal import Decimal

import pytest

from commerce_core.domain.errors import (
    CurrencyMismatchError,
    ErrorKind,
    NegativeAmountError,
    ValidationError,
)
from commerce_core.domain.value_objects import AuditInfo, Currency, Money


class TestMoneyConstruction:
    @pytest.mark.unit
    def test_of_quantizes_to_two_places(self) -> None:
        money = Money.of("100", "CNY")

        assert money.amount == Decimal("100.00")
        assert money.currency == Currency.CNY
        assert str(money) == "100.00 CNY"

    @pytest.mark.unit
    def test_of_rounds_half_up(self) -> None:
        assert Money.of("0.125", "CNY").amount == Decimal("0.13")
        assert Money.of("0.124", "CNY").amount == Decimal("0.12")

    @pytest.mark.unit
    def test_of_normalizes_currency_code(self) -> None:
        assert Money.of("1.00", " usd ").currency == Currency.USD

    @pytest.mark.unit
    def test_float_is_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Money.of(0.1, "CNY")  # type: ignore[arg-type]

    @pytest.mark.unit
    def test_garbage_amount_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid money amount"):
            Money.of("ten", "CNY")

    @pytest.mark.unit
    def test_negative_amount_is_rejected(self) -> None:
        with pytest.raises(NegativeAmountError) as exc_info:
            Money.of("-1.00", "CNY")

        assert exc_info.value.kind == ErrorKind.VALIDATION_ERROR

    @pytest.mark.unit
    def test_unsupported_currency_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Unsupported currency"):
            Money.of("1.00", "XYZ")

    @pytest.mark.unit
    def test_zero(self) -> None:
        zero = Money.zero("CNY")

        assert zero.is_zero()
        assert not zero.is_positive()
        assert str(zero) == "0.00 CNY"


class TestMoneyArithmetic:
    @pytest.mark.unit
    def test_add_and_subtract(self) -> None:
        a = Money.of("100.50", "CNY")
        b = Money.of("0.50", "CNY")

        assert a.add(b) == Money.of("101.00", "CNY")
        assert a.subtract(b) == Money.of("100.00", "CNY")
        assert a + b == Money.of("101.00", "CNY")

    @pytest.mark.unit
    def test_operations_return_new_values(self) -> None:
        a = Money.of("10.00", "CNY")
        a.add(Money.of("5.00", "CNY"))

        assert a == Money.of("10.00", "CNY")

    @pytest.mark.unit
    def test_subtract_below_zero_is_a_range_error(self) -> None:
        with pytest.raises(NegativeAmountError, match="result would be negative"):
            Money.of("50.00", "CNY").subtract(Money.of("50.01", "CNY"))

    @pytest.mark.unit
    def test_subtract_to_exactly_zero(self) -> None:
        assert Money.of("50.00", "CNY").subtract(Money.of("50.00", "CNY")).is_zero()

    @pytest.mark.unit
    def test_multiply_by_int_and_decimal(self) -> None:
        price = Money.of("19.99", "CNY")

        assert price.multiply(3) == Money.of("59.97", "CNY")
        assert price.multiply(Decimal("0.5")) == Money.of("10.00", "CNY")  # 9.995 rounds up
        assert price * 2 == Money.of("39.98", "CNY")

    @pytest.mark.unit
    def test_multiply_rejects_negative_factor(self) -> None:
        with pytest.raises(ValidationError, match="Factor cannot be negative"):
            Money.of("1.00", "CNY").multiply(-1)

    @pytest.mark.unit
    def test_multiply_rejects_float_factor(self) -> None:
        with pytest.raises(ValidationError, match="must be int or Decimal"):
            Money.of("1.00", "CNY").multiply(1.5)  # type: ignore[arg-type]

    @pytest.mark.unit
    def test_cross_currency_add_is_an_error(self) -> None:
        with pytest.raises(CurrencyMismatchError, match="CNY vs USD"):
            Money.of("1.00", "CNY").add(Money.of("1.00", "USD"))


class TestMoneyComparison:
    @pytest.mark.unit
    def test_ordering_within_currency(self) -> None:
        small = Money.of("1.00", "CNY")
        large = Money.of("2.00", "CNY")

        assert small < large
        assert large >= small
        assert small.compare(large) == -1
        assert large.compare(small) == 1
        assert small.compare(Money.of("1", "CNY")) == 0

    @pytest.mark.unit
    def test_cross_currency_equality_is_an_error_not_false(self) -> None:
        with pytest.raises(CurrencyMismatchError):
            _ = Money.of("1.00", "CNY") == Money.of("1.00", "USD")

    @pytest.mark.unit
    def test_cross_currency_ordering_is_an_error(self) -> None:
        with pytest.raises(CurrencyMismatchError):
            _ = Money.of("1.00", "CNY") < Money.of("2.00", "EUR")

    @pytest.mark.unit
    def test_equal_values_hash_equal(self) -> None:
        assert hash(Money.of("5", "CNY")) == hash(Money.of("5.00", "CNY"))

    @pytest.mark.unit
    def test_comparison_with_non_money_is_not_equal(self) -> None:
        assert Money.of("5.00", "CNY") != "5.00 CNY"


class TestAuditInfo:
    @pytest.mark.unit
    def test_touched_advances_updated_at_only(self) -> None:
        audit = AuditInfo.new().with_version(3)
        touched = audit.touched()

        assert touched.version == 3
        assert touched.created_at == audit.created_at
        assert touched.updated_at >= audit.updated_at
        assert touched.updated_at.tzinfo is not None
