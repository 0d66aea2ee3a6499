"""
Settlement - Expected Income vs. Actual Balance

A settlement is a point-in-time comparison record for one merchant:

    actual == expected  → MATCHED, difference 0
    actual >  expected  → SURPLUS, difference = actual - expected
    actual <  expected  → DEFICIT, difference = expected - actual

difference is always a non-negative Money; the direction lives in
difference_kind. Money never goes negative, so the deficit is computed as
expected - actual rather than actual - expected.

After construction only two things may change:
- notes (overwritten by each add_notes call, never appended)
- status → PROCESSED (one-way, terminal)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from commerce_core.domain.aggregates import EventRecorder
from commerce_core.domain.errors import ValidationError
from commerce_core.domain.events import (
    DomainEvent,
    SettlementProcessed,
    SettlementRecorded,
    create_event_metadata,
)
from commerce_core.domain.value_objects import AuditInfo, Currency, Money, utc_now


class SettlementStatus(str, Enum):
    MATCHED = "MATCHED"
    SURPLUS = "SURPLUS"
    DEFICIT = "DEFICIT"
    PROCESSED = "PROCESSED"


class DifferenceKind(str, Enum):
    NONE = "NONE"
    SURPLUS = "SURPLUS"
    DEFICIT = "DEFICIT"


@dataclass
class Settlement(EventRecorder):
    """Settlement record. Build with Settlement.create()."""

    merchant_id: int
    settlement_date: date
    difference: Money
    difference_kind: DifferenceKind
    status: SettlementStatus
    expected_income: Optional[Money] = None
    actual_balance: Optional[Money] = None
    notes: str = ""
    processed_at: Optional[datetime] = None
    id: Optional[int] = None
    audit: AuditInfo = field(default_factory=AuditInfo.new)
    _uncommitted_events: list[DomainEvent] = field(default_factory=list, repr=False)

    @classmethod
    def create(
        cls,
        merchant_id: int,
        settlement_date: date,
        expected_income: Optional[Money],
        actual_balance: Optional[Money],
        currency: Optional[Currency | str] = None,
    ) -> Settlement:
        """
        Classify expected vs. actual and build the record.

        A missing figure (expected or actual) classifies as MATCHED with a
        zero difference in whichever currency is known.

        Raises:
            CurrencyMismatchError: expected and actual in different currencies
            ValidationError: nothing to take a currency from
        """
        if expected_income is not None and actual_balance is not None:
            comparison = actual_balance.compare(expected_income)
            if comparison == 0:
                status, kind = SettlementStatus.MATCHED, DifferenceKind.NONE
                difference = Money.zero(actual_balance.currency)
            elif comparison > 0:
                status, kind = SettlementStatus.SURPLUS, DifferenceKind.SURPLUS
                difference = actual_balance.subtract(expected_income)
            else:
                status, kind = SettlementStatus.DEFICIT, DifferenceKind.DEFICIT
                difference = expected_income.subtract(actual_balance)
        else:
            known = expected_income or actual_balance
            if known is not None:
                zero_currency: Currency | str = known.currency
            elif currency is not None:
                zero_currency = currency
            else:
                raise ValidationError(
                    "Settlement needs a currency when expected income and actual balance are both missing",
                    merchant_id=merchant_id,
                )
            status, kind = SettlementStatus.MATCHED, DifferenceKind.NONE
            difference = Money.zero(zero_currency)

        settlement = cls(
            merchant_id=merchant_id,
            settlement_date=settlement_date,
            expected_income=expected_income,
            actual_balance=actual_balance,
            difference=difference,
            difference_kind=kind,
            status=status,
        )
        settlement._record(
            SettlementRecorded(
                metadata=create_event_metadata(
                    "SettlementRecorded",
                    f"{merchant_id}:{settlement_date.isoformat()}",
                    "settlement",
                ),
                merchant_id=merchant_id,
                settlement_date=settlement_date,
                status=status.value,
                difference=difference.amount,
                difference_kind=kind.value,
                currency=difference.currency.value,
            )
        )
        return settlement

    @property
    def currency(self) -> Currency:
        return self.difference.currency

    def add_notes(self, notes: str) -> None:
        """Replace the notes."""
        self.notes = notes or ""
        self.touch()

    def mark_as_processed(self) -> None:
        """
        Advance to PROCESSED. Nothing is recomputed.

        Calling it again on a processed settlement changes nothing.
        """
        if self.status == SettlementStatus.PROCESSED:
            return
        previous = self.status
        self.status = SettlementStatus.PROCESSED
        self.processed_at = utc_now()
        self._record(
            SettlementProcessed(
                metadata=create_event_metadata(
                    "SettlementProcessed",
                    self.id if self.id is not None else f"{self.merchant_id}:{self.settlement_date.isoformat()}",
                    "settlement",
                ),
                settlement_id=self.id,
                merchant_id=self.merchant_id,
                previous_status=previous.value,
            )
        )

    def is_matched(self) -> bool:
        return self.status == SettlementStatus.MATCHED

    def has_surplus(self) -> bool:
        return self.status == SettlementStatus.SURPLUS

    def has_deficit(self) -> bool:
        return self.status == SettlementStatus.DEFICIT

    def is_processed(self) -> bool:
        return self.status == SettlementStatus.PROCESSED

    def signed_difference(self) -> Decimal:
        """actual - expected as a signed Decimal (reporting only)."""
        if self.difference_kind == DifferenceKind.DEFICIT:
            return -self.difference.amount
        return self.difference.amount

    def summary(self) -> str:
        """Human-readable classification, suitable for notes."""
        if self.difference_kind == DifferenceKind.SURPLUS:
            return f"Surplus of {self.difference}"
        if self.difference_kind == DifferenceKind.DEFICIT:
            return f"Deficit of {self.difference}"
        return "Balance matched"
