"""
Domain Errors - One Type per Failure Kind

Every failure the core can report has a structured kind attached at the
point where it is raised. Callers branch on `error.kind` (or on the
exception class), never on message text.

Example:
    except InsufficientBalanceError as e:
        e.kind       -> ErrorKind.INSUFFICIENT_BALANCE
        e.details    -> {"required": "200.00 CNY", "available": "50.00 CNY", ...}
        str(e)       -> "Insufficient balance. Required: 200.00 CNY, available: 50.00 CNY"
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field


class ErrorKind(str, Enum):
    """Failure kinds surfaced to callers."""

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_INACTIVE = "RESOURCE_INACTIVE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INVALID_ORDER_STATE = "INVALID_ORDER_STATE"
    DUPLICATE_RESOURCE = "DUPLICATE_RESOURCE"
    CONFLICT = "CONFLICT"
    BUSY = "BUSY"
    BUSINESS_ERROR = "BUSINESS_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class OperationFailure(BaseModel):
    """
    Caller-facing failure payload.

    This is what leaves the core when an operation is rejected. Mapping it
    to HTTP/JSON is somebody else's job.
    """

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False


class CommerceError(Exception):
    """Base class for all domain errors."""

    kind: ClassVar[ErrorKind] = ErrorKind.BUSINESS_ERROR

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_failure(self) -> OperationFailure:
        """Convert to the caller-facing failure payload."""
        return OperationFailure(kind=self.kind, message=self.message, details=self.details)


class ResourceNotFoundError(CommerceError):
    kind = ErrorKind.RESOURCE_NOT_FOUND

    def __init__(self, resource: str, key: Any):
        super().__init__(f"{resource.capitalize()} not found: {key}", resource=resource, key=str(key))


class ResourceInactiveError(CommerceError):
    kind = ErrorKind.RESOURCE_INACTIVE

    def __init__(self, resource: str, key: Any):
        super().__init__(f"{resource.capitalize()} is not active: {key}", resource=resource, key=str(key))


class ValidationError(CommerceError):
    """Rejected input: non-positive quantity, bad currency, negative factor, ..."""

    kind = ErrorKind.VALIDATION_ERROR


class CurrencyMismatchError(ValidationError):
    """Binary money operation across two currencies. Never auto-converted."""

    def __init__(self, left: str, right: str):
        super().__init__(f"Currency mismatch: {left} vs {right}", left=left, right=right)


class NegativeAmountError(ValidationError):
    """A money operation would produce a negative amount."""


class InsufficientBalanceError(CommerceError):
    kind = ErrorKind.INSUFFICIENT_BALANCE

    def __init__(self, required: Any, available: Any, buyer_id: Any = None):
        super().__init__(
            f"Insufficient balance. Required: {required}, available: {available}",
            buyer_id=buyer_id,
            required=str(required),
            available=str(available),
        )


class InsufficientInventoryError(CommerceError):
    kind = ErrorKind.INSUFFICIENT_INVENTORY

    def __init__(self, sku: str, requested: int, available: int):
        super().__init__(
            f"Insufficient inventory for {sku}. Requested: {requested}, available: {available}",
            sku=sku,
            requested=requested,
            available=available,
        )


class InsufficientFundsError(CommerceError):
    """Merchant withdrawal exceeds balance."""

    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, required: Any, available: Any, merchant_id: Any = None):
        super().__init__(
            f"Insufficient funds. Required: {required}, available: {available}",
            merchant_id=merchant_id,
            required=str(required),
            available=str(available),
        )


class InvalidOrderStateError(CommerceError):
    kind = ErrorKind.INVALID_ORDER_STATE

    def __init__(self, message: str, operation: str, current_status: Any):
        status = getattr(current_status, "value", current_status)
        super().__init__(message, operation=operation, current_status=status)


class DuplicateResourceError(CommerceError):
    kind = ErrorKind.DUPLICATE_RESOURCE

    def __init__(self, resource: str, key: Any):
        super().__init__(f"{resource.capitalize()} already exists: {key}", resource=resource, key=str(key))


class ConflictError(CommerceError):
    """
    Optimistic concurrency check failed at save time.

    Somebody else saved the aggregate between our load and our save.
    """

    kind = ErrorKind.CONFLICT

    def __init__(self, resource: str, key: Any, expected_version: int, current_version: int):
        self.expected_version = expected_version
        self.current_version = current_version
        super().__init__(
            f"Concurrency conflict for {resource} {key}: "
            f"expected version {expected_version}, current version {current_version}",
            resource=resource,
            key=str(key),
            expected_version=expected_version,
            current_version=current_version,
        )


class BusyError(CommerceError):
    """Lock acquisition timed out."""

    kind = ErrorKind.BUSY

    def __init__(self, resource: str, key: Any, timeout_seconds: float):
        super().__init__(
            f"{resource.capitalize()} {key} is busy (lock not acquired within {timeout_seconds}s)",
            resource=resource,
            key=str(key),
            timeout_seconds=timeout_seconds,
        )


class BusinessError(CommerceError):
    """Catch-all domain rule violation."""

    kind = ErrorKind.BUSINESS_ERROR


class InternalError(CommerceError):
    kind = ErrorKind.INTERNAL_ERROR
