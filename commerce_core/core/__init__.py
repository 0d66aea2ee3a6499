"""Core purchase, settlement and account logic."""
from .accounts import AccountService
from .order_numbers import OrderNumberGenerator, TimestampOrderNumberGenerator
from .purchase import PurchaseOrchestrator, PurchaseReceipt, PurchaseResult
from .reconciliation import (
    CompletedOrderIncomeQuery,
    IncomeQuery,
    SettlementReconciler,
    SettlementRunSummary,
    SettlementService,
)

__all__ = [
    "AccountService",
    "CompletedOrderIncomeQuery",
    "IncomeQuery",
    "OrderNumberGenerator",
    "PurchaseOrchestrator",
    "PurchaseReceipt",
    "PurchaseResult",
    "SettlementReconciler",
    "SettlementRunSummary",
    "SettlementService",
    "TimestampOrderNumberGenerator",
]
