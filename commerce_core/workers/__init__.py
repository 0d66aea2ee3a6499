"""Background workers for scheduled processing."""
from .settlement_worker import start_settlement_worker

__all__ = ["start_settlement_worker"]
