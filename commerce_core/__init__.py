"""
Commerce Core - Purchase Orchestration and Settlement Reconciliation

This package moves money and inventory between independent aggregates
(buyer, merchant, product, order) and later reconciles what a merchant
holds against what it should hold.

The two properties everything else serves:
1. Conservation: money and stock are moved, never created or destroyed
2. Atomicity: a purchase either lands on all four aggregates or on none

Layers:
- domain: aggregates, value objects, events, errors (no I/O)
- infrastructure: stores, unit of work, locks, event stream
- core: purchase orchestrator, settlement reconciler, account services
"""

__version__ = "1.0.0"
