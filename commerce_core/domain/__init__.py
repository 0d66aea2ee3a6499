"""
Domain Layer - Pure Business Logic

This layer contains:
- Value objects (Money, Currency, AuditInfo)
- Aggregates (Buyer, Merchant, Product, Order, Settlement)
- Domain events (immutable facts about what happened)
- Errors (one type per failure kind)

Key principle: ZERO dependencies on infrastructure.
Nothing here locks, awaits, or persists.
"""
