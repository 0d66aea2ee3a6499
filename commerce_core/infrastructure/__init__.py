"""
Infrastructure Layer - Stores, Locks, Event Stream

This layer contains:
- In-memory stores with copy-on-load and a unit of work
- Per-aggregate lock manager (canonical acquisition order)
- Event stream that receives events after commit

Key principle: All infrastructure is REPLACEABLE.
Services depend on the store protocols, not on the in-memory classes.
"""
