"""
Inventory Kernel

A ledger-backed stock engine for hospital departments with:
- Per-(item, department) stock records that never go negative
- Append-only transaction log that is replayable from empty state
- Reservation-based transfer workflow with all-or-nothing effects
- Derived stock alerts and deterministic list queries
"""

__version__ = "0.1.0"
