"""
Fluid Kernel - dual-unit liquid inventory ledger

An append-only stock ledger for liquid parts with:
- Sealed containers and loose bulk tracked separately per location
- Atomic, lock-ordered aggregate updates
- Immutable movement history with balance snapshots
- Weighted-average costing on receipt
"""

__version__ = "0.1.0"
