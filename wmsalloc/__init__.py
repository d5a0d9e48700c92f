# wmsalloc/__init__.py
"""Inventory allocation engine: lot selection, quantity ledger, allocation lifecycle."""

__version__ = "1.0.0"
