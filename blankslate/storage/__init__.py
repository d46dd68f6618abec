"""Persistent state for blankslate."""

from blankslate.storage.db import StateStore
from blankslate.storage.ledger import BudgetLedger

__all__ = ["StateStore", "BudgetLedger"]
