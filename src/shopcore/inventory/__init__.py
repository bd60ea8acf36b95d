"""
Inventory ledger.

Per-(variant, seller) stock with atomic, never-negative adjustments.
"""

from shopcore.inventory.ledger import InventoryLedger
from shopcore.inventory.models import Inventory, InventoryStats, StockAdjustment

__all__ = [
    "Inventory",
    "InventoryLedger",
    "InventoryStats",
    "StockAdjustment",
]
