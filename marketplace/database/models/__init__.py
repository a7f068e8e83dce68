"""
ORM models.

Importing this package registers every table on ``Base.metadata``.
"""

from marketplace.database.models.activity import ActivityLog
from marketplace.database.models.catalog import Combo, ComboItem, Product
from marketplace.database.models.inventory import InventoryMovement, InventoryRecord
from marketplace.database.models.order import Order, OrderItem
from marketplace.database.models.remittance import (
    BankTransferRecord,
    Recipient,
    RecipientBankAccount,
    Remittance,
    RemittanceType,
)
from marketplace.database.models.user import User

__all__ = [
    "ActivityLog",
    "BankTransferRecord",
    "Combo",
    "ComboItem",
    "InventoryMovement",
    "InventoryRecord",
    "Order",
    "OrderItem",
    "Product",
    "Recipient",
    "RecipientBankAccount",
    "Remittance",
    "RemittanceType",
    "User",
]
