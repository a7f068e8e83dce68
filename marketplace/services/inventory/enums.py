"""Inventory movement kinds and per-line reservation states."""

from enum import Enum


class MovementKind(str, Enum):
    """
    Kind of stock mutation recorded in the movement trail.

    Attributes:
        RESERVATION: Stock held for an order; available decreases
        RELEASE: Hold returned; available increases
        COMMIT: Held stock consumed; on hand decreases
        RESTOCK: Consumed stock returned to the shelf; on hand increases
    """

    RESERVATION = "reservation"
    RELEASE = "release"
    COMMIT = "commit"
    RESTOCK = "restock"


class InventoryState(str, Enum):
    """Where an order line stands against inventory."""

    NOT_TRACKED = "not_tracked"
    RESERVED = "reserved"
    RELEASED = "released"
    COMMITTED = "committed"
    RESTOCKED = "restocked"
