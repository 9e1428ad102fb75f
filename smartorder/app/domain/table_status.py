"""Table occupancy states."""

from __future__ import annotations

from enum import Enum


class TableStatus(str, Enum):
    """Occupancy of a table as derived from its orders."""

    VACANT = "vacant"
    OCCUPIED = "occupied"
    AWAITING_FOOD = "awaiting_food"
    SERVED = "served"
