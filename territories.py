"""
territories.py

Data model for the territory tree mirror.

- Region: axis-aligned box in fractal-plane coordinates
- Territory: one node of the ownership tree
- Bid: a pending proposal to carve a child territory out of a node

All records are frozen; collections holding them are replaced wholesale.
"""

from __future__ import annotations

from dataclasses import dataclass


# parentId carried by the global root.
ROOT_PARENT_ID = 0


@dataclass(frozen=True)
class Region:
    x_min: float
    y_min: float
    x_max: float
    y_max: float

    @property
    def width(self) -> float:
        return self.x_max - self.x_min

    @property
    def height(self) -> float:
        return self.y_max - self.y_min

    @property
    def center(self) -> tuple[float, float]:
        return ((self.x_min + self.x_max) / 2.0, (self.y_min + self.y_max) / 2.0)

    def contains(self, other: Region) -> bool:
        return (
            self.x_min <= other.x_min
            and self.y_min <= other.y_min
            and other.x_max <= self.x_max
            and other.y_max <= self.y_max
        )


@dataclass(frozen=True)
class Territory:
    territory_id: int
    parent_id: int
    region: Region
    owner: str
    locked_value: float = 0.0
    minimum_bid_price: float = 0.0
    # Derived from the active account, never read from the ledger.
    owned_by_viewer: bool = False


@dataclass(frozen=True)
class Bid:
    bid_id: int
    recipient: str
    region: Region
    amount: float
    minimum_bid_price: float = 0.0
    # Local-only UI flag; reset whenever the bid set is replaced.
    selected: bool = False
    owned_by_viewer: bool = False


def same_account(a: str | None, b: str | None) -> bool:
    """Account ids compare case-insensitively (hex addresses arrive in either case)."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()
