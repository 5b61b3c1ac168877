"""
bid_overlay.py -- pending bids on the current territory and their selection.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from territories import Bid


def replace_bids(bids: Iterable[Bid]) -> dict[int, Bid]:
    """Fresh bid set.  Selection never survives a replace."""
    return {b.bid_id: (replace(b, selected=False) if b.selected else b) for b in bids}


def set_selected(bids: dict[int, Bid], bid_id: int, selected: bool) -> dict[int, Bid]:
    bid = bids.get(bid_id)
    if bid is None or bid.selected == bool(selected):
        return bids
    updated = dict(bids)
    updated[bid_id] = replace(bid, selected=bool(selected))
    return updated


def selected_total(bids: dict[int, Bid]) -> float:
    return float(sum(b.amount for b in bids.values() if b.selected))


def selected_ids(bids: dict[int, Bid]) -> frozenset[int]:
    return frozenset(b.bid_id for b in bids.values() if b.selected)


def sorted_by_amount(bids: dict[int, Bid]) -> list[Bid]:
    return sorted(bids.values(), key=lambda b: (b.amount, b.bid_id))
