"""
render_projector.py -- turn the navigation state into renderer primitives
and renderer selections back into navigation events.

The renderer itself lives outside this project.  Canvas is the seam: it
holds the primitive list and viewport, and a real renderer overrides
redraw()/move_into_frame().
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import bid_overlay
import config
import navigator as nav
from coordinates import SpatialPrimitive, Viewport, region_to_frame, region_to_viewport
from territories import Region

logger = logging.getLogger(__name__)


def project(state: nav.NavState) -> list[SpatialPrimitive]:
    """
    Children of the current node, then its bids, then the breadcrumb
    ancestors (root first, current node excluded).
    """
    frames: list[SpatialPrimitive] = []
    for tid in sorted(state.children):
        child = state.children[tid]
        frames.append(region_to_frame(child, "alternate" if child.owned_by_viewer else "primary"))
    for bid_id in sorted(state.bids):
        bid = state.bids[bid_id]
        if bid.selected:
            color = "selected_bid"
        elif bid.owned_by_viewer:
            color = "pending_bid_alternate"
        else:
            color = "pending_bid"
        frames.append(region_to_frame(bid, color))
    for ancestor in state.path[:-1]:
        frames.append(region_to_frame(ancestor, "path_alternate" if ancestor.owned_by_viewer else "path"))
    return frames


def classify_selection(primitive: SpatialPrimitive) -> nav.Event | None:
    """Map a selected primitive to the event it means.  Unknown kinds map to None."""
    kind = getattr(primitive, "kind", None)
    if kind in ("territory", "path_ancestor"):
        return nav.Descend(territory_id=int(primitive.primitive_id))
    if kind == "pending_bid":
        return nav.ToggleBid(bid_id=int(primitive.primitive_id), selected=True)
    if kind == "selected_bid":
        return nav.ToggleBid(bid_id=int(primitive.primitive_id), selected=False)
    logger.debug("Ignoring selection of unclassified primitive %r", primitive)
    return None


class Canvas:
    """Renderer-facing surface: replaceable primitive list, viewport, redraw hook."""

    def __init__(self, width: int | None = None, height: int | None = None) -> None:
        self.width = int(width or config.CANVAS_WIDTH)
        self.height = int(height or config.CANVAS_HEIGHT)
        self.primitives: list[SpatialPrimitive] = []
        self.viewport = Viewport(center_x=0.0, center_y=0.0, scale=4.0 / min(self.width, self.height),
                                 width=self.width, height=self.height)
        self.on_primitive_selected: Callable[[SpatialPrimitive], None] | None = None
        self.redraw_count = 0

    def set_primitives(self, primitives: list[SpatialPrimitive]) -> None:
        self.primitives = list(primitives)

    def move_into_frame(self, region: Region) -> None:
        self.viewport = region_to_viewport(region, self.width, self.height)

    def redraw(self) -> None:
        self.redraw_count += 1
        logger.debug("Redraw #%d with %d primitives", self.redraw_count, len(self.primitives))

    def select(self, primitive: SpatialPrimitive) -> None:
        """Deliver a user selection, as the renderer does on click."""
        if self.on_primitive_selected is not None:
            self.on_primitive_selected(primitive)


# --------------------------- Details panel ---------------------------


def view_summary(state: nav.NavState) -> dict[str, Any]:
    cur = state.path[-1] if state.path else None
    return {
        "territory_id": cur.territory_id if cur else 0,
        "owner": cur.owner if cur else "",
        "locked_value": float(cur.locked_value) if cur else 0.0,
        "minimum_bid_price": float(cur.minimum_bid_price) if cur else 0.0,
        "owned_by_viewer": bool(cur.owned_by_viewer) if cur else False,
        "account": state.account or "",
        "path": [t.territory_id for t in state.path],
        "children": sorted(state.children),
        "bids": [
            {
                "bid_id": b.bid_id,
                "amount": float(b.amount),
                "recipient": b.recipient,
                "selected": bool(b.selected),
                "owned_by_viewer": bool(b.owned_by_viewer),
            }
            for b in bid_overlay.sorted_by_amount(state.bids)
        ],
        "approve_total": float(state.approve_display),
    }


def format_summary(summary: dict[str, Any]) -> str:
    lines = [
        f"Territory id: {summary['territory_id']}",
        f"Owner: {summary['owner']}{' (you)' if summary['owned_by_viewer'] else ''}",
        f"Locked value: {summary['locked_value']:g}",
        f"Minimum bid: {summary['minimum_bid_price']:g}",
        f"Path: {' > '.join(str(i) for i in summary['path']) or '-'}",
        f"Children: {len(summary['children'])}",
    ]
    if summary["bids"]:
        lines.append("Bids:")
        for b in summary["bids"]:
            mark = "[x]" if b["selected"] else "[ ]"
            lines.append(f"  {mark} #{b['bid_id']} {b['amount']:g} {b['recipient']}")
        lines.append(f"Approve total: {summary['approve_total']:g}")
    return "\n".join(lines)
