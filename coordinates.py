"""
coordinates.py

Conversions between the renderer's continuous viewport and discrete
territory regions.  Pure functions, no state.

Viewport convention (shared with the renderer):
  - (center_x, center_y) is the plane point under the canvas center
  - scale is plane units per pixel
  - width/height are the canvas size in pixels

So the visible box is center +/- (size_px / 2) * scale on each axis, and
region_to_viewport() is its exact inverse for a region with the canvas
aspect ratio.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np

from territories import Bid, Region, Territory


FrameKind = Literal["territory", "path_ancestor", "pending_bid", "selected_bid"]
ColorClass = Literal[
    "primary",
    "alternate",
    "path",
    "path_alternate",
    "pending_bid",
    "pending_bid_alternate",
    "selected_bid",
]

# The color -> kind mapping is the contract the renderer echoes back on
# selection.  Styling is the renderer's business; kind drives behaviour.
_KIND_BY_COLOR: dict[str, FrameKind] = {
    "primary": "territory",
    "alternate": "territory",
    "path": "path_ancestor",
    "path_alternate": "path_ancestor",
    "pending_bid": "pending_bid",
    "pending_bid_alternate": "pending_bid",
    "selected_bid": "selected_bid",
}

TERRITORY_COLORS = frozenset(c for c, k in _KIND_BY_COLOR.items() if k in ("territory", "path_ancestor"))
BID_COLORS = frozenset(c for c, k in _KIND_BY_COLOR.items() if k in ("pending_bid", "selected_bid"))


@dataclass(frozen=True)
class Viewport:
    center_x: float
    center_y: float
    scale: float
    width: int
    height: int


@dataclass(frozen=True)
class SpatialPrimitive:
    primitive_id: int
    region: Region
    kind: FrameKind
    color: ColorClass


def kind_for_color(color: str) -> FrameKind | None:
    return _KIND_BY_COLOR.get(color)


def viewport_to_region(viewport: Viewport, margin: int = 0) -> Region:
    """
    Bounding box a new bid/mint should occupy for the current viewport.

    *margin* trims that many pixels off every edge.  Raises ValueError for a
    degenerate viewport or a margin that would leave nothing.
    """
    if int(margin) < 0:
        raise ValueError(f"margin must be >= 0, got {margin}")
    size_px = np.asarray([viewport.width, viewport.height], dtype=float)
    if np.any(size_px <= 0) or not viewport.scale > 0:
        raise ValueError(f"degenerate viewport: {viewport}")
    if np.any(size_px / 2.0 <= int(margin)):
        raise ValueError(f"margin {margin}px leaves no area on a {viewport.width}x{viewport.height} canvas")

    center = np.asarray([viewport.center_x, viewport.center_y], dtype=float)
    half = (size_px / 2.0 - int(margin)) * float(viewport.scale)
    lo = center - half
    hi = center + half
    if not (np.all(np.isfinite(lo)) and np.all(np.isfinite(hi))):
        raise ValueError(f"non-finite region from viewport: {viewport}")
    return Region(x_min=float(lo[0]), y_min=float(lo[1]), x_max=float(hi[0]), y_max=float(hi[1]))


def region_to_viewport(region: Region, width: int, height: int) -> Viewport:
    """Smallest viewport of the given canvas size that shows all of *region*."""
    if width <= 0 or height <= 0:
        raise ValueError(f"canvas must be non-empty, got {width}x{height}")
    extent = np.asarray([region.width, region.height], dtype=float)
    if np.any(extent <= 0):
        raise ValueError(f"region has no area: {region}")
    scale = float(np.max(extent / np.asarray([width, height], dtype=float)))
    cx, cy = region.center
    return Viewport(center_x=float(cx), center_y=float(cy), scale=scale, width=int(width), height=int(height))


def region_to_frame(entity: Territory | Bid, color: ColorClass) -> SpatialPrimitive:
    """Wrap an entity's region and id into the primitive handed to the renderer."""
    kind = kind_for_color(color)
    if kind is None:
        raise ValueError(f"unknown color class: {color!r}")
    if isinstance(entity, Territory):
        if color not in TERRITORY_COLORS:
            raise ValueError(f"color {color!r} is not a territory class")
        return SpatialPrimitive(primitive_id=entity.territory_id, region=entity.region, kind=kind, color=color)
    if isinstance(entity, Bid):
        if color not in BID_COLORS:
            raise ValueError(f"color {color!r} is not a bid class")
        return SpatialPrimitive(primitive_id=entity.bid_id, region=entity.region, kind=kind, color=color)
    raise TypeError(f"cannot frame {type(entity).__name__}")
