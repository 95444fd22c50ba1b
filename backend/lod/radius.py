from __future__ import annotations

import math
from typing import Sequence

from engine.config import RadiusConfig


def radius_bounds_px(grid_size: float, scale: float, cfg: RadiusConfig) -> tuple[float, float]:
    """
    Screen-pixel radius range for clusters on a grid of `grid_size` plane units at zoom `scale`.

    Derived from the on-screen cell size so a cluster never overflows its cell.
    """
    cell_px = float(grid_size) * float(scale)
    hi = cell_px * cfg.max_fraction
    lo = min(max(cfg.min_radius_px, cell_px * cfg.min_fraction), hi)
    return lo, hi


def sqrt_scale(value: float, max_value: float, lo: float, hi: float) -> float:
    # Area proportional to count over the domain [1, max_value].
    if max_value <= 1:
        return (lo + hi) / 2.0
    v = min(max(float(value), 1.0), float(max_value))
    t = (math.sqrt(v) - 1.0) / (math.sqrt(max_value) - 1.0)
    return lo + t * (hi - lo)


def cluster_radii(
    totals: Sequence[int],
    *,
    scale: float,
    grid_size: float,
    cfg: RadiusConfig,
) -> list[float]:
    """
    Radius per total, in plane units.

    The renderer applies the zoom transform on top, so screen radii are divided by `scale`
    here: the logical radius stays put in plane space while the visual one tracks the bounds.
    """
    if not totals:
        return []
    lo, hi = radius_bounds_px(grid_size, scale, cfg)
    max_total = max(totals)
    k = float(scale)
    return [sqrt_scale(t, max_total, lo, hi) / k for t in totals]
