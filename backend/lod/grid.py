from __future__ import annotations

import math

from engine.config import GridConfig


def resolve_grid_size(scale: float, cfg: GridConfig) -> float:
    """
    Cluster cell size (plane units) for zoom scale `scale` (1.0 = initial view).

    Coarser cells when zoomed out: base / scale**exponent, clamped to [min, max] and snapped
    to a multiple of `quantum` so a smooth zoom gesture only changes the size in steps.
    """
    k = float(scale)
    if not math.isfinite(k) or k <= 0:
        raise ValueError(f"zoom scale must be a positive finite number (got {scale!r})")

    g = _clamp(cfg.base_size / (k**cfg.exponent), cfg.min_size, cfg.max_size)
    if cfg.quantum > 0:
        g = math.floor(g / cfg.quantum + 0.5) * cfg.quantum
        g = _clamp(g, cfg.min_size, cfg.max_size)
    return float(g)


def rebin_needed(previous: float | None, resolved: float, cfg: GridConfig) -> bool:
    # Sub-quantum changes (only possible at the clamp bounds) keep the previous grid.
    if previous is None:
        return True
    if cfg.quantum <= 0:
        return resolved != previous
    return abs(resolved - previous) >= cfg.quantum


def memory_grid_key(grid_size: float) -> int:
    return int(round(grid_size))


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))
