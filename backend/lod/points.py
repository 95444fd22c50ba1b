from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from engine.config import PointConfig
from engine.types import DensityCell, DensityField, PointEntry, RenderIntent
from events.types import ALL_CATEGORIES, SEVERITY_ORDER, Category, Event
from lod.bins import cell_of

_HALO_CATEGORIES = frozenset({Category.FATAL, Category.SERIOUS})
# Paint order: lower severities first so Fatal markers end up on top.
_PAINT_RANK: dict[Category, int] = {
    Category.UNKNOWN: 0,
    Category.SLIGHT: 1,
    Category.SERIOUS: 2,
    Category.FATAL: 3,
}


@dataclass(frozen=True)
class PointBucket:
    key: tuple[int, int]
    x: float
    y: float
    counts: dict[Category, int]
    total: int
    primary: Category
    density_key: tuple[int, int]


@dataclass(frozen=True)
class PointLayout:
    """
    Zoom-independent point-mode layout: near-duplicate points collapsed on a fine grid,
    plus the coarse density field. Cached per (dataset, filters) by the engine.
    """

    buckets: list[PointBucket]
    density: DensityField


def primary_category(counts: dict[Category, int]) -> Category:
    # Fixed priority Fatal > Serious > Slight; Unknown only when nothing else is present.
    for c in SEVERITY_ORDER:
        if counts.get(c, 0) > 0:
            return c
    return Category.UNKNOWN


def select_intent(scale: float, cfg: PointConfig) -> RenderIntent:
    return RenderIntent.DETAIL if float(scale) >= cfg.point_detail_zoom else RenderIntent.DENSITY


def build_density_field(events: Iterable[Event], cell_size: float) -> DensityField:
    acc: dict[tuple[int, int], dict[Category, int]] = {}
    for e in events:
        cell = cell_of(e.plane_x, e.plane_y, cell_size)
        counts = acc.get(cell)
        if counts is None:
            counts = {c: 0 for c in ALL_CATEGORIES}
            acc[cell] = counts
        counts[e.category] += 1

    totals = {k: sum(v.values()) for k, v in acc.items()}
    max_total = max(totals.values(), default=0)
    cells = {
        k: DensityCell(key=k, total=totals[k], counts=counts, intensity=totals[k] / max_total)
        for k, counts in acc.items()
    }
    return DensityField(cell_size=float(cell_size), cells=cells, max_total=max_total)


def build_point_layout(events: Iterable[Event], cfg: PointConfig) -> PointLayout:
    events = list(events)
    density = build_density_field(events, cfg.density_cell_size)

    buckets: dict[tuple[int, int], tuple[list[float], dict[Category, int]]] = {}
    # (qx, qy) -> ([sum_x, sum_y, n], counts)
    for e in events:
        cell = cell_of(e.plane_x, e.plane_y, cfg.point_cell_size)
        b = buckets.get(cell)
        if b is None:
            b = ([0.0, 0.0, 0.0], {c: 0 for c in ALL_CATEGORIES})
            buckets[cell] = b
        s, counts = b
        s[0] += e.plane_x
        s[1] += e.plane_y
        s[2] += 1
        counts[e.category] += 1

    out: list[PointBucket] = []
    for key, ((sx, sy, n), counts) in buckets.items():
        x = sx / n
        y = sy / n
        out.append(
            PointBucket(
                key=key,
                x=x,
                y=y,
                counts=counts,
                total=int(n),
                primary=primary_category(counts),
                density_key=cell_of(x, y, cfg.density_cell_size),
            )
        )

    out.sort(key=lambda p: (_PAINT_RANK[p.primary], p.key))
    return PointLayout(buckets=out, density=density)


def style_points(
    layout: PointLayout,
    *,
    intent: RenderIntent,
    scale: float,
    cfg: PointConfig,
    visible: tuple[float, float, float, float] | None = None,
) -> list[PointEntry]:
    """
    Turn cached buckets into paintable entries for the given intent.

    Radii are screen pixels divided by `scale` (the renderer applies the zoom transform).
    Density intent shrinks and fades markers, more so in dense cells.
    """
    k = float(scale)
    cells = layout.density.cells
    out: list[PointEntry] = []
    for p in layout.buckets:
        if visible is not None and not _inside(p.x, p.y, visible):
            continue
        cell = cells.get(p.density_key)
        intensity = cell.intensity if cell is not None else 0.0
        base_r = cfg.marker_radius[p.primary.value]
        base_a = cfg.marker_opacity[p.primary.value]

        if intent == RenderIntent.DETAIL:
            radius = base_r / k
            opacity = base_a
            halo = p.primary in _HALO_CATEGORIES
        else:
            radius = base_r * cfg.density_radius_factor / k
            opacity = base_a * cfg.density_opacity_factor * (1.0 - cfg.density_damping * intensity)
            halo = False

        out.append(
            PointEntry(
                key=p.key,
                x=p.x,
                y=p.y,
                counts=dict(p.counts),
                total=p.total,
                primary=p.primary,
                density_key=p.density_key,
                density_intensity=intensity,
                radius=radius,
                opacity=opacity,
                halo=halo,
            )
        )
    return out


def visible_density(
    field: DensityField, visible: tuple[float, float, float, float] | None
) -> DensityField:
    if visible is None:
        return field
    size = field.cell_size
    min_x, min_y, max_x, max_y = visible
    cells = {
        k: c
        for k, c in field.cells.items()
        if (k[0] + 1) * size >= min_x
        and k[0] * size <= max_x
        and (k[1] + 1) * size >= min_y
        and k[1] * size <= max_y
    }
    # Intensities stay relative to the whole field so panning doesn't re-shade cells.
    return DensityField(cell_size=size, cells=cells, max_total=field.max_total)


def _inside(x: float, y: float, rect: tuple[float, float, float, float]) -> bool:
    return rect[0] <= x <= rect[2] and rect[1] <= y <= rect[3]
