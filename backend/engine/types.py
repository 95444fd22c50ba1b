from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from events.types import ALL_CATEGORIES, Category


class Mode(str, Enum):
    CLUSTERED = "CLUSTERED"
    POINT = "POINT"


class RenderIntent(str, Enum):
    DETAIL = "detail"
    DENSITY = "density"


@dataclass(frozen=True)
class TimeFilter:
    kind: Literal["month", "weekday"]
    value: int

    def __post_init__(self) -> None:
        hi = 11 if self.kind == "month" else 6
        if self.kind not in ("month", "weekday") or not 0 <= int(self.value) <= hi:
            raise ValueError(f"invalid time filter: {self.kind}={self.value}")


@dataclass(frozen=True)
class Viewport:
    width: float
    height: float


@dataclass(frozen=True)
class ViewState:
    """
    Current map transform plus active filters, as handed over by the UI layer.

    A plane point p is drawn at screen position p * scale + translate.
    """

    scale: float = 1.0
    translate: tuple[float, float] = (0.0, 0.0)
    mode: Mode = Mode.CLUSTERED
    active_categories: frozenset[Category] = frozenset(ALL_CATEGORIES)
    time_filter: TimeFilter | None = None
    # Optional: real pixel size of the map viewport; enables culling to the visible area.
    viewport: Viewport | None = None

    def filter_key(self) -> tuple[Any, ...]:
        tf = (self.time_filter.kind, int(self.time_filter.value)) if self.time_filter else None
        return (tuple(sorted(c.value for c in self.active_categories)), tf)

    def visible_rect(self, margin: float = 0.0) -> tuple[float, float, float, float] | None:
        """
        Visible plane-space rectangle (min_x, min_y, max_x, max_y), padded by `margin` plane units.
        """
        if self.viewport is None:
            return None
        k = float(self.scale)
        tx, ty = self.translate
        return (
            (0.0 - tx) / k - margin,
            (0.0 - ty) / k - margin,
            (self.viewport.width - tx) / k + margin,
            (self.viewport.height - ty) / k + margin,
        )


@dataclass(frozen=True)
class Cluster:
    key: tuple[int, int]
    centroid: tuple[float, float]
    counts: dict[Category, int]
    total: int
    label: str
    top_groups: list[tuple[str, int]]
    radius: float


@dataclass(frozen=True)
class DensityCell:
    key: tuple[int, int]
    total: int
    counts: dict[Category, int]
    # total / densest cell total, in (0, 1]
    intensity: float


@dataclass(frozen=True)
class DensityField:
    cell_size: float
    cells: dict[tuple[int, int], DensityCell]
    max_total: int


@dataclass(frozen=True)
class PointEntry:
    key: tuple[int, int]
    x: float
    y: float
    counts: dict[Category, int]
    total: int
    primary: Category
    density_key: tuple[int, int]
    density_intensity: float
    # Renderer hints for the active intent; radius in plane units.
    radius: float
    opacity: float
    halo: bool


@dataclass(frozen=True)
class ClusterResult:
    clusters: list[Cluster]
    grid_size: float
    stats: dict[str, Any] = field(default_factory=dict)

    mode = Mode.CLUSTERED


@dataclass(frozen=True)
class PointResult:
    points: list[PointEntry]
    density_field: DensityField
    intent: RenderIntent
    stats: dict[str, Any] = field(default_factory=dict)

    mode = Mode.POINT


RecomputeResult = Union[ClusterResult, PointResult]
