from __future__ import annotations

import logging
import time
from typing import Any, Callable

from engine.common import bounded_cache_put
from engine.config import EngineConfig, parse_engine_config
from engine.types import (
    Cluster,
    ClusterResult,
    Mode,
    PointResult,
    RecomputeResult,
    ViewState,
)
from events.types import ALL_CATEGORIES, Event, EventDataset
from lod.bins import Bin, bin_events, top_groups
from lod.grid import rebin_needed, resolve_grid_size
from lod.labels import LabelMemory, LabelStabilizer
from lod.points import PointLayout, build_point_layout, select_intent, style_points, visible_density
from lod.radius import cluster_radii

logger = logging.getLogger(__name__)

ScheduleFrame = Callable[[Callable[[], Any]], Any]


class AggregationEngine:
    """
    Turns an event dataset plus the current view into cluster or point descriptors.

    Owns the state that must survive between frames: label memory, the current cluster grid
    size, and the bins / point-layout caches. Everything runs synchronously in `recompute`;
    `request_recompute` + `run_frame` coalesce bursts of view updates to one pass per frame.
    """

    def __init__(
        self,
        config: EngineConfig | dict[str, Any] | None = None,
        *,
        schedule_frame: ScheduleFrame | None = None,
        is_umbrella_member: Callable[[str], bool] | None = None,
    ) -> None:
        self.config = parse_engine_config(config)
        self.label_memory = LabelMemory()
        self.point_layout_cache: dict[tuple[int, tuple[Any, ...]], PointLayout] = {}
        self._bins_cache: dict[tuple[int, float, tuple[Any, ...]], dict[tuple[int, int], Bin]] = {}
        self._labels = LabelStabilizer(
            self.config.labels, self.label_memory, is_umbrella_member=is_umbrella_member
        )
        self._grid_size: float | None = None

        self._schedule_frame = schedule_frame
        self._frame_scheduled = False
        self._pending: tuple[EventDataset, ViewState] | None = None
        self.superseded = 0
        self.last_result: RecomputeResult | None = None

    @property
    def grid_size(self) -> float | None:
        return self._grid_size

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def resolve_grid_size(self, scale: float) -> float:
        resolved = resolve_grid_size(scale, self.config.grid)
        if rebin_needed(self._grid_size, resolved, self.config.grid):
            self._grid_size = resolved
        return self._grid_size  # type: ignore[return-value]

    def filter_events(self, dataset: EventDataset, view: ViewState) -> list[Event]:
        """
        Events passing the view's time and category filters (applied before any binning).
        """
        if view.time_filter is None:
            events: Any = dataset.events
        else:
            buckets = dataset.by_month if view.time_filter.kind == "month" else dataset.by_weekday
            events = [dataset.events[i] for i in buckets[int(view.time_filter.value)]]

        active = view.active_categories
        if all(c in active for c in ALL_CATEGORIES):
            return list(events)
        return [e for e in events if e.category in active]

    def recompute(self, dataset: EventDataset, view: ViewState) -> RecomputeResult:
        self.label_memory.advance()
        if view.mode == Mode.POINT:
            result: RecomputeResult = self._recompute_points(dataset, view)
        else:
            result = self._recompute_clusters(dataset, view)

        max_idle = self.config.labels.memory_max_idle
        if max_idle is not None:
            self.label_memory.prune(max_idle)

        stats = result.stats
        logger.debug(
            "Recomputed %s scale=%.3f grid=%s outputs=%d in %.2fms",
            view.mode.value,
            view.scale,
            stats.get("gridSize"),
            stats.get("outputs", 0),
            stats.get("timingsMs", {}).get("total", 0.0),
        )
        return result

    def request_recompute(self, dataset: EventDataset, view: ViewState) -> None:
        """
        Queue a recompute for the next frame. A newer request replaces an older pending one.
        """
        if self._pending is not None:
            self.superseded += 1
            logger.debug("Superseded pending recompute (total %d)", self.superseded)
        self._pending = (dataset, view)
        if self._schedule_frame is not None and not self._frame_scheduled:
            self._frame_scheduled = True
            self._schedule_frame(self.run_frame)

    def run_frame(self) -> RecomputeResult | None:
        self._frame_scheduled = False
        pending = self._pending
        if pending is None:
            return None
        self._pending = None
        dataset, view = pending
        self.last_result = self.recompute(dataset, view)
        return self.last_result

    def _recompute_clusters(self, dataset: EventDataset, view: ViewState) -> ClusterResult:
        t0 = time.perf_counter()
        grid = self.resolve_grid_size(view.scale)
        fkey = view.filter_key()
        ck = (dataset.token, grid, fkey)

        bins = self._bins_cache.get(ck)
        cache_hit = bins is not None
        n_in: int | None = None
        t1 = t0
        if bins is None:
            events = self.filter_events(dataset, view)
            n_in = len(events)
            t1 = time.perf_counter()
            bins = bin_events(events, grid)
            bounded_cache_put(self._bins_cache, ck, bins, max_items=self.config.bins_cache_size)
        t2 = time.perf_counter()

        # One grid cell of margin so clusters near the edge don't pop in late.
        rect = view.visible_rect(margin=grid)
        visible = [
            b
            for _, b in sorted(bins.items())
            if rect is None or _inside(b.centroid, rect)
        ]

        decisions = [self._labels.label(b, dataset.districts) for b in visible]
        t3 = time.perf_counter()

        radii = cluster_radii(
            [b.total for b in visible], scale=view.scale, grid_size=grid, cfg=self.config.radius
        )
        clusters = [
            Cluster(
                key=(b.gx, b.gy),
                centroid=b.centroid,
                counts=dict(b.counts),
                total=b.total,
                label=d.label,
                top_groups=top_groups(b, 3),
                radius=r,
            )
            for b, d, r in zip(visible, decisions, radii)
        ]
        # Larger clusters first (nice at low zoom).
        clusters.sort(key=lambda c: (-c.total, c.key))
        t4 = time.perf_counter()

        stats = {
            "mode": Mode.CLUSTERED.value,
            "intent": None,
            "gridSize": grid,
            "eventsIn": n_in if n_in is not None else sum(b.total for b in bins.values()),
            "bins": len(bins),
            "outputs": len(clusters),
            "cacheHit": cache_hit,
            "labelsKept": sum(1 for d in decisions if d.kept_previous),
            "labelMemorySize": len(self.label_memory),
            "timingsMs": {
                "filter": (t1 - t0) * 1000.0,
                "aggregate": (t2 - t1) * 1000.0,
                "label": (t3 - t2) * 1000.0,
                "total": (t4 - t0) * 1000.0,
            },
        }
        return ClusterResult(clusters=clusters, grid_size=grid, stats=stats)

    def _recompute_points(self, dataset: EventDataset, view: ViewState) -> PointResult:
        t0 = time.perf_counter()
        cfg = self.config.points
        ck = (dataset.token, view.filter_key())

        layout = self.point_layout_cache.get(ck)
        cache_hit = layout is not None
        t1 = t0
        if layout is None:
            events = self.filter_events(dataset, view)
            t1 = time.perf_counter()
            layout = build_point_layout(events, cfg)
            bounded_cache_put(
                self.point_layout_cache, ck, layout, max_items=self.config.point_cache_size
            )
        t2 = time.perf_counter()

        intent = select_intent(view.scale, cfg)
        rect = view.visible_rect(margin=cfg.density_cell_size)
        points = style_points(layout, intent=intent, scale=view.scale, cfg=cfg, visible=rect)
        density = visible_density(layout.density, rect)
        t3 = time.perf_counter()

        stats = {
            "mode": Mode.POINT.value,
            "intent": intent.value,
            "gridSize": None,
            "eventsIn": sum(p.total for p in layout.buckets),
            "outputs": len(points),
            "densityCells": len(density.cells),
            "cacheHit": cache_hit,
            "labelMemorySize": len(self.label_memory),
            "timingsMs": {
                "filter": (t1 - t0) * 1000.0,
                "aggregate": (t2 - t1) * 1000.0,
                "label": 0.0,
                "total": (t3 - t0) * 1000.0,
            },
        }
        return PointResult(points=points, density_field=density, intent=intent, stats=stats)


def _inside(p: tuple[float, float], rect: tuple[float, float, float, float]) -> bool:
    return rect[0] <= p[0] <= rect[2] and rect[1] <= p[1] <= rect[3]
