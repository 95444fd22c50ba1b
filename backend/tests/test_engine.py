from __future__ import annotations

import random

import pytest

from engine.aggregation import AggregationEngine
from engine.config import ConfigError, EngineConfig, GridConfig
from engine.types import (
    ClusterResult,
    Mode,
    PointResult,
    RenderIntent,
    TimeFilter,
    ViewState,
    Viewport,
)
from events.types import ALL_CATEGORIES, Category


def _random_dataset(make_event, make_dataset, n: int = 3_000, seed: int = 3):
    rng = random.Random(seed)
    groups = ["Leeds", "Bradford", "Wakefield", "Camden", "Islington", "Hackney"]
    events = [
        make_event(
            rng.gauss(400, 150),
            rng.gauss(300, 120),
            rng.choice(ALL_CATEGORIES),
            rng.choice(groups),
            month=rng.randrange(12),
            weekday=rng.randrange(7),
        )
        for _ in range(n)
    ]
    return make_dataset(events)


def test_one_location_one_district_makes_one_cluster(make_event, make_dataset):
    events = (
        [make_event(12.0, 12.0, "Fatal") for _ in range(3)]
        + [make_event(12.0, 12.0, "Serious") for _ in range(4)]
        + [make_event(12.0, 12.0, "Slight") for _ in range(3)]
    )
    engine = AggregationEngine(EngineConfig(grid=GridConfig(base_size=50, quantum=2)))
    result = engine.recompute(make_dataset(events), ViewState(scale=1.0))

    assert isinstance(result, ClusterResult)
    assert result.grid_size == 50
    assert len(result.clusters) == 1
    c = result.clusters[0]
    assert c.total == 10
    assert c.label == "Oakville"
    assert c.counts[Category.SERIOUS] == 4
    assert c.top_groups == [("Oakville", 10)]


def test_clusters_conserve_filtered_events(make_event, make_dataset):
    ds = _random_dataset(make_event, make_dataset)
    engine = AggregationEngine()
    for scale in (0.6, 1.0, 2.0, 5.0):
        result = engine.recompute(ds, ViewState(scale=scale))
        assert sum(c.total for c in result.clusters) == len(ds)
        for cat in ALL_CATEGORIES:
            assert sum(c.counts[cat] for c in result.clusters) == sum(
                1 for e in ds.events if e.category == cat
            )


def test_filters_apply_before_binning(make_event, make_dataset):
    ds = _random_dataset(make_event, make_dataset)
    engine = AggregationEngine()
    view = ViewState(
        scale=1.0,
        active_categories=frozenset({Category.FATAL, Category.SERIOUS}),
        time_filter=TimeFilter(kind="month", value=4),
    )
    expected = [
        e
        for e in ds.events
        if e.time_index.month == 4 and e.category in (Category.FATAL, Category.SERIOUS)
    ]
    result = engine.recompute(ds, view)
    assert sum(c.total for c in result.clusters) == len(expected)
    assert all(c.counts[Category.SLIGHT] == 0 for c in result.clusters)

    weekday = engine.recompute(ds, ViewState(time_filter=TimeFilter(kind="weekday", value=6)))
    assert sum(c.total for c in weekday.clusters) == sum(
        1 for e in ds.events if e.time_index.weekday == 6
    )


def test_recompute_is_deterministic_and_idempotent(make_event, make_dataset):
    ds = _random_dataset(make_event, make_dataset)
    view = ViewState(scale=1.7)
    engine = AggregationEngine()

    first = engine.recompute(ds, view)
    snapshot = {k: (e.label, e.lead_share, e.leader) for k, e in _entries(engine)}
    second = engine.recompute(ds, view)
    after = {k: (e.label, e.lead_share, e.leader) for k, e in _entries(engine)}

    assert first.clusters == second.clusters
    assert snapshot == after
    assert second.stats["cacheHit"] is True

    # A fresh engine reproduces the same output.
    assert AggregationEngine().recompute(ds, view).clusters == first.clusters


def test_unknown_category_counts_toward_totals(make_event, make_dataset):
    events = [make_event(5, 5, "Unknown") for _ in range(3)] + [make_event(5, 5, "Slight")]
    engine = AggregationEngine()
    clusters = engine.recompute(make_dataset(events), ViewState()).clusters
    assert len(clusters) == 1
    assert clusters[0].total == 4
    assert clusters[0].counts[Category.UNKNOWN] == 3

    points = engine.recompute(make_dataset(events), ViewState(mode=Mode.POINT, scale=5.0))
    assert points.points[0].total == 4
    assert points.points[0].primary == Category.SLIGHT


def test_empty_filter_result_is_empty_not_error(make_event, make_dataset):
    ds = _random_dataset(make_event, make_dataset, n=200)
    engine = AggregationEngine()
    view = ViewState(active_categories=frozenset())
    assert engine.recompute(ds, view).clusters == []

    pts = engine.recompute(ds, ViewState(mode=Mode.POINT, active_categories=frozenset()))
    assert isinstance(pts, PointResult)
    assert pts.points == []
    assert pts.density_field.cells == {}

    assert engine.recompute(make_dataset([]), ViewState()).clusters == []


def test_point_mode_intent_follows_zoom(make_event, make_dataset):
    ds = _random_dataset(make_event, make_dataset, n=500)
    engine = AggregationEngine()
    far = engine.recompute(ds, ViewState(mode=Mode.POINT, scale=1.0))
    near = engine.recompute(ds, ViewState(mode=Mode.POINT, scale=4.0))
    assert far.intent == RenderIntent.DENSITY
    assert near.intent == RenderIntent.DETAIL
    assert sum(p.total for p in near.points) == len(ds)
    # The layout is cached per dataset + filters, so only styling differs.
    assert near.stats["cacheHit"] is True
    assert [p.key for p in far.points] == [p.key for p in near.points]


def test_grid_only_rebins_on_quantum_steps():
    engine = AggregationEngine()
    assert engine.resolve_grid_size(1.0) == 64
    assert engine.resolve_grid_size(1.01) == 64
    assert engine.resolve_grid_size(2.0) < 64
    assert engine.grid_size == engine.resolve_grid_size(2.0)


def test_viewport_culls_offscreen_clusters(make_event, make_dataset):
    events = [make_event(10, 10) for _ in range(5)] + [make_event(900, 900) for _ in range(2)]
    engine = AggregationEngine()
    view = ViewState(scale=1.0, viewport=Viewport(width=200, height=200))
    clusters = engine.recompute(make_dataset(events), view).clusters
    assert [c.total for c in clusters] == [5]


def test_request_recompute_coalesces_to_latest(make_event, make_dataset):
    ds = _random_dataset(make_event, make_dataset, n=300)
    scheduled = []
    engine = AggregationEngine(schedule_frame=scheduled.append)

    engine.request_recompute(ds, ViewState(scale=1.0))
    engine.request_recompute(ds, ViewState(scale=2.0))
    engine.request_recompute(ds, ViewState(scale=3.0, mode=Mode.POINT))

    assert len(scheduled) == 1
    assert engine.superseded == 2
    assert engine.has_pending

    result = scheduled[0]()
    assert isinstance(result, PointResult)
    assert engine.last_result is result
    assert not engine.has_pending
    assert engine.run_frame() is None

    # A new burst schedules a new frame.
    engine.request_recompute(ds, ViewState(scale=1.0))
    assert len(scheduled) == 2


def test_label_memory_survives_pan_and_zoom(make_event, make_dataset):
    ds = _random_dataset(make_event, make_dataset, n=500)
    engine = AggregationEngine()
    engine.recompute(ds, ViewState(scale=1.0))
    n = len(engine.label_memory)
    engine.recompute(ds, ViewState(scale=3.0, translate=(-40.0, 25.0)))
    assert len(engine.label_memory) > n


def test_label_memory_prunes_when_configured(make_event, make_dataset):
    ds = _random_dataset(make_event, make_dataset, n=500)
    engine = AggregationEngine({"labels": {"memoryMaxIdle": 1}})
    engine.recompute(ds, ViewState(scale=1.0))
    at_one = set(engine.label_memory)
    engine.recompute(ds, ViewState(scale=5.0))
    assert not at_one & set(engine.label_memory)


@pytest.mark.parametrize(
    "raw",
    [
        {"grid": {"minSize": 200, "maxSize": 100}},
        {"grid": {"quantum": -1}},
        {"radius": {"minFraction": 0.4, "maxFraction": 0.2}},
        {"points": {"pointCellSize": 5, "densityCellSize": 1}},
        {"unknownSection": {}},
    ],
)
def test_bad_config_is_rejected_at_construction(raw):
    with pytest.raises(ConfigError):
        AggregationEngine(raw)


def _entries(engine: AggregationEngine):
    mem = engine.label_memory
    return [(k, mem.get(k)) for k in mem]
