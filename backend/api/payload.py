from __future__ import annotations

from typing import Any

from engine.types import (
    Cluster,
    ClusterResult,
    DensityField,
    PointEntry,
    RecomputeResult,
)
from events.types import Category


def _counts(counts: dict[Category, int]) -> dict[str, int]:
    return {c.value: int(n) for c, n in counts.items()}


def cluster_json(c: Cluster) -> dict[str, Any]:
    return {
        "key": list(c.key),
        "centroid": {"x": c.centroid[0], "y": c.centroid[1]},
        "counts": _counts(c.counts),
        "total": c.total,
        "label": c.label,
        "topGroups": [{"name": name, "count": n} for name, n in c.top_groups],
        "radius": c.radius,
    }


def point_json(p: PointEntry) -> dict[str, Any]:
    return {
        "x": p.x,
        "y": p.y,
        "counts": _counts(p.counts),
        "total": p.total,
        "primary": p.primary.value,
        "densityKey": list(p.density_key),
        "densityIntensity": p.density_intensity,
        "radius": p.radius,
        "opacity": p.opacity,
        "halo": p.halo,
    }


def density_json(field: DensityField) -> dict[str, Any]:
    return {
        "cellSize": field.cell_size,
        "maxTotal": field.max_total,
        "cells": [
            {
                "key": list(cell.key),
                "total": cell.total,
                "counts": _counts(cell.counts),
                "intensity": cell.intensity,
            }
            for _, cell in sorted(field.cells.items())
        ],
    }


def result_payload(result: RecomputeResult) -> dict[str, Any]:
    """
    JSON payload for the renderer. Coordinates and radii are plane units.
    """
    if isinstance(result, ClusterResult):
        return {
            "mode": result.mode.value,
            "gridSize": result.grid_size,
            "clusters": [cluster_json(c) for c in result.clusters],
            "meta": {"stats": result.stats},
        }
    return {
        "mode": result.mode.value,
        "intent": result.intent.value,
        "points": [point_json(p) for p in result.points],
        "densityField": density_json(result.density_field),
        "meta": {"stats": result.stats},
    }
