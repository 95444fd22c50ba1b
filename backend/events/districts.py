from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from shapely.geometry import Point
from shapely.strtree import STRtree

from events.types import Event


@dataclass(frozen=True)
class DistrictCentroid:
    name: str
    x: float
    y: float
    count: int


@dataclass(eq=False)
class DistrictTable:
    """
    Plane centroid and membership count per district, computed once at ingestion.

    Read-only during aggregation; backs the nearest-centroid label fallback.
    """

    centroids: dict[str, DistrictCentroid]

    _names: list[str] = field(default_factory=list, repr=False)
    _tree: STRtree | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self._names = sorted(self.centroids.keys())
        points = [Point(self.centroids[n].x, self.centroids[n].y) for n in self._names]
        self._tree = STRtree(points) if points else None

    def __len__(self) -> int:
        return len(self.centroids)

    def get(self, name: str) -> DistrictCentroid | None:
        return self.centroids.get(name)

    def nearest(self, x: float, y: float) -> str | None:
        """
        Name of the district whose centroid is closest to (x, y) in plane units.

        Equidistant candidates resolve to the alphabetically first name.
        """
        if self._tree is None:
            return None
        idxs = self._tree.query_nearest(Point(float(x), float(y)), all_matches=True)
        names = [self._names[int(i)] for i in idxs]
        return min(names) if names else None


def build_district_table(events: Iterable[Event]) -> DistrictTable:
    acc: dict[str, list[float]] = {}
    # name -> [sum_x, sum_y, count]
    for e in events:
        if e.group_name == "Unknown":
            continue
        a = acc.get(e.group_name)
        if a is None:
            a = [0.0, 0.0, 0.0]
            acc[e.group_name] = a
        a[0] += e.plane_x
        a[1] += e.plane_y
        a[2] += 1

    centroids = {
        name: DistrictCentroid(name=name, x=sx / n, y=sy / n, count=int(n))
        for name, (sx, sy, n) in acc.items()
    }
    return DistrictTable(centroids=centroids)
