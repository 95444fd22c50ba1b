from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from events.types import ALL_CATEGORIES, Category, Event


def _zero_counts() -> dict[Category, int]:
    return {c: 0 for c in ALL_CATEGORIES}


@dataclass
class Bin:
    """
    Tallies for one non-empty grid cell at a given cell size.

    Always sum(counts.values()) == total and sum(groups.values()) == total.
    """

    grid_size: float
    gx: int
    gy: int
    sum_x: float = 0.0
    sum_y: float = 0.0
    total: int = 0
    counts: dict[Category, int] = field(default_factory=_zero_counts)
    groups: dict[str, int] = field(default_factory=dict)

    @property
    def key(self) -> tuple[float, int, int]:
        return (self.grid_size, self.gx, self.gy)

    @property
    def centroid(self) -> tuple[float, float]:
        return (self.sum_x / self.total, self.sum_y / self.total)

    def add(self, e: Event) -> None:
        self.sum_x += e.plane_x
        self.sum_y += e.plane_y
        self.total += 1
        self.counts[e.category] += 1
        self.groups[e.group_name] = self.groups.get(e.group_name, 0) + 1


def cell_of(x: float, y: float, size: float) -> tuple[int, int]:
    return int(x // size), int(y // size)


def bin_events(events: Iterable[Event], grid_size: float) -> dict[tuple[int, int], Bin]:
    """
    Single pass over (already filtered) events into square cells of `grid_size` plane units.

    Returns only non-empty cells, keyed by integer cell coordinates (gx, gy).
    """
    g = float(grid_size)
    if g <= 0:
        raise ValueError(f"grid_size must be positive (got {grid_size!r})")

    bins: dict[tuple[int, int], Bin] = {}
    for e in events:
        cell = cell_of(e.plane_x, e.plane_y, g)
        b = bins.get(cell)
        if b is None:
            b = Bin(grid_size=g, gx=cell[0], gy=cell[1])
            bins[cell] = b
        b.add(e)
    return bins


def top_groups(b: Bin, n: int = 3) -> list[tuple[str, int]]:
    # Count desc, then name for a stable order between frames.
    return sorted(b.groups.items(), key=lambda kv: (-kv[1], kv[0]))[:n]
