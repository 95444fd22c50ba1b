from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from events.districts import DistrictTable


class Category(str, Enum):
    FATAL = "Fatal"
    SERIOUS = "Serious"
    SLIGHT = "Slight"
    UNKNOWN = "Unknown"


# Highest severity first; also the tie-break order for a point's primary category.
SEVERITY_ORDER: tuple[Category, ...] = (Category.FATAL, Category.SERIOUS, Category.SLIGHT)
ALL_CATEGORIES: tuple[Category, ...] = (*SEVERITY_ORDER, Category.UNKNOWN)

_CATEGORY_ALIASES: dict[str, Category] = {c.value.lower(): c for c in ALL_CATEGORIES}


def normalize_category(raw: object) -> Category:
    if isinstance(raw, Category):
        return raw
    return _CATEGORY_ALIASES.get(str(raw or "").strip().lower(), Category.UNKNOWN)


def normalize_group_name(raw: object) -> str:
    name = " ".join(str(raw or "").split())
    return name or "Unknown"


@dataclass(frozen=True)
class TimeIndex:
    month: int  # 0..11
    weekday: int  # 0..6, Monday first


@dataclass(frozen=True)
class Event:
    """
    A single accident, already projected to plane coordinates.

    Created once at ingestion and never mutated.
    """

    plane_x: float
    plane_y: float
    category: Category
    group_name: str
    time_index: TimeIndex


_TOKENS = itertools.count(1)


@dataclass(frozen=True, eq=False)
class EventDataset:
    """
    Immutable event set plus the lookup structures built alongside it.

    `token` identifies the dataset in engine caches; two datasets never share one.
    """

    events: tuple[Event, ...]
    districts: DistrictTable
    by_month: tuple[tuple[int, ...], ...]
    by_weekday: tuple[tuple[int, ...], ...]
    token: int = field(default_factory=lambda: next(_TOKENS))

    def __len__(self) -> int:
        return len(self.events)
