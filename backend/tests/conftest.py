import sys
from pathlib import Path

import pytest

# Ensure `backend/` is on sys.path so tests can import local modules
# like `engine.*`, `lod.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))

from events.districts import build_district_table  # noqa: E402
from events.types import Category, Event, EventDataset, TimeIndex  # noqa: E402


def event(
    x: float,
    y: float,
    category: Category | str = Category.SLIGHT,
    group: str = "Oakville",
    month: int = 0,
    weekday: int = 0,
) -> Event:
    return Event(
        plane_x=float(x),
        plane_y=float(y),
        category=Category(category),
        group_name=group,
        time_index=TimeIndex(month=month, weekday=weekday),
    )


def dataset_of(events: list[Event]) -> EventDataset:
    by_month: list[list[int]] = [[] for _ in range(12)]
    by_weekday: list[list[int]] = [[] for _ in range(7)]
    for i, e in enumerate(events):
        by_month[e.time_index.month].append(i)
        by_weekday[e.time_index.weekday].append(i)
    return EventDataset(
        events=tuple(events),
        districts=build_district_table(events),
        by_month=tuple(tuple(b) for b in by_month),
        by_weekday=tuple(tuple(b) for b in by_weekday),
    )


@pytest.fixture
def make_event():
    return event


@pytest.fixture
def make_dataset():
    return dataset_of
