from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Any, Iterable

import duckdb

from engine.config import duckdb_threads
from events.districts import build_district_table
from events.types import (
    Event,
    EventDataset,
    TimeIndex,
    normalize_category,
    normalize_group_name,
)
from geo.projection import PlaneProjector, is_finite_lonlat

logger = logging.getLogger(__name__)


class IngestError(RuntimeError):
    """
    The accident file is missing or does not have the expected shape.
    """


REQUIRED_COLUMNS: tuple[str, ...] = (
    "Accident Date",
    "Longitude",
    "Latitude",
    "Accident_Severity",
    "Local_Authority_(District)",
)

_SELECT_ROWS_SQL = """
WITH raw AS (
  SELECT
    TRY_CAST("Longitude" AS DOUBLE) AS longitude,
    TRY_CAST("Latitude" AS DOUBLE) AS latitude,
    "Accident_Severity" AS severity,
    "Local_Authority_(District)" AS district,
    try_strptime(trim("Accident Date"), '%d/%m/%Y') AS d
  FROM read_csv(?, header = true, all_varchar = true)
)
SELECT
  longitude,
  latitude,
  severity,
  district,
  month(d) - 1 AS month,
  isodow(d) - 1 AS weekday
FROM raw
"""


def load_accidents_csv(path: Path | str) -> list[dict[str, Any]]:
    """
    Read raw accident rows from the source CSV.

    Everything is read as text and cast in SQL, so odd values turn into NULLs instead of
    failing the whole load. Row-level validation happens in `build_dataset`.
    """
    p = Path(path)
    if not p.exists():
        raise IngestError(f"Accident file not found: {p}")

    conn = duckdb.connect(database=":memory:", config={"threads": int(duckdb_threads())})
    try:
        cols = {
            str(r[0])
            for r in conn.execute(
                "DESCRIBE SELECT * FROM read_csv(?, header = true, all_varchar = true)",
                [str(p)],
            ).fetchall()
        }
        missing = [c for c in REQUIRED_COLUMNS if c not in cols]
        if missing:
            raise IngestError(f"Accident file {p.name} is missing columns: {', '.join(missing)}")

        rows = conn.execute(_SELECT_ROWS_SQL, [str(p)]).fetchall()
    finally:
        conn.close()

    return [
        {
            "longitude": lon,
            "latitude": lat,
            "severity": sev,
            "district": district,
            "month": month,
            "weekday": weekday,
        }
        for lon, lat, sev, district, month, weekday in rows
    ]


def build_dataset(records: Iterable[dict[str, Any]], projector: PlaneProjector) -> EventDataset:
    """
    Normalize raw rows into projected events.

    Rows with non-finite coordinates or without a valid month/weekday are dropped; unknown
    severities are kept as `Category.UNKNOWN`.
    """
    kept: list[dict[str, Any]] = []
    dropped = 0
    for r in records:
        lon = _as_float(r.get("longitude"))
        lat = _as_float(r.get("latitude"))
        month = _as_int(r.get("month"))
        weekday = _as_int(r.get("weekday"))
        if lon is None or lat is None or not is_finite_lonlat(lon, lat):
            dropped += 1
            continue
        if month is None or not 0 <= month <= 11 or weekday is None or not 0 <= weekday <= 6:
            dropped += 1
            continue
        kept.append({**r, "longitude": lon, "latitude": lat, "month": month, "weekday": weekday})

    xy = projector.project_many([r["longitude"] for r in kept], [r["latitude"] for r in kept])

    events: list[Event] = []
    by_month: list[list[int]] = [[] for _ in range(12)]
    by_weekday: list[list[int]] = [[] for _ in range(7)]
    for i, (r, (x, y)) in enumerate(zip(kept, xy)):
        events.append(
            Event(
                plane_x=x,
                plane_y=y,
                category=normalize_category(r.get("severity")),
                group_name=normalize_group_name(r.get("district")),
                time_index=TimeIndex(month=r["month"], weekday=r["weekday"]),
            )
        )
        by_month[r["month"]].append(i)
        by_weekday[r["weekday"]].append(i)

    if dropped:
        logger.info("Dropped %d malformed accident rows", dropped)
    logger.info("Built dataset with %d events", len(events))

    return EventDataset(
        events=tuple(events),
        districts=build_district_table(events),
        by_month=tuple(tuple(b) for b in by_month),
        by_weekday=tuple(tuple(b) for b in by_weekday),
    )


def load_dataset(path: Path | str, projector: PlaneProjector) -> EventDataset:
    return build_dataset(load_accidents_csv(path), projector)


def _as_float(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def _as_int(v: Any) -> int | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None
