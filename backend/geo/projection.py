from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Sequence

from pyproj import Transformer

from engine.config import ProjectionConfig

# WGS84 semi-major axis; EPSG:3857 x is R * lon_radians.
_EARTH_RADIUS_M = 6378137.0


@lru_cache(maxsize=1)
def transformer_4326_to_3857() -> Transformer:
    return Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


@dataclass(frozen=True)
class PlaneProjector:
    """
    Conformal projection from lon/lat degrees to the map plane.

    The plane is Web Mercator rescaled so that `scale` units cover one radian of longitude,
    the configured center lands on (width/2, height/2), and y grows downward (screen-like).
    Events are projected once at ingestion; the engine only ever sees plane coordinates.
    """

    config: ProjectionConfig

    @property
    def _units_per_meter(self) -> float:
        return float(self.config.scale) / _EARTH_RADIUS_M

    @property
    def _center_3857(self) -> tuple[float, float]:
        return _center_3857(self.config.center_lon, self.config.center_lat)

    def project(self, lon: float, lat: float) -> tuple[float, float]:
        x, y = transformer_4326_to_3857().transform(lon, lat)
        return self._to_plane(float(x), float(y))

    def project_many(
        self, lons: Sequence[float], lats: Sequence[float]
    ) -> list[tuple[float, float]]:
        if not lons:
            return []
        xs, ys = transformer_4326_to_3857().transform(list(lons), list(lats))
        return [self._to_plane(float(x), float(y)) for x, y in zip(xs, ys)]

    def _to_plane(self, x: float, y: float) -> tuple[float, float]:
        cx, cy = self._center_3857
        k = self._units_per_meter
        px = (x - cx) * k + self.config.width / 2.0
        py = -(y - cy) * k + self.config.height / 2.0
        return px, py


@lru_cache(maxsize=16)
def _center_3857(lon: float, lat: float) -> tuple[float, float]:
    x, y = transformer_4326_to_3857().transform(lon, lat)
    return float(x), float(y)


def is_finite_lonlat(lon: float, lat: float) -> bool:
    # Web Mercator is undefined at the poles.
    return math.isfinite(lon) and math.isfinite(lat) and abs(lat) < 90.0
