from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel


class ConfigError(ValueError):
    """
    Invalid engine configuration. Raised before any recompute can run.
    """


# The 32 London boroughs plus the City of London, as named in ONS local authority districts.
GREATER_LONDON: tuple[str, ...] = (
    "Barking and Dagenham",
    "Barnet",
    "Bexley",
    "Brent",
    "Bromley",
    "Camden",
    "City of London",
    "Croydon",
    "Ealing",
    "Enfield",
    "Greenwich",
    "Hackney",
    "Hammersmith and Fulham",
    "Haringey",
    "Harrow",
    "Havering",
    "Hillingdon",
    "Hounslow",
    "Islington",
    "Kensington and Chelsea",
    "Kingston upon Thames",
    "Lambeth",
    "Lewisham",
    "Merton",
    "Newham",
    "Redbridge",
    "Richmond upon Thames",
    "Southwark",
    "Sutton",
    "Tower Hamlets",
    "Waltham Forest",
    "Wandsworth",
    "Westminster",
)


class _Model(BaseModel):
    # Accept both snake_case and camelCase keys (YAML and API payloads use camelCase).
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="forbid"
    )


class GridConfig(_Model):
    base_size: float = 64.0
    min_size: float = 18.0
    max_size: float = 160.0
    exponent: float = 0.6
    quantum: float = 2.0

    @model_validator(mode="after")
    def _check(self) -> "GridConfig":
        if self.min_size <= 0 or self.max_size <= 0 or self.base_size <= 0:
            raise ValueError("grid sizes must be positive")
        if self.min_size > self.max_size:
            raise ValueError(
                f"grid min_size ({self.min_size}) is greater than max_size ({self.max_size})"
            )
        if self.quantum < 0:
            raise ValueError(f"grid quantum must not be negative (got {self.quantum})")
        if self.exponent < 0:
            raise ValueError(f"grid exponent must not be negative (got {self.exponent})")
        return self


class LabelConfig(_Model):
    """
    Cluster labeling thresholds. Shares are fractions of a bin's total.
    """

    umbrella_name: str = "London"
    umbrella_members: tuple[str, ...] = GREATER_LONDON

    umbrella_share: float = Field(default=0.55, ge=0.0, le=1.0)
    umbrella_top_share: float = Field(default=0.65, ge=0.0, le=1.0)
    pair_top_share: float = Field(default=0.5, ge=0.0, le=1.0)
    pair_second_share: float = Field(default=0.35, ge=0.0, le=1.0)
    nearest_top_share: float = Field(default=0.4, ge=0.0, le=1.0)

    # Hysteresis against the previous frame's label.
    umbrella_keep_share: float = Field(default=0.45, ge=0.0, le=1.0)
    switch_margin: float = Field(default=0.1, ge=0.0, le=1.0)
    switch_floor: float = Field(default=0.45, ge=0.0, le=1.0)
    tie_gap: float = Field(default=0.12, ge=0.0, le=1.0)
    # Extra lead over the runner-up a new leader needs to replace the remembered label.
    takeover_gap: float = Field(default=0.25, ge=0.0, le=1.0)

    # Evict memory entries not touched for this many recomputes; None keeps them forever.
    memory_max_idle: int | None = Field(default=None, ge=1)


class RadiusConfig(_Model):
    min_fraction: float = Field(default=0.15, gt=0.0)
    max_fraction: float = Field(default=0.45, gt=0.0, le=0.5)
    min_radius_px: float = Field(default=2.0, ge=0.0)

    @model_validator(mode="after")
    def _check(self) -> "RadiusConfig":
        if self.min_fraction > self.max_fraction:
            raise ValueError("radius min_fraction is greater than max_fraction")
        return self


class PointConfig(_Model):
    point_cell_size: float = Field(default=0.5, gt=0.0)
    density_cell_size: float = Field(default=12.0, gt=0.0)
    point_detail_zoom: float = Field(default=2.5, gt=0.0)

    # Screen-space marker styling per category.
    marker_radius: dict[str, float] = Field(
        default_factory=lambda: {"Fatal": 3.6, "Serious": 2.8, "Slight": 2.2, "Unknown": 2.0}
    )
    marker_opacity: dict[str, float] = Field(
        default_factory=lambda: {"Fatal": 0.95, "Serious": 0.88, "Slight": 0.6, "Unknown": 0.5}
    )

    # Density-emphasis intent.
    density_radius_factor: float = Field(default=0.7, gt=0.0, le=1.0)
    density_opacity_factor: float = Field(default=0.55, gt=0.0, le=1.0)
    density_damping: float = Field(default=0.5, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check(self) -> "PointConfig":
        if self.density_cell_size < self.point_cell_size:
            raise ValueError("density_cell_size must not be smaller than point_cell_size")
        for name in ("Fatal", "Serious", "Slight", "Unknown"):
            if self.marker_radius.get(name, 0.0) <= 0:
                raise ValueError(f"marker_radius for {name} must be positive")
            if not 0.0 <= self.marker_opacity.get(name, -1.0) <= 1.0:
                raise ValueError(f"marker_opacity for {name} must be within [0, 1]")
        return self


class ProjectionConfig(_Model):
    center_lon: float = Field(default=-2.0, ge=-180.0, le=180.0)
    center_lat: float = Field(default=54.0, gt=-85.0, lt=85.0)
    scale: float = Field(default=2000.0, gt=0.0)
    width: float = Field(default=960.0, gt=0.0)
    height: float = Field(default=720.0, gt=0.0)


class EngineConfig(_Model):
    grid: GridConfig = Field(default_factory=GridConfig)
    labels: LabelConfig = Field(default_factory=LabelConfig)
    radius: RadiusConfig = Field(default_factory=RadiusConfig)
    points: PointConfig = Field(default_factory=PointConfig)
    projection: ProjectionConfig = Field(default_factory=ProjectionConfig)

    # Bounded caches (insertion-ordered eviction).
    bins_cache_size: int = Field(default=16, ge=1)
    point_cache_size: int = Field(default=8, ge=1)


def parse_engine_config(raw: EngineConfig | dict[str, Any] | None) -> EngineConfig:
    """
    Validate a config (model, mapping, or None for defaults), raising `ConfigError`.
    """
    if raw is None:
        return EngineConfig()
    try:
        if isinstance(raw, EngineConfig):
            # Re-validate: models built with `model_construct` skip validators.
            return EngineConfig.model_validate(raw.model_dump())
        if not isinstance(raw, dict):
            raise ConfigError(f"engine config must be a mapping, got {type(raw).__name__}")
        return EngineConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"invalid engine config: {e}") from e


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[2]


def engine_config_path() -> Path:
    return Path(
        os.getenv("CRASHMAP_ENGINE_CONFIG") or (_repo_root() / "config" / "engine.yaml")
    )


def load_engine_config(path: Path | str | None = None) -> EngineConfig:
    p = Path(path) if path is not None else engine_config_path()
    if not p.exists():
        return EngineConfig()
    try:
        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid engine config yaml: {p}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"invalid engine config yaml root: {p}")
    return parse_engine_config(data)


def data_path() -> Path | None:
    raw = (os.getenv("CRASHMAP_DATA_PATH") or "").strip()
    if raw:
        return Path(raw)
    default = _repo_root() / "data" / "Road Accident Data.csv"
    return default if default.exists() else None


def duckdb_threads() -> int:
    raw = (os.getenv("CRASHMAP_DUCKDB_THREADS") or "").strip()
    if raw:
        try:
            return max(1, int(raw))
        except ValueError:
            pass
    return max(1, int(os.cpu_count() or 1))


def telemetry_enabled() -> bool:
    v = (os.getenv("CRASHMAP_TELEMETRY") or "1").strip().lower()
    return v not in {"0", "false", "no", "off"}


def telemetry_path() -> Path:
    raw = (os.getenv("CRASHMAP_TELEMETRY_PATH") or "").strip()
    return Path(raw) if raw else _repo_root() / "data" / "telemetry" / "telemetry.duckdb"
