from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from engine.config import (
    ConfigError,
    EngineConfig,
    load_engine_config,
    parse_engine_config,
    telemetry_enabled,
    telemetry_path,
)


def test_repo_config_matches_defaults():
    cfg = load_engine_config(Path(__file__).resolve().parents[2] / "config" / "engine.yaml")
    assert cfg.grid == EngineConfig().grid
    assert cfg.labels.umbrella_name == "London"
    assert cfg.labels.memory_max_idle is None
    assert cfg.labels == EngineConfig().labels


def test_yaml_accepts_camel_case_keys(tmp_path: Path):
    p = tmp_path / "engine.yaml"
    p.write_text(
        "grid:\n  baseSize: 48\n  quantum: 4\nlabels:\n  tieGap: 0.2\n  memoryMaxIdle: 5\n",
        encoding="utf-8",
    )
    cfg = load_engine_config(p)
    assert cfg.grid.base_size == 48
    assert cfg.grid.quantum == 4
    assert cfg.labels.tie_gap == 0.2
    assert cfg.labels.memory_max_idle == 5
    # Untouched sections keep their defaults.
    assert cfg.points == EngineConfig().points


def test_snake_case_keys_are_accepted_too():
    cfg = parse_engine_config({"grid": {"base_size": 40}})
    assert cfg.grid.base_size == 40


def test_missing_file_gives_defaults(tmp_path: Path):
    assert load_engine_config(tmp_path / "nope.yaml") == EngineConfig()


def test_empty_file_gives_defaults(tmp_path: Path):
    p = tmp_path / "engine.yaml"
    p.write_text("", encoding="utf-8")
    assert load_engine_config(p) == EngineConfig()


def test_env_var_selects_config_file(tmp_path: Path, monkeypatch):
    p = tmp_path / "custom.yaml"
    p.write_text("grid:\n  minSize: 10\n", encoding="utf-8")
    monkeypatch.setenv("CRASHMAP_ENGINE_CONFIG", str(p))
    assert load_engine_config().grid.min_size == 10


@pytest.mark.parametrize(
    "text",
    [
        "- just\n- a list\n",
        "grid: [unclosed\n",
        "grid:\n  minSize: 300\n",
        "labels:\n  tieGap: 1.5\n",
        "points:\n  markerOpacity:\n    Fatal: 2.0\n",
    ],
)
def test_invalid_files_raise_config_error(tmp_path: Path, text: str):
    p = tmp_path / "engine.yaml"
    p.write_text(text, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_engine_config(p)


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_engine_config({"grid": {"exponent": -1}})


def test_config_is_frozen():
    cfg = EngineConfig()
    with pytest.raises(ValidationError):
        cfg.grid.base_size = 10  # type: ignore[misc]


@pytest.mark.parametrize("raw,enabled", [(None, True), ("1", True), ("off", False), (" 0 ", False), ("No", False)])
def test_telemetry_switch(monkeypatch, raw, enabled):
    if raw is None:
        monkeypatch.delenv("CRASHMAP_TELEMETRY", raising=False)
    else:
        monkeypatch.setenv("CRASHMAP_TELEMETRY", raw)
    assert telemetry_enabled() is enabled


def test_telemetry_path_from_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("CRASHMAP_TELEMETRY_PATH", str(tmp_path / "t.duckdb"))
    assert telemetry_path() == tmp_path / "t.duckdb"
    monkeypatch.delenv("CRASHMAP_TELEMETRY_PATH")
    assert telemetry_path().name == "telemetry.duckdb"
