import logging
import os
import threading
from functools import lru_cache

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from api.payload import result_payload
from api.schemas import ApiRecomputeRequest
from engine.aggregation import AggregationEngine
from engine.config import ConfigError, data_path, load_engine_config
from events.ingest import IngestError, load_dataset
from events.types import EventDataset
from geo.projection import PlaneProjector
from telemetry.singleton import get_store, reset_store

logging.basicConfig(
    level=(os.getenv("CRASHMAP_LOG_LEVEL") or "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="crashmap")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# The engine mutates label memory and caches; one recompute at a time.
_ENGINE_LOCK = threading.Lock()


@lru_cache(maxsize=1)
def _engine() -> AggregationEngine:
    engine = AggregationEngine(load_engine_config())
    logger.info("Aggregation engine ready (grid %s)", engine.config.grid.model_dump())
    return engine


@lru_cache(maxsize=1)
def _dataset() -> EventDataset:
    path = data_path()
    if path is None:
        raise IngestError("No accident data configured; set CRASHMAP_DATA_PATH")
    return load_dataset(path, PlaneProjector(_engine().config.projection))


def _ready() -> tuple[AggregationEngine, EventDataset]:
    try:
        return _engine(), _dataset()
    except ConfigError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e
    except IngestError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


@app.get("/health")
def health():
    _, dataset = _ready()
    return {"status": "ok", "events": len(dataset)}


@app.post("/recompute")
def recompute(body: ApiRecomputeRequest):
    engine, dataset = _ready()
    try:
        view = body.view.to_view_state()
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    with _ENGINE_LOCK:
        engine.request_recompute(dataset, view)
        result = engine.run_frame()

    payload = result_payload(result)
    store = get_store()
    if store is not None:
        store.record(endpoint="/recompute", scale=view.scale, stats=result.stats)
    return payload


@app.get("/telemetry/summary")
def telemetry_summary(mode: str | None = None):
    store = get_store()
    if store is None:
        return {"enabled": False, "rows": []}
    return {"enabled": True, "rows": store.summary(mode=mode)}


@app.get("/telemetry/slowest")
def telemetry_slowest(mode: str | None = None, limit: int = 25):
    store = get_store()
    if store is None:
        return {"enabled": False, "rows": []}
    return {"enabled": True, "rows": store.slowest(mode=mode, limit=limit)}


@app.post("/telemetry/reset")
def telemetry_reset():
    reset_store()
    return {"ok": True}
