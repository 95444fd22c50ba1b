from __future__ import annotations

import json
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb

from telemetry.sql import (
    CREATE_RECOMPUTES_TABLE_SQL,
    INSERT_RECOMPUTES_SQL,
    SLOWEST_SQL_TEMPLATE,
    SUMMARY_SQL_TEMPLATE,
)

logger = logging.getLogger(__name__)


def _safe_float(v) -> float | None:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


@dataclass
class TelemetryStore:
    """
    Recompute timings in a local DuckDB file.

    Writes go through a queue to a single writer thread, so recording never blocks a request.
    """

    path: Path
    conn: duckdb.DuckDBPyConnection
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _q: "queue.Queue[tuple]" = field(default_factory=lambda: queue.Queue(maxsize=10_000), repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _worker: threading.Thread | None = field(default=None, repr=False)

    @classmethod
    def open(cls, path: Path) -> "TelemetryStore":
        """
        Connect to (or create) the DuckDB file at `path` and start the writer thread.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        store = cls(path=path, conn=duckdb.connect(str(path)))
        store.ensure_schema()
        store.start()
        return store

    def close(self) -> None:
        self.stop(timeout_s=2.0)
        with self._lock:
            self.conn.close()

    def ensure_schema(self) -> None:
        with self._lock:
            self.conn.execute(CREATE_RECOMPUTES_TABLE_SQL)

    def start(self) -> None:
        if self._worker is not None:
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._run, name="telemetry-writer", daemon=True)
        self._worker.start()

    def stop(self, *, timeout_s: float = 2.0) -> None:
        self._stop.set()
        w = self._worker
        if w is not None and w.is_alive():
            w.join(timeout=timeout_s)
        self._worker = None

    def record(
        self,
        *,
        endpoint: str,
        scale: float,
        stats: dict[str, Any],
    ) -> None:
        """
        Enqueue one recompute; dropped (with a debug log) when the queue is full.
        """
        self.start()
        grid = stats.get("gridSize")
        row = (
            int(time.time() * 1000),
            str(endpoint),
            str(stats.get("mode") or ""),
            stats.get("intent"),
            float(scale),
            float(grid) if grid is not None else None,
            int(stats.get("eventsIn") or 0),
            int(stats.get("outputs") or 0),
            float((stats.get("timingsMs") or {}).get("total") or 0.0),
            json.dumps(stats, ensure_ascii=False),
        )
        try:
            self._q.put_nowait(row)
        except queue.Full:
            logger.debug("Telemetry queue full; dropping record")

    def flush(self, *, timeout_s: float = 2.0) -> None:
        """
        Wait until queued records are written (used by tests).
        """
        if self._worker is None:
            return
        deadline = time.time() + timeout_s
        while time.time() < deadline:
            if self._q.unfinished_tasks == 0:
                break
            time.sleep(0.01)

    def query(self, sql: str, params: list[Any] | None = None) -> list[tuple]:
        with self._lock:
            if params:
                return self.conn.execute(sql, params).fetchall()
            return self.conn.execute(sql).fetchall()

    def summary(self, *, mode: str | None = None, since_ms: int | None = None) -> list[dict[str, Any]]:
        where = []
        params: list[Any] = []
        if mode:
            where.append("mode = ?")
            params.append(mode)
        if since_ms is not None:
            where.append("ts_ms >= ?")
            params.append(int(since_ms))
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""

        rows = self.query(SUMMARY_SQL_TEMPLATE.format(where_sql=where_sql), params)
        out: list[dict[str, Any]] = []
        for mode_v, endpoint_v, n, avg_ms, p50, p95, avg_outputs, hit_rate in rows:
            out.append(
                {
                    "mode": mode_v,
                    "endpoint": endpoint_v,
                    "n": int(n),
                    "avgTotalMs": _safe_float(avg_ms),
                    "p50TotalMs": _safe_float(p50),
                    "p95TotalMs": _safe_float(p95),
                    "avgOutputs": _safe_float(avg_outputs),
                    "cacheHitRate": _safe_float(hit_rate),
                }
            )
        return out

    def slowest(self, *, mode: str | None = None, limit: int = 25) -> list[dict[str, Any]]:
        params: list[Any] = []
        where_sql = ""
        if mode:
            where_sql = "WHERE mode = ?"
            params.append(mode)
        params.append(int(max(1, min(200, limit))))

        rows = self.query(SLOWEST_SQL_TEMPLATE.format(where_sql=where_sql), params)
        return [
            {
                "tsMs": int(ts_ms),
                "mode": mode_v,
                "intent": intent,
                "scale": _safe_float(scale),
                "gridSize": _safe_float(grid),
                "eventsIn": int(n_events),
                "outputs": int(n_outputs),
                "totalMs": _safe_float(total_ms),
            }
            for ts_ms, mode_v, intent, scale, grid, n_events, n_outputs, total_ms in rows
        ]

    def reset(self) -> None:
        # The writer stops before the connection closes.
        self.close()
        self.path.unlink(missing_ok=True)

    def _run(self) -> None:
        batch: list[tuple] = []
        last_flush = time.time()

        def flush_batch() -> None:
            nonlocal batch
            if not batch:
                return
            with self._lock:
                try:
                    self.conn.executemany(INSERT_RECOMPUTES_SQL, batch)
                    self.conn.execute("CHECKPOINT;")
                except duckdb.Error:
                    logger.exception("Failed to write %d telemetry records", len(batch))
            for _ in batch:
                self._q.task_done()
            batch = []

        while not self._stop.is_set():
            try:
                batch.append(self._q.get(timeout=0.1))
            except queue.Empty:
                pass

            # Flush on size or time.
            now = time.time()
            if len(batch) >= 250 or (batch and (now - last_flush) >= 0.5) or (
                batch and self._q.empty()
            ):
                flush_batch()
                last_flush = now

        while True:
            try:
                batch.append(self._q.get_nowait())
            except queue.Empty:
                break
        flush_batch()
