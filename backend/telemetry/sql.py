from __future__ import annotations

CREATE_RECOMPUTES_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS recomputes (
  ts_ms BIGINT,
  endpoint TEXT,
  mode TEXT,
  intent TEXT,
  scale DOUBLE,
  grid_size DOUBLE,
  n_events BIGINT,
  n_outputs BIGINT,
  total_ms DOUBLE,
  stats_json TEXT
);
"""

SUMMARY_SQL_TEMPLATE = """
SELECT
  mode,
  endpoint,
  COUNT(*) AS n,
  AVG(total_ms) AS avg_total_ms,
  quantile_cont(total_ms, 0.50) AS p50_total_ms,
  quantile_cont(total_ms, 0.95) AS p95_total_ms,
  AVG(n_outputs) AS avg_outputs,
  AVG(CASE WHEN try_cast(json_extract_string(stats_json, '$.cacheHit') AS BOOLEAN) THEN 1 ELSE 0 END) AS cache_hit_rate
FROM recomputes
{where_sql}
GROUP BY mode, endpoint
ORDER BY mode, endpoint
"""

SLOWEST_SQL_TEMPLATE = """
SELECT
  ts_ms,
  mode,
  intent,
  scale,
  grid_size,
  n_events,
  n_outputs,
  total_ms
FROM recomputes
{where_sql}
ORDER BY total_ms DESC
LIMIT ?
"""

INSERT_RECOMPUTES_SQL = """
INSERT INTO recomputes
  (ts_ms, endpoint, mode, intent, scale, grid_size, n_events, n_outputs, total_ms, stats_json)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""
