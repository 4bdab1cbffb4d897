import datetime
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from log_analytics.models import APILogEvent, ApiLogRow, SystemMetricEvent, SystemMetricRow

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS api_logs (
        id SERIAL PRIMARY KEY,
        timestamp TIMESTAMP NOT NULL,
        endpoint VARCHAR(255),
        status INTEGER,
        response_time FLOAT,
        method VARCHAR(10),
        error TEXT,
        error_code VARCHAR(50)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS system_metrics (
        id SERIAL PRIMARY KEY,
        timestamp TIMESTAMP NOT NULL,
        cpu FLOAT,
        memory FLOAT,
        disk_usage FLOAT,
        active_requests INTEGER
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_api_logs_timestamp ON api_logs(timestamp);",
    "CREATE INDEX IF NOT EXISTS idx_api_logs_endpoint ON api_logs(endpoint);",
    "CREATE INDEX IF NOT EXISTS idx_api_logs_status ON api_logs(status);",
    "CREATE INDEX IF NOT EXISTS idx_system_metrics_timestamp ON system_metrics(timestamp);",
]

DEFAULT_LIMIT = 20
SLOW_RESPONSE_THRESHOLD_MS = 200


def _naive_utc(ts: datetime.datetime) -> datetime.datetime:
    # Columns are TIMESTAMP WITHOUT TIME ZONE and hold UTC.
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(datetime.timezone.utc).replace(tzinfo=None)


class LogStore:
    """PostgreSQL access for the api_logs and system_metrics tables.

    All methods are blocking; async callers go through asyncio.to_thread.
    The pool is created on first use, so constructing a LogStore never
    touches the network.
    """

    def __init__(self, dsn: str, max_connections: int = 5):
        self.dsn = dsn
        self.max_connections = max_connections
        self._pool: Optional[ThreadedConnectionPool] = None

    def _get_pool(self) -> ThreadedConnectionPool:
        if self._pool is None:
            self._pool = ThreadedConnectionPool(0, self.max_connections, self.dsn)
        return self._pool

    @contextmanager
    def _connection(self) -> Iterator["psycopg2.extensions.connection"]:
        pool = self._get_pool()
        conn = pool.getconn()
        try:
            yield conn
            conn.commit()
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            pool.putconn(conn, close=bool(conn.closed))

    def ping(self) -> None:
        with self._connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()

    def init_schema(self) -> None:
        with self._connection() as conn:
            with conn.cursor() as cursor:
                for statement in SCHEMA_STATEMENTS:
                    cursor.execute(statement)
        logging.info("Database initialized successfully")

    def insert_api_log(self, event: APILogEvent) -> int:
        with self._connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO api_logs (timestamp, endpoint, status, response_time, method, error, error_code)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING id;
                    """,
                    (
                        _naive_utc(event.timestamp),
                        event.endpoint,
                        event.status,
                        event.response_time,
                        event.method,
                        event.error,
                        event.error_code,
                    ),
                )
                return cursor.fetchone()[0]

    def insert_system_metric(self, event: SystemMetricEvent) -> int:
        with self._connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    INSERT INTO system_metrics (timestamp, cpu, memory, disk_usage, active_requests)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING id;
                    """,
                    (
                        _naive_utc(event.timestamp),
                        event.cpu,
                        event.memory,
                        event.disk_usage,
                        event.active_requests,
                    ),
                )
                return cursor.fetchone()[0]

    def _select(self, query: str, params: tuple = ()) -> List[dict]:
        with self._connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(query, params)
                return cursor.fetchall()

    def _select_api_logs(self, query: str, params: tuple = ()) -> List[ApiLogRow]:
        return [ApiLogRow(**row) for row in self._select(query, params)]

    # Read-only queries used by the viewer.

    def recent_api_logs(self, limit: int = DEFAULT_LIMIT) -> List[ApiLogRow]:
        return self._select_api_logs(
            "SELECT * FROM api_logs ORDER BY timestamp DESC LIMIT %s", (limit,)
        )

    def recent_system_metrics(self, limit: int = DEFAULT_LIMIT) -> List[SystemMetricRow]:
        rows = self._select(
            "SELECT * FROM system_metrics ORDER BY timestamp DESC LIMIT %s", (limit,)
        )
        return [SystemMetricRow(**row) for row in rows]

    def api_logs_by_endpoint(self, endpoint: str, limit: int = DEFAULT_LIMIT) -> List[ApiLogRow]:
        return self._select_api_logs(
            "SELECT * FROM api_logs WHERE endpoint LIKE %s ORDER BY timestamp DESC LIMIT %s",
            (f"%{endpoint}%", limit),
        )

    def api_logs_by_status(self, status: int, limit: int = DEFAULT_LIMIT) -> List[ApiLogRow]:
        return self._select_api_logs(
            "SELECT * FROM api_logs WHERE status = %s ORDER BY timestamp DESC LIMIT %s",
            (status, limit),
        )

    def slow_responses(
        self, threshold_ms: float = SLOW_RESPONSE_THRESHOLD_MS, limit: int = DEFAULT_LIMIT
    ) -> List[ApiLogRow]:
        return self._select_api_logs(
            "SELECT * FROM api_logs WHERE response_time > %s ORDER BY response_time DESC LIMIT %s",
            (threshold_ms, limit),
        )

    def error_logs(self, limit: int = DEFAULT_LIMIT) -> List[ApiLogRow]:
        return self._select_api_logs(
            "SELECT * FROM api_logs WHERE error IS NOT NULL OR status >= 400 "
            "ORDER BY timestamp DESC LIMIT %s",
            (limit,),
        )

    def max_api_log_id(self) -> int:
        rows = self._select("SELECT COALESCE(MAX(id), 0) AS max_id FROM api_logs")
        return rows[0]["max_id"]

    def api_logs_after(self, last_id: int) -> List[ApiLogRow]:
        return self._select_api_logs(
            "SELECT * FROM api_logs WHERE id > %s ORDER BY id ASC", (last_id,)
        )

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
