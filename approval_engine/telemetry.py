"""Telemetry for approval fan-outs, turn steps and failures."""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from contextlib import closing
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TELEMETRY_ENV_VAR = "APPROVAL_TELEMETRY_DB"


class MetricType(Enum):
    """Types of metrics tracked."""
    BATCH_OPERATION = "batch_operation"
    TURN_STEP = "turn_step"
    CAMPAIGN_STATE = "campaign_state"
    ERROR_RATE = "error_rate"
    PERFORMANCE = "performance"


@dataclass
class MetricEvent:
    """Individual metric event."""
    timestamp: float
    metric_type: MetricType
    name: str
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class TelemetryCollector:
    """Collects and stores telemetry data for the approval engine."""

    def __init__(self, db_path: Optional[Path] = None, flush_interval: float = 60.0):
        self.db_path = db_path or Path("telemetry.db")
        self._init_database()
        self._metrics_buffer: List[MetricEvent] = []
        self._buffer_lock = threading.Lock()
        self._flush_interval = flush_interval
        self._last_flush = time.time()

    def _init_database(self):
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL NOT NULL,
                    metric_type TEXT NOT NULL,
                    name TEXT NOT NULL,
                    value REAL NOT NULL,
                    tags TEXT,
                    metadata TEXT,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_timestamp
                ON metrics(timestamp DESC)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_metrics_type_name
                ON metrics(metric_type, name)
            """)
            conn.commit()

    def track_batch(
        self,
        operation: str,
        *,
        applied: int,
        failed: int = 0,
        skipped: int = 0,
        actor_id: Optional[str] = None,
        turn: Optional[int] = None,
    ):
        """Track one fan-out across segments."""
        tags = {"failed": str(failed > 0)}
        if actor_id:
            tags["actor_id"] = actor_id
        self.record(
            MetricType.BATCH_OPERATION,
            operation,
            float(applied),
            tags=tags,
            metadata={"failed": failed, "skipped": skipped, "turn": turn},
        )

    def track_turn_step(self, step: str, turn: int, count: int):
        """Track a turn-boundary step such as decay or campaign completion."""
        self.record(
            MetricType.TURN_STEP,
            step,
            float(count),
            tags={"turn": str(turn)},
        )

    def track_campaign(
        self,
        event: str,
        actor_id: str,
        segment_id: str,
        boost: Optional[int] = None,
    ):
        self.record(
            MetricType.CAMPAIGN_STATE,
            event,
            1.0,
            tags={"actor_id": actor_id, "segment_id": segment_id},
            metadata={"boost": boost} if boost is not None else {},
        )

    def track_error(
        self,
        error_type: str,
        operation: Optional[str] = None,
        segment_id: Optional[str] = None,
        error_details: Optional[str] = None
    ):
        """Track errors and failures."""
        tags = {}
        if operation:
            tags["operation"] = operation
        if segment_id:
            tags["segment_id"] = segment_id

        self.record(
            MetricType.ERROR_RATE,
            error_type,
            1.0,
            tags=tags,
            metadata={"error_details": error_details} if error_details else {}
        )

    def track_performance(
        self,
        operation: str,
        duration_ms: float,
        tags: Optional[Dict[str, str]] = None
    ):
        """Track performance metrics."""
        self.record(
            MetricType.PERFORMANCE,
            operation,
            duration_ms,
            tags=tags or {},
            metadata={"unit": "milliseconds"}
        )

    def record(
        self,
        metric_type: MetricType,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """Record a metric event."""
        event = MetricEvent(
            timestamp=time.time(),
            metric_type=metric_type,
            name=name,
            value=value,
            tags=tags or {},
            metadata=metadata or {}
        )
        with self._buffer_lock:
            self._metrics_buffer.append(event)
            pending = len(self._metrics_buffer)

        if pending >= 100 or time.time() - self._last_flush > self._flush_interval:
            self.flush()

    def flush(self):
        """Flush buffered metrics to database."""
        with self._buffer_lock:
            events = list(self._metrics_buffer)
            self._metrics_buffer.clear()
        if not events:
            return

        try:
            with closing(sqlite3.connect(self.db_path)) as conn:
                conn.executemany(
                    """
                    INSERT INTO metrics
                    (timestamp, metric_type, name, value, tags, metadata)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            event.timestamp,
                            event.metric_type.value,
                            event.name,
                            event.value,
                            json.dumps(event.tags),
                            json.dumps(event.metadata, default=str),
                        )
                        for event in events
                    ],
                )
                conn.commit()
        except sqlite3.Error:
            logger.exception("Failed to flush %d metrics", len(events))
            with self._buffer_lock:
                self._metrics_buffer[:0] = events
            return

        logger.debug("Flushed %d metrics to database", len(events))
        self._last_flush = time.time()

    def get_batch_summary(self, hours: int = 24) -> Dict[str, Dict[str, float]]:
        """Applied/failed totals per fan-out operation."""
        start_time = time.time() - (hours * 3600)

        query = """
            SELECT
                name,
                COUNT(*) as batches,
                SUM(value) as applied,
                SUM(COALESCE(json_extract(metadata, '$.failed'), 0)) as failed
            FROM metrics
            WHERE metric_type = ? AND timestamp >= ?
            GROUP BY name
        """

        with closing(sqlite3.connect(self.db_path)) as conn:
            rows = conn.execute(query, [MetricType.BATCH_OPERATION.value, start_time]).fetchall()
        return {
            row[0]: {"batches": row[1], "applied": row[2] or 0, "failed": row[3] or 0}
            for row in rows
        }

    def get_error_summary(
        self,
        hours: int = 24
    ) -> Dict[str, int]:
        """Get error counts for the last N hours."""
        start_time = time.time() - (hours * 3600)

        query = """
            SELECT name, COUNT(*) as error_count
            FROM metrics
            WHERE metric_type = ? AND timestamp >= ?
            GROUP BY name
            ORDER BY error_count DESC
        """

        with closing(sqlite3.connect(self.db_path)) as conn:
            cursor = conn.execute(query, [
                MetricType.ERROR_RATE.value,
                start_time
            ])
            return {row[0]: row[1] for row in cursor.fetchall()}

    def get_performance_summary(
        self,
        operation: Optional[str] = None,
        hours: int = 1
    ) -> Dict[str, Dict[str, float]]:
        """Get performance statistics for operations."""
        start_time = time.time() - (hours * 3600)

        query = """
            SELECT
                name,
                AVG(value) as avg_duration,
                MIN(value) as min_duration,
                MAX(value) as max_duration,
                COUNT(*) as sample_count
            FROM metrics
            WHERE metric_type = ? AND timestamp >= ?
        """
        params: List[Any] = [MetricType.PERFORMANCE.value, start_time]

        if operation:
            query += " AND name = ?"
            params.append(operation)

        query += " GROUP BY name"

        with closing(sqlite3.connect(self.db_path)) as conn:
            results = {}
            for row in conn.execute(query, params).fetchall():
                results[row[0]] = {
                    "avg_duration_ms": row[1],
                    "min_duration_ms": row[2],
                    "max_duration_ms": row[3],
                    "sample_count": row[4]
                }
            return results

    def get_turn_steps(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Most recent turn-boundary steps."""
        query = """
            SELECT name, value, json_extract(tags, '$.turn'), timestamp
            FROM metrics
            WHERE metric_type = ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
        """
        with closing(sqlite3.connect(self.db_path)) as conn:
            rows = conn.execute(query, [MetricType.TURN_STEP.value, limit]).fetchall()
        return [
            {
                "step": row[0],
                "count": int(row[1]),
                "turn": int(row[2]) if row[2] is not None else None,
                "timestamp": datetime.fromtimestamp(row[3]).isoformat(),
            }
            for row in rows
        ]

    def cleanup_old_data(self, days_to_keep: int = 30):
        """Clean up old telemetry data."""
        cutoff_time = time.time() - (days_to_keep * 86400)

        with closing(sqlite3.connect(self.db_path)) as conn:
            cursor = conn.execute(
                "DELETE FROM metrics WHERE timestamp < ?",
                (cutoff_time,)
            )
            deleted = cursor.rowcount
            conn.commit()

        logger.info("Cleaned up %d old metric events", deleted)
        return deleted


# Singleton instance
_telemetry: Optional[TelemetryCollector] = None


def get_telemetry() -> TelemetryCollector:
    """Get or create singleton telemetry collector."""
    global _telemetry
    if _telemetry is None:
        env_path = os.getenv(TELEMETRY_ENV_VAR)
        _telemetry = TelemetryCollector(Path(env_path) if env_path else None)
    return _telemetry


class track_duration:
    """Context manager for tracking operation duration."""

    def __init__(
        self,
        operation: str,
        tags: Optional[Dict[str, str]] = None,
        telemetry: Optional[TelemetryCollector] = None,
    ):
        self.operation = operation
        self.tags = tags or {}
        self.telemetry = telemetry
        self.start_time = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000
        telemetry = self.telemetry or get_telemetry()
        telemetry.track_performance(self.operation, duration_ms, self.tags)

        if exc_type:
            telemetry.track_error(
                exc_type.__name__,
                operation=self.operation,
                error_details=str(exc_val)
            )


__all__ = [
    "MetricEvent",
    "MetricType",
    "TelemetryCollector",
    "get_telemetry",
    "track_duration",
]
