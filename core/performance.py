"""
Performance Monitoring for the Gallery API.

Collects request timings, named operation timings and counters in memory and
exposes them, together with host statistics from `psutil`, to the monitoring
endpoints.

Key Components:
- `MetricsCollector`: Thread-safe in-memory store of metrics, request records,
  counters and gauges with windowed aggregation.
- `async_timer` / `timed`: Time an awaited block or an async function and
  record the duration under a metric name.
- `get_metrics_collector` / `init_metrics_collector`: Process-wide instance.
"""

import time
import asyncio
import functools
import threading
import psutil
from typing import Dict, Any, Optional, List
from datetime import datetime, timedelta
from dataclasses import dataclass, field
from collections import defaultdict, deque
from contextlib import asynccontextmanager

from core.logging_config import get_logger

logger = get_logger("core.performance")


@dataclass
class PerformanceMetric:
    """Individual performance metric"""

    name: str
    value: float
    timestamp: datetime
    tags: Dict[str, str] = field(default_factory=dict)
    unit: str = "ms"


@dataclass
class RequestMetrics:
    """Request-level performance metrics"""

    endpoint: str
    method: str
    status_code: int
    duration_ms: float
    timestamp: datetime


class MetricsCollector:
    """Collects and aggregates performance metrics"""

    def __init__(self, max_metrics: int = 10000):
        self.max_metrics = max_metrics
        self.metrics: deque = deque(maxlen=max_metrics)
        self.request_metrics: deque = deque(maxlen=max_metrics)
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(name: str, tags: Optional[Dict[str, str]]) -> str:
        if not tags:
            return name
        tag_str = ":".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}:{tag_str}"

    def record_metric(
        self,
        name: str,
        value: float,
        tags: Optional[Dict[str, str]] = None,
        unit: str = "ms",
    ):
        """Record a performance metric"""
        metric = PerformanceMetric(
            name=name,
            value=value,
            timestamp=datetime.utcnow(),
            tags=tags or {},
            unit=unit,
        )
        with self._lock:
            self.metrics.append(metric)

        logger.debug(f"Recorded metric: {name}={value:.2f}{unit}")

    def record_request(self, metrics: RequestMetrics):
        """Record request-level metrics"""
        with self._lock:
            self.request_metrics.append(metrics)
            self.counters["requests_total"] += 1
            self.counters[f"requests_{metrics.method.lower()}"] += 1
            self.counters[f"responses_{metrics.status_code}"] += 1

    def increment_counter(
        self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None
    ):
        """Increment a counter metric"""
        with self._lock:
            self.counters[self._key(name, tags)] += value

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        """Set a gauge metric"""
        with self._lock:
            self.gauges[self._key(name, tags)] = value

    def get_stats(self, time_window_minutes: int = 5) -> Dict[str, Any]:
        """Get aggregated statistics"""
        cutoff_time = datetime.utcnow() - timedelta(minutes=time_window_minutes)

        with self._lock:
            recent_requests = [
                req for req in self.request_metrics if req.timestamp >= cutoff_time
            ]
            recent_metrics = [
                metric for metric in self.metrics if metric.timestamp >= cutoff_time
            ]
            counters = dict(self.counters)
            gauges = dict(self.gauges)

        return {
            "time_window_minutes": time_window_minutes,
            "timestamp": datetime.utcnow().isoformat(),
            "requests": self._calculate_request_stats(recent_requests),
            "metrics": self._calculate_metric_stats(recent_metrics),
            "system": self._get_system_stats(),
            "counters": counters,
            "gauges": gauges,
        }

    def _calculate_request_stats(self, requests: List[RequestMetrics]) -> Dict[str, Any]:
        """Calculate request statistics"""
        if not requests:
            return {"total": 0, "avg_duration_ms": 0, "error_rate": 0}

        durations = [req.duration_ms for req in requests]
        errors = [req for req in requests if req.status_code >= 500]
        return {
            "total": len(requests),
            "avg_duration_ms": sum(durations) / len(durations),
            "max_duration_ms": max(durations),
            "error_rate": len(errors) / len(requests),
        }

    def _calculate_metric_stats(self, metrics: List[PerformanceMetric]) -> Dict[str, Any]:
        """Calculate per-name statistics"""
        grouped: Dict[str, List[float]] = defaultdict(list)
        for metric in metrics:
            grouped[metric.name].append(metric.value)

        stats = {}
        for name, values in grouped.items():
            values.sort()
            p95_idx = int(len(values) * 0.95)
            stats[name] = {
                "count": len(values),
                "avg": sum(values) / len(values),
                "min": values[0],
                "max": values[-1],
                "p95": values[min(p95_idx, len(values) - 1)],
            }
        return stats

    def _get_system_stats(self) -> Dict[str, Any]:
        """Get current system statistics"""
        try:
            memory = psutil.virtual_memory()
            return {
                "cpu": {
                    "percent": psutil.cpu_percent(interval=None),
                    "count": psutil.cpu_count(),
                },
                "memory": {
                    "total_bytes": memory.total,
                    "available_bytes": memory.available,
                    "percent": memory.percent,
                },
                "process": {
                    "rss_bytes": psutil.Process().memory_info().rss,
                },
            }
        except Exception as e:
            logger.error(f"Error getting system stats: {e}")
            return {}


@asynccontextmanager
async def async_timer(
    name: str, collector: MetricsCollector, tags: Optional[Dict[str, str]] = None
):
    """Async context manager for timing operations"""
    start_time = time.perf_counter()
    tags = dict(tags or {})

    try:
        yield
    except Exception as e:
        tags["error"] = type(e).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        collector.record_metric(name, duration_ms, tags)


# Global metrics collector
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector instance"""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector()
        logger.info("Metrics collector initialized")
    return _metrics_collector


def init_metrics_collector(max_metrics: int = 10000) -> MetricsCollector:
    """Initialize metrics collector with custom settings"""
    global _metrics_collector
    _metrics_collector = MetricsCollector(max_metrics=max_metrics)
    logger.info(f"Metrics collector initialized with max_metrics={max_metrics}")
    return _metrics_collector


def timed(name: Optional[str] = None, tags: Optional[Dict[str, str]] = None):
    """Decorator to time async function execution"""

    def decorator(func):
        metric_name = name or f"{func.__module__}.{func.__name__}"

        if not asyncio.iscoroutinefunction(func):
            raise TypeError("timed() only decorates coroutine functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            async with async_timer(metric_name, get_metrics_collector(), tags):
                return await func(*args, **kwargs)

        return wrapper

    return decorator
