"""
Metrics collector for AI provider calls.

Tracks: latency, throughput, memory usage, attempts, errors per failure kind.
Kept in memory only; the service exposes a snapshot at GET /metrics.
"""
from __future__ import annotations

import os
import threading
import time
from collections import Counter

import psutil


class MetricsCollector:
    """Thread-safe tracker of gateway calls."""

    def __init__(self):
        self._lock = threading.Lock()
        self._start_time: float = time.time()

        # Counters.
        self._total_requests: int = 0
        self._total_latency_ms: float = 0.0
        self._error_count: int = 0
        self._min_latency_ms: float = float("inf")
        self._max_latency_ms: float = 0.0
        self._total_attempts: int = 0
        self._errors_by_kind: Counter[str] = Counter()
        self._requests_by_model: Counter[str] = Counter()

        # Process handle for memory tracking.
        self._process = psutil.Process(os.getpid())

    def record_request(
        self,
        latency_ms: float,
        success: bool,
        model: str = "",
        attempts: int = 1,
        error_kind: str | None = None,
    ) -> None:
        """Records a single gateway call's outcome."""
        with self._lock:
            self._total_requests += 1
            self._total_latency_ms += latency_ms
            if latency_ms < self._min_latency_ms:
                self._min_latency_ms = latency_ms
            if latency_ms > self._max_latency_ms:
                self._max_latency_ms = latency_ms
            self._total_attempts += max(0, int(attempts))
            if model:
                self._requests_by_model[model] += 1
            if not success:
                self._error_count += 1
                self._errors_by_kind[error_kind or "unknown"] += 1

    def get_summary(self) -> dict:
        """Returns a metrics snapshot."""
        with self._lock:
            total = self._total_requests
            avg_lat = (self._total_latency_ms / total) if total > 0 else 0.0
            min_lat = self._min_latency_ms if total > 0 else 0.0
            max_lat = self._max_latency_ms if total > 0 else 0.0
            errors = self._error_count
            attempts = self._total_attempts
            by_kind = dict(self._errors_by_kind)
            by_model = dict(self._requests_by_model)

        # Throughput.
        uptime_s = time.time() - self._start_time
        throughput_rps = (total / uptime_s) if uptime_s > 0 else 0.0

        # Memory usage.
        mem_info = self._process.memory_info()
        mem_rss_mb = mem_info.rss / (1024 * 1024)

        return {
            "latency": {
                "avg_ms": round(avg_lat, 2),
                "min_ms": round(min_lat, 2),
                "max_ms": round(max_lat, 2),
            },
            "throughput": {
                "total_requests": total,
                "requests_per_second": round(throughput_rps, 4),
                "uptime_seconds": round(uptime_s, 1),
            },
            "memory": {
                "rss_mb": round(mem_rss_mb, 1),
            },
            "ai": {
                "total_attempts": attempts,
                "avg_attempts": round((attempts / total) if total > 0 else 0.0, 2),
                "requests_by_model": by_model,
            },
            "errors": {
                "count": errors,
                "rate_percent": round((errors / total * 100) if total > 0 else 0.0, 2),
                "by_kind": by_kind,
            },
        }
