"""
Passive health tracking for upstream data providers.

Records the outcome of every real outbound call (Overpass mirrors, the
traffic-count service) in a rolling window per service and derives a
healthy / degraded / down status from the success rate.  Surfaced on
GET /healthz.

Nothing here influences resolution results: the gateways already degrade
on their own.  This is purely so operators can see that, say, every
Overpass mirror has been timing out for the last hour.

Module-level singleton: all callers in this process share one HealthMonitor.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Rolling window size for passive call tracking per service.
_WINDOW_SIZE = 50

# Success-rate thresholds.
_HEALTHY_THRESHOLD = 0.95
_DEGRADED_THRESHOLD = 0.70

MONITORED_SERVICES = ("overpass", "traffic_counts")


@dataclass
class HealthCheckResult:
    """Health status for a single upstream service."""
    service: str
    status: str          # "healthy" | "degraded" | "down" | "unknown"
    latency_ms: int
    last_checked: str    # ISO-8601 timestamp
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _CallRecord:
    timestamp: float
    success: bool
    latency_ms: int
    error: Optional[str] = None


class HealthMonitor:
    """Thread-safe rolling-window tracker of upstream call outcomes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._windows: Dict[str, deque] = {
            svc: deque(maxlen=_WINDOW_SIZE) for svc in MONITORED_SERVICES
        }
        self._prev_status: Dict[str, str] = {}

    def record_call(
        self,
        service: str,
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> None:
        """Record the outcome of one upstream call."""
        record = _CallRecord(
            timestamp=time.time(),
            success=success,
            latency_ms=latency_ms,
            error=error,
        )
        with self._lock:
            if service not in self._windows:
                self._windows[service] = deque(maxlen=_WINDOW_SIZE)
            self._windows[service].append(record)

    def compute_status(self, service: str) -> HealthCheckResult:
        """Derive health status from the rolling window of real calls."""
        with self._lock:
            window = list(self._windows.get(service, []))

        if not window:
            return HealthCheckResult(
                service=service,
                status="unknown",
                latency_ms=0,
                last_checked=datetime.now(timezone.utc).isoformat(),
                details={"sample_size": 0},
            )

        total = len(window)
        rate = sum(1 for r in window if r.success) / total
        avg_latency = int(sum(r.latency_ms for r in window) / total)
        last_ts = max(r.timestamp for r in window)
        last_error = next(
            (r.error for r in reversed(window) if not r.success and r.error),
            None,
        )

        if rate >= _HEALTHY_THRESHOLD:
            status = "healthy"
        elif rate >= _DEGRADED_THRESHOLD:
            status = "degraded"
        else:
            status = "down"

        with self._lock:
            prev = self._prev_status.get(service)
            self._prev_status[service] = status
        if prev and prev != status:
            logger.warning(
                "[health] %s status changed: %s -> %s (error=%s)",
                service, prev, status, last_error,
            )

        return HealthCheckResult(
            service=service,
            status=status,
            latency_ms=avg_latency,
            last_checked=datetime.fromtimestamp(last_ts, tz=timezone.utc).isoformat(),
            error=last_error,
            details={"success_rate": round(rate, 3), "sample_size": total},
        )

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        """Current status for every service seen so far."""
        with self._lock:
            services = list(self._windows)
        return {svc: self._result_to_dict(self.compute_status(svc)) for svc in services}

    @staticmethod
    def _result_to_dict(result: HealthCheckResult) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "status": result.status,
            "latency_ms": result.latency_ms,
            "last_checked": result.last_checked,
        }
        if result.error:
            d["error"] = result.error
        d.update(result.details)
        return d


_monitor = HealthMonitor()


def record_call(
    service: str,
    success: bool,
    latency_ms: int,
    error: Optional[str] = None,
) -> None:
    """Record an upstream call outcome.

    Called from the gateways.  Failures in health tracking never propagate;
    callers wrap this in try/except.
    """
    _monitor.record_call(service, success, latency_ms, error)


def get_status() -> Dict[str, Dict[str, Any]]:
    """Current health status for all monitored upstream services."""
    return _monitor.get_all_status()
