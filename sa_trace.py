"""
Request-scoped tracing for site-access resolution.

Provides a thread-local TraceContext that records:
  - Per-stage timing (fetch_roads, resolve, enrich)
  - Per-upstream-call outcomes (service, endpoint, elapsed_ms, status,
    provider status such as "timeout" or "all_mirrors_failed")
  - An end-of-request summary line

Usage:
    from sa_trace import TraceContext, get_trace, set_trace, clear_trace

    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

Upstream clients call get_trace() and record only when a context is set,
so the engine runs unchanged outside a request (tests, scripts).
Worker threads inherit nothing automatically: the enrichment fan-out
passes the parent context in and calls set_trace() in each thread.
"""

import threading
import time
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Data classes for trace records
# =============================================================================

@dataclass
class UpstreamCallRecord:
    """One outbound HTTP call (Overpass mirror, traffic-count service)."""
    service: str          # "overpass" | "traffic_counts"
    endpoint: str         # mirror URL or caller label
    elapsed_ms: int
    status_code: int      # 0 when no HTTP response was received
    provider_status: str = "ok"
    stage: str = ""


@dataclass
class StageRecord:
    """One resolution stage."""
    stage_name: str
    elapsed_ms: int = 0
    upstream_calls: int = 0
    error_class: str = ""
    error_message: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing data for a single access-point request."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    calls: List[UpstreamCallRecord] = field(default_factory=list)
    config_version: str = ""
    _current_stage: str = ""

    def start_stage(self, name: str):
        self._current_stage = name

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        error_class: str = "",
        error_message: str = "",
    ):
        in_stage = sum(1 for c in self.calls if c.stage == stage_name)
        rec = StageRecord(
            stage_name=stage_name,
            elapsed_ms=int((end_ts - start_ts) * 1000),
            upstream_calls=in_stage,
            error_class=error_class,
            error_message=error_message,
        )
        self.stages.append(rec)
        self._current_stage = ""

        err_info = f" err={error_class}: {error_message}" if error_class else ""
        logger.info(
            "  [stage] trace=%s %s %s %dms calls=%d%s",
            self.trace_id,
            stage_name,
            "ERR" if error_class else "OK",
            rec.elapsed_ms,
            in_stage,
            err_info,
        )

    def record_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "ok",
    ):
        rec = UpstreamCallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
            stage=self._current_stage,
        )
        # list.append is atomic under the GIL; enrichment threads share this.
        self.calls.append(rec)
        logger.info(
            "  [upstream] trace=%s stage=%s svc=%s ep=%s ms=%d http=%d status=%s",
            self.trace_id,
            self._current_stage or "-",
            service,
            endpoint,
            elapsed_ms,
            status_code,
            provider_status,
        )

    def summary_dict(self) -> Dict[str, Any]:
        """Compact summary for logging and debug responses."""
        failed = [c for c in self.calls if c.provider_status != "ok"]
        errored = [s for s in self.stages if s.error_class]
        if errored:
            outcome = "error"
        elif failed:
            outcome = "degraded"
        else:
            outcome = "success"

        result = {
            "trace_id": self.trace_id,
            "total_elapsed_ms": int((time.time() - self.request_start) * 1000),
            "upstream_calls": len(self.calls),
            "upstream_failures": len(failed),
            "stages": [
                {
                    "stage": s.stage_name,
                    "elapsed_ms": s.elapsed_ms,
                    "calls": s.upstream_calls,
                    "error": (
                        f"{s.error_class}: {s.error_message}"
                        if s.error_class else None
                    ),
                }
                for s in self.stages
            ],
            "final_outcome": outcome,
        }
        if self.config_version:
            result["config_version"] = self.config_version
        return result

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d calls=%d failures=%d outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["upstream_calls"],
            s["upstream_failures"],
            s["final_outcome"],
        )


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current request's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    """Set the trace context for the current thread."""
    _trace_local.ctx = ctx


def clear_trace():
    """Clear the current trace context."""
    _trace_local.ctx = None
