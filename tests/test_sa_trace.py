"""Unit tests for sa_trace.py — request-scoped tracing.

Tests cover: stage recording, upstream call attribution, summary
outcomes, and thread-local storage.
"""

import threading

from sa_trace import (
    TraceContext,
    UpstreamCallRecord,
    get_trace,
    set_trace,
    clear_trace,
)


class TestTraceContextInit:
    def test_defaults(self):
        ctx = TraceContext(trace_id="test-1")
        assert ctx.trace_id == "test-1"
        assert ctx.stages == []
        assert ctx.calls == []
        assert ctx.config_version == ""
        assert ctx.request_start > 0


class TestStages:
    def test_calls_attributed_to_current_stage(self):
        ctx = TraceContext(trace_id="t")
        ctx.start_stage("fetch_roads")
        ctx.record_call("overpass", "https://a/api", 120, 200)
        ctx.record_stage("fetch_roads", 0.0, 0.25)

        assert ctx.calls[0].stage == "fetch_roads"
        assert ctx.stages[0].upstream_calls == 1
        assert ctx.stages[0].elapsed_ms == 250
        assert ctx._current_stage == ""

    def test_call_outside_stage(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_call("traffic_counts", "lookup_authoritative", 10, 200)
        assert ctx.calls == [
            UpstreamCallRecord("traffic_counts", "lookup_authoritative", 10, 200, "ok", ""),
        ]


class TestSummary:
    def test_success(self):
        ctx = TraceContext(trace_id="t", config_version="1.0.0")
        ctx.record_call("overpass", "e", 10, 200)
        s = ctx.summary_dict()
        assert s["final_outcome"] == "success"
        assert s["upstream_calls"] == 1
        assert s["upstream_failures"] == 0
        assert s["config_version"] == "1.0.0"

    def test_degraded_on_upstream_failure(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_call("overpass", "e", 10, 0, "timeout")
        assert ctx.summary_dict()["final_outcome"] == "degraded"

    def test_error_on_failed_stage(self):
        ctx = TraceContext(trace_id="t")
        ctx.record_stage("resolve", 0.0, 0.1, "ValueError", "bad ring")
        s = ctx.summary_dict()
        assert s["final_outcome"] == "error"
        assert s["stages"][0]["error"] == "ValueError: bad ring"
        assert "config_version" not in s

    def test_log_summary_does_not_raise(self):
        TraceContext(trace_id="t").log_summary()


class TestThreadLocal:
    def test_set_get_clear(self):
        ctx = TraceContext(trace_id="t")
        set_trace(ctx)
        assert get_trace() is ctx
        clear_trace()
        assert get_trace() is None

    def test_isolated_between_threads(self):
        set_trace(TraceContext(trace_id="main"))
        seen = []
        worker = threading.Thread(target=lambda: seen.append(get_trace()))
        worker.start()
        worker.join()
        clear_trace()
        assert seen == [None]
