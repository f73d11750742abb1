"""
Overpass API HTTP layer with mirror fallback.

All Overpass HTTP requests go through this module.  It provides:
- An ordered list of redundant mirror endpoints (OVERPASS_ENDPOINTS)
- One attempt per mirror, tried sequentially, each with its own timeout
- Response validation (HTTP status, JSON body, server remarks)
- sa_trace / health_monitor integration for observability

Mirrors are tried one after another rather than raced, and each is tried
only once: the public Overpass instances are a shared free service and we
keep our outbound request volume bounded.  There is no retry-with-backoff
and no response cache; a request either gets an answer from some mirror
or OverpassUnavailableError is raised for the caller to degrade on.
"""

import logging
import os
import time
from typing import Any, Dict, List, Optional

import requests

from sa_trace import get_trace

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINTS = (
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
)

# Per-attempt timeout bounds (seconds).
MIN_TIMEOUT = 8
MAX_TIMEOUT = 15


def _endpoints_from_env() -> List[str]:
    raw = os.environ.get("OVERPASS_ENDPOINTS", "")
    endpoints = [e.strip() for e in raw.split(",") if e.strip()]
    return endpoints or list(DEFAULT_ENDPOINTS)


def _timeout_from_env() -> int:
    try:
        value = int(os.environ.get("OVERPASS_TIMEOUT", "12"))
    except ValueError:
        value = 12
    return max(MIN_TIMEOUT, min(MAX_TIMEOUT, value))


class OverpassQueryError(Exception):
    """A single mirror attempt failed (HTTP error, timeout, bad body)."""

    def __init__(self, message: str, provider_status: str = "exception",
                 status_code: int = 0):
        super().__init__(message)
        self.provider_status = provider_status
        self.status_code = status_code


class OverpassUnavailableError(Exception):
    """Every configured mirror failed for this query."""

    pass


class OverpassHTTPClient:
    def __init__(
        self,
        endpoints: Optional[List[str]] = None,
        timeout: Optional[int] = None,
    ):
        self.endpoints = list(endpoints) if endpoints else _endpoints_from_env()
        self.timeout = timeout if timeout is not None else _timeout_from_env()

    def query(self, overpass_ql: str, caller: str = "unknown") -> Dict[str, Any]:
        """
        Execute an Overpass QL query against the first mirror that answers.

        Args:
            overpass_ql: The Overpass QL query string.
            caller: Identifier for log/trace attribution.

        Returns:
            Parsed JSON response dict (guaranteed to carry an "elements" list).

        Raises:
            OverpassUnavailableError: If every mirror failed or timed out.
        """
        failures = []
        for endpoint in self.endpoints:
            try:
                data = self._do_request(endpoint, overpass_ql, caller)
                if failures:
                    logger.info(
                        "Overpass answered from %s after %d failed mirror(s) [caller=%s]",
                        endpoint, len(failures), caller,
                    )
                return data
            except OverpassQueryError as e:
                failures.append(f"{endpoint}: {e}")
                logger.warning(
                    "Overpass mirror %s failed (%s) [caller=%s]",
                    endpoint, e, caller,
                )

        trace = get_trace()
        if trace:
            trace.record_call(
                service="overpass",
                endpoint=caller,
                elapsed_ms=0,
                status_code=0,
                provider_status="all_mirrors_failed",
            )
        raise OverpassUnavailableError(
            f"All {len(self.endpoints)} Overpass mirrors failed [caller={caller}]: "
            + "; ".join(failures)
        )

    def _do_request(
        self, endpoint: str, overpass_ql: str, caller: str
    ) -> Dict[str, Any]:
        """Make a single HTTP request to one mirror and validate the body."""
        start = time.monotonic()
        try:
            # Fresh session per request (thread-safe, no shared state)
            session = requests.Session()
            session.trust_env = False
            resp = session.post(
                endpoint,
                data={"data": overpass_ql},
                timeout=self.timeout,
            )
            status_code = resp.status_code

            if status_code == 429:
                raise OverpassQueryError(
                    "HTTP 429 Too Many Requests", "rate_limit", status_code
                )
            if status_code != 200:
                raise OverpassQueryError(
                    f"HTTP {status_code}", "http_error", status_code
                )

            try:
                data = resp.json()
            except ValueError:
                raise OverpassQueryError(
                    f"non-JSON response (HTTP {status_code})",
                    "parse_error", status_code,
                )

            if not isinstance(data, dict) or not isinstance(data.get("elements"), list):
                raise OverpassQueryError(
                    "response has no elements list", "parse_error", status_code
                )

            # Overpass reports server-side failures in osm3s.remark or a
            # top-level remark while still answering 200.
            osm3s = data.get("osm3s", {}) or {}
            remark = str(osm3s.get("remark") or data.get("remark") or "")
            remark_lower = remark.lower()
            if "too many requests" in remark_lower:
                raise OverpassQueryError(
                    "rate limit in response body", "rate_limit", status_code
                )
            if any(
                indicator in remark_lower
                for indicator in ("runtime error", "timed out", "out of memory")
            ):
                raise OverpassQueryError(
                    f"server error in response body: {remark[:100]}",
                    "body_error", status_code,
                )

            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record(endpoint, elapsed_ms, status_code, "ok")
            return data

        except OverpassQueryError as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record(endpoint, elapsed_ms, e.status_code, e.provider_status, str(e))
            raise
        except requests.exceptions.Timeout:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record(endpoint, elapsed_ms, 0, "timeout", "timeout")
            raise OverpassQueryError(
                f"timeout after {self.timeout}s", "timeout"
            )
        except requests.exceptions.RequestException as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record(endpoint, elapsed_ms, 0, "exception", str(e))
            raise OverpassQueryError(f"request failed: {e}") from e

    @staticmethod
    def _record(
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str,
        error: Optional[str] = None,
    ) -> None:
        trace = get_trace()
        if trace:
            trace.record_call(
                service="overpass",
                endpoint=endpoint,
                elapsed_ms=elapsed_ms,
                status_code=status_code,
                provider_status=provider_status,
            )
        try:
            from health_monitor import record_call
            record_call("overpass", provider_status == "ok", elapsed_ms, error)
        except Exception:
            logger.debug("health_monitor.record_call failed", exc_info=True)


def overpass_query(overpass_ql: str, caller: str = "unknown") -> Dict[str, Any]:
    """Module-level convenience function.

    Builds a client per call so OVERPASS_ENDPOINTS / OVERPASS_TIMEOUT
    changes are picked up without a restart.
    """
    return OverpassHTTPClient().query(overpass_ql, caller=caller)
