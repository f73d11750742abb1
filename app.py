import os
import logging
import uuid
from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv
from sa_trace import TraceContext, set_trace, clear_trace
from site_access import (
    InvalidSiteRequestError, analyze_site_access, validate_request,
)
from enrichment import serialize_access_point_set
from health_monitor import get_status

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions

    def _sentry_before_send(event, hint):
        """Demote expected failures to breadcrumbs; only unexpected errors become Sentry events."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            msg = str(exc_value) if exc_value else ""
            if exc_type is not None and issubclass(exc_type, InvalidSiteRequestError):
                sentry_sdk.add_breadcrumb(
                    category="validation",
                    message=msg,
                    level="info",
                )
                return None
            # Upstream timeouts are already absorbed by the gateways
            if exc_type is not None and issubclass(exc_type, requests.exceptions.RequestException):
                sentry_sdk.add_breadcrumb(
                    category="upstream",
                    message=msg,
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("SENTRY_RELEASE"),
        environment=os.environ.get("SENTRY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

app = Flask(__name__)
app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'siteaccess-dev-key')

# Proxy fix: behind a reverse proxy, rewrite request.remote_addr to the
# real client IP so Flask-Limiter and logging see the correct address.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting: each analysis costs one Overpass query plus one traffic
# lookup per access point against public services.
# In-memory storage is per-process.
# ---------------------------------------------------------------------------
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "60/minute")
RATE_LIMIT_ANALYZE = os.environ.get("RATE_LIMIT_ANALYZE", "20/minute")

limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[RATE_LIMIT_DEFAULT],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

if not os.environ.get("TRAFFIC_COUNTS_URL"):
    logger.warning(
        "TRAFFIC_COUNTS_URL is not set. "
        "All access points will use classification-based VPD estimates."
    )


def _generate_request_id():
    return uuid.uuid4().hex[:10]


@app.before_request
def _set_request_context():
    """Give every request a short ID for log and trace correlation."""
    g.request_id = _generate_request_id()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@app.route("/api/access-points", methods=["POST"])
@limiter.limit(RATE_LIMIT_ANALYZE)
def access_points():
    """Resolve and enrich the access points of a parcel.

    Accepts JSON:
        {"parcelBoundary": [[lat, lng], ...],
         "coordinates": {"lat": 28.5, "lng": -81.4}}
    """
    request_id = getattr(g, "request_id", "unknown")
    body = request.get_json(silent=True)
    if body is None:
        body = {}
    if not isinstance(body, dict):
        logger.info("[%s] rejected access-point request: body is not an object", request_id)
        return jsonify({"error": "Invalid request body", "request_id": request_id}), 400

    try:
        vertices, (lat, lng) = validate_request(
            body.get("parcelBoundary"), body.get("coordinates"),
        )
    except InvalidSiteRequestError as e:
        logger.info("[%s] rejected access-point request: %s", request_id, e)
        return jsonify({"error": str(e), "request_id": request_id}), 400

    trace_ctx = TraceContext(trace_id=request_id)
    set_trace(trace_ctx)
    try:
        result = analyze_site_access(vertices, lat, lng)
        payload = serialize_access_point_set(result)
        trace_ctx.log_summary()
        if app.debug and request.args.get("debug") == "1":
            payload["_trace"] = trace_ctx.summary_dict()
        return jsonify(payload)
    except Exception:
        trace_ctx.log_summary()
        logger.exception("[%s] access-point analysis failed", request_id)
        return jsonify({
            "error": "Failed to calculate access points",
            "request_id": request_id,
        }), 500
    finally:
        clear_trace()


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint with upstream status."""
    upstream = get_status()
    degraded = any(s.get("status") == "down" for s in upstream.values())
    return jsonify({
        "status": "degraded" if degraded else "ok",
        "traffic_counts_configured": bool(os.environ.get("TRAFFIC_COUNTS_URL")),
        "upstream": upstream,
    })


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.errorhandler(400)
def bad_request(e):
    return jsonify({
        "error": "Bad request",
        "request_id": getattr(g, "request_id", "unknown"),
    }), 400


@app.errorhandler(429)
def rate_limit_exceeded(e):
    return jsonify({
        "error": "Too many requests. Please wait and try again.",
    }), 429


@app.errorhandler(404)
def not_found(e):
    return jsonify({"error": "Not found"}), 404


@app.errorhandler(405)
def method_not_allowed(e):
    return jsonify({"error": "Method not allowed"}), 405


@app.errorhandler(500)
def internal_error(e):
    return jsonify({
        "error": "Internal server error",
        "request_id": getattr(g, "request_id", "unknown"),
    }), 500


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5001))
    debug = os.environ.get("FLASK_DEBUG", "0") == "1"
    app.run(host="0.0.0.0", port=port, debug=debug)
