"""
Prometheus metrics blueprint.

Exposes /metrics with HTTP request metrics and workflow event counters.
This endpoint should be restricted to internal network or monitoring systems only.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Check if running in multi-process mode (Gunicorn)
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

# HTTP Request Metrics
http_requests_total = Counter(
    'erp_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=registry if not MULTIPROCESS_MODE else None
)

http_request_duration_seconds = Histogram(
    'erp_http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=registry if not MULTIPROCESS_MODE else None,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

# Workflow Metrics (incremented by the notification sink)
workflow_events_total = Counter(
    'erp_workflow_events_total',
    'Workflow events published (order/remito/delivery note)',
    ['event'],
    registry=registry if not MULTIPROCESS_MODE else None
)

workflow_errors_total = Counter(
    'erp_workflow_errors_total',
    'Business errors returned by the API, by kind',
    ['kind'],
    registry=registry if not MULTIPROCESS_MODE else None
)


def setup_metrics_instrumentation(app):
    """Register before/after request hooks that time every request."""

    @app.before_request
    def before_request_metrics():
        g._prometheus_metrics_start_time = time.time()

    @app.after_request
    def after_request_metrics(response):
        try:
            start = g.get('_prometheus_metrics_start_time')
            if start is not None:
                endpoint = request.endpoint or 'unknown'
                http_request_duration_seconds.labels(
                    method=request.method,
                    endpoint=endpoint
                ).observe(time.time() - start)
                http_requests_total.labels(
                    method=request.method,
                    endpoint=endpoint,
                    http_status=response.status_code
                ).inc()
        except Exception as e:
            # Don't break request flow if metrics fail
            app.logger.warning(f"Failed to record metrics: {e}")

        return response


@metrics_bp.route('/metrics')
def metrics():
    """
    Prometheus metrics endpoint.

    Not authenticated: restrict it by network rules in production.
    """
    data = generate_latest(registry)
    return Response(data, mimetype=CONTENT_TYPE_LATEST)
