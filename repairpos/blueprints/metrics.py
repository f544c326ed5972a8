"""
Prometheus metrics for the POS.

HTTP request metrics are collected by hooks installed on the app; business
counters (sales confirmed/failed, stock movements) are recorded by the
services through the ``record_*`` helpers. /metrics is unauthenticated and
must only be reachable from the monitoring network.
"""
import logging
import os
import time

from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY

logger = logging.getLogger(__name__)

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share metrics through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _register_to = None
else:
    registry = REGISTRY
    _register_to = REGISTRY

LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

http_requests_total = Counter(
    'http_requests_total', 'Total HTTP requests',
    ['method', 'endpoint', 'http_status'], registry=_register_to
)
http_request_duration_seconds = Histogram(
    'http_request_duration_seconds', 'HTTP request latency in seconds',
    ['method', 'endpoint'], registry=_register_to, buckets=LATENCY_BUCKETS
)
http_requests_in_flight = Gauge(
    'http_requests_in_flight', 'HTTP requests being processed', registry=_register_to
)

pos_sales_confirmed_total = Counter(
    'pos_sales_confirmed_total', 'Sales finalized successfully',
    ['payment_method'], registry=_register_to
)
pos_sales_failed_total = Counter(
    'pos_sales_failed_total', 'Sale finalizations that ended in the failed state',
    ['error_kind'], registry=_register_to
)
stock_movements_total = Counter(
    'stock_movements_total', 'Stock movements applied',
    ['movement_type'], registry=_register_to
)


def _inc(counter, **labels) -> None:
    try:
        counter.labels(**labels).inc()
    except ValueError as e:
        logger.debug(f"[METRICS] {counter} not recorded: {e}")


def record_sale_confirmed(payment_method: str) -> None:
    _inc(pos_sales_confirmed_total, payment_method=payment_method or 'unknown')


def record_sale_failed(error_kind: str) -> None:
    _inc(pos_sales_failed_total, error_kind=error_kind or 'internal')


def record_stock_movement(movement_type: str) -> None:
    _inc(stock_movements_total, movement_type=movement_type)


def setup_metrics_instrumentation(app):
    """Install request hooks that time every request except /metrics."""

    @app.before_request
    def start_request_timer():
        if request.endpoint == 'metrics.metrics':
            return
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def observe_request(response):
        started = g.pop('_metrics_started', None)
        if started is None:
            return response
        endpoint = request.endpoint or 'unknown'
        http_request_duration_seconds.labels(method=request.method, endpoint=endpoint).observe(
            time.perf_counter() - started
        )
        http_requests_total.labels(
            method=request.method, endpoint=endpoint, http_status=response.status_code
        ).inc()
        http_requests_in_flight.dec()
        return response

    @app.teardown_request
    def release_in_flight(error=None):
        # after_request is skipped when the view raised past the error handlers
        if g.pop('_metrics_started', None) is not None:
            http_requests_in_flight.dec()


@metrics_bp.route('/metrics')
def metrics():
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
