"""Observability setup: logging, tracing, metrics, and error tracking."""

import logging
import re
import time
import uuid
from contextvars import ContextVar

import sentry_sdk
import structlog
from fastapi import FastAPI, Request, Response
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import Counter, Gauge, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from app.core.config import get_settings

settings = get_settings()

# Context variable for request ID (accessible throughout the request lifecycle)
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

_PRODUCT_PATH = re.compile(r"^/analytics/products/\d+")
_QUIET_PATHS = frozenset({"/health", "/metrics"})

# Prometheus metrics - HTTP requests
REQUEST_COUNT = Counter(
    "analytics_http_requests_total",
    "Total HTTP requests to analytics service",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "analytics_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Prometheus metrics - Click ingestion
CLICKS_INGESTED = Counter(
    "analytics_clicks_ingested_total",
    "Click events accepted, by where they landed",
    ["outcome"],  # stored, queued
)

CLICKS_REJECTED = Counter(
    "analytics_clicks_rejected_total",
    "Click events rejected by validation",
)

ENGAGEMENT_EVENTS_TRACKED = Counter(
    "analytics_engagement_events_total",
    "Page views and searches accepted, by where they landed",
    ["kind", "outcome"],  # kind: page_view, search_query; outcome: stored, queued
)

CLICK_WRITE_LATENCY = Histogram(
    "analytics_click_write_duration_seconds",
    "Time to write a click event to the event store",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0],
)

# Prometheus metrics - Retry queue
RETRY_ITEMS_ENQUEUED = Counter(
    "analytics_retry_items_enqueued_total",
    "Events queued for retry after a failed write",
    ["event_type"],
)

RETRY_ITEMS_REPLAYED = Counter(
    "analytics_retry_items_replayed_total",
    "Queued events replayed successfully",
    ["event_type"],
)

RETRY_ITEMS_FAILED = Counter(
    "analytics_retry_items_failed_total",
    "Replay attempts that failed",
    ["event_type"],
)

RETRY_ITEMS_PURGED = Counter(
    "analytics_retry_items_purged_total",
    "Queue rows deleted by compaction",
    ["state"],  # processed, dead
)

RETRY_RUN_DURATION = Histogram(
    "analytics_retry_run_duration_seconds",
    "Time to complete a retry queue pass",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Prometheus metrics - Aggregation
AGGREGATION_RUNS = Counter(
    "analytics_aggregation_runs_total",
    "Total aggregation job runs",
    ["type"],  # hourly, daily
)

AGGREGATION_DURATION = Histogram(
    "analytics_aggregation_duration_seconds",
    "Time to complete aggregation job",
    ["type"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

PRODUCTS_AGGREGATED = Counter(
    "analytics_products_aggregated_total",
    "Total product stat rows upserted",
    ["type"],
)

# Prometheus metrics - Scheduler
SCHEDULER_JOB_RUNS = Counter(
    "analytics_scheduler_job_runs_total",
    "Scheduled job executions",
    ["job", "outcome"],  # outcome: success, failure
)

SCHEDULER_RUNNING = Gauge(
    "analytics_scheduler_running",
    "Whether the job scheduler is running (1) or stopped (0)",
)


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add a unique request ID to each request.

    The request ID is:
    - Generated if not provided in X-Request-ID header
    - Stored in context variable for access throughout the request
    - Added to response headers
    - Bound to structlog context for all log messages
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        # Get or generate request ID
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        # Store in context variable
        token = request_id_ctx.set(request_id)

        # Bind to structlog context
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_ctx.reset(token)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with its duration and records HTTP metrics.

    Probe and scrape endpoints are only counted, not logged.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        logger = structlog.get_logger()
        path = request.url.path
        quiet = path in _QUIET_PATHS
        start_time = time.perf_counter()

        if not quiet:
            logger.debug(
                "Request started",
                client_ip=request.client.host if request.client else None,
            )

        response = await call_next(request)
        duration = time.perf_counter() - start_time

        if not quiet:
            log = logger.warning if response.status_code >= 500 else logger.info
            log(
                "Request completed",
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )

        # Product ids in the path would explode label cardinality
        endpoint = _PRODUCT_PATH.sub("/analytics/products/{product_id}", path)

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(method=request.method, endpoint=endpoint).observe(duration)

        return response


def configure_structlog() -> None:
    """JSON logs in production, console output when debugging."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.debug
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG if settings.debug else logging.INFO,
    )


def setup_opentelemetry(app: FastAPI) -> None:
    """Set up OpenTelemetry tracing."""
    if not settings.otlp_endpoint:
        structlog.get_logger().info("OpenTelemetry disabled (no OTLP endpoint configured)")
        return

    resource = Resource(attributes={
        SERVICE_NAME: "affiliate-analytics",
    })
    provider = TracerProvider(resource=resource)

    otlp_exporter = OTLPSpanExporter(
        endpoint=settings.otlp_endpoint,
        insecure=True,  # Set to False in production with TLS
    )
    provider.add_span_processor(BatchSpanProcessor(otlp_exporter))

    trace.set_tracer_provider(provider)

    FastAPIInstrumentor.instrument_app(app)

    structlog.get_logger().info(
        "OpenTelemetry configured",
        otlp_endpoint=settings.otlp_endpoint,
    )


def setup_sentry() -> None:
    """Set up Sentry for error tracking."""
    if not settings.sentry_dsn:
        structlog.get_logger().info("Sentry disabled (no DSN configured)")
        return

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
        traces_sample_rate=0.1,  # Sample 10% of transactions
        profiles_sample_rate=0.1,  # Sample 10% of profiles
        integrations=[
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        # Don't send PII
        send_default_pii=False,
    )

    structlog.get_logger().info("Sentry configured")


def get_prometheus_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def setup_observability(app: FastAPI) -> None:
    """Set up all observability components.

    Call this function during app initialization to configure:
    - Structured logging with request context
    - OpenTelemetry tracing
    - Sentry error tracking
    - Prometheus metrics endpoint
    """
    # Configure structlog first
    configure_structlog()

    # Set up external integrations
    setup_sentry()
    setup_opentelemetry(app)

    # Add metrics endpoint
    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        return Response(
            content=get_prometheus_metrics(),
            media_type="text/plain; charset=utf-8",
        )

    structlog.get_logger().info("Observability setup complete")


# Helper functions to record custom metrics
def record_click_ingested(outcome: str, write_duration: float | None = None) -> None:
    """Record where an accepted click landed ("stored" or "queued")."""
    CLICKS_INGESTED.labels(outcome=outcome).inc()
    if write_duration is not None:
        CLICK_WRITE_LATENCY.observe(write_duration)


def record_click_rejected() -> None:
    """Record a click rejected by validation."""
    CLICKS_REJECTED.inc()


def record_engagement_event(kind: str, outcome: str) -> None:
    ENGAGEMENT_EVENTS_TRACKED.labels(kind=kind, outcome=outcome).inc()


def record_retry_enqueued(event_type: str) -> None:
    RETRY_ITEMS_ENQUEUED.labels(event_type=event_type).inc()


def record_retry_replayed(event_type: str) -> None:
    RETRY_ITEMS_REPLAYED.labels(event_type=event_type).inc()


def record_retry_failed(event_type: str) -> None:
    RETRY_ITEMS_FAILED.labels(event_type=event_type).inc()


def record_retry_purged(state: str, count: int) -> None:
    """Record queue rows removed by compaction or dead-item retention."""
    if count:
        RETRY_ITEMS_PURGED.labels(state=state).inc(count)


def record_retry_run(duration: float) -> None:
    RETRY_RUN_DURATION.observe(duration)


def record_aggregation(agg_type: str, duration: float, products_count: int) -> None:
    """Record an aggregation job run."""
    AGGREGATION_RUNS.labels(type=agg_type).inc()
    AGGREGATION_DURATION.labels(type=agg_type).observe(duration)
    PRODUCTS_AGGREGATED.labels(type=agg_type).inc(products_count)


def record_job_run(job: str, succeeded: bool) -> None:
    """Record a scheduled job execution."""
    SCHEDULER_JOB_RUNS.labels(job=job, outcome="success" if succeeded else "failure").inc()


def set_scheduler_running(running: bool) -> None:
    """Set the scheduler running state."""
    SCHEDULER_RUNNING.set(1 if running else 0)
