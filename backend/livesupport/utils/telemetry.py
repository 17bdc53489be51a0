"""
Telemetry and monitoring utilities.
"""
import logging
import time

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)

# Metrics definitions
request_count = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

intents_processed = Counter(
    'support_intents_total',
    'Inbound intents processed by the event router',
    ['intent', 'outcome']
)

intent_duration = Histogram(
    'support_intent_duration_seconds',
    'Intent handling time',
    ['intent']
)

chat_messages = Counter(
    'support_messages_total',
    'Messages appended to sessions',
    ['sender']
)

sessions_created = Counter(
    'support_sessions_created_total',
    'Sessions started by customers'
)

sessions_closed = Counter(
    'support_sessions_closed_total',
    'Sessions closed',
    ['from_status']
)

escalations = Counter(
    'support_escalations_total',
    'Sessions handed to the human queue',
    ['source', 'priority']
)

pickups = Counter(
    'support_pickups_total',
    'Agent pickup attempts',
    ['outcome']
)

dropped_events = Counter(
    'support_dropped_events_total',
    'Outbound events dropped because a connection outbox was full',
    ['event']
)

active_sessions = Gauge(
    'support_active_sessions',
    'Sessions that are not closed'
)

queue_length = Gauge(
    'support_queue_length',
    'Sessions waiting for a human agent'
)

available_agents = Gauge(
    'support_available_agents',
    'Agents available for pickup'
)

websocket_connections = Gauge(
    'websocket_connections_active',
    'Active WebSocket connections'
)


def setup_telemetry(app: FastAPI) -> None:
    """
    Setup telemetry and monitoring for the application.

    Must run before the application starts serving, since it registers
    middleware.

    Args:
        app: FastAPI application instance
    """
    logger.info("Setting up telemetry...")

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.middleware("http")
    async def track_requests(request, call_next):
        """Track HTTP request metrics."""
        start_time = time.time()

        response = await call_next(request)

        duration = time.time() - start_time

        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        request_count.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code
        ).inc()

        request_duration.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(duration)

        return response

    logger.info("Telemetry setup complete")


def track_intent(intent: str, outcome: str, duration: float) -> None:
    """Track a routed intent and how it ended ('ok' or an error code)."""
    intents_processed.labels(intent=intent, outcome=outcome).inc()
    intent_duration.labels(intent=intent).observe(duration)


def track_chat_message(sender: str) -> None:
    chat_messages.labels(sender=sender).inc()


def track_session_created() -> None:
    sessions_created.inc()


def track_session_closed(from_status: str) -> None:
    sessions_closed.labels(from_status=from_status).inc()


def track_escalation(source: str, priority: str = "normal") -> None:
    """Track escalation metrics."""
    escalations.labels(source=source, priority=priority).inc()


def track_pickup(outcome: str) -> None:
    pickups.labels(outcome=outcome).inc()


def track_dropped_event(event: str) -> None:
    dropped_events.labels(event=event).inc()


def update_coordinator_gauges(active: int, queued: int, agents: int) -> None:
    """Refresh the session, queue and agent gauges."""
    active_sessions.set(active)
    queue_length.set(queued)
    available_agents.set(agents)


def update_websocket_connections(count: int) -> None:
    """Update WebSocket connections gauge."""
    websocket_connections.set(count)


class MetricsCollector:
    """Collects and manages application metrics."""

    def __init__(self):
        self.start_time = time.time()
        self.intent_count = 0
        self.error_count = 0

    def record_intent(self, intent: str, outcome: str, duration: float):
        """Record a routed intent."""
        self.intent_count += 1
        if outcome != "ok":
            self.error_count += 1
        track_intent(intent, outcome, duration)

    def record_error(self):
        """Record an error outside intent handling (HTTP handlers)."""
        self.error_count += 1

    def get_stats(self) -> dict:
        """Get current statistics."""
        uptime = time.time() - self.start_time

        return {
            "uptime_seconds": uptime,
            "intents_processed": self.intent_count,
            "errors": self.error_count,
            "intents_per_minute": (self.intent_count / uptime) * 60 if uptime > 0 else 0
        }


# Global metrics collector
metrics_collector = MetricsCollector()
