"""
Utility modules for the application.
Provides telemetry and HTTP middleware.

Version: 1.0.0
"""
from .middleware import RequestIDMiddleware, TimingMiddleware
from .telemetry import MetricsCollector, metrics_collector, setup_telemetry

__all__ = [
    'RequestIDMiddleware',
    'TimingMiddleware',
    'MetricsCollector',
    'metrics_collector',
    'setup_telemetry',
]
