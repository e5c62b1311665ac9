"""
Events package: reconciliation event model and Loki integration.
"""

from .emitter import EventEmitter, maintenance_event, summary_events
from .loki_client import LokiClient, LokiPushError
from .models import EventType, ReconcileEvent, Severity

__all__ = [
    "ReconcileEvent",
    "EventType",
    "Severity",
    "LokiClient",
    "LokiPushError",
    "EventEmitter",
    "summary_events",
    "maintenance_event",
]
