"""
Reconciliation event model pushed to Loki.

Each pass produces one summary event and one event per executed action, so
recovery history can be queried next to the provider's other logs.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of reconciliation events."""

    PASS_SUMMARY = "pass_summary"
    ACTION_OUTCOME = "action_outcome"
    MAINTENANCE = "maintenance"


class Severity(str, Enum):
    """Event severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ReconcileEvent(BaseModel):
    """
    One reconciliation event.

    All fields except timestamp, event_type and severity are optional; use
    None for missing values rather than empty strings.
    """

    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event happened"
    )
    event_type: EventType = Field(
        description="Type of event (pass_summary, action_outcome, maintenance)"
    )
    severity: Severity = Field(
        default=Severity.INFO,
        description="Event severity (info, warning, error)"
    )

    host: Optional[str] = Field(None, description="Provider host name")
    pass_id: Optional[str] = Field(None, description="Pass that produced the event")
    identity: Optional[str] = Field(None, description="Device identity acted on")
    action_type: Optional[str] = Field(None, description="Recovery action type")
    outcome: Optional[str] = Field(None, description="recovered, unchanged or failed")
    reason: Optional[str] = Field(None, description="Human-readable outcome reason")
    stats: Optional[Dict[str, Any]] = Field(None, description="Pass counters")
    extra: Optional[Dict[str, Any]] = Field(None, description="Event-specific data")

    class Config:
        json_schema_extra = {
            "example": {
                "timestamp": "2025-01-15T12:00:00Z",
                "event_type": "action_outcome",
                "severity": "info",
                "host": "provider-01",
                "pass_id": "3f2a9c",
                "identity": "1-2.3",
                "action_type": "RestartADBConnection",
                "outcome": "recovered",
                "reason": "reconnected",
            }
        }

    def to_loki_labels(self) -> Dict[str, str]:
        """
        Generate Loki labels from this event.

        Only low-cardinality fields become labels; identities stay in the
        log line.

        Returns:
            Dict of label key-value pairs for Loki
        """
        labels = {
            "service": "adb-butler",
            "event_type": self.event_type.value,
            "severity": self.severity.value,
        }
        if self.host:
            labels["host"] = self.host
        if self.outcome:
            labels["outcome"] = self.outcome
        return labels

    def to_loki_log_line(self) -> str:
        """The full event as JSON."""
        return self.model_dump_json(exclude_none=True)
