"""
Helpers for emitting reconciliation events.

Pushing events is best effort: a Loki outage is logged and never fails a pass.
"""

import logging
from collections import Counter
from typing import List, Optional

from adb_butler.maintenance.models import MaintenanceResult
from adb_butler.reconcile.models import OutcomeStatus, PassStatus, PassSummary

from .loki_client import LokiClient, LokiPushError
from .models import EventType, ReconcileEvent, Severity

logger = logging.getLogger(__name__)


def summary_events(summary: PassSummary, host: Optional[str] = None) -> List[ReconcileEvent]:
    """Translate a pass summary into one summary event plus one per changed or failed outcome."""
    if summary.failed or summary.status == PassStatus.CANCELLED:
        severity = Severity.ERROR
    elif summary.status == PassStatus.SKIPPED or summary.unavailable:
        severity = Severity.WARNING
    else:
        severity = Severity.INFO

    events = [
        ReconcileEvent(
            timestamp=summary.finished_at or summary.started_at,
            event_type=EventType.PASS_SUMMARY,
            severity=severity,
            host=host,
            pass_id=summary.pass_id,
            reason=summary.error,
            stats=summary.stats(),
        )
    ]

    for outcome in summary.outcomes:
        if outcome.status == OutcomeStatus.UNCHANGED:
            continue
        events.append(
            ReconcileEvent(
                timestamp=outcome.timestamp,
                event_type=EventType.ACTION_OUTCOME,
                severity=Severity.ERROR if outcome.status == OutcomeStatus.FAILED else Severity.INFO,
                host=host,
                pass_id=summary.pass_id,
                identity=outcome.action.identity,
                action_type=outcome.action.action_type.value,
                outcome=outcome.status.value,
                reason=outcome.reason,
                extra=outcome.detail or None,
            )
        )

    return events


def maintenance_event(result: MaintenanceResult, host: Optional[str] = None) -> ReconcileEvent:
    """One event per maintenance run, counting outcomes by status."""
    stats = dict(Counter(outcome.status.value for outcome in result.outcomes))
    return ReconcileEvent(
        event_type=EventType.MAINTENANCE,
        severity=Severity.INFO if result.ok else Severity.ERROR,
        host=host,
        action_type=result.task,
        reason=result.message,
        stats=stats or None,
        extra={"skipped": True} if result.skipped else None,
    )


class EventEmitter:
    """
    Emits reconciliation events to Loki.

    Usage:
        emitter = EventEmitter(loki_url="http://loki:3100", host="provider-01")
        await emitter.emit_pass_summary(summary)
    """

    def __init__(
        self,
        loki_client: Optional[LokiClient] = None,
        loki_url: Optional[str] = None,
        host: Optional[str] = None,
    ):
        """
        Initialize event emitter.

        Args:
            loki_client: Pre-configured LokiClient (optional)
            loki_url: Loki URL if client not provided
            host: Provider host name attached to every event
        """
        self.client = loki_client or LokiClient(loki_url=loki_url or "http://localhost:3100")
        self.host = host

    async def emit_many(self, events: List[ReconcileEvent]) -> bool:
        """
        Push events, logging instead of raising on failure.

        Returns:
            True if the events were accepted
        """
        try:
            await self.client.push_events(events)
        except LokiPushError as e:
            logger.error(f"Failed to emit events: {e}")
            return False
        logger.debug(f"Emitted {len(events)} events")
        return True

    async def emit_pass_summary(self, summary: PassSummary) -> bool:
        return await self.emit_many(summary_events(summary, host=self.host))

    async def emit_maintenance(self, result: MaintenanceResult) -> bool:
        return await self.emit_many([maintenance_event(result, host=self.host)])

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
