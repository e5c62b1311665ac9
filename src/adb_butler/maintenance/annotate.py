"""
Annotation of this host's directory records.
"""

import logging
from typing import Optional

from adb_butler.reconcile.actions import ActionExecutor
from adb_butler.reconcile.models import RecoveryAction

from .models import MaintenanceResult

logger = logging.getLogger(__name__)

TASK = "annotate"


async def annotate_host_records(
    executor: ActionExecutor, note: Optional[str], hostname: Optional[str]
) -> MaintenanceResult:
    """
    Overwrite the note on every directory record owned by this host.

    Args:
        executor: Executor running the update (hostname scoping, retries)
        note: Note to set (STF_PROVIDER_NOTE)
        hostname: Provider name (HOSTNAME), for the report

    Returns:
        Result; skipped when no note is configured
    """
    if not note or not hostname:
        missing = "Note" if not note else "Hostname"
        logger.info(f"{missing} is not configured; skipping annotation")
        return MaintenanceResult(
            task=TASK, message=f"{missing} is not provided. Exiting", skipped=True
        )

    action = RecoveryAction.annotate_directory_record(None, note)
    outcome = await executor.execute(action)

    if executor.dry_run:
        message = f"[DRY RUN] Would add note {note} to all devices from {hostname}"
    elif outcome.ok:
        message = f"Note {note} added to all devices from {hostname}"
    else:
        message = f"Failed to add note to devices from {hostname}: {outcome.reason}"

    return MaintenanceResult(task=TASK, message=message, outcomes=[outcome])
