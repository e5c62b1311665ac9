"""
Removal of this host's emulator records from the device directory.
"""

import logging
from typing import Optional

from adb_butler.reconcile.actions import ActionExecutor
from adb_butler.reconcile.models import RecoveryAction

from .models import MaintenanceResult

logger = logging.getLogger(__name__)

TASK = "clean-emulators"


async def clean_emulators(executor: ActionExecutor, public_ip: Optional[str]) -> MaintenanceResult:
    """
    Delete the directory records of every emulator serial of this host.

    Emulators register as ``<public ip>:<port>`` for each configured emulator
    port. Without a public IP there is nothing to clean.

    Args:
        executor: Executor running the deletions (retries, timeouts, dry run)
        public_ip: Public IP the host's emulators are registered under

    Returns:
        Result with the total number of deleted records in its message
    """
    if not public_ip:
        logger.info("STF_PROVIDER_PUBLIC_IP is not configured; skipping emulator cleanup")
        return MaintenanceResult(task=TASK, message="IP is not selected", skipped=True)

    outcomes = []
    for serial in executor.classifier.ephemeral_serials(public_ip):
        action = RecoveryAction.delete_directory_record(serial)
        outcomes.append(await executor.execute(action))

    deleted = sum(int(o.detail.get("deleted", 0)) for o in outcomes)

    if executor.dry_run:
        serials = ", ".join(o.action.identity for o in outcomes)
        message = f"[DRY RUN] Would clean devices: {serials}"
    else:
        message = f"cleaned devices: {deleted}"

    return MaintenanceResult(task=TASK, message=message, outcomes=outcomes)
