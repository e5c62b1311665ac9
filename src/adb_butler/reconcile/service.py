"""
Reconciliation service.

One pass reads the three inventories, diffs them, executes the resulting
recovery actions and reports a summary. Scheduling belongs to the external
trigger, which calls ``run_once()``.
"""

import asyncio
import logging
import signal
import sys
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from adb_butler.core.config import AppConfig, get_config
from adb_butler.core.errors import PartialInventoryFailure
from adb_butler.core.logsetup import setup_logging
from adb_butler.events.emitter import EventEmitter
from adb_butler.inventory.adb import AdbClient, AdbReader
from adb_butler.inventory.collector import InventoryCollector
from adb_butler.inventory.directory import DirectoryReader, RethinkDirectoryStore
from adb_butler.inventory.identity import IdentityClassifier
from adb_butler.inventory.usb import UsbBus, UsbReader

from .actions import ActionExecutor
from .differ import StateDiffer
from .lock import PassLock
from .models import Outcome, PassState, PassStatus, PassSummary, RecoveryAction
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class ReconcileService:
    """
    Runs single-flight reconciliation passes.

    The service:
    1. Collects the USB, ADB and directory inventories concurrently
    2. Diffs them into discrepancies and one action per discrepancy
    3. Executes actions, serialized per device and bounded in parallel
    4. Logs a summary and pushes it to Loki when configured
    """

    def __init__(
        self,
        collector: InventoryCollector,
        differ: StateDiffer,
        executor: ActionExecutor,
        emitter: Optional[EventEmitter] = None,
        max_parallel: int = 4,
        lock: Optional[PassLock] = None,
    ):
        """
        Initialize reconciliation service.

        Args:
            collector: Inventory collector
            differ: State differ
            executor: Action executor
            emitter: Event emitter for pass summaries (optional)
            max_parallel: Actions running concurrently against distinct devices
            lock: Single-flight lock (in-process only when not given)
        """
        self.collector = collector
        self.differ = differ
        self.executor = executor
        self.emitter = emitter
        self.max_parallel = max(1, max_parallel)
        self.lock = lock or PassLock()
        self.last_summary: Optional[PassSummary] = None
        self._stopping = asyncio.Event()

    def stop(self) -> None:
        """Stop issuing new actions; in-flight actions run to completion."""
        logger.info("Stopping reconciliation: no new actions will be started")
        self._stopping.set()

    async def run_once(self) -> PassSummary:
        """
        Run one reconciliation pass.

        Returns:
            Summary of the pass (status ``busy`` if another pass was running)

        Raises:
            asyncio.CancelledError: The pass was cancelled; the summary is
                still reported and kept in ``last_summary``
        """
        summary = PassSummary(pass_id=uuid.uuid4().hex[:12])

        if not self.lock.acquire():
            logger.warning("A reconciliation pass is already running; not starting another")
            summary.status = PassStatus.BUSY
            summary.finished_at = datetime.utcnow()
            return summary

        self._stopping = asyncio.Event()
        self.last_summary = summary
        try:
            await self._run_pass(summary)
        except asyncio.CancelledError:
            summary.status = PassStatus.CANCELLED
            summary.error = "pass cancelled"
            self._finish(summary)
            raise
        finally:
            self.lock.release()

        await self._emit(summary)
        return summary

    async def _run_pass(self, summary: PassSummary) -> None:
        summary.states.append(PassState.COLLECT_INVENTORY)
        logger.info(f"Pass {summary.pass_id}: collecting inventory")

        try:
            inventory = await self.collector.collect()
        except PartialInventoryFailure as e:
            logger.error(f"Pass {summary.pass_id} skipped: {e}")
            summary.status = PassStatus.SKIPPED
            summary.unavailable = dict(e.failures)
            summary.error = str(e)
            self._finish(summary)
            return

        summary.unavailable = {a.value: reason for a, reason in inventory.unavailable.items()}
        if inventory.degraded:
            logger.warning(
                f"Pass {summary.pass_id} running degraded without: "
                f"{', '.join(sorted(summary.unavailable))}"
            )

        summary.states.append(PassState.DIFF)
        summary.discrepancies = self.differ.diff(inventory.snapshots)
        actions = self.differ.plan_actions(summary.discrepancies)

        summary.states.append(PassState.EXECUTE_ACTIONS)
        summary.outcomes, summary.skipped_actions = await self.execute_actions(actions, summary)

        self._finish(summary)

    async def execute_actions(
        self, actions: List[RecoveryAction], summary: Optional[PassSummary] = None
    ) -> Tuple[List[Outcome], int]:
        """
        Execute actions, one chain per device identity.

        Actions for the same identity run in order; chains for distinct
        identities run concurrently up to ``max_parallel``. On cancellation no
        new action starts, in-flight actions finish, and the cancellation is
        re-raised.

        Returns:
            (outcomes, number of actions never started)
        """
        if not actions:
            return [], 0

        chains: Dict[Optional[str], List[RecoveryAction]] = OrderedDict()
        for action in actions:
            chains.setdefault(action.identity, []).append(action)

        semaphore = asyncio.Semaphore(self.max_parallel)
        outcomes: List[Outcome] = []

        async def run_chain(chain: List[RecoveryAction]) -> None:
            async with semaphore:
                for action in chain:
                    if self._stopping.is_set():
                        return
                    outcomes.append(await self._execute(action))

        tasks = [asyncio.create_task(run_chain(chain)) for chain in chains.values()]
        try:
            await asyncio.shield(asyncio.gather(*tasks))
        except asyncio.CancelledError:
            self._stopping.set()
            logger.warning("Pass cancelled; waiting for in-flight actions to finish")
            await asyncio.wait(tasks)
            if summary is not None:
                summary.outcomes = list(outcomes)
                summary.skipped_actions = len(actions) - len(outcomes)
            raise

        return outcomes, len(actions) - len(outcomes)

    async def _execute(self, action: RecoveryAction) -> Outcome:
        try:
            return await self.executor.execute(action)
        except Exception as e:
            logger.error(f"Unexpected error executing {action.describe()}: {e}", exc_info=True)
            return Outcome.failed(action, f"unexpected error: {e}")

    def _finish(self, summary: PassSummary) -> None:
        summary.states.append(PassState.REPORT_SUMMARY)
        summary.finished_at = datetime.utcnow()

        stats = summary.stats()
        message = (
            f"Pass {summary.pass_id} {stats['status']}: "
            f"{stats['discrepancies']} discrepancies, {stats['recovered']} recovered, "
            f"{stats['unchanged']} unchanged, {stats['failed']} failed"
        )
        if summary.skipped_actions:
            message += f", {summary.skipped_actions} not started"
        if summary.unavailable:
            message += f" (unavailable: {', '.join(sorted(summary.unavailable))})"

        if summary.status == PassStatus.COMPLETED and not summary.failed:
            logger.info(message)
        else:
            logger.warning(message)

    async def _emit(self, summary: PassSummary) -> None:
        if self.emitter is not None:
            await self.emitter.emit_pass_summary(summary)


def build_executor(config: AppConfig, dry_run: Optional[bool] = None) -> ActionExecutor:
    """Create an action executor wired to the configured ADB, USB and directory."""
    classifier = IdentityClassifier(
        emulator_ports=config.provider.emulator_ports,
        pattern=config.provider.ephemeral_serial_pattern,
    )
    return ActionExecutor(
        adb=AdbClient(
            adb_path=config.adb.path,
            server_host=config.adb.server_host,
            server_port=config.adb.server_port,
            timeout=config.adb.command_timeout,
        ),
        store=RethinkDirectoryStore(
            host=config.directory.url,
            port=config.directory.port,
            db=config.directory.db,
            table=config.directory.table,
            auth_key=config.directory.env_authkey,
            timeout=config.directory.timeout,
        ),
        usb_bus=UsbBus(config.usb.sysfs_root) if config.usb.enabled else None,
        classifier=classifier,
        hostname=config.provider.hostname,
        retry_policy=RetryPolicy.from_config(config.reconcile),
        action_timeout=config.reconcile.action_timeout,
        usb_timeout=config.usb.timeout,
        settle_seconds=config.adb.settle_seconds,
        dry_run=config.reconcile.dry_run if dry_run is None else dry_run,
    )


def build_service(config: AppConfig, dry_run: Optional[bool] = None) -> ReconcileService:
    """Create a reconciliation service from configuration."""
    executor = build_executor(config, dry_run=dry_run)

    readers = [
        AdbReader(executor.adb),
        DirectoryReader(
            executor.store,
            executor.classifier,
            hostname=config.provider.hostname,
            public_ip=config.provider.public_ip,
        ),
    ]
    if executor.usb_bus is not None:
        readers.insert(0, UsbReader(executor.usb_bus, timeout=config.usb.timeout))

    emitter = None
    if config.loki_url:
        emitter = EventEmitter(loki_url=config.loki_url, host=config.provider.hostname)

    return ReconcileService(
        collector=InventoryCollector(readers, timeout=config.reconcile.inventory_timeout),
        differ=StateDiffer(executor.classifier),
        executor=executor,
        emitter=emitter,
        max_parallel=config.reconcile.max_parallel_actions,
        lock=PassLock(config.reconcile.lock_file),
    )


async def run_pass(service: ReconcileService) -> PassSummary:
    """
    Run one pass, turning SIGTERM and SIGINT into a graceful cancellation.

    Returns:
        The pass summary (status ``cancelled`` if a signal arrived)
    """
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    signals = (signal.SIGTERM, signal.SIGINT)
    for sig in signals:
        loop.add_signal_handler(sig, task.cancel)

    try:
        return await service.run_once()
    except asyncio.CancelledError:
        logger.warning("Reconciliation pass interrupted")
        return service.last_summary
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        if service.emitter is not None:
            await service.emitter.close()


def main() -> None:
    """
    Main entry point: run a single reconciliation pass.
    """
    config = get_config()
    setup_logging(config.log_level)

    logger.info("=" * 60)
    logger.info("adb-butler - Reconciliation Pass")
    logger.info("=" * 60)
    logger.info(f"Directory: {config.directory.url}:{config.directory.port}/{config.directory.db}")
    logger.info(f"Provider: {config.provider.hostname or 'not set'}")
    logger.info(f"Public IP: {config.provider.public_ip or 'not set'}")
    logger.info(f"USB: {'enabled' if config.usb.enabled else 'disabled'}")
    logger.info(f"Dry Run Mode: {config.reconcile.dry_run}")
    logger.info("=" * 60)

    service = build_service(config)

    try:
        summary = asyncio.run(run_pass(service))
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    if summary.status in (PassStatus.SKIPPED, PassStatus.CANCELLED):
        sys.exit(1)


if __name__ == "__main__":
    main()
