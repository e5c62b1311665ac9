"""
Recovery action executors.

This module applies the corrective action for one discrepancy against the
USB bus, the ADB server or the device directory. Every action is idempotent:
running it against an already-recovered device reports ``unchanged``.
All actions respect dry_run mode.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from adb_butler.core.errors import (
    ActionFailed,
    ButlerError,
    CallTimeout,
    ConfigurationMissing,
    DeviceNotFound,
    TransientError,
)
from adb_butler.inventory.adb import AdbClient, AdbDevice
from adb_butler.inventory.directory import DirectoryStore, provider_filter
from adb_butler.inventory.identity import (
    IdentityClassifier,
    is_bus_path,
    is_network_serial,
    normalize_identity,
)
from adb_butler.inventory.usb import UsbBus, UsbDeviceInfo

from .models import ActionType, Outcome, RecoveryAction
from .retry import RetryPolicy, Sleep

logger = logging.getLogger(__name__)

Handler = Callable[[RecoveryAction], Awaitable[Outcome]]


class ActionExecutor:
    """
    Executes recovery actions with retries and timeouts.

    Supports both dry-run simulation and actual execution.
    """

    def __init__(
        self,
        adb: AdbClient,
        store: DirectoryStore,
        usb_bus: Optional[UsbBus] = None,
        classifier: Optional[IdentityClassifier] = None,
        hostname: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        action_timeout: float = 60.0,
        usb_timeout: float = 5.0,
        settle_seconds: float = 2.0,
        sleep: Sleep = asyncio.sleep,
        dry_run: bool = False,
    ):
        """
        Initialize action executor.

        Args:
            adb: ADB client used for reconnects
            store: Directory store used for cleanup and annotation
            usb_bus: USB bus accessor (None when USB access is disabled)
            classifier: Identity classifier guarding record deletion
            hostname: Provider name scoping annotations
            retry_policy: Backoff policy for transient failures
            action_timeout: Timeout for one action attempt in seconds
            usb_timeout: Timeout for one sysfs read or driver write in seconds
            settle_seconds: Wait after a reconnect before re-checking the device
            sleep: Sleep function (injectable for tests)
            dry_run: If True, only log actions without executing them
        """
        self.adb = adb
        self.store = store
        self.usb_bus = usb_bus
        self.classifier = classifier or IdentityClassifier()
        self.hostname = hostname
        self.retry_policy = retry_policy or RetryPolicy(sleep=sleep)
        self.action_timeout = action_timeout
        self.usb_timeout = usb_timeout
        self.settle_seconds = settle_seconds
        self.sleep = sleep
        self.dry_run = dry_run
        self._server_lock = asyncio.Lock()

        self._handlers: Dict[ActionType, Handler] = {
            ActionType.REBIND_USB_DRIVER: self.rebind_usb_driver,
            ActionType.RESTART_ADB_CONNECTION: self.restart_adb_connection,
            ActionType.DELETE_DIRECTORY_RECORD: self.delete_directory_record,
            ActionType.ANNOTATE_DIRECTORY_RECORD: self.annotate_directory_record,
        }

        if self.dry_run:
            logger.info("ActionExecutor initialized in DRY RUN mode - no actions will be executed")

    async def execute(self, action: RecoveryAction) -> Outcome:
        """
        Execute one recovery action.

        Never raises for action-level failures; they are reported as a
        ``failed`` outcome so one device cannot block recovery of others.

        Args:
            action: The action to execute

        Returns:
            Outcome of the action
        """
        description = action.describe()

        if self.dry_run:
            logger.info(f"[DRY RUN] Would execute {description}")
            return Outcome.unchanged(action, "dry run", dry_run=True)

        handler = self._handlers.get(action.action_type)
        if handler is None:
            return Outcome.failed(action, f"Unknown action type: {action.action_type}")

        logger.info(f"Executing action: {description}")
        attempts = 0

        async def attempt() -> Outcome:
            nonlocal attempts
            attempts += 1
            try:
                return await asyncio.wait_for(handler(action), self.action_timeout)
            except asyncio.TimeoutError as e:
                raise CallTimeout(
                    f"{description} timed out after {self.action_timeout}s"
                ) from e

        try:
            outcome = await self.retry_policy.run(attempt, description=description)
        except ConfigurationMissing as e:
            logger.info(f"Skipping {description}: {e}")
            outcome = Outcome.unchanged(action, str(e), skipped=True)
        except DeviceNotFound as e:
            logger.info(f"{description}: device is gone, nothing to do ({e})")
            outcome = Outcome.unchanged(action, "device not found")
        except ActionFailed as e:
            outcome = Outcome.failed(action, e.reason)
        except ButlerError as e:
            outcome = Outcome.failed(action, str(e))

        outcome = outcome.model_copy(update={"attempts": attempts})

        if outcome.ok:
            logger.info(f"{description}: {outcome.status.value}" + (
                f" ({outcome.reason})" if outcome.reason else ""
            ))
        else:
            logger.error(f"{description} failed after {attempts} attempt(s): {outcome.reason}")

        return outcome

    # USB

    async def _usb(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking sysfs call in a worker thread under the USB timeout."""
        if self.usb_bus is None:
            raise ActionFailed("USB access is disabled on this host")
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), self.usb_timeout)
        except asyncio.TimeoutError as e:
            raise CallTimeout(f"sysfs call timed out after {self.usb_timeout}s") from e
        except PermissionError as e:
            raise ActionFailed(f"no permission to write the USB driver interface: {e}") from e
        except OSError as e:
            raise TransientError(f"sysfs call failed: {e}") from e

    def _resolve_usb(self, identity: str) -> Optional[UsbDeviceInfo]:
        if is_bus_path(identity):
            return self.usb_bus.read_device(identity)
        return self.usb_bus.find_by_serial(identity)

    async def rebind_usb_driver(self, action: RecoveryAction) -> Outcome:
        """
        Unbind then rebind the device's USB driver.

        A device that already has a healthy driver binding is left alone.
        """
        identity = action.identity
        info = await self._usb(self._resolve_usb, identity)
        if info is None:
            raise ActionFailed(f"{identity} is not attached to the USB bus")

        if info.healthy:
            return Outcome.unchanged(action, "driver already bound", driver=info.driver)

        bus_path = info.bus_path
        logger.info(f"Rebinding USB driver for {bus_path} ({info.error})")

        if info.driver:
            await self._usb(self.usb_bus.unbind, bus_path, info.driver)
        await self._usb(self.usb_bus.bind, bus_path)

        info = await self._usb(self.usb_bus.read_device, bus_path)
        if info is None:
            raise DeviceNotFound(f"{bus_path} left the bus during rebind")
        if not info.healthy:
            raise TransientError(f"{bus_path} still unhealthy after rebind: {info.error}")

        return Outcome.recovered(
            action, f"rebound {bus_path}", bus_path=bus_path, driver=info.driver
        )

    # ADB

    async def _find_adb_device(self, identity: str) -> Optional[AdbDevice]:
        for device in await self.adb.list_devices():
            if device.identity == identity or normalize_identity(device.serial) == identity:
                return device
        return None

    async def _left_usb_bus(self, identity: str) -> bool:
        """True when a fresh sysfs read no longer finds the device."""
        if self.usb_bus is None:
            return False
        return await self._usb(self._resolve_usb, identity) is None

    async def _restart_adb_server(self, identity: str) -> None:
        async with self._server_lock:
            # Another action may have restarted the server while this one waited
            device = await self._find_adb_device(identity)
            if device is not None and device.online:
                logger.info(f"{identity} is back in ADB, not restarting the server")
                return
            logger.warning(f"Restarting the ADB server to rescan the USB bus for {identity}")
            await self.adb.kill_server()
            await self.adb.start_server()

    async def _reset_usb_transport(self, identity: str, device: Optional[AdbDevice]) -> None:
        if device is None:
            # The server has no row to address; only a rescan can pick the device up
            if await self._left_usb_bus(identity):
                raise DeviceNotFound(f"{identity} is no longer attached")
            await self._restart_adb_server(identity)
            return

        selector = f"usb:{identity}" if is_bus_path(identity) else device.serial
        try:
            await self.adb.reconnect(selector)
        except DeviceNotFound:
            if await self._left_usb_bus(identity):
                raise
            logger.info(f"ADB could not address {selector}; falling back to a server restart")
            await self._restart_adb_server(identity)

    async def restart_adb_connection(self, action: RecoveryAction) -> Outcome:
        """
        Re-establish the ADB transport of one device.

        Network identities are disconnected and connected again. USB
        identities the server still lists get a transport reset addressed by
        bus path; ones it has lost entirely need a server restart. A device
        that has left the USB bus is reported unchanged.
        """
        identity = action.identity
        device = await self._find_adb_device(identity)
        if device is not None and device.online:
            return Outcome.unchanged(action, "already online", serial=device.serial)

        if is_network_serial(identity):
            await self.adb.disconnect(identity)
            await self.adb.connect(identity)
        else:
            await self._reset_usb_transport(identity, device)

        if self.settle_seconds:
            await self.sleep(self.settle_seconds)

        device = await self._find_adb_device(identity)
        if device is None or not device.online:
            state = device.state if device is not None else "absent"
            raise TransientError(f"{identity} not online after reconnect (state: {state})")

        return Outcome.recovered(action, "reconnected", serial=device.serial)

    # Directory

    async def delete_directory_record(self, action: RecoveryAction) -> Outcome:
        """
        Remove the directory records whose serial matches the identity.

        The store compares serials exactly, so the record's stored serial is
        used when the action carries one. Only ephemeral identities are ever
        deleted; hardware records are recovered through rebind or reconnect.
        """
        identity = action.identity
        if not self.classifier.is_ephemeral(identity):
            raise ActionFailed(f"refusing to delete record of non-ephemeral device {identity}")

        deleted = await self.store.delete({"serial": action.serial or identity})
        if deleted == 0:
            return Outcome.unchanged(action, "no matching record", deleted=0)
        return Outcome.recovered(action, f"deleted {deleted} record(s)", deleted=deleted)

    async def annotate_directory_record(self, action: RecoveryAction) -> Outcome:
        """
        Overwrite the note on this host's directory records.

        With no identity, every record of the provider host is annotated.
        """
        if not action.note:
            raise ConfigurationMissing("STF_PROVIDER_NOTE")
        if not self.hostname:
            raise ConfigurationMissing("HOSTNAME")

        filter: Dict[str, Any] = provider_filter(self.hostname)
        if action.identity:
            filter["serial"] = action.identity

        modified = await self.store.update(filter, {"notes": action.note})
        if modified == 0:
            return Outcome.unchanged(action, "notes already up to date", modified=0)
        return Outcome.recovered(action, f"annotated {modified} record(s)", modified=modified)
