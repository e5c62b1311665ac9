"""
ADB server access and the ADB inventory reader.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from adb_butler.core.errors import (
    AdbServerUnavailable,
    AuthorityUnavailable,
    ButlerError,
    CallTimeout,
    DeviceNotFound,
    TransientError,
)

from .identity import normalize_identity
from .models import Authority, DeviceStatus, InventorySnapshot

logger = logging.getLogger(__name__)

ADB_ONLINE_STATE = "device"

# Substrings adb prints when the server itself is unreachable
SERVER_DOWN_MARKERS = (
    "cannot connect to daemon",
    "daemon not running",
    "failed to check server version",
    "failed to start daemon",
)

# Substrings adb prints when the targeted device is gone
DEVICE_GONE_MARKERS = (
    "not found",
    "no devices/emulators found",
    "no such device",
)

# Substrings `adb connect` prints when the device endpoint refuses
ENDPOINT_DOWN_MARKERS = (
    "failed to connect",
    "unable to connect",
    "cannot connect to",
    "connection refused",
    "no route to host",
)


class AdbDevice(BaseModel):
    """One row of ``adb devices -l``."""

    serial: str
    state: str
    usb_path: Optional[str] = None
    properties: Dict[str, str] = Field(default_factory=dict)

    @property
    def online(self) -> bool:
        return self.state == ADB_ONLINE_STATE

    @property
    def identity(self) -> str:
        return normalize_identity(self.usb_path or self.serial)


def parse_devices_output(output: str) -> List[AdbDevice]:
    """
    Parse the output of ``adb devices -l``.

    Example lines:
        R58M123ABC             device usb:1-2.3 product:beyond1 model:SM_G973F transport_id:4
        203.0.113.5:10001      offline transport_id:7
        0123456789ABCDEF       no permissions (user in plugdev group); see [...] usb:1-1
    """
    devices = []

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("*") or line.lower().startswith("list of devices"):
            continue

        parts = line.split(None, 1)
        if len(parts) < 2:
            continue
        serial, rest = parts

        if rest.startswith("no permissions"):
            state = "no permissions"
        else:
            state = rest.split()[0]

        properties: Dict[str, str] = {}
        usb_path = None
        for token in rest.split():
            if ":" not in token or token.startswith("["):
                continue
            key, value = token.split(":", 1)
            if key == "usb":
                usb_path = value
            elif key and value:
                properties[key] = value

        devices.append(
            AdbDevice(serial=serial, state=state, usb_path=usb_path, properties=properties)
        )

    return devices


def _contains(text: str, markers) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in markers)


class AdbClient:
    """
    Thin async wrapper around the ``adb`` command line client.

    Every invocation is bounded by a timeout; a hung adb process is killed.
    """

    def __init__(
        self,
        adb_path: str = "adb",
        server_host: Optional[str] = None,
        server_port: int = 5037,
        timeout: float = 15.0,
    ):
        """
        Initialize ADB client.

        Args:
            adb_path: adb binary (path or name on PATH)
            server_host: ADB server host (None uses adb's default)
            server_port: ADB server port
            timeout: Timeout for a single invocation in seconds
        """
        self.adb_path = adb_path
        self.server_host = server_host
        self.server_port = server_port
        self.timeout = timeout

    def _command(self, args: List[str]) -> List[str]:
        command = [self.adb_path]
        if self.server_host:
            command += ["-H", self.server_host]
        if self.server_host or self.server_port != 5037:
            command += ["-P", str(self.server_port)]
        return command + list(args)

    async def run(self, *args: str, check: bool = True) -> str:
        """
        Run one adb command and return its combined output.

        Raises:
            AdbServerUnavailable: The ADB server could not be reached
            DeviceNotFound: The targeted device is not known to the server
            CallTimeout: adb did not finish within the timeout
            TransientError: adb exited non-zero for another reason (check=True)
        """
        command = self._command(list(args))
        logger.debug(f"Running: {' '.join(command)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AdbServerUnavailable(f"cannot run {self.adb_path}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise CallTimeout(f"adb {' '.join(args)} timed out after {self.timeout}s") from e

        output = (stdout or b"").decode(errors="replace")
        errors = (stderr or b"").decode(errors="replace")
        combined = f"{output}\n{errors}".strip()

        # An auto-started server prints its banner to stderr and still exits 0
        if proc.returncode != 0 and _contains(errors, SERVER_DOWN_MARKERS):
            raise AdbServerUnavailable(errors.strip())

        if proc.returncode != 0 and check:
            if _contains(combined, DEVICE_GONE_MARKERS):
                raise DeviceNotFound(combined)
            raise TransientError(
                f"adb {' '.join(args)} exited with {proc.returncode}: {combined}"
            )

        return combined

    async def list_devices(self) -> List[AdbDevice]:
        output = await self.run("devices", "-l")
        return parse_devices_output(output)

    async def connect(self, serial: str) -> str:
        """
        Connect to a network device.

        Raises:
            DeviceNotFound: The device endpoint refused or is unreachable
        """
        output = await self.run("connect", serial, check=False)
        if "connected to" in output.lower() and not _contains(output, ENDPOINT_DOWN_MARKERS):
            return output
        if _contains(output, ENDPOINT_DOWN_MARKERS):
            raise DeviceNotFound(output)
        raise TransientError(f"adb connect {serial}: {output}")

    async def disconnect(self, serial: str) -> str:
        """Disconnect a network device; an unknown device is not an error."""
        return await self.run("disconnect", serial, check=False)

    async def reconnect(self, selector: str) -> str:
        """
        Ask the server to re-establish the transport of one device.

        Args:
            selector: Serial or ``usb:<bus path>`` qualifier
        """
        output = await self.run("-s", selector, "reconnect", check=False)
        if _contains(output, DEVICE_GONE_MARKERS):
            raise DeviceNotFound(output)
        return output

    async def kill_server(self) -> str:
        """Stop the ADB server; a server that is not running is not an error."""
        try:
            return await self.run("kill-server", check=False)
        except AdbServerUnavailable as e:
            logger.debug(f"ADB server was not running: {e}")
            return str(e)

    async def start_server(self) -> str:
        """Start the ADB server, which rescans the USB bus for devices."""
        return await self.run("start-server")


class AdbReader:
    """
    Captures the ADB server's device table as an inventory snapshot.
    """

    authority = Authority.ADB

    def __init__(self, client: AdbClient):
        self.client = client

    async def capture(self) -> InventorySnapshot:
        try:
            devices = await self.client.list_devices()
        except (ButlerError, OSError) as e:
            raise AuthorityUnavailable(self.authority.value, str(e)) from e

        entries: Dict[str, DeviceStatus] = {}
        for device in devices:
            meta: Dict[str, object] = dict(device.properties)
            if device.usb_path:
                meta["usb_path"] = device.usb_path
            entries[device.identity] = DeviceStatus(
                online=device.online,
                serial=device.serial,
                state=device.state,
                error=None if device.online else device.state,
                meta=meta,
            )

        logger.debug(f"ADB reports {len(entries)} device(s)")
        return InventorySnapshot(authority=self.authority, devices=entries)
