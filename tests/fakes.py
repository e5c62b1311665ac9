"""
In-memory stand-ins for the ADB server, the USB bus and the device directory.
"""

from typing import Any, Dict, List, Optional

from adb_butler.core.errors import DeviceNotFound
from adb_butler.inventory.adb import AdbDevice
from adb_butler.inventory.directory import DirectoryStore
from adb_butler.inventory.usb import UsbDeviceInfo


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeAdbClient:
    """
    ADB client backed by a dict of devices.

    ``revive`` maps an identity to the device row that appears once the
    device is reconnected. A reconnect only reaches devices the server
    already lists; a server restart picks up every revivable device.
    ``errors`` maps an operation name to exceptions raised by successive
    calls.
    """

    def __init__(self, devices: Optional[List[AdbDevice]] = None):
        self.devices: Dict[str, AdbDevice] = {d.identity: d for d in devices or []}
        self.revive: Dict[str, AdbDevice] = {}
        self.errors: Dict[str, List[Exception]] = {}
        self.calls: List[tuple] = []

    def _maybe_fail(self, op: str) -> None:
        queue = self.errors.get(op)
        if queue:
            raise queue.pop(0)

    def _revive(self, identity: str) -> None:
        device = self.revive.pop(identity, None)
        if device is not None:
            self.devices[device.identity] = device

    async def list_devices(self) -> List[AdbDevice]:
        self.calls.append(("devices",))
        self._maybe_fail("devices")
        return list(self.devices.values())

    async def connect(self, serial: str) -> str:
        self.calls.append(("connect", serial))
        self._maybe_fail("connect")
        self._revive(serial)
        return f"connected to {serial}"

    async def disconnect(self, serial: str) -> str:
        self.calls.append(("disconnect", serial))
        self.devices.pop(serial, None)
        return f"disconnected {serial}"

    async def reconnect(self, selector: str) -> str:
        self.calls.append(("reconnect", selector))
        self._maybe_fail("reconnect")
        identity = selector[len("usb:"):] if selector.startswith("usb:") else selector
        if identity not in self.devices:
            raise DeviceNotFound(f"error: device '{selector}' not found")
        self._revive(identity)
        return "reconnecting"

    async def kill_server(self) -> str:
        self.calls.append(("kill-server",))
        return ""

    async def start_server(self) -> str:
        self.calls.append(("start-server",))
        self._maybe_fail("start-server")
        for identity in list(self.revive):
            self._revive(identity)
        return ""


class FakeUsbBus:
    """
    USB bus backed by a dict of devices.

    ``stuck`` lists bus paths whose driver refuses to bind.
    """

    def __init__(self, devices: Optional[List[UsbDeviceInfo]] = None):
        self.devices: Dict[str, UsbDeviceInfo] = {d.bus_path: d for d in devices or []}
        self.stuck: set = set()
        self.bind_errors: List[Exception] = []
        self.unbound_from: List[Optional[str]] = []
        self.calls: List[tuple] = []

    def available(self) -> bool:
        return True

    def read_device(self, bus_path: str) -> Optional[UsbDeviceInfo]:
        return self.devices.get(bus_path)

    def list_devices(self) -> List[UsbDeviceInfo]:
        return [self.devices[k] for k in sorted(self.devices)]

    def find_by_serial(self, serial: str) -> Optional[UsbDeviceInfo]:
        for info in self.devices.values():
            if info.serial == serial:
                return info
        return None

    def unbind(self, bus_path: str, driver: Optional[str] = None) -> None:
        self.calls.append(("unbind", bus_path))
        self.unbound_from.append(driver)
        info = self.devices[bus_path]
        self.devices[bus_path] = info.model_copy(update={"driver": None})

    def bind(self, bus_path: str) -> None:
        self.calls.append(("bind", bus_path))
        if self.bind_errors:
            raise self.bind_errors.pop(0)
        if bus_path in self.stuck:
            return
        info = self.devices[bus_path]
        self.devices[bus_path] = info.model_copy(
            update={"driver": "usb", "configuration": info.configuration or "1"}
        )


def _matches(record: Dict[str, Any], filter: Dict[str, Any]) -> bool:
    """Nested partial match, the way a RethinkDB object filter matches."""
    for key, expected in filter.items():
        actual = record.get(key)
        if isinstance(expected, dict):
            if not isinstance(actual, dict) or not _matches(actual, expected):
                return False
        elif actual != expected:
            return False
    return True


class InMemoryDirectoryStore(DirectoryStore):
    """Directory store holding records in a list."""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self.records: List[Dict[str, Any]] = [dict(r) for r in records or []]
        self.errors: List[Exception] = []
        self.calls: List[tuple] = []

    def _maybe_fail(self) -> None:
        if self.errors:
            raise self.errors.pop(0)

    async def query(self, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.calls.append(("query", filter))
        self._maybe_fail()
        return [dict(r) for r in self.records if _matches(r, filter)]

    async def delete(self, filter: Dict[str, Any]) -> int:
        self.calls.append(("delete", filter))
        self._maybe_fail()
        kept = [r for r in self.records if not _matches(r, filter)]
        deleted = len(self.records) - len(kept)
        self.records = kept
        return deleted

    async def update(self, filter: Dict[str, Any], changes: Dict[str, Any]) -> int:
        self.calls.append(("update", filter, changes))
        self._maybe_fail()
        replaced = 0
        for record in self.records:
            if not _matches(record, filter):
                continue
            if all(record.get(k) == v for k, v in changes.items()):
                continue
            record.update(changes)
            replaced += 1
        return replaced


def usb_device(bus_path: str, serial: Optional[str] = None, healthy: bool = True) -> UsbDeviceInfo:
    return UsbDeviceInfo(
        bus_path=bus_path,
        vendor_id="18d1",
        product_id="4ee7",
        serial=serial,
        device_class="00",
        configuration="1" if healthy else None,
        driver="usb" if healthy else None,
    )


def adb_device(serial: str, state: str = "device", usb_path: Optional[str] = None) -> AdbDevice:
    return AdbDevice(serial=serial, state=state, usb_path=usb_path)


def directory_record(serial: str, provider: str = "provider-01", present: bool = True) -> Dict[str, Any]:
    return {"serial": serial, "present": present, "provider": {"name": provider}}
