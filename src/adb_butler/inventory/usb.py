"""
USB bus access through sysfs and the USB inventory reader.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel

from adb_butler.core.errors import AuthorityUnavailable

from .identity import is_bus_path
from .models import Authority, DeviceStatus, InventorySnapshot

logger = logging.getLogger(__name__)

HUB_DEVICE_CLASS = "09"
USB_DEVICE_DRIVER = "usb"


class UsbDeviceInfo(BaseModel):
    """
    One USB device as described by sysfs.
    """

    bus_path: str
    vendor_id: Optional[str] = None
    product_id: Optional[str] = None
    serial: Optional[str] = None
    product: Optional[str] = None
    manufacturer: Optional[str] = None
    device_class: Optional[str] = None
    authorized: bool = True
    configuration: Optional[str] = None
    driver: Optional[str] = None

    @property
    def is_hub(self) -> bool:
        return self.device_class == HUB_DEVICE_CLASS

    @property
    def error(self) -> Optional[str]:
        """
        Kernel-visible error state, or None when the device looks healthy.
        """
        if not self.authorized:
            return "not authorized"
        if self.driver is None:
            return "no driver bound"
        if not self.configuration:
            return "not configured"
        return None

    @property
    def healthy(self) -> bool:
        return self.error is None


class UsbBus:
    """
    Reads and rebinds USB devices under ``/sys/bus/usb``.

    All methods are blocking filesystem calls; async callers run them in a
    worker thread.
    """

    def __init__(self, sysfs_root: str = "/sys/bus/usb"):
        """
        Initialize USB bus accessor.

        Args:
            sysfs_root: Root of the USB bus in sysfs
        """
        self.root = Path(sysfs_root)
        self.devices_dir = self.root / "devices"
        self.driver_dir = self.root / "drivers" / USB_DEVICE_DRIVER

    def available(self) -> bool:
        return self.devices_dir.is_dir()

    def _read_attr(self, device_dir: Path, name: str) -> Optional[str]:
        try:
            value = (device_dir / name).read_text().strip()
        except OSError:
            return None
        return value or None

    def _driver_name(self, device_dir: Path) -> Optional[str]:
        link = device_dir / "driver"
        if not link.exists():
            return None
        try:
            return Path(os.readlink(link)).name
        except OSError:
            return link.resolve().name

    def read_device(self, bus_path: str) -> Optional[UsbDeviceInfo]:
        """Describe one device, or None when it is not on the bus."""
        device_dir = self.devices_dir / bus_path
        if not device_dir.is_dir():
            return None

        authorized = self._read_attr(device_dir, "authorized")
        return UsbDeviceInfo(
            bus_path=bus_path,
            vendor_id=self._read_attr(device_dir, "idVendor"),
            product_id=self._read_attr(device_dir, "idProduct"),
            serial=self._read_attr(device_dir, "serial"),
            product=self._read_attr(device_dir, "product"),
            manufacturer=self._read_attr(device_dir, "manufacturer"),
            device_class=self._read_attr(device_dir, "bDeviceClass"),
            authorized=authorized != "0",
            configuration=self._read_attr(device_dir, "bConfigurationValue"),
            driver=self._driver_name(device_dir),
        )

    def list_devices(self) -> List[UsbDeviceInfo]:
        """
        Enumerate attached devices (interfaces and root hubs are skipped).

        Raises:
            OSError: The bus cannot be listed
        """
        devices = []
        for entry in sorted(os.listdir(self.devices_dir)):
            if not is_bus_path(entry):
                continue
            info = self.read_device(entry)
            if info is not None:
                devices.append(info)
        return devices

    def find_by_serial(self, serial: str) -> Optional[UsbDeviceInfo]:
        for info in self.list_devices():
            if info.serial == serial:
                return info
        return None

    def unbind(self, bus_path: str, driver: Optional[str] = None) -> None:
        """Detach the device from the driver it is bound to (``usb`` by default)."""
        driver = driver or USB_DEVICE_DRIVER
        (self.root / "drivers" / driver / "unbind").write_text(bus_path)
        logger.debug(f"Unbound {bus_path} from {driver}")

    def bind(self, bus_path: str) -> None:
        (self.driver_dir / "bind").write_text(bus_path)
        logger.debug(f"Bound {bus_path} to {USB_DEVICE_DRIVER}")


class UsbReader:
    """
    Captures the devices attached to the USB bus as an inventory snapshot.
    """

    authority = Authority.USB

    def __init__(self, bus: UsbBus, timeout: float = 5.0):
        self.bus = bus
        self.timeout = timeout

    def _enumerate(self) -> List[UsbDeviceInfo]:
        if not self.bus.available():
            raise AuthorityUnavailable(
                self.authority.value, f"{self.bus.devices_dir} is not accessible"
            )
        try:
            return self.bus.list_devices()
        except OSError as e:
            raise AuthorityUnavailable(self.authority.value, str(e)) from e

    async def capture(self) -> InventorySnapshot:
        try:
            devices = await asyncio.wait_for(
                asyncio.to_thread(self._enumerate), self.timeout
            )
        except asyncio.TimeoutError as e:
            raise AuthorityUnavailable(
                self.authority.value, f"sysfs enumeration timed out after {self.timeout}s"
            ) from e

        entries: Dict[str, DeviceStatus] = {}
        for info in devices:
            if info.is_hub:
                continue
            entries[info.bus_path] = DeviceStatus(
                online=info.healthy,
                serial=info.serial,
                state="bound" if info.healthy else "error",
                error=info.error,
                meta={
                    "vendor_id": info.vendor_id,
                    "product_id": info.product_id,
                    "product": info.product,
                    "driver": info.driver,
                },
            )

        logger.debug(f"USB bus reports {len(entries)} device(s)")
        return InventorySnapshot(authority=self.authority, devices=entries)
