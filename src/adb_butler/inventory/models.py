"""
Device inventory data models.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple

from pydantic import BaseModel, Field


class Authority(str, Enum):
    """Independent sources of truth about device state."""

    USB = "usb"
    ADB = "adb"
    DIRECTORY = "directory"


class DeviceStatus(BaseModel):
    """
    Status of one device as seen by one authority.
    """

    online: bool = Field(..., description="Device is usable according to this authority")
    last_seen: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the authority last reported the device",
    )
    serial: Optional[str] = Field(
        None,
        description="Authority-native serial (USB serial attribute, ADB serial, record serial)",
    )
    state: str = Field("", description="Raw state string reported by the authority")
    error: Optional[str] = Field(None, description="Error state reported by the authority")
    meta: Dict[str, Any] = Field(
        default_factory=dict,
        description="Opaque authority-specific details",
    )

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "online": True,
                "last_seen": "2025-01-15T12:00:00Z",
                "serial": "R58M123ABC",
                "state": "device",
                "error": None,
                "meta": {"usb_path": "1-2.3", "model": "SM_G973F"},
            }
        }


class InventorySnapshot(BaseModel):
    """
    Immutable point-in-time view of the devices known to one authority.

    Snapshots from different authorities are compared, never merged.
    """

    authority: Authority
    captured_at: datetime = Field(default_factory=datetime.utcnow)
    devices: Dict[str, DeviceStatus] = Field(
        default_factory=dict,
        description="Normalized device identity -> status",
    )

    class Config:
        frozen = True

    def get(self, identity: str) -> Optional[DeviceStatus]:
        """Status for an identity, or None when the authority does not know it."""
        return self.devices.get(identity)

    def is_online(self, identity: str) -> bool:
        status = self.devices.get(identity)
        return status is not None and status.online

    def identities(self) -> Iterator[str]:
        return iter(self.devices)

    def items(self) -> Iterator[Tuple[str, DeviceStatus]]:
        return iter(self.devices.items())

    def __len__(self) -> int:
        return len(self.devices)

    def rekeyed(self, aliases: Dict[str, str]) -> "InventorySnapshot":
        """
        Return a copy with identities replaced through an alias map.

        When an alias collides with an existing key, an online entry wins.
        """
        devices: Dict[str, DeviceStatus] = {}
        for identity, status in self.devices.items():
            key = aliases.get(identity, identity)
            existing = devices.get(key)
            if existing is None or (status.online and not existing.online):
                devices[key] = status
        return InventorySnapshot(
            authority=self.authority,
            captured_at=self.captured_at,
            devices=devices,
        )


class InventoryResult(BaseModel):
    """
    Snapshots gathered for one pass, plus the authorities that could not be read.
    """

    snapshots: Dict[Authority, InventorySnapshot] = Field(default_factory=dict)
    unavailable: Dict[Authority, str] = Field(
        default_factory=dict,
        description="Authority -> reason it was excluded from this pass",
    )

    @property
    def degraded(self) -> bool:
        return bool(self.unavailable)
