"""
Device identity normalization and classification.

A device identity is the key used to compare authorities:
- USB hardware: the kernel bus path (``1-2.3``)
- network/emulator devices: the ``host:port`` ADB serial
"""

import re
from typing import Iterable, Optional

BUS_PATH_RE = re.compile(r"^\d+-\d+(?:\.\d+)*$")
NETWORK_SERIAL_RE = re.compile(r"^(?P<host>\[[0-9A-Fa-f:]+\]|[A-Za-z0-9][A-Za-z0-9.\-]*):(?P<port>\d{1,5})$")
LOCAL_EMULATOR_RE = re.compile(r"^emulator-\d+$")

USB_PREFIX = "usb:"


def normalize_identity(raw: str) -> str:
    """
    Normalize a raw serial or device path into a device identity.

    ``usb:1-2.3`` and ``1-2.3`` name the same device; hostnames in
    ``host:port`` serials are case-insensitive.
    """
    value = raw.strip()
    if value.lower().startswith(USB_PREFIX):
        value = value[len(USB_PREFIX):]
    match = NETWORK_SERIAL_RE.match(value)
    if match:
        value = f"{match.group('host').lower()}:{match.group('port')}"
    return value


def is_bus_path(identity: str) -> bool:
    return bool(BUS_PATH_RE.match(identity))


def is_network_serial(identity: str) -> bool:
    return bool(NETWORK_SERIAL_RE.match(identity))


class IdentityClassifier:
    """
    Classifies identities into hardware, virtual and ephemeral forms.

    Ephemeral identities are emulator serials of the form ``host:fixedPort``.
    Their directory records may be deleted once no live authority knows them.
    The fixed ports, or the whole pattern, are configurable.
    """

    def __init__(
        self,
        emulator_ports: Iterable[int] = (10001,),
        pattern: Optional[str] = None,
    ):
        """
        Initialize classifier.

        Args:
            emulator_ports: Fixed ADB ports used by ephemeral emulators
            pattern: Regex overriding the port-based ephemeral pattern
        """
        self.emulator_ports = sorted({int(p) for p in emulator_ports})
        if pattern:
            self.ephemeral_re = re.compile(pattern)
        else:
            ports = "|".join(str(p) for p in self.emulator_ports) or r"(?!)"
            self.ephemeral_re = re.compile(
                r"^(?:\[[0-9A-Fa-f:]+\]|[A-Za-z0-9][A-Za-z0-9.\-]*):(?:%s)$" % ports
            )

    def is_ephemeral(self, identity: str) -> bool:
        """True for emulator identities whose records may be cleaned up."""
        return bool(self.ephemeral_re.match(identity))

    def is_virtual(self, identity: str) -> bool:
        """True for identities that never have a USB backing."""
        return (
            is_network_serial(identity)
            or bool(LOCAL_EMULATOR_RE.match(identity))
            or self.is_ephemeral(identity)
        )

    def ephemeral_serials(self, host: str) -> list:
        """Emulator serials a provider host registers under its public address."""
        return [f"{host}:{port}" for port in self.emulator_ports]
