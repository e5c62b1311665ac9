"""
State differencing between inventory snapshots.
"""

import logging
from typing import Dict, List, Mapping, Optional

from adb_butler.inventory.identity import IdentityClassifier, is_bus_path, normalize_identity
from adb_butler.inventory.models import Authority, InventorySnapshot

from .models import ActionType, Discrepancy, DiscrepancyKind, RecoveryAction

logger = logging.getLogger(__name__)

Snapshots = Mapping[Authority, InventorySnapshot]

ACTION_FOR_KIND = {
    DiscrepancyKind.MISSING_FROM_ADB: ActionType.RESTART_ADB_CONNECTION,
    DiscrepancyKind.MISSING_FROM_USB: ActionType.REBIND_USB_DRIVER,
    DiscrepancyKind.STALE_DIRECTORY_RECORD: ActionType.DELETE_DIRECTORY_RECORD,
}


class StateDiffer:
    """
    Compares authority snapshots and classifies mismatches.

    Pure and deterministic: the same snapshots always yield the same
    discrepancies, ordered by identity. An authority missing from the input
    was unavailable for the pass; it is never treated as "absent".
    """

    def __init__(self, classifier: Optional[IdentityClassifier] = None):
        self.classifier = classifier or IdentityClassifier()

    def correlate(self, snapshots: Snapshots) -> Dict[Authority, InventorySnapshot]:
        """
        Re-key hardware entries known by serial onto their USB bus path.

        The USB bus and ``adb devices -l`` both report which serial sits on
        which bus path; directory records and ADB rows keyed by that serial
        are moved onto the bus path so all authorities share one key.
        """
        aliases: Dict[str, str] = {}

        usb = snapshots.get(Authority.USB)
        if usb is not None:
            for bus_path, status in usb.items():
                if status.serial:
                    aliases[normalize_identity(status.serial)] = bus_path

        adb = snapshots.get(Authority.ADB)
        if adb is not None:
            for identity, status in adb.items():
                if status.serial and is_bus_path(identity):
                    aliases.setdefault(normalize_identity(status.serial), identity)

        # Never fold a bus path into another one
        aliases = {k: v for k, v in aliases.items() if k != v and not is_bus_path(k)}

        return {
            authority: snapshot if authority == Authority.USB or not aliases
            else snapshot.rekeyed(aliases)
            for authority, snapshot in snapshots.items()
        }

    def diff(self, snapshots: Snapshots) -> List[Discrepancy]:
        """
        Compute the discrepancies between the available snapshots.

        Args:
            snapshots: Authority -> snapshot, for authorities read this pass

        Returns:
            At most one discrepancy per identity, sorted by identity
        """
        correlated = self.correlate(snapshots)

        identities = set()
        for snapshot in correlated.values():
            identities.update(snapshot.identities())

        discrepancies = []
        for identity in sorted(identities):
            discrepancy = self._classify(identity, correlated)
            if discrepancy is not None:
                discrepancies.append(discrepancy)

        logger.info(
            f"Compared {len(identities)} identities across "
            f"{', '.join(sorted(a.value for a in correlated))}: "
            f"{len(discrepancies)} discrepancies"
        )
        return discrepancies

    def _online(
        self, snapshots: Snapshots, authority: Authority, identity: str
    ) -> Optional[bool]:
        """True online, False absent or offline, None when the authority was not read."""
        snapshot = snapshots.get(authority)
        if snapshot is None:
            return None
        return snapshot.is_online(identity)

    def _classify(self, identity: str, snapshots: Snapshots) -> Optional[Discrepancy]:
        directory = snapshots.get(Authority.DIRECTORY)
        if directory is None or directory.get(identity) is None:
            return None

        usb = self._online(snapshots, Authority.USB, identity)
        adb = self._online(snapshots, Authority.ADB, identity)

        if usb is True and adb is False:
            return Discrepancy(
                identity=identity,
                expected_authority=Authority.USB,
                actual_authority=Authority.ADB,
                kind=DiscrepancyKind.MISSING_FROM_ADB,
            )

        # A device the bus still lists in an error state can be rebound too
        usb_entry = snapshots[Authority.USB].get(identity) if usb is not None else None
        if (
            usb is False
            and (adb is True or usb_entry is not None)
            and not self.classifier.is_virtual(identity)
        ):
            return Discrepancy(
                identity=identity,
                expected_authority=Authority.ADB if adb is True else Authority.DIRECTORY,
                actual_authority=Authority.USB,
                kind=DiscrepancyKind.MISSING_FROM_USB,
            )

        # USB never backs ephemeral identities, so only ADB has to be readable
        if self.classifier.is_ephemeral(identity) and adb is False:
            serial = directory.get(identity).serial
            return Discrepancy(
                identity=identity,
                expected_authority=Authority.DIRECTORY,
                actual_authority=Authority.ADB,
                kind=DiscrepancyKind.STALE_DIRECTORY_RECORD,
                serial=serial if serial != identity else None,
            )

        return None

    def plan_actions(self, discrepancies: List[Discrepancy]) -> List[RecoveryAction]:
        """
        Derive exactly one recovery action per discrepancy.

        Repeated discrepancies for the same identity and kind collapse into a
        single action.
        """
        actions = []
        seen = set()

        for discrepancy in discrepancies:
            key = (discrepancy.identity, discrepancy.kind)
            if key in seen:
                continue
            seen.add(key)
            actions.append(
                RecoveryAction(
                    action_type=ACTION_FOR_KIND[discrepancy.kind],
                    identity=discrepancy.identity,
                    serial=discrepancy.serial,
                    discrepancy=discrepancy,
                )
            )

        return actions
