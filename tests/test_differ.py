"""
Tests for the state differ.
"""

from typing import Dict, Optional

from adb_butler.inventory.identity import IdentityClassifier
from adb_butler.inventory.models import Authority, DeviceStatus, InventorySnapshot
from adb_butler.reconcile.differ import StateDiffer
from adb_butler.reconcile.models import ActionType, Discrepancy, DiscrepancyKind


def snapshot(authority: Authority, devices: Dict[str, bool], serials: Optional[Dict[str, str]] = None):
    serials = serials or {}
    return InventorySnapshot(
        authority=authority,
        devices={
            identity: DeviceStatus(online=online, serial=serials.get(identity, identity))
            for identity, online in devices.items()
        },
    )


def snapshots(usb=None, adb=None, directory=None, serials=None):
    result = {}
    if usb is not None:
        result[Authority.USB] = snapshot(Authority.USB, usb, serials)
    if adb is not None:
        result[Authority.ADB] = snapshot(Authority.ADB, adb, serials)
    if directory is not None:
        result[Authority.DIRECTORY] = snapshot(Authority.DIRECTORY, directory)
    return result


class TestClassification:
    """Test discrepancy rules."""

    def setup_method(self):
        self.differ = StateDiffer(IdentityClassifier())

    def test_all_online_yields_nothing(self):
        result = self.differ.diff(snapshots(
            usb={"1-2.3": True, "1-4": True},
            adb={"1-2.3": True, "1-4": True, "203.0.113.5:10001": True},
            directory={"1-2.3": True, "1-4": True, "203.0.113.5:10001": True},
        ))
        assert result == []

    def test_usb_device_missing_from_adb(self):
        result = self.differ.diff(snapshots(
            usb={"1-2.3": True},
            adb={},
            directory={"1-2.3": True},
        ))
        assert result == [
            Discrepancy(
                identity="1-2.3",
                expected_authority=Authority.USB,
                actual_authority=Authority.ADB,
                kind=DiscrepancyKind.MISSING_FROM_ADB,
            )
        ]

    def test_offline_directory_record_still_counts(self):
        result = self.differ.diff(snapshots(
            usb={"1-2.3": True},
            adb={"1-2.3": False},
            directory={"1-2.3": False},
        ))
        assert [d.kind for d in result] == [DiscrepancyKind.MISSING_FROM_ADB]

    def test_stale_emulator_record(self):
        result = self.differ.diff(snapshots(
            usb={},
            adb={},
            directory={"203.0.113.5:10001": True},
        ))
        assert len(result) == 1
        assert result[0].kind == DiscrepancyKind.STALE_DIRECTORY_RECORD
        assert result[0].identity == "203.0.113.5:10001"

    def test_stale_record_keeps_its_stored_serial(self):
        directory = InventorySnapshot(
            authority=Authority.DIRECTORY,
            devices={"emu-host.lan:10001": DeviceStatus(online=True, serial="Emu-Host.lan:10001")},
        )
        state = snapshots(usb={}, adb={})
        state[Authority.DIRECTORY] = directory

        result = self.differ.diff(state)
        actions = self.differ.plan_actions(result)

        assert [d.identity for d in result] == ["emu-host.lan:10001"]
        assert result[0].serial == "Emu-Host.lan:10001"
        assert actions[0].serial == "Emu-Host.lan:10001"

    def test_emulator_never_missing_from_usb(self):
        result = self.differ.diff(snapshots(
            usb={},
            adb={"203.0.113.5:10001": True, "192.168.1.20:5555": True},
            directory={"203.0.113.5:10001": True, "192.168.1.20:5555": True},
        ))
        assert result == []

    def test_hardware_missing_from_usb(self):
        result = self.differ.diff(snapshots(
            usb={},
            adb={"1-2.3": True},
            directory={"1-2.3": True},
        ))
        assert [d.kind for d in result] == [DiscrepancyKind.MISSING_FROM_USB]
        assert result[0].expected_authority == Authority.ADB

    def test_unhealthy_usb_device_is_missing_from_usb(self):
        result = self.differ.diff(snapshots(
            usb={"1-2.3": False},
            adb={},
            directory={"1-2.3": True},
        ))
        assert [d.kind for d in result] == [DiscrepancyKind.MISSING_FROM_USB]
        assert result[0].expected_authority == Authority.DIRECTORY

    def test_unplugged_hardware_is_left_alone(self):
        result = self.differ.diff(snapshots(usb={}, adb={}, directory={"1-2.3": False}))
        assert result == []

    def test_hardware_record_never_stale(self):
        result = self.differ.diff(snapshots(
            usb={}, adb={}, directory={"R58M123ABC": True, "1-9": True}
        ))
        assert all(d.kind != DiscrepancyKind.STALE_DIRECTORY_RECORD for d in result)

    def test_no_record_no_discrepancy(self):
        result = self.differ.diff(snapshots(usb={"1-2.3": True}, adb={}, directory={}))
        assert result == []

    def test_sorted_by_identity(self):
        result = self.differ.diff(snapshots(
            usb={"2-1": True, "1-1": True},
            adb={},
            directory={"2-1": True, "1-1": True, "203.0.113.5:10001": True},
        ))
        assert [d.identity for d in result] == ["1-1", "2-1", "203.0.113.5:10001"]


class TestDegradedMode:
    """Test that an unavailable authority is never treated as absent."""

    def setup_method(self):
        self.differ = StateDiffer(IdentityClassifier())

    def test_directory_unavailable_skips_usb_only_devices(self):
        result = self.differ.diff(snapshots(usb={"1-2.3": True}, adb={"1-4": True}))
        assert result == []

    def test_usb_unavailable_does_not_imply_missing_from_usb(self):
        result = self.differ.diff(snapshots(adb={"1-2.3": True}, directory={"1-2.3": True}))
        assert result == []

    def test_adb_unavailable_keeps_emulator_records(self):
        result = self.differ.diff(snapshots(usb={}, directory={"203.0.113.5:10001": True}))
        assert result == []

    def test_usb_unavailable_still_finds_stale_records(self):
        result = self.differ.diff(snapshots(adb={}, directory={"203.0.113.5:10001": True}))
        assert [d.kind for d in result] == [DiscrepancyKind.STALE_DIRECTORY_RECORD]


class TestCorrelation:
    """Test re-keying of serial-named records onto bus paths."""

    def setup_method(self):
        self.differ = StateDiffer(IdentityClassifier())

    def test_directory_serial_matched_through_usb(self):
        result = self.differ.diff(snapshots(
            usb={"1-2.3": True},
            adb={},
            directory={"R58M123ABC": True},
            serials={"1-2.3": "R58M123ABC"},
        ))
        assert [(d.identity, d.kind) for d in result] == [
            ("1-2.3", DiscrepancyKind.MISSING_FROM_ADB)
        ]

    def test_directory_serial_matched_through_adb(self):
        result = self.differ.diff(snapshots(
            usb={},
            adb={"1-2.3": True},
            directory={"R58M123ABC": True},
            serials={"1-2.3": "R58M123ABC"},
        ))
        assert [(d.identity, d.kind) for d in result] == [
            ("1-2.3", DiscrepancyKind.MISSING_FROM_USB)
        ]

    def test_fully_correlated_device_is_consistent(self):
        result = self.differ.diff(snapshots(
            usb={"1-2.3": True},
            adb={"1-2.3": True},
            directory={"R58M123ABC": True},
            serials={"1-2.3": "R58M123ABC"},
        ))
        assert result == []


class TestPlanActions:
    """Test action planning."""

    def test_one_action_per_discrepancy(self):
        differ = StateDiffer(IdentityClassifier())
        discrepancies = differ.diff(snapshots(
            usb={"1-2.3": True, "1-4": False},
            adb={"1-5": True},
            directory={"1-2.3": True, "1-4": True, "1-5": True, "203.0.113.5:10001": True},
        ))
        actions = differ.plan_actions(discrepancies)

        assert [(a.identity, a.action_type) for a in actions] == [
            ("1-2.3", ActionType.RESTART_ADB_CONNECTION),
            ("1-4", ActionType.REBIND_USB_DRIVER),
            ("1-5", ActionType.REBIND_USB_DRIVER),
            ("203.0.113.5:10001", ActionType.DELETE_DIRECTORY_RECORD),
        ]
        assert all(a.discrepancy is not None for a in actions)

    def test_duplicates_collapse(self):
        differ = StateDiffer()
        discrepancy = Discrepancy(
            identity="203.0.113.5:10001",
            expected_authority=Authority.DIRECTORY,
            actual_authority=Authority.ADB,
            kind=DiscrepancyKind.STALE_DIRECTORY_RECORD,
        )
        actions = differ.plan_actions([discrepancy, discrepancy])
        assert len(actions) == 1

    def test_diff_is_deterministic(self):
        differ = StateDiffer()
        state = snapshots(
            usb={"1-2.3": True, "1-4": True},
            adb={"1-4": True},
            directory={"1-2.3": True, "203.0.113.5:10001": True},
        )
        assert differ.diff(state) == differ.diff(state)
