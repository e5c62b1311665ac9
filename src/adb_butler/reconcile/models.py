"""
Reconciliation data models: discrepancies, recovery actions, outcomes and
pass summaries. None of these outlive the pass that produced them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from adb_butler.inventory.models import Authority


class DiscrepancyKind(str, Enum):
    """Kinds of mismatch between authorities."""

    MISSING_FROM_ADB = "MissingFromADB"
    MISSING_FROM_USB = "MissingFromUSB"
    STALE_DIRECTORY_RECORD = "StaleDirectoryRecord"


class Discrepancy(BaseModel):
    """
    One mismatch between two authorities for a device identity.
    """

    identity: str
    expected_authority: Authority  # authority that knows the device
    actual_authority: Authority  # authority that does not
    kind: DiscrepancyKind
    serial: Optional[str] = None  # native serial of the directory record, when it differs

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "identity": "1-2.3",
                "expected_authority": "usb",
                "actual_authority": "adb",
                "kind": "MissingFromADB",
            }
        }


class ActionType(str, Enum):
    """Types of recovery actions."""

    REBIND_USB_DRIVER = "RebindUSBDriver"
    RESTART_ADB_CONNECTION = "RestartADBConnection"
    DELETE_DIRECTORY_RECORD = "DeleteDirectoryRecord"
    ANNOTATE_DIRECTORY_RECORD = "AnnotateDirectoryRecord"


class RecoveryAction(BaseModel):
    """
    A corrective command derived from a discrepancy (or a maintenance request).

    ``identity`` is None only for annotations that cover every record of
    this provider host. ``serial`` is the record's serial as stored, used
    where the store matches exactly and the normalized identity would not.
    """

    action_type: ActionType
    identity: Optional[str] = None
    note: Optional[str] = None
    serial: Optional[str] = None
    discrepancy: Optional[Discrepancy] = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "action_type": "DeleteDirectoryRecord",
                "identity": "203.0.113.5:10001",
                "discrepancy": {
                    "identity": "203.0.113.5:10001",
                    "expected_authority": "directory",
                    "actual_authority": "adb",
                    "kind": "StaleDirectoryRecord",
                },
            }
        }

    @classmethod
    def rebind_usb_driver(cls, identity: str, **kwargs) -> "RecoveryAction":
        return cls(action_type=ActionType.REBIND_USB_DRIVER, identity=identity, **kwargs)

    @classmethod
    def restart_adb_connection(cls, identity: str, **kwargs) -> "RecoveryAction":
        return cls(action_type=ActionType.RESTART_ADB_CONNECTION, identity=identity, **kwargs)

    @classmethod
    def delete_directory_record(cls, identity: str, **kwargs) -> "RecoveryAction":
        return cls(action_type=ActionType.DELETE_DIRECTORY_RECORD, identity=identity, **kwargs)

    @classmethod
    def annotate_directory_record(
        cls, identity: Optional[str], note: Optional[str], **kwargs
    ) -> "RecoveryAction":
        return cls(
            action_type=ActionType.ANNOTATE_DIRECTORY_RECORD,
            identity=identity,
            note=note,
            **kwargs,
        )

    def describe(self) -> str:
        target = self.identity or "all provider records"
        return f"{self.action_type.value}({target})"


class OutcomeStatus(str, Enum):
    """Result of executing one recovery action."""

    RECOVERED = "recovered"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class Outcome(BaseModel):
    """
    Record of an executed (or simulated) recovery action.
    """

    action: RecoveryAction
    status: OutcomeStatus
    reason: Optional[str] = None
    detail: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 1
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def recovered(cls, action: RecoveryAction, reason: str = "", **detail) -> "Outcome":
        return cls(action=action, status=OutcomeStatus.RECOVERED, reason=reason or None, detail=detail)

    @classmethod
    def unchanged(cls, action: RecoveryAction, reason: str = "", **detail) -> "Outcome":
        return cls(action=action, status=OutcomeStatus.UNCHANGED, reason=reason or None, detail=detail)

    @classmethod
    def failed(cls, action: RecoveryAction, reason: str, **detail) -> "Outcome":
        return cls(action=action, status=OutcomeStatus.FAILED, reason=reason, detail=detail)

    @property
    def ok(self) -> bool:
        return self.status != OutcomeStatus.FAILED


class PassState(str, Enum):
    """States of one reconciliation pass."""

    COLLECT_INVENTORY = "CollectInventory"
    DIFF = "Diff"
    EXECUTE_ACTIONS = "ExecuteActions"
    REPORT_SUMMARY = "ReportSummary"


class PassStatus(str, Enum):
    """How a pass ended."""

    COMPLETED = "completed"
    SKIPPED = "skipped"  # no inventory authority readable
    BUSY = "busy"  # another pass already in flight
    CANCELLED = "cancelled"


class PassSummary(BaseModel):
    """
    Summary of one reconciliation pass.
    """

    pass_id: str
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None
    status: PassStatus = PassStatus.COMPLETED
    states: List[PassState] = Field(default_factory=list)
    unavailable: Dict[str, str] = Field(default_factory=dict)
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    outcomes: List[Outcome] = Field(default_factory=list)
    skipped_actions: int = 0
    error: Optional[str] = None

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def recovered(self) -> int:
        return self.count(OutcomeStatus.RECOVERED)

    @property
    def unchanged(self) -> int:
        return self.count(OutcomeStatus.UNCHANGED)

    @property
    def failed(self) -> int:
        return self.count(OutcomeStatus.FAILED)

    def stats(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "discrepancies": len(self.discrepancies),
            "actions": len(self.outcomes),
            "recovered": self.recovered,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "skipped_actions": self.skipped_actions,
            "unavailable": sorted(self.unavailable),
        }
