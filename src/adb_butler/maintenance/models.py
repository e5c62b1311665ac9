"""
Result model for maintenance tasks.
"""

from typing import List

from pydantic import BaseModel, Field

from adb_butler.reconcile.models import Outcome


class MaintenanceResult(BaseModel):
    """
    Outcome of one maintenance task.

    A task that is not configured on this host is skipped, which is a
    success: "nothing configured" is an expected operating mode.
    """

    task: str
    message: str
    skipped: bool = False
    outcomes: List[Outcome] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1
