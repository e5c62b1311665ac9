"""
Inventory collection across the three authorities.
"""

import asyncio
import logging
from typing import Dict, Sequence

from adb_butler.core.errors import AuthorityUnavailable, PartialInventoryFailure

from .models import Authority, InventoryResult, InventorySnapshot

logger = logging.getLogger(__name__)


class InventoryCollector:
    """
    Reads every configured authority concurrently.

    Readers expose ``authority`` and ``async capture() -> InventorySnapshot``.
    An unreadable authority is excluded from the pass; if none can be read the
    pass cannot proceed.
    """

    def __init__(self, readers: Sequence, timeout: float = 20.0):
        """
        Initialize collector.

        Args:
            readers: Inventory readers, one per authority
            timeout: Timeout for a single authority's read in seconds
        """
        self.readers = list(readers)
        self.timeout = timeout

    async def _capture(self, reader) -> InventorySnapshot:
        try:
            return await asyncio.wait_for(reader.capture(), self.timeout)
        except asyncio.TimeoutError as e:
            raise AuthorityUnavailable(
                reader.authority.value, f"read timed out after {self.timeout}s"
            ) from e

    async def collect(self) -> InventoryResult:
        """
        Capture all authorities.

        Returns:
            Snapshots of readable authorities plus reasons for the others

        Raises:
            PartialInventoryFailure: No authority could be read
        """
        outcomes = await asyncio.gather(
            *(self._capture(reader) for reader in self.readers),
            return_exceptions=True,
        )

        snapshots: Dict[Authority, InventorySnapshot] = {}
        unavailable: Dict[Authority, str] = {}

        for reader, outcome in zip(self.readers, outcomes):
            authority = reader.authority
            if isinstance(outcome, InventorySnapshot):
                snapshots[authority] = outcome
                logger.info(f"{authority.value}: {len(outcome)} device(s)")
            elif isinstance(outcome, AuthorityUnavailable):
                unavailable[authority] = outcome.reason
                logger.warning(f"{authority.value} unavailable for this pass: {outcome.reason}")
            elif isinstance(outcome, asyncio.CancelledError):
                raise outcome
            else:
                unavailable[authority] = f"unexpected error: {outcome}"
                logger.error(
                    f"Unexpected error reading {authority.value}: {outcome}",
                    exc_info=outcome,
                )

        if not snapshots:
            raise PartialInventoryFailure({a.value: reason for a, reason in unavailable.items()})

        return InventoryResult(snapshots=snapshots, unavailable=unavailable)
