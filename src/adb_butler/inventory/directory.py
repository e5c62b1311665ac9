"""
Device-directory access and the directory inventory reader.

The directory is the provider farm's shared device collection (RethinkDB
``stf.devices``). Other hosts write to the same collection, so the controller
only reads records and issues filter-scoped mutations.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from rethinkdb import r
from rethinkdb.errors import ReqlAvailabilityError, ReqlDriverError, ReqlError, ReqlTimeoutError

from adb_butler.core.errors import (
    AuthorityUnavailable,
    ButlerError,
    CallTimeout,
    DirectoryUnavailable,
)

from .identity import IdentityClassifier, normalize_identity
from .models import Authority, DeviceStatus, InventorySnapshot

logger = logging.getLogger(__name__)


class DirectoryStore(ABC):
    """
    Read/write contract the controller needs from the device directory.

    Filters are partial documents: ``{"serial": "..."}`` or
    ``{"provider": {"name": "..."}}``.
    """

    @abstractmethod
    async def query(self, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return records matching the filter."""

    @abstractmethod
    async def delete(self, filter: Dict[str, Any]) -> int:
        """Delete records matching the filter and return the count deleted."""

    @abstractmethod
    async def update(self, filter: Dict[str, Any], changes: Dict[str, Any]) -> int:
        """Merge changes into matching records and return the count modified."""

    async def close(self) -> None:
        """Release connections held by the store."""


class RethinkDirectoryStore(DirectoryStore):
    """
    Directory store backed by RethinkDB.

    The driver is blocking, so each call opens a connection in a worker thread,
    runs one query and closes it, all under a timeout.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 28015,
        db: str = "stf",
        table: str = "devices",
        auth_key: str = "",
        timeout: float = 10.0,
    ):
        """
        Initialize RethinkDB directory store.

        Args:
            host: RethinkDB host
            port: RethinkDB driver port
            db: Database name
            table: Device table name
            auth_key: Auth key (empty for none)
            timeout: Connect and query timeout in seconds
        """
        self.host = host
        self.port = port
        self.db = db
        self.table = table
        self.auth_key = auth_key
        self.timeout = timeout

    def _run(self, build: Callable[[Any], Any], collect: bool = False) -> Any:
        try:
            conn = r.connect(
                host=self.host,
                port=self.port,
                db=self.db,
                auth_key=self.auth_key,
                timeout=max(1, int(self.timeout)),
            )
        except ReqlError as e:
            raise DirectoryUnavailable(
                f"cannot connect to {self.host}:{self.port}: {e}"
            ) from e

        try:
            result = build(r.table(self.table)).run(conn)
            if collect:
                result = list(result)
            return result
        # ReqlTimeoutError is a ReqlDriverError, so it is matched first
        except ReqlTimeoutError as e:
            raise CallTimeout(str(e)) from e
        except (ReqlDriverError, ReqlAvailabilityError) as e:
            raise DirectoryUnavailable(str(e)) from e
        except ReqlError as e:
            raise ButlerError(f"directory query failed: {e}") from e
        finally:
            conn.close()

    async def _call(self, build: Callable[[Any], Any], collect: bool = False) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._run, build, collect), self.timeout
            )
        except asyncio.TimeoutError as e:
            raise CallTimeout(f"directory call timed out after {self.timeout}s") from e

    async def query(self, filter: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._call(lambda t: t.filter(filter), collect=True)

    async def delete(self, filter: Dict[str, Any]) -> int:
        result = await self._call(lambda t: t.filter(filter).delete())
        return int(result.get("deleted", 0))

    async def update(self, filter: Dict[str, Any], changes: Dict[str, Any]) -> int:
        result = await self._call(lambda t: t.filter(filter).update(changes))
        return int(result.get("replaced", 0))


def provider_filter(hostname: str) -> Dict[str, Any]:
    return {"provider": {"name": hostname}}


class DirectoryReader:
    """
    Captures the directory records that belong to this provider host.

    Records are scoped by provider name (HOSTNAME) and by the emulator serials
    registered under the host's public IP.
    """

    authority = Authority.DIRECTORY

    def __init__(
        self,
        store: DirectoryStore,
        classifier: IdentityClassifier,
        hostname: Optional[str] = None,
        public_ip: Optional[str] = None,
    ):
        self.store = store
        self.classifier = classifier
        self.hostname = hostname
        self.public_ip = public_ip

    def scope_filters(self) -> List[Dict[str, Any]]:
        filters = []
        if self.hostname:
            filters.append(provider_filter(self.hostname))
        if self.public_ip:
            filters.extend(
                {"serial": serial}
                for serial in self.classifier.ephemeral_serials(self.public_ip)
            )
        return filters

    async def capture(self) -> InventorySnapshot:
        filters = self.scope_filters()
        if not filters:
            raise AuthorityUnavailable(
                self.authority.value,
                "neither HOSTNAME nor STF_PROVIDER_PUBLIC_IP is configured",
            )

        try:
            results = await asyncio.gather(*(self.store.query(f) for f in filters))
        except (ButlerError, OSError) as e:
            raise AuthorityUnavailable(self.authority.value, str(e)) from e

        entries: Dict[str, DeviceStatus] = {}
        for records in results:
            for record in records:
                serial = record.get("serial")
                if not serial:
                    continue
                entries[normalize_identity(serial)] = self._record_status(record)

        logger.debug(f"Directory holds {len(entries)} record(s) for this host")
        return InventorySnapshot(authority=self.authority, devices=entries)

    def _record_status(self, record: Dict[str, Any]) -> DeviceStatus:
        # Records without a presence flag count as present
        present = record.get("present", True) is not False
        changed_at = record.get("presenceChangedAt")
        provider = record.get("provider") or {}

        return DeviceStatus(
            online=present,
            last_seen=changed_at if isinstance(changed_at, datetime) else datetime.utcnow(),
            serial=record.get("serial"),
            state="present" if present else "absent",
            meta={
                "provider": provider.get("name") if isinstance(provider, dict) else None,
                "notes": record.get("notes"),
            },
        )
