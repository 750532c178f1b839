"""In-memory fleet cache backed by the durable fleet snapshot."""

from typing import Dict, Iterable, List

from pydantic import ValidationError as PydanticValidationError

from mcp_fleet.managers.state_store import StateStore
from mcp_fleet.models.fleet import ContainerRecord
from mcp_fleet.models.snapshots import FLEET_SNAPSHOT
from mcp_fleet.utils import get_logger

logger = get_logger(__name__)


class FleetCache:
    """
    Last known state of every container ever observed.

    Entries are keyed by identity and only ever replaced, never removed,
    except by ``clear``.
    """

    def __init__(self, store: StateStore) -> None:
        """
        Initialize fleet cache.

        Args:
            store: Durable store for the snapshot document
        """
        self.store = store
        self._records: Dict[str, ContainerRecord] = {}

    async def load(self) -> int:
        """
        Load the snapshot into memory.

        Returns:
            Number of records loaded
        """
        document = await self.store.get(FLEET_SNAPSHOT) or []
        records: Dict[str, ContainerRecord] = {}
        for item in document:
            try:
                record = ContainerRecord.model_validate(item)
            except PydanticValidationError as e:
                logger.warning(
                    "Skipping unreadable cached container",
                    extra={"entry": str(item)[:200], "error": str(e)},
                )
                continue
            records[record.name] = record
        self._records = records
        logger.info("Loaded fleet snapshot", extra={"count": len(records)})
        return len(records)

    def get_all(self) -> List[ContainerRecord]:
        """Return every cached record (empty list if none)."""
        return list(self._records.values())

    def find(self, key: str) -> ContainerRecord | None:
        """
        Find a record by identity or engine ID.

        Args:
            key: Identity, engine ID or unambiguous ID prefix

        Returns:
            Matching record or None
        """
        if key in self._records:
            return self._records[key]
        for record in self._records.values():
            if record.id == key:
                return record
        matches = [r for r in self._records.values() if len(key) >= 12 and r.id.startswith(key)]
        return matches[0] if len(matches) == 1 else None

    def __len__(self) -> int:
        return len(self._records)

    async def save_containers(self, batch: Iterable[ContainerRecord]) -> List[ContainerRecord]:
        """
        Merge a batch into the cache and persist the full snapshot.

        The in-memory merge happens first; if the write then fails, the
        PersistenceError propagates and memory stays ahead of the snapshot.

        Args:
            batch: Records to insert or replace by identity

        Returns:
            Merged list of records
        """
        batch = list(batch)
        for record in batch:
            self._records[record.name] = record.model_copy(update={"rebuilding": False})

        merged = self.get_all()
        await self.store.put(FLEET_SNAPSHOT, [r.to_snapshot() for r in merged])
        logger.info(
            "Cached containers",
            extra={"total": len(merged), "updated": len(batch)},
        )
        return merged

    async def clear(self) -> None:
        """Empty the cache and persist the empty snapshot immediately."""
        self._records = {}
        await self.store.put(FLEET_SNAPSHOT, [])
        logger.info("Fleet cache cleared")
