"""Repository for Snapshot documents."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from mcp_fleet.models.snapshots import Snapshot

from .base import BaseRepository


class SnapshotRepository(BaseRepository[Snapshot]):
    """Repository for reading and replacing snapshot documents."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize snapshot repository.

        Args:
            session: Database session
        """
        super().__init__(session, Snapshot)

    async def get_document(self, name: str) -> Any | None:
        """
        Get the document stored under a logical table name.

        Args:
            name: Logical table name

        Returns:
            Stored JSON document, or None if never written
        """
        snapshot = await self.get(name)
        return snapshot.document if snapshot else None

    async def put_document(self, name: str, document: Any) -> Snapshot:
        """
        Replace the document stored under a logical table name.

        Args:
            name: Logical table name
            document: JSON-serializable document

        Returns:
            Stored snapshot row
        """
        now = datetime.now(timezone.utc).replace(tzinfo=None)
        snapshot = await self.get(name)
        if snapshot is None:
            return await self.create(Snapshot(name=name, document=document, updated_at=now))

        snapshot.document = document
        snapshot.updated_at = now
        return await self.update(snapshot)
