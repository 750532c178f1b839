"""Durable get/put of whole JSON documents, one per logical table."""

from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from mcp_fleet.models.database import DatabaseManager
from mcp_fleet.repositories.snapshots import SnapshotRepository
from mcp_fleet.utils import get_logger
from mcp_fleet.utils.exceptions import PersistenceError

logger = get_logger(__name__)


class StateStore:
    """
    Key-value store over the snapshots table.

    Each put replaces the whole document in its own transaction; concurrent
    writers are not coordinated and the last completed write wins.
    """

    def __init__(self, db_manager: DatabaseManager) -> None:
        """Initialize state store."""
        self.db_manager = db_manager

    async def get(self, table: str) -> Any | None:
        """
        Read the document of a logical table.

        Args:
            table: Logical table name

        Returns:
            Document, or None if the table was never written

        Raises:
            PersistenceError: If the database cannot be read
        """
        try:
            async with self.db_manager.get_session() as session:
                return await SnapshotRepository(session).get_document(table)
        except SQLAlchemyError as e:
            logger.error("Failed to read snapshot", extra={"table": table, "error": str(e)})
            raise PersistenceError(table, e) from e

    async def put(self, table: str, document: Any) -> None:
        """
        Replace the document of a logical table.

        Args:
            table: Logical table name
            document: JSON-serializable document

        Raises:
            PersistenceError: If the write fails
        """
        try:
            async with self.db_manager.get_session() as session:
                await SnapshotRepository(session).put_document(table, document)
        except SQLAlchemyError as e:
            logger.error("Failed to write snapshot", extra={"table": table, "error": str(e)})
            raise PersistenceError(table, e) from e
        logger.debug("Snapshot written", extra={"table": table})
