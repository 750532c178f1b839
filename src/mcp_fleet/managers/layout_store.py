"""Operator-saved node positions of the dependency graph."""

from typing import Dict, Mapping

from pydantic import ValidationError as PydanticValidationError

from mcp_fleet.managers.state_store import StateStore
from mcp_fleet.models.fleet import NodePosition
from mcp_fleet.models.snapshots import LAYOUT
from mcp_fleet.utils import get_logger
from mcp_fleet.utils.exceptions import ValidationError

logger = get_logger(__name__)


class LayoutStore:
    """Positions keyed by container identity, independent of fleet data."""

    def __init__(self, store: StateStore) -> None:
        """Initialize layout store."""
        self.store = store
        self._positions: Dict[str, NodePosition] = {}

    async def load(self) -> int:
        """Load saved positions; unreadable entries are dropped."""
        document = await self.store.get(LAYOUT) or {}
        positions = {}
        for name, value in document.items():
            try:
                positions[name] = NodePosition.model_validate(value)
            except PydanticValidationError:
                logger.warning("Skipping unreadable node position", extra={"node": name})
        self._positions = positions
        return len(positions)

    def get_positions(self) -> Dict[str, NodePosition]:
        """Return a copy of the saved positions."""
        return dict(self._positions)

    async def save_positions(self, positions: Mapping[str, object]) -> Dict[str, NodePosition]:
        """
        Replace the saved layout.

        Args:
            positions: Mapping of identity to ``{"x": ..., "y": ...}``

        Returns:
            Saved positions

        Raises:
            ValidationError: If any entry is not a coordinate pair
        """
        parsed: Dict[str, NodePosition] = {}
        for name, value in positions.items():
            try:
                parsed[str(name)] = NodePosition.model_validate(value)
            except PydanticValidationError as e:
                raise ValidationError(str(name), f"Invalid position for {name}: {e}") from e

        self._positions = parsed
        await self.store.put(LAYOUT, {k: v.model_dump(mode="json") for k, v in parsed.items()})
        logger.info("Node positions saved", extra={"count": len(parsed)})
        return dict(parsed)

    async def reset(self) -> None:
        """Discard every saved position; safe to repeat."""
        self._positions = {}
        await self.store.put(LAYOUT, {})
        logger.info("Node positions reset")
