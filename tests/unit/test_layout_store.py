"""Tests for LayoutStore."""

import pytest

from mcp_fleet.managers.layout_store import LayoutStore
from mcp_fleet.models.fleet import NodePosition
from mcp_fleet.models.snapshots import LAYOUT
from mcp_fleet.utils.exceptions import ValidationError


@pytest.fixture
def layout(state_store) -> LayoutStore:
    """Empty layout store over the test database."""
    return LayoutStore(state_store)


@pytest.mark.asyncio
async def test_save_replaces_map(layout):
    """Test that saving replaces every position."""
    await layout.save_positions({"web": {"x": 10, "y": 20}, "db": {"x": 0, "y": 0}})
    await layout.save_positions({"api": {"x": 650, "y": 280}})

    assert layout.get_positions() == {"api": NodePosition(x=650, y=280)}


@pytest.mark.asyncio
async def test_positions_survive_reload(layout, state_store):
    """Test that saved positions are loaded by a new store."""
    await layout.save_positions({"web": {"x": 1.5, "y": -3}})

    reloaded = LayoutStore(state_store)
    assert await reloaded.load() == 1
    assert reloaded.get_positions()["web"] == NodePosition(x=1.5, y=-3)


@pytest.mark.asyncio
async def test_reset_twice_is_idempotent(layout, state_store):
    """Test that resetting twice succeeds and leaves an empty layout."""
    await layout.save_positions({"web": {"x": 1, "y": 2}})

    await layout.reset()
    await layout.reset()

    assert layout.get_positions() == {}
    assert await state_store.get(LAYOUT) == {}


@pytest.mark.asyncio
async def test_invalid_position_rejected(layout):
    """Test that a malformed entry raises and leaves the layout untouched."""
    await layout.save_positions({"web": {"x": 1, "y": 2}})

    with pytest.raises(ValidationError) as exc_info:
        await layout.save_positions({"db": {"x": "left"}})

    assert exc_info.value.status_code == 400
    assert exc_info.value.field == "db"
    assert layout.get_positions() == {"web": NodePosition(x=1, y=2)}


@pytest.mark.asyncio
async def test_get_positions_returns_copy(layout):
    """Test that callers cannot mutate the stored map."""
    await layout.save_positions({"web": {"x": 1, "y": 2}})

    layout.get_positions().clear()

    assert "web" in layout.get_positions()


@pytest.mark.asyncio
async def test_unreadable_entries_dropped_on_load(layout, state_store):
    """Test that bad persisted entries are skipped."""
    await state_store.put(LAYOUT, {"web": {"x": 1, "y": 2}, "db": "nowhere"})

    assert await layout.load() == 1
