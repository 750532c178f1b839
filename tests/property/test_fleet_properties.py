"""Property-based tests for fleet merging, leveling and log decoding."""

import pytest
from fakes import frame
from hypothesis import given
from hypothesis import strategies as st

from mcp_fleet.managers.dependency_graph import DependencyConfig, compute_layout, compute_levels
from mcp_fleet.managers.rebuild_orchestrator import TRUNCATION_MARKER, RebuildJob
from mcp_fleet.managers.reconciliation_manager import ReconciliationManager
from mcp_fleet.models.fleet import ContainerRecord
from mcp_fleet.utils.log_frames import FrameDemultiplexer, demux_lines

names = st.sampled_from(["web", "api", "db", "cache", "mqtt", "auth", "ui", "worker"])


class StaticCache:
    def __init__(self, records):
        self.records = records

    def get_all(self):
        return list(self.records)


class RecordingReconciler(ReconciliationManager):
    """Reconciler that records scheduled refreshes instead of running them."""

    def __init__(self, cache):
        super().__init__(None, cache, DependencyConfig())
        self.scheduled = []

    def _schedule_refresh(self, records):
        self.scheduled.extend(record.name for record in records)


@pytest.mark.property
@given(st.sets(names), st.sets(names))
def test_merge_reports_every_known_container(live_names, cached_names):
    """Property: the merged view is live first, then every cached-only container as unavailable."""
    live = [ContainerRecord(id=f"live-{n}", name=n, state="running") for n in sorted(live_names)]
    cached = [ContainerRecord(id=f"old-{n}", name=n, state="running") for n in sorted(cached_names)]
    reconciler = RecordingReconciler(StaticCache(cached))

    merged = reconciler.reconcile(live)

    assert merged[: len(live)] == live
    assert {r.name for r in merged} == live_names | cached_names
    assert len(merged) == len(live_names | cached_names)
    for record in merged[len(live):]:
        assert record.state == "unavailable"
        assert record.name in cached_names - live_names
    assert set(reconciler.scheduled) == live_names - cached_names


@pytest.mark.property
@given(st.lists(st.tuples(names, names), max_size=30))
def test_levels_terminate_and_respect_edges(edges):
    """Property: every node gets a level, one above its deepest dependency when leveled through them."""
    order = sorted({a for a, _ in edges} | {b for _, b in edges})
    dependencies = {}
    for source, target in edges:
        dependencies.setdefault(source, []).append(target)

    levels = compute_levels(order, dependencies)

    assert set(levels) == set(order)
    for name in order:
        targets = set(dependencies.get(name, ()))
        if not targets:
            assert levels[name] == 0
        elif levels[name] > 0:
            assert levels[name] == 1 + max(levels[t] for t in targets)


@pytest.mark.property
@given(st.lists(names, unique=True, max_size=8), st.integers(min_value=0, max_value=3))
def test_layout_positions_are_distinct(order, depth):
    """Property: no two nodes share a computed position."""
    levels = {name: i % (depth + 1) for i, name in enumerate(order)}

    positions = compute_layout(order, levels, DependencyConfig())

    assert len({(p.x, p.y) for p in positions.values()}) == len(order)


@pytest.mark.property
@given(
    st.lists(
        st.tuples(st.sampled_from([1, 2]), st.text(alphabet="abc xyz\n", max_size=20)),
        max_size=10,
    ),
    st.lists(st.integers(min_value=1, max_value=16), max_size=40),
)
def test_chunking_does_not_change_lines(frames, cuts):
    """Property: however the stream is split, the decoded lines are the same."""
    data = b"".join(frame(text.encode(), stream) for stream, text in frames)

    chunks = []
    offset = 0
    for cut in cuts:
        if offset >= len(data):
            break
        chunks.append(data[offset : offset + cut])
        offset += cut
    chunks.append(data[offset:])

    demux = FrameDemultiplexer()
    lines = [line for chunk in chunks for _, line in demux.feed_lines(chunk)]

    assert lines == demux_lines(data)
    assert demux.pending_bytes == 0


@pytest.mark.property
@given(st.lists(st.text(max_size=40), max_size=20), st.integers(min_value=0, max_value=100))
def test_accumulated_output_respects_limit(pieces, limit):
    """Property: kept output never exceeds the byte limit."""
    job = RebuildJob(identity="web", container_id="1", container_name="web", script_name="UP_web.sh")

    for piece in pieces:
        job.append_output(piece, limit)

    kept = job.output.removesuffix(TRUNCATION_MARKER) if job.truncated else job.output
    assert len(kept.encode("utf-8")) <= limit
    assert job.output_bytes == len(kept.encode("utf-8"))
