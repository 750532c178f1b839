"""Tests for dependency inference and layered layout."""

import pytest

from mcp_fleet.managers.dependency_graph import (
    DependencyConfig,
    DependencyGraphBuilder,
    build_graph,
    build_port_table,
    compute_layout,
    compute_levels,
    infer_dependencies,
    parse_endpoint_port,
)
from mcp_fleet.managers.fleet_cache import FleetCache
from mcp_fleet.managers.reconciliation_manager import ReconciliationManager
from mcp_fleet.models.fleet import ContainerRecord, NodePosition

CONFIG = DependencyConfig()


def fleet_of(*names, states=None):
    states = states or {}
    return [
        ContainerRecord(id=f"id-{name}", name=name, state=states.get(name, "running"), status="Up")
        for name in names
    ]


@pytest.mark.parametrize(
    "value,expected",
    [
        ("http://x:9000/", "9000"),
        ("http://api:9000/v1/health", "9000"),
        ("mqtt://broker:1883", "1883"),
        ("postgres://user:pw@db:5432/app", "5432"),
        ("http://api/", None),
        ("api:9000", None),
        ("not a url", None),
        ("http://api:notaport/", None),
        ("", None),
    ],
)
def test_parse_endpoint_port(value, expected):
    """Test port extraction from dependency values."""
    assert parse_endpoint_port(value) == expected


def test_variable_classification():
    """Test the dependency and port variable conventions."""
    assert CONFIG.is_dependency_var("URI_API")
    assert CONFIG.is_dependency_var("ENDPOINT_MODULE_AUTH")
    assert CONFIG.is_dependency_var("MQTT_URI")
    assert not CONFIG.is_dependency_var("DATABASE_URL")

    assert CONFIG.advertises_port("API_PORT")
    assert CONFIG.advertises_port("PORT")
    assert not CONFIG.advertises_port("VITE_API_PORT")
    assert not CONFIG.advertises_port("PORT_RANGE")


def test_single_edge_inferred():
    """Test that A -> B is found through B's advertised port."""
    fleet = fleet_of("a", "b")
    envs = {"a": {"URI_B": "http://x:9000/"}, "b": {"SOME_PORT": "9000"}}

    deps = infer_dependencies(fleet, envs, CONFIG)

    a = deps[0]
    assert len(a.dependencies) == 1
    edge = a.dependencies[0]
    assert (edge.env_var, edge.target, edge.url, edge.port) == ("URI_B", "b", "http://x:9000/", "9000")
    assert deps[1].dependencies == []


def test_no_edge_without_advertised_port():
    """Test that an unmatched port yields no edge."""
    fleet = fleet_of("a", "b")
    envs = {"a": {"URI_B": "http://x:9000/"}, "b": {}}

    deps = infer_dependencies(fleet, envs, CONFIG)

    assert all(entry.dependencies == [] for entry in deps)


def test_unparseable_values_dropped_silently():
    """Test that malformed dependency values produce no edge and no error."""
    fleet = fleet_of("a", "b")
    envs = {"a": {"URI_B": "b:9000", "URI_C": "http://[::1", "URI_D": ""}, "b": {"B_PORT": "9000"}}

    deps = infer_dependencies(fleet, envs, CONFIG)

    assert deps[0].dependencies == []


def test_port_collision_last_writer_wins():
    """Test that a later container advertising the same port takes it over."""
    fleet = fleet_of("a", "b", "c")
    envs = {"a": {"URI_X": "http://x:9000"}, "b": {"PORT": "9000"}, "c": {"PORT": "9000"}}

    assert build_port_table(fleet, envs, CONFIG) == {"9000": "c"}
    assert infer_dependencies(fleet, envs, CONFIG)[0].dependencies[0].target == "c"


def test_vite_port_is_not_advertised():
    """Test that build-time VITE_ port variables are ignored."""
    fleet = fleet_of("a", "b")
    envs = {"a": {"URI_B": "http://b:5173"}, "b": {"VITE_DEV_PORT": "5173"}}

    assert infer_dependencies(fleet, envs, CONFIG)[0].dependencies == []


def test_broken_dependency_flagged():
    """Test that depending on an exited container is flagged."""
    fleet = fleet_of("a", "b", states={"b": "exited"})
    envs = {"a": {"URI_B": "http://b:9000"}, "b": {"PORT": "9000"}}

    deps = infer_dependencies(fleet, envs, CONFIG)

    assert deps[0].has_broken_dependency is True
    assert deps[1].has_broken_dependency is False


def test_levels_of_linear_chain():
    """Test A -> B -> C layering."""
    levels = compute_levels(["a", "b", "c"], {"a": ["b"], "b": ["c"]})
    assert levels == {"c": 0, "b": 1, "a": 2}


def test_levels_of_two_cycle():
    """Test that a cycle terminates with both nodes at level 0."""
    levels = compute_levels(["a", "b"], {"a": ["b"], "b": ["a"]})
    assert levels == {"a": 0, "b": 0}


def test_levels_of_diamond():
    """Test that a node sits one above its deepest dependency."""
    levels = compute_levels(
        ["app", "cache", "db", "api"],
        {"app": ["api", "cache"], "api": ["db"], "cache": []},
    )
    assert levels == {"db": 0, "cache": 0, "api": 1, "app": 2}


def test_levels_ignore_unknown_targets_and_self_edges():
    """Test that edges to unknown nodes are ignored and self-edges form a cycle."""
    levels = compute_levels(["a", "b"], {"a": ["ghost"], "b": ["b"]})
    assert levels == {"a": 0, "b": 0}


def test_layout_grid():
    """Test column per level and row per rank within the level."""
    positions = compute_layout(["c", "b", "a", "d"], {"c": 0, "b": 1, "a": 2, "d": 0}, CONFIG)

    assert positions["c"] == NodePosition(x=0, y=0)
    assert positions["d"] == NodePosition(x=0, y=280)
    assert positions["b"] == NodePosition(x=650, y=0)
    assert positions["a"] == NodePosition(x=1300, y=0)


def test_layout_uses_configured_grid():
    """Test custom column width and row height."""
    config = DependencyConfig(column_width=100, row_height=50)
    positions = compute_layout(["a", "b"], {"a": 1, "b": 1}, config)
    assert positions["b"] == NodePosition(x=100, y=50)


def test_graph_prefers_saved_positions():
    """Test that saved positions override computed ones."""
    fleet = fleet_of("a", "b")
    envs = {"a": {"URI_B": "http://b:9000"}, "b": {"PORT": "9000"}}
    deps = infer_dependencies(fleet, envs, CONFIG)

    graph = build_graph(deps, {"a": NodePosition(x=5, y=6)}, CONFIG)

    nodes = {node.name: node for node in graph.nodes}
    assert nodes["a"].position == NodePosition(x=5, y=6)
    assert nodes["a"].position_source == "saved"
    assert nodes["a"].level == 1
    assert nodes["b"].position == NodePosition(x=0, y=0)
    assert nodes["b"].position_source == "computed"
    assert [(e.source, e.target) for e in graph.edges] == [("a", "b")]


def test_graph_api_shape():
    """Test camelCase serialization of the graph."""
    fleet = fleet_of("a", "b")
    envs = {"a": {"URI_B": "http://b:9000"}, "b": {"PORT": "9000"}}
    graph = build_graph(infer_dependencies(fleet, envs, CONFIG), {}, CONFIG)

    data = graph.to_api()

    assert data["edges"][0] == {
        "envVar": "URI_B",
        "target": "b",
        "url": "http://b:9000",
        "port": "9000",
        "source": "a",
    }
    assert data["nodes"][0]["positionSource"] == "computed"
    assert data["nodes"][0]["hasBrokenDependency"] is False


@pytest.mark.asyncio
async def test_builder_uses_cached_env_for_unavailable(fake_engine, state_store):
    """Test live inspects for reachable containers and cached env otherwise."""
    fake_engine.add("b", env={"PORT": "9000"})
    fleet = [
        ContainerRecord(id="gone", name="a", state="unavailable", env={"URI_B": "http://b:9000"}),
        ContainerRecord(id=fake_engine.summaries[0]["Id"], name="b", state="running"),
    ]
    builder = DependencyGraphBuilder(fake_engine, CONFIG, FleetCache(state_store))

    deps = await builder.dependencies(fleet)

    assert deps[0].dependencies[0].target == "b"


@pytest.mark.asyncio
async def test_builder_falls_back_to_cache_on_inspect_failure(fake_engine, state_store, metrics):
    """Test that a live container whose inspect fails keeps its cached dependencies."""
    a = fake_engine.add("a", env={"URI_B": "http://b:9000"})
    fake_engine.add("b", env={"PORT": "9000"})
    cache = FleetCache(state_store)
    reconciler = ReconciliationManager(fake_engine, cache, CONFIG, metrics=metrics)
    await reconciler.refresh()

    fake_engine.failing_inspects.add(a["Id"])
    fleet = await reconciler.list_fleet()
    assert all(record.env == {} for record in fleet)

    builder = DependencyGraphBuilder(fake_engine, CONFIG, cache)
    deps = {entry.name: entry for entry in await builder.dependencies(fleet)}

    assert [(d.target, d.port) for d in deps["a"].dependencies] == [("b", "9000")]
    graph = await builder.graph(fleet, {})
    assert [(e.source, e.target) for e in graph.edges] == [("a", "b")]
