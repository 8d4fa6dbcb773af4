import math

from Machinations_Web.graph.model import (
    DEFAULT_DIAGRAM_NAME,
    Graph,
    Node,
    generate_id,
)
from Machinations_Web.graph.registry import RESOURCE_CONNECTION, STATE_CONNECTION


def _chain(graph):
    a = graph.create_node("pool", 10, 20, {"startValue": 5, "name": "A"})
    b = graph.create_node("pool", 30, 40, {"name": "B"})
    c = graph.create_node("register", properties={"name": "R"})
    r1 = graph.create_connection(RESOURCE_CONNECTION, a.id, b.id, {"rate": 2})
    s1 = graph.create_connection(STATE_CONNECTION, c.id, b.id)
    return a, b, c, r1, s1


def test_default_name():
    assert Graph().name == DEFAULT_DIAGRAM_NAME == "machinations-diagram"


def test_generated_ids_are_unique():
    ids = {generate_id("n") for _ in range(500)}
    assert len(ids) == 500
    assert all(i.startswith("n_") for i in ids)


def test_create_and_lookup(graph):
    a, b, c, r1, s1 = _chain(graph)
    assert graph.node_count == 3
    assert graph.connection_count == 2
    assert graph.get_node(a.id) is a
    assert graph.get_connection(r1.id) is r1
    assert graph.get_node("missing") is None
    assert graph.get_connection("missing") is None
    assert graph.find_node_by_name("B") is b
    assert graph.find_node_by_name("nobody") is None
    assert a.resources == 5
    assert (a.x, a.y) == (10, 20)


def test_incoming_outgoing_filter_by_kind(graph):
    a, b, c, r1, s1 = _chain(graph)
    assert graph.incoming(b.id) == [r1, s1]
    assert graph.incoming(b.id, RESOURCE_CONNECTION) == [r1]
    assert graph.incoming(b.id, STATE_CONNECTION) == [s1]
    assert graph.outgoing(a.id, RESOURCE_CONNECTION) == [r1]
    assert graph.outgoing(a.id, STATE_CONNECTION) == []


def test_remove_node_cascades(graph):
    a, b, c, r1, s1 = _chain(graph)
    removed = graph.remove_node(b.id)
    assert sorted(removed) == sorted([r1.id, s1.id])
    assert graph.get_node(b.id) is None
    assert graph.connection_count == 0
    assert graph.remove_node("missing") == []


def test_remove_connection(graph):
    a, b, c, r1, s1 = _chain(graph)
    assert graph.remove_connection(r1.id) is r1
    assert graph.remove_connection(r1.id) is None
    assert graph.connection_count == 1


def test_dangling_connection_is_allowed(graph):
    a = graph.create_node("pool")
    conn = graph.create_connection(RESOURCE_CONNECTION, a.id, "ghost")
    assert graph.get_connection(conn.id) is conn


def test_total_resources_skips_non_finite(graph):
    a = graph.create_node("pool", properties={"startValue": 4})
    b = graph.create_node("pool", properties={"startValue": 6})
    c = graph.create_node("pool")
    c.resources = math.inf
    assert graph.total_resources() == 10
    a.resources = math.nan
    assert graph.total_resources() == 6


def test_capacity_clamps_deposits():
    node = Node("pool", properties={"capacity": 5, "startValue": 3})
    assert node.capacity == 5
    assert node.headroom() == 2
    assert not node.can_accept(3)
    assert node.add_resources(10) == 2
    assert node.resources == 5
    assert Node("pool").capacity is None


def test_withdrawals_clamp_and_sources_are_infinite():
    pool = Node("pool", properties={"startValue": 3})
    assert pool.remove_resources(5) == 3
    assert pool.resources == 0
    source = Node("source")
    assert source.remove_resources(7) == 7
    assert source.add_resources(7) == 0
    assert source.headroom() == 0


def test_register_starts_from_value():
    reg = Node("register", properties={"value": 7})
    assert reg.resources == 7
    assert reg.value == 7


def test_set_property_survives_reset(graph):
    a, b, c, r1, s1 = _chain(graph)
    a.set_property("startValue", 9)
    assert a.resources == 9
    a.resources = 1
    graph.reset()
    assert a.resources == 9


def test_reset_restores_runtime_state(graph):
    a, b, c, r1, s1 = _chain(graph)
    src = graph.create_node("source", properties={"production": 2})
    a.resources = 0
    b.resources = 42
    b.activated = True
    b.fired = True
    r1.current_rate = 9
    r1.active = False
    src.properties["production"] = 8
    graph.step_count = 12

    graph.reset()

    assert a.resources == 5
    assert b.resources == 0
    assert not b.activated and not b.fired
    assert r1.current_rate == 2
    assert r1.active
    assert src.properties["production"] == 2
    assert graph.step_count == 0


def test_round_trip_preserves_records(graph):
    a, b, c, r1, s1 = _chain(graph)
    a.properties["custom"] = {"nested": [1, 2, 3]}
    data = graph.to_dict()
    clone = Graph.from_dict(data)
    assert clone.name == graph.name
    assert clone.to_dict() == data
    assert list(clone.nodes) == list(graph.nodes)
    assert clone.nodes[a.id].properties["custom"] == {"nested": [1, 2, 3]}
    assert clone.connections[r1.id].source_id == a.id
    assert clone.connections[r1.id].target_id == b.id


def test_copy_is_independent(graph):
    a, b, c, r1, s1 = _chain(graph)
    clone = graph.copy()
    clone.nodes[a.id].resources = 0
    clone.nodes[a.id].properties["name"] = "changed"
    assert a.resources == 5
    assert a.properties["name"] == "A"
