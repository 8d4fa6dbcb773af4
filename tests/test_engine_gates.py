import pytest

from Machinations_Web.graph.registry import RESOURCE_CONNECTION


def _flow(graph, source, target, rate=1):
    return graph.create_connection(RESOURCE_CONNECTION, source.id, target.id, {"rate": rate})


def _gate(graph, start, rate, outputs, **props):
    feed = graph.create_node("pool", properties={"startValue": start})
    gate = graph.create_node("gate", properties=props)
    _flow(graph, feed, gate, rate)
    targets = []
    for capacity in outputs:
        target = graph.create_node("pool", properties={"capacity": capacity})
        _flow(graph, gate, target)
        targets.append(target)
    return feed, gate, targets


def _gate_deposits(result, gate):
    return [f for f in result.flows if f.source_id == gate.id]


def test_deterministic_split_gives_remainder_to_first(graph, make_engine):
    feed, gate, targets = _gate(
        graph, 7, 7, [-1, -1, -1], gateType="deterministic"
    )
    result = make_engine(graph).step()
    assert [t.resources for t in targets] == [3, 2, 2]
    assert sum(f.amount for f in _gate_deposits(result, gate)) == 7
    assert feed.resources == 0


def test_deterministic_split_smaller_than_outputs(graph, make_engine):
    feed, gate, targets = _gate(graph, 2, 2, [-1, -1, -1], gateType="deterministic")
    result = make_engine(graph).step()
    assert [t.resources for t in targets] == [2, 0, 0]
    assert len(_gate_deposits(result, gate)) == 1


def test_probabilistic_credits_exactly_one_output(graph, make_engine):
    feed, gate, targets = _gate(graph, 1000, 4, [-1, -1])
    engine = make_engine(graph)
    for _ in range(50):
        deposits = _gate_deposits(engine.step(), gate)
        assert len(deposits) == 1
        assert deposits[0].amount == 4
    assert all(t.resources > 0 for t in targets)
    assert sum(t.resources for t in targets) == 200


@pytest.mark.parametrize(
    "distribution, winner",
    [("100,0", 0), ("0,100", 1), ("0%, 100%", 1)],
)
def test_weighted_distribution(graph, make_engine, distribution, winner):
    feed, gate, targets = _gate(graph, 100, 1, [-1, -1], distribution=distribution)
    engine = make_engine(graph)
    for _ in range(20):
        engine.step()
    assert targets[winner].resources == 20
    assert targets[1 - winner].resources == 0


def test_malformed_distribution_uses_equal_weights(graph, make_engine):
    feed, gate, targets = _gate(graph, 100, 1, [-1, -1], distribution="1,2,3")
    engine = make_engine(graph)
    for _ in range(40):
        engine.step()
    assert all(t.resources > 0 for t in targets)


def test_gate_withdraws_even_without_room(graph, make_engine):
    # Resources taken by a gate with full outputs are lost.
    feed, gate, targets = _gate(graph, 10, 4, [0], gateType="deterministic")
    result = make_engine(graph).step()
    assert feed.resources == 6
    assert targets[0].resources == 0
    assert _gate_deposits(result, gate) == []


def test_gate_without_outputs_is_idle(graph, make_engine):
    feed, gate, targets = _gate(graph, 10, 4, [])
    make_engine(graph).step()
    assert feed.resources == 10
