from Machinations_Web.config import Config
from Machinations_Web.graph.model import Graph
from Machinations_Web.history import History


def test_undo_redo_cycle(graph):
    history = History()
    assert not history.can_undo and not history.can_redo
    assert history.undo(graph) is None
    assert history.redo(graph) is None

    history.push(graph)
    node = graph.create_node("pool", properties={"name": "A"})

    previous = history.undo(graph)
    assert previous["nodes"] == []
    assert history.can_redo

    restored = Graph.from_dict(previous)
    following = history.redo(restored)
    assert [n["id"] for n in following["nodes"]] == [node.id]
    assert history.can_undo
    assert not history.can_redo


def test_push_clears_redo(graph):
    history = History()
    history.push(graph)
    history.undo(graph)
    assert history.can_redo
    history.push(graph)
    assert not history.can_redo


def test_snapshots_are_isolated_from_later_edits(graph):
    node = graph.create_node("pool", properties={"name": "A"})
    history = History()
    history.push(graph)
    node.properties["name"] = "B"
    snapshot = history.undo(graph)
    assert snapshot["nodes"][0]["properties"]["name"] == "A"


def test_max_size_drops_oldest(graph):
    history = History(max_size=3)
    for i in range(5):
        graph.name = f"v{i}"
        history.push(graph)
    assert len(history.undo_stack) == 3
    names = [history.undo(graph)["name"] for _ in range(3)]
    assert names == ["v4", "v3", "v2"]
    assert history.undo(graph) is None


def test_default_size_comes_from_config(monkeypatch):
    monkeypatch.setattr(Config, "history_size", 7)
    assert History().max_size == 7


def test_accepts_documents_and_clear():
    history = History()
    history.push({"name": "doc", "nodes": [], "connections": []})
    assert history.undo({"name": "now", "nodes": [], "connections": []})["name"] == "doc"
    history.clear()
    assert not history.can_undo and not history.can_redo
