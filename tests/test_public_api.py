import Machinations_Web
from Machinations_Web.engine import Engine
from Machinations_Web.graph import Graph
from Machinations_Web.history import History


def test_lazy_exports():
    assert Machinations_Web.Engine is Engine
    assert Machinations_Web.Graph is Graph
    assert Machinations_Web.History is History
    assert Machinations_Web.__version__
