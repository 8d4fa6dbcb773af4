"""Diagram data model: type registry, nodes, connections and the graph."""

from .model import Connection, Graph, Node
from .registry import UnknownTypeError

__all__ = ["Connection", "Graph", "Node", "UnknownTypeError"]
