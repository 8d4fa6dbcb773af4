"""File IO helpers for :mod:`Machinations_Web.graph`."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from pydantic import BaseModel, Field, ValidationError, field_validator

from .model import DEFAULT_DIAGRAM_NAME, Graph
from .registry import CONNECTION_TYPES, NODE_TYPES


class DiagramValidationError(ValueError):
    """Raised when a diagram document does not match the expected schema."""


class NodeRecord(BaseModel):
    id: str
    type: str
    x: float = 0.0
    y: float = 0.0
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        if value not in NODE_TYPES:
            raise ValueError(f"unknown node type {value!r}")
        return value


class ConnectionRecord(BaseModel):
    id: str
    type: str
    source: str
    target: str
    properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _known_type(cls, value: str) -> str:
        if value not in CONNECTION_TYPES:
            raise ValueError(f"unknown connection type {value!r}")
        return value


class DiagramDocument(BaseModel):
    name: str = DEFAULT_DIAGRAM_NAME
    nodes: List[NodeRecord] = Field(default_factory=list)
    connections: List[ConnectionRecord] = Field(default_factory=list)


def load_graph(path: str) -> Graph:
    """Load a diagram from ``path`` and return a :class:`Graph`."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    _validate_graph(data)
    return Graph.from_dict(data)


def save_graph(path: str, graph: Graph) -> None:
    """Write ``graph`` to ``path`` in JSON format."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(graph.to_dict(), f, indent=2, ensure_ascii=False)


def new_graph(name: str = DEFAULT_DIAGRAM_NAME) -> Graph:
    """Return a new blank graph."""
    return Graph(name)


def _validate_graph(data: Any) -> None:
    if not isinstance(data, dict):
        raise DiagramValidationError("Diagram document must be an object")
    try:
        DiagramDocument.model_validate(data)
    except ValidationError as exc:
        raise DiagramValidationError(str(exc)) from exc
