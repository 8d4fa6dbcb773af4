from __future__ import annotations

import copy
import itertools
import math
import time
from typing import Any, Dict, Iterator, List

from .registry import (
    RESOURCE_CONNECTION,
    STATE_CONNECTION,
    NodeTypeDef,
    ConnectionTypeDef,
    connection_type,
    node_type,
)
from .types import (
    ConnectionData,
    ConnectionProperties,
    DiagramDict,
    NodeData,
    NodeProperties,
)

DEFAULT_DIAGRAM_NAME = "machinations-diagram"

#: Properties the engine rewrites while stepping; restored on reset.
ENGINE_WRITTEN_KEYS = ("production", "consumption", "value")

_id_counter = itertools.count(1)


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if number == 0:
        return "0"
    out = []
    while number:
        number, rem = divmod(number, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def generate_id(prefix: str) -> str:
    """Return a new identifier such as ``n_lq3k2x_7``."""

    return f"{prefix}_{_base36(int(time.time() * 1000))}_{next(_id_counter)}"


def as_number(value: Any, default: float = 0) -> float:
    """Coerce a property value to a number, returning ``default`` on failure."""

    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return default
        return int(number) if number.is_integer() else number
    return default


class Node:
    """Typed vertex of a diagram holding a resource quantity."""

    def __init__(
        self,
        type: str,
        x: float = 0.0,
        y: float = 0.0,
        properties: Dict[str, Any] | None = None,
        *,
        node_id: str | None = None,
    ) -> None:
        type_def = node_type(type)
        self.id = node_id or generate_id("n")
        self.type = type
        self.x = x or 0.0
        self.y = y or 0.0
        self.properties: NodeProperties = dict(type_def.defaults)
        if properties:
            self.properties.update(copy.deepcopy(properties))
        if not self.properties.get("name"):
            self.properties["name"] = type_def.name
        self._baseline = copy.deepcopy(self.properties)

        # Runtime state
        self.resources: float = self.start_value()
        self.activated = False
        self.fired = False

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"Node({self.type!r}, id={self.id!r}, resources={self.resources!r})"

    @property
    def type_def(self) -> NodeTypeDef:
        return node_type(self.type)

    @property
    def name(self) -> str:
        return str(self.properties.get("name") or self.id)

    @property
    def activation_mode(self) -> str | None:
        return self.properties.get("activationMode")

    @property
    def capacity(self) -> float | None:
        """Return the capacity or ``None`` when unbounded."""

        cap = self.properties.get("capacity")
        if cap is None:
            return None
        cap = as_number(cap, -1)
        if cap < 0:
            return None
        return cap

    @property
    def value(self) -> float:
        """Value seen by state connections and charts."""

        if self.type == "register":
            return as_number(self.properties.get("value"), 0) or 0
        return self.resources or 0

    def start_value(self) -> float:
        """Return the quantity the node starts with and resets to."""

        start = self.properties.get("startValue")
        if start is None and self.type == "register":
            start = self.properties.get("value")
        return as_number(start, 0) or 0

    def headroom(self) -> float:
        """Return how much more the node can accept."""

        if self.type == "drain":
            return math.inf
        if self.type == "source":
            return 0
        cap = self.capacity
        if cap is None:
            return math.inf
        return max(0, cap - self.resources)

    def can_accept(self, amount: float) -> bool:
        """Return ``True`` if ``amount`` fits without clamping."""

        if self.type == "drain":
            return True
        if self.type == "source":
            return False
        cap = self.capacity
        if cap is None:
            return True
        return self.resources + amount <= cap

    def add_resources(self, amount: float) -> float:
        """Deposit ``amount`` clamped to capacity and return what was added."""

        if self.type == "source" or amount <= 0:
            return 0
        before = self.resources
        after = before + amount
        cap = self.capacity
        if cap is not None and self.type != "drain":
            after = min(after, cap)
        self.resources = after
        return max(0, after - before)

    def remove_resources(self, amount: float) -> float:
        """Withdraw up to ``amount`` and return what was removed.

        Sources are infinite suppliers and always yield ``amount``.
        """

        if amount <= 0:
            return 0
        if self.type == "source":
            return amount
        removed = min(self.resources, amount)
        if removed <= 0:
            return 0
        self.resources -= removed
        return removed

    def set_property(self, key: str, value: Any) -> None:
        """Edit an authored property; the change survives :meth:`Graph.reset`."""

        self.properties[key] = value
        self._baseline[key] = copy.deepcopy(value)
        if key == "startValue" or (self.type == "register" and key == "value"):
            self.resources = self.start_value()

    def restore_baseline(self) -> None:
        """Undo engine-side rewrites of :data:`ENGINE_WRITTEN_KEYS`."""

        for key in ENGINE_WRITTEN_KEYS:
            if key in self._baseline:
                self.properties[key] = copy.deepcopy(self._baseline[key])

    def to_dict(self) -> NodeData:
        return {
            "id": self.id,
            "type": self.type,
            "x": self.x,
            "y": self.y,
            "properties": copy.deepcopy(self.properties),
        }

    @classmethod
    def from_dict(cls, data: NodeData) -> "Node":
        """Construct a :class:`Node` from a document record."""
        return cls(
            data["type"],
            data.get("x", 0.0),
            data.get("y", 0.0),
            data.get("properties") or {},
            node_id=data.get("id"),
        )


class Connection:
    """Directed edge carrying resources or applying a state effect."""

    def __init__(
        self,
        type: str,
        source_id: str,
        target_id: str,
        properties: Dict[str, Any] | None = None,
        *,
        connection_id: str | None = None,
    ) -> None:
        type_def = connection_type(type)
        self.id = connection_id or generate_id("c")
        self.type = type
        self.source_id = source_id
        self.target_id = target_id
        self.properties: ConnectionProperties = dict(type_def.defaults)
        if properties:
            self.properties.update(copy.deepcopy(properties))

        # Runtime
        self.current_rate: Any = self.declared_rate
        self.active = True

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return (
            f"Connection({self.type!r}, id={self.id!r}, "
            f"{self.source_id!r} -> {self.target_id!r})"
        )

    @property
    def type_def(self) -> ConnectionTypeDef:
        return connection_type(self.type)

    @property
    def is_resource(self) -> bool:
        return self.type == RESOURCE_CONNECTION

    @property
    def is_state(self) -> bool:
        return self.type == STATE_CONNECTION

    @property
    def state_type(self) -> str:
        return self.properties.get("stateType") or "labelModifier"

    @property
    def declared_rate(self) -> Any:
        rate = self.properties.get("rate")
        if rate is None or rate == "":
            return 0
        return rate

    def live_rate(self) -> Any:
        """Return ``current_rate`` falling back to the declared rate."""

        if self.current_rate is not None:
            return self.current_rate
        return self.properties.get("rate") or 1

    def to_dict(self) -> ConnectionData:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source_id,
            "target": self.target_id,
            "properties": copy.deepcopy(self.properties),
        }

    @classmethod
    def from_dict(cls, data: ConnectionData) -> "Connection":
        """Construct a :class:`Connection` from a document record."""
        return cls(
            data["type"],
            data["source"],
            data["target"],
            data.get("properties") or {},
            connection_id=data.get("id"),
        )


class Graph:
    """Owner of all nodes and connections of a diagram."""

    def __init__(self, name: str = DEFAULT_DIAGRAM_NAME) -> None:
        self.name = name
        self.nodes: Dict[str, Node] = {}
        self.connections: Dict[str, Connection] = {}
        self.step_count = 0

    def _new_id(self, prefix: str) -> str:
        while True:
            candidate = generate_id(prefix)
            if candidate not in self.nodes and candidate not in self.connections:
                return candidate

    # ---- Node management -------------------------------------------------

    def add_node(self, node: Node) -> Node:
        """Insert ``node`` and return it."""

        self.nodes[node.id] = node
        return node

    def create_node(
        self,
        type: str,
        x: float = 0.0,
        y: float = 0.0,
        properties: Dict[str, Any] | None = None,
    ) -> Node:
        """Create a node of ``type`` with a fresh identifier and insert it."""

        node = Node(type, x, y, properties, node_id=self._new_id("n"))
        return self.add_node(node)

    def remove_node(self, node_id: str) -> List[str]:
        """Delete ``node_id`` and return the ids of cascaded connections."""

        removed = [
            cid
            for cid, conn in self.connections.items()
            if conn.source_id == node_id or conn.target_id == node_id
        ]
        for cid in removed:
            del self.connections[cid]
        self.nodes.pop(node_id, None)
        return removed

    def get_node(self, node_id: str) -> Node | None:
        return self.nodes.get(node_id)

    def all_nodes(self) -> List[Node]:
        return list(self.nodes.values())

    def find_node_by_name(self, name: str) -> Node | None:
        """Return the first node whose display name equals ``name``."""

        for node in self.nodes.values():
            if node.properties.get("name") == name:
                return node
        return None

    def nodes_of_type(self, type: str) -> Iterator[Node]:
        return (n for n in list(self.nodes.values()) if n.type == type)

    # ---- Connection management ------------------------------------------

    def add_connection(self, connection: Connection) -> Connection:
        """Insert ``connection`` and return it.

        Endpoints are not checked; a connection to a missing node is inert.
        """

        self.connections[connection.id] = connection
        return connection

    def create_connection(
        self,
        type: str,
        source_id: str,
        target_id: str,
        properties: Dict[str, Any] | None = None,
    ) -> Connection:
        """Create a connection with a fresh identifier and insert it."""

        conn = Connection(
            type, source_id, target_id, properties, connection_id=self._new_id("c")
        )
        return self.add_connection(conn)

    def remove_connection(self, connection_id: str) -> Connection | None:
        return self.connections.pop(connection_id, None)

    def get_connection(self, connection_id: str) -> Connection | None:
        return self.connections.get(connection_id)

    def all_connections(self) -> List[Connection]:
        return list(self.connections.values())

    def incoming(self, node_id: str, type: str | None = None) -> List[Connection]:
        """Return connections ending at ``node_id``, optionally of ``type``."""

        return [
            c
            for c in self.connections.values()
            if c.target_id == node_id and (type is None or c.type == type)
        ]

    def outgoing(self, node_id: str, type: str | None = None) -> List[Connection]:
        """Return connections starting at ``node_id``, optionally of ``type``."""

        return [
            c
            for c in self.connections.values()
            if c.source_id == node_id and (type is None or c.type == type)
        ]

    # ---- Aggregates --------------------------------------------------------

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def connection_count(self) -> int:
        return len(self.connections)

    def total_resources(self) -> float:
        """Sum every finite numeric resource quantity."""

        total = 0
        for node in self.nodes.values():
            res = node.resources
            if isinstance(res, bool):
                continue
            if isinstance(res, int) or (isinstance(res, float) and math.isfinite(res)):
                total += res
        return total

    def reset(self) -> None:
        """Restore start values, rates and flags and zero the step counter."""

        for node in self.nodes.values():
            node.restore_baseline()
            node.resources = node.start_value()
            node.activated = False
            node.fired = False
        for conn in self.connections.values():
            conn.current_rate = conn.declared_rate
            conn.active = True
        self.step_count = 0

    # ---- Serialization -----------------------------------------------------

    def to_dict(self) -> DiagramDict:
        """Serialize the graph to a plain ``dict`` suitable for JSON."""
        return {
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes.values()],
            "connections": [c.to_dict() for c in self.connections.values()],
        }

    @classmethod
    def from_dict(cls, data: DiagramDict) -> "Graph":
        """Construct a :class:`Graph` from ``data``."""
        graph = cls(data.get("name") or DEFAULT_DIAGRAM_NAME)
        for record in data.get("nodes") or []:
            graph.add_node(Node.from_dict(record))
        for record in data.get("connections") or []:
            graph.add_connection(Connection.from_dict(record))
        return graph

    def copy(self) -> "Graph":
        """Return an independent deep copy including runtime state and baselines."""

        return copy.deepcopy(self)
