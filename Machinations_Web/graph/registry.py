"""Static catalogs of node and connection types.

The catalogs are read-only mappings built once at import time. Each node and
connection type supplies the default property record applied before any
caller overrides when an element is created.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from . import types as payloads


class UnknownTypeError(ValueError):
    """Raised when creating an element of an unregistered type."""


def _frozen(mapping: dict[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class NodeTypeDef:
    """Display identity and default properties of a node type."""

    name: str
    shape: str
    fill: str
    stroke: str
    defaults: Mapping[str, Any] = field(default_factory=lambda: _frozen({}))


@dataclass(frozen=True)
class ConnectionTypeDef:
    """Display identity and default properties of a connection type."""

    name: str
    style: str
    defaults: Mapping[str, Any] = field(default_factory=lambda: _frozen({}))


@dataclass(frozen=True)
class ModeDef:
    name: str
    symbol: str


NODE_TYPES: Mapping[str, NodeTypeDef] = MappingProxyType(
    {
        "pool": NodeTypeDef(
            "Pool",
            "circle",
            "#ffffff",
            "#333333",
            _frozen(
                {
                    "capacity": -1,
                    "startValue": 0,
                    "activationMode": "passive",
                    "pullMode": "pull",
                }
            ),
        ),
        "source": NodeTypeDef(
            "Source",
            "triangleUp",
            "#e8f5e9",
            "#4caf50",
            _frozen({"activationMode": "automatic", "production": 1}),
        ),
        "drain": NodeTypeDef(
            "Drain",
            "triangleDown",
            "#ffebee",
            "#f44336",
            _frozen({"activationMode": "automatic", "consumption": 1}),
        ),
        "converter": NodeTypeDef(
            "Converter",
            "triangleRight",
            "#fff8e1",
            "#ff9800",
            _frozen({"inputRate": 1, "outputRate": 1, "activationMode": "passive"}),
        ),
        "gate": NodeTypeDef(
            "Gate",
            "diamond",
            "#f3e5f5",
            "#9c27b0",
            _frozen(
                {
                    "gateType": "probabilistic",
                    "distribution": "",
                    "activationMode": "passive",
                }
            ),
        ),
        "trader": NodeTypeDef(
            "Trader",
            "hexagon",
            "#fff3e0",
            "#ff5722",
            _frozen({"exchangeRate": 1, "activationMode": "passive"}),
        ),
        "register": NodeTypeDef(
            "Register",
            "rect",
            "#f5f5f5",
            "#9e9e9e",
            _frozen({"value": 0, "formula": ""}),
        ),
        "endCondition": NodeTypeDef(
            "End Condition",
            "doubleCircle",
            "#ffffff",
            "#f44336",
            _frozen({"condition": ""}),
        ),
        "chart": NodeTypeDef(
            "Chart",
            "chart",
            "#ffffff",
            "#2196f3",
            _frozen({"maxDataPoints": 100, "activationMode": "passive"}),
        ),
        "delay": NodeTypeDef(
            "Delay",
            "clock",
            "#e3f2fd",
            "#1976d2",
            _frozen({"delay": 3, "activationMode": "passive"}),
        ),
        "queue": NodeTypeDef(
            "Queue",
            "queue",
            "#ede7f6",
            "#673ab7",
            _frozen(
                {
                    "capacity": -1,
                    "startValue": 0,
                    "activationMode": "passive",
                    "pullMode": "pull",
                }
            ),
        ),
        "textLabel": NodeTypeDef(
            "Text",
            "text",
            "none",
            "none",
            _frozen({"text": ""}),
        ),
        "group": NodeTypeDef(
            "Group",
            "groupRect",
            "rgba(0,0,0,0.03)",
            "#bdbdbd",
            _frozen({"width": 200, "height": 150}),
        ),
    }
)

RESOURCE_CONNECTION = "resourceConnection"
STATE_CONNECTION = "stateConnection"

CONNECTION_TYPES: Mapping[str, ConnectionTypeDef] = MappingProxyType(
    {
        RESOURCE_CONNECTION: ConnectionTypeDef(
            "Resource Connection", "solid", _frozen({"rate": 1, "label": ""})
        ),
        STATE_CONNECTION: ConnectionTypeDef(
            "State Connection",
            "dashed",
            _frozen(
                {
                    "stateType": "labelModifier",
                    "formula": "",
                    "condition": "",
                    "label": "",
                }
            ),
        ),
    }
)

STATE_CONNECTION_TYPES: Mapping[str, ModeDef] = MappingProxyType(
    {
        "labelModifier": ModeDef("Label Modifier", "label"),
        "nodeModifier": ModeDef("Node Modifier", "node"),
        "trigger": ModeDef("Trigger", "trigger"),
        "activator": ModeDef("Activator", "activator"),
    }
)

ACTIVATION_MODES: Mapping[str, ModeDef] = MappingProxyType(
    {
        "automatic": ModeDef("Automatic", "*"),
        "interactive": ModeDef("Interactive", "◎"),
        "passive": ModeDef("Passive", ""),
        "onStart": ModeDef("On Start", "S"),
    }
)

PULL_MODES: Mapping[str, ModeDef] = MappingProxyType(
    {
        "pull": ModeDef("Pull", "↓"),
        "push": ModeDef("Push", "↑"),
        "any": ModeDef("Any", "↕"),
    }
)

GATE_TYPES: Mapping[str, ModeDef] = MappingProxyType(
    {
        "probabilistic": ModeDef("Probabilistic", "%"),
        "deterministic": ModeDef("Deterministic", "="),
    }
)


def node_type(type_name: str) -> NodeTypeDef:
    """Return the definition for ``type_name`` or raise :class:`UnknownTypeError`."""

    try:
        return NODE_TYPES[type_name]
    except KeyError:
        raise UnknownTypeError(f"Unknown node type: {type_name}") from None


def connection_type(type_name: str) -> ConnectionTypeDef:
    """Return the definition for ``type_name`` or raise :class:`UnknownTypeError`."""

    try:
        return CONNECTION_TYPES[type_name]
    except KeyError:
        raise UnknownTypeError(f"Unknown connection type: {type_name}") from None


#: Property payload type of every node type.
NODE_PROPERTY_TYPES: Mapping[str, type] = MappingProxyType(
    {
        "pool": payloads.PoolProperties,
        "source": payloads.SourceProperties,
        "drain": payloads.DrainProperties,
        "converter": payloads.ConverterProperties,
        "gate": payloads.GateProperties,
        "trader": payloads.TraderProperties,
        "register": payloads.RegisterProperties,
        "endCondition": payloads.EndConditionProperties,
        "chart": payloads.ChartProperties,
        "delay": payloads.DelayProperties,
        "queue": payloads.QueueProperties,
        "textLabel": payloads.TextLabelProperties,
        "group": payloads.GroupProperties,
    }
)

CONNECTION_PROPERTY_TYPES: Mapping[str, type] = MappingProxyType(
    {
        RESOURCE_CONNECTION: payloads.ResourceConnectionProperties,
        STATE_CONNECTION: payloads.StateConnectionProperties,
    }
)


def property_keys(type_name: str) -> frozenset[str]:
    """Return the keys declared by the property payload of ``type_name``."""

    payload = NODE_PROPERTY_TYPES.get(type_name) or CONNECTION_PROPERTY_TYPES.get(type_name)
    if payload is None:
        raise UnknownTypeError(f"Unknown type: {type_name}")
    return frozenset(payload.__annotations__)
