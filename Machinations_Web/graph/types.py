from __future__ import annotations

from typing import List, TypedDict, Union

# Typed property payloads per node type. ``total=False`` because
# properties are assembled from registry defaults plus caller overrides and
# may carry extra, caller-defined keys.

Rate = Union[int, float, str]

PoolProperties = TypedDict(
    "PoolProperties",
    {
        "name": str,
        "capacity": float,
        "startValue": float,
        "activationMode": str,
        "pullMode": str,
    },
    total=False,
)

SourceProperties = TypedDict(
    "SourceProperties",
    {
        "name": str,
        "activationMode": str,
        "production": Rate,
    },
    total=False,
)

DrainProperties = TypedDict(
    "DrainProperties",
    {
        "name": str,
        "activationMode": str,
        "consumption": Rate,
    },
    total=False,
)

ConverterProperties = TypedDict(
    "ConverterProperties",
    {
        "name": str,
        "inputRate": Rate,
        "outputRate": Rate,
        "activationMode": str,
    },
    total=False,
)

GateProperties = TypedDict(
    "GateProperties",
    {
        "name": str,
        "gateType": str,
        "distribution": str,
        "activationMode": str,
    },
    total=False,
)

TraderProperties = TypedDict(
    "TraderProperties",
    {
        "name": str,
        "exchangeRate": float,
        "activationMode": str,
    },
    total=False,
)

RegisterProperties = TypedDict(
    "RegisterProperties",
    {
        "name": str,
        "value": float,
        "formula": str,
    },
    total=False,
)

EndConditionProperties = TypedDict(
    "EndConditionProperties",
    {
        "name": str,
        "condition": str,
    },
    total=False,
)

ChartProperties = TypedDict(
    "ChartProperties",
    {
        "name": str,
        "maxDataPoints": int,
        "activationMode": str,
    },
    total=False,
)

DelayProperties = TypedDict(
    "DelayProperties",
    {
        "name": str,
        "delay": int,
        "activationMode": str,
    },
    total=False,
)

QueueProperties = TypedDict(
    "QueueProperties",
    {
        "name": str,
        "capacity": float,
        "startValue": float,
        "activationMode": str,
        "pullMode": str,
    },
    total=False,
)

TextLabelProperties = TypedDict(
    "TextLabelProperties",
    {
        "name": str,
        "text": str,
    },
    total=False,
)

GroupProperties = TypedDict(
    "GroupProperties",
    {
        "name": str,
        "width": float,
        "height": float,
    },
    total=False,
)

NodeProperties = Union[
    PoolProperties,
    SourceProperties,
    DrainProperties,
    ConverterProperties,
    GateProperties,
    TraderProperties,
    RegisterProperties,
    EndConditionProperties,
    ChartProperties,
    DelayProperties,
    QueueProperties,
    TextLabelProperties,
    GroupProperties,
]

ResourceConnectionProperties = TypedDict(
    "ResourceConnectionProperties",
    {
        "rate": Rate,
        "label": str,
    },
    total=False,
)

StateConnectionProperties = TypedDict(
    "StateConnectionProperties",
    {
        "stateType": str,
        "formula": str,
        "condition": str,
        "label": str,
    },
    total=False,
)

ConnectionProperties = Union[ResourceConnectionProperties, StateConnectionProperties]

# Reusable typed mappings for diagram JSON documents

NodeData = TypedDict(
    "NodeData",
    {
        "id": str,
        "type": str,
        "x": float,
        "y": float,
        "properties": NodeProperties,
    },
    total=False,
)

ConnectionData = TypedDict(
    "ConnectionData",
    {
        "id": str,
        "type": str,
        "source": str,
        "target": str,
        "properties": ConnectionProperties,
    },
    total=False,
)

DiagramDict = TypedDict(
    "DiagramDict",
    {
        "name": str,
        "nodes": List[NodeData],
        "connections": List[ConnectionData],
    },
    total=False,
)

FlowEventDict = TypedDict(
    "FlowEventDict",
    {
        "connectionId": str,
        "amount": float,
        "sourceId": str,
        "targetId": str,
    },
)
