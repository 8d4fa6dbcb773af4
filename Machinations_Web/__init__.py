"""Machinations_Web package initialization."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .engine.simulation import Engine
    from .graph.model import Graph
    from .history import History

__version__ = "0.1.0"

__all__ = ["Engine", "Graph", "History", "__version__"]


def __getattr__(name: str) -> Any:  # pragma: no cover - attribute access
    """Lazily expose the main entry points."""

    if name == "Engine":
        from .engine.simulation import Engine as _Engine

        return _Engine
    if name == "Graph":
        from .graph.model import Graph as _Graph

        return _Graph
    if name == "History":
        from .history import History as _History

        return _History
    raise AttributeError(name)
