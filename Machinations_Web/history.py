"""Undo/redo snapshot stacks for diagram editing."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, List

from .config import Config
from .graph.model import Graph
from .graph.types import DiagramDict


def _serialize(state: Graph | DiagramDict) -> str:
    if isinstance(state, Graph):
        state = state.to_dict()
    return json.dumps(state)


@dataclass
class History:
    """Maintain bounded undo and redo stacks of diagram snapshots.

    Snapshots are stored serialised, so later edits to the live graph never
    leak into the history. ``undo`` and ``redo`` return plain document dicts
    suitable for :meth:`Graph.from_dict`.
    """

    max_size: int = field(default_factory=lambda: Config.history_size)
    undo_stack: List[str] = field(default_factory=list)
    redo_stack: List[str] = field(default_factory=list)

    @property
    def can_undo(self) -> bool:
        return bool(self.undo_stack)

    @property
    def can_redo(self) -> bool:
        return bool(self.redo_stack)

    def push(self, state: Graph | DiagramDict) -> None:
        """Record ``state`` before an edit and forget any redo history."""

        self.undo_stack.append(_serialize(state))
        if len(self.undo_stack) > self.max_size:
            del self.undo_stack[: len(self.undo_stack) - self.max_size]
        self.redo_stack.clear()

    def undo(self, current: Graph | DiagramDict) -> dict[str, Any] | None:
        """Return the previous snapshot, saving ``current`` for redo."""

        if not self.undo_stack:
            return None
        self.redo_stack.append(_serialize(current))
        return json.loads(self.undo_stack.pop())

    def redo(self, current: Graph | DiagramDict) -> dict[str, Any] | None:
        """Return the next snapshot, saving ``current`` for undo."""

        if not self.redo_stack:
            return None
        self.undo_stack.append(_serialize(current))
        return json.loads(self.redo_stack.pop())

    def clear(self) -> None:
        self.undo_stack.clear()
        self.redo_stack.clear()
