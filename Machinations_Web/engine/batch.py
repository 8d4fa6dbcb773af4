"""Headless batch runs and Monte-Carlo trials.

Each trial runs an independent deep copy of the diagram with its own child
random generator, so trials are reproducible from a single seed and never
share mutable state.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping

import numpy as np

from ..config import Config
from ..graph.model import Graph
from .scheduler import ManualScheduler
from .simulation import Engine, StepResult

logger = logging.getLogger(__name__)

#: Node types whose final value is summarised across trials.
TRACKED_TYPES = ("pool", "register", "queue", "delay")

PERCENTILES = (5, 50, 95)


def drive(engine: Engine, steps: int) -> List[StepResult]:
    """Start ``engine``, step it up to ``steps`` times and stop it again.

    ``onStart`` nodes fire as they would for a timed run. The run stops
    early when an end condition is met.
    """

    engine.start()
    try:
        return engine.run(steps)
    finally:
        engine.stop()


def run_steps(
    graph: Graph, steps: int, rng: np.random.Generator | None = None
) -> List[StepResult]:
    """Run ``graph`` for up to ``steps`` steps without a timer."""

    return drive(Engine(graph, rng=rng, scheduler=ManualScheduler()), steps)


def _describe(values: np.ndarray) -> Dict[str, float]:
    """Return summary statistics for ``values``."""

    low, mid, high = np.percentile(values, PERCENTILES)
    return {
        "mean": float(values.mean()),
        "std": float(values.std()),
        "min": float(values.min()),
        "max": float(values.max()),
        "p5": float(low),
        "p50": float(mid),
        "p95": float(high),
    }


def run_trials(
    diagram: Graph | Mapping[str, Any],
    trials: int,
    steps: int,
    seed: int | None = None,
) -> Dict[str, Any]:
    """Run ``trials`` independent simulations and summarise the outcomes.

    Parameters
    ----------
    diagram:
        A :class:`Graph` or a diagram document. Every trial starts from a
        reset deep copy of it.
    trials:
        Number of independent runs.
    steps:
        Maximum number of steps per run.
    seed:
        Root seed. Defaults to :attr:`Config.random_seed`.

    Returns
    -------
    dict
        ``trials``, ``steps``, ``ended`` (runs stopped by an end condition),
        ``step_counts`` statistics, per-node statistics of the final values
        under ``nodes`` keyed by node id, and ``total`` for the summed
        finite resources.
    """

    if trials <= 0:
        raise ValueError("trials must be positive")
    base = diagram if isinstance(diagram, Graph) else Graph.from_dict(dict(diagram))
    if seed is None:
        seed = Config.random_seed
    children = np.random.SeedSequence(seed).spawn(trials)

    tracked = [n for n in base.all_nodes() if n.type in TRACKED_TYPES]
    finals = np.zeros((trials, len(tracked)))
    totals = np.zeros(trials)
    step_counts = np.zeros(trials)
    ended = 0

    for i, child in enumerate(children):
        graph = base.copy()
        graph.reset()
        results = run_steps(graph, steps, np.random.default_rng(child))
        if results and results[-1].ended:
            ended += 1
        step_counts[i] = graph.step_count
        for j, node in enumerate(tracked):
            finals[i, j] = graph.nodes[node.id].value
        totals[i] = graph.total_resources()

    logger.info("Completed %d trials of %d steps (%d ended early)", trials, steps, ended)
    return {
        "diagram": base.name,
        "trials": trials,
        "steps": steps,
        "ended": ended,
        "step_counts": _describe(step_counts),
        "nodes": {
            node.id: {"name": node.name, "type": node.type, **_describe(finals[:, j])}
            for j, node in enumerate(tracked)
        },
        "total": _describe(totals),
    }
