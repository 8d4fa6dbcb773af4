"""Simulation engine: expression evaluation, stepping and scheduling."""

from .evaluator import Evaluator, ExpressionError, IntervalCounters, ParsedRate
from .scheduler import ManualScheduler, Scheduler, ThreadedScheduler
from .simulation import Engine, FlowEvent, SimulationState, StepResult

__all__ = [
    "Engine",
    "Evaluator",
    "ExpressionError",
    "FlowEvent",
    "IntervalCounters",
    "ManualScheduler",
    "ParsedRate",
    "Scheduler",
    "SimulationState",
    "StepResult",
    "ThreadedScheduler",
]
