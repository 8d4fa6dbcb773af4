"""Discrete-step simulation engine.

:class:`Engine` advances a :class:`~Machinations_Web.graph.model.Graph` one
step at a time. Every step runs the same fixed pipeline:

1. activate ``automatic`` nodes;
2. recompute registers, then apply label/node modifiers and activators;
3. move resources along plain resource connections (pull/push/any);
4. run converters;
5. run gates;
6. produce from sources;
7. consume into drains;
8. sample chart series;
9. evaluate end conditions;
10. evaluate triggers;
11. housekeeping: bump the step counter and clear one-shot flags.

Steps are triggered manually through :meth:`Engine.step` or periodically
through a :class:`~Machinations_Web.engine.scheduler.Scheduler` while the
engine is running. A step never raises because of diagram content; bad
formulas fall back to defaults and dangling connections are skipped.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Set

import numpy as np

from ..config import Config
from ..graph.model import Connection, Graph, Node, as_number
from ..graph.registry import RESOURCE_CONNECTION, STATE_CONNECTION
from ..graph.types import FlowEventDict
from .logging_models import (
    FlowLog,
    FlowPayload,
    SimulationEndLog,
    SimulationEndPayload,
    StepSummaryLog,
    StepSummaryPayload,
)
from .evaluator import Evaluator, IntervalCounters, ParsedRate, round_half_up
from .logging.logger import flush_metrics, log_record, record_metric
from .scheduler import Scheduler, ThreadedScheduler

logger = logging.getLogger(__name__)


class SimulationState(Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass(frozen=True)
class FlowEvent:
    """A single resource movement produced during a step."""

    connection_id: str
    amount: float
    source_id: str
    target_id: str

    def as_dict(self) -> FlowEventDict:
        return {
            "connectionId": self.connection_id,
            "amount": self.amount,
            "sourceId": self.source_id,
            "targetId": self.target_id,
        }


@dataclass
class StepResult:
    """Outcome of one :meth:`Engine.step` call."""

    step_count: int
    flows: List[FlowEvent] = field(default_factory=list)
    ended: bool = False
    end_nodes: List[str] = field(default_factory=list)
    fired_nodes: List[str] = field(default_factory=list)


StepCallback = Callable[[int, List[FlowEvent]], None]
EndCallback = Callable[[int], None]


class Engine:
    """Run the step pipeline over ``graph``.

    Parameters
    ----------
    graph:
        Diagram to simulate. The engine keeps no graph state of its own
        apart from interval counters and chart series.
    speed:
        Steps per second while running. Defaults to
        :attr:`Config.default_speed`.
    rng:
        Random generator used for dice and probabilistic gates. Defaults to
        ``numpy.random.default_rng(Config.random_seed)``.
    scheduler:
        Periodic trigger used by :meth:`start`. Defaults to a
        :class:`ThreadedScheduler`.
    on_step, on_end:
        Driver callbacks receiving ``(step_count, flows)`` and
        ``step_count`` respectively.
    """

    def __init__(
        self,
        graph: Graph,
        *,
        speed: float | None = None,
        rng: np.random.Generator | None = None,
        scheduler: Scheduler | None = None,
        on_step: StepCallback | None = None,
        on_end: EndCallback | None = None,
    ) -> None:
        self.rng = rng if rng is not None else np.random.default_rng(Config.random_seed)
        self._graph = graph
        self.evaluator = Evaluator(graph, self.rng)
        self.speed = float(speed if speed is not None else Config.default_speed)
        self.scheduler: Scheduler = scheduler or ThreadedScheduler()
        self.on_step = on_step
        self.on_end = on_end
        self.state = SimulationState.IDLE
        self.intervals = IntervalCounters()
        self.chart_series: Dict[str, Dict[str, List[float]]] = {}
        self._flows: List[FlowEvent] = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    @property
    def graph(self) -> Graph:
        return self._graph

    @graph.setter
    def graph(self, graph: Graph) -> None:
        """Swap the simulated diagram, dropping per-graph runtime state."""

        self.stop()
        with self._lock:
            self._graph = graph
            self.evaluator.graph = graph
            self.intervals.clear()
            self.chart_series.clear()

    @property
    def running(self) -> bool:
        return self.state is SimulationState.RUNNING

    @property
    def interval_ms(self) -> float:
        """Timer interval derived from :attr:`speed`."""

        return max(Config.min_interval_ms, 1000.0 / self.speed)

    # ---- Lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Begin periodic stepping."""

        if self.running:
            return
        self.state = SimulationState.RUNNING
        if self.graph.step_count == 0:
            self._fire_on_start_nodes()
        self.scheduler.schedule(self.interval_ms / 1000.0, self._tick)
        logger.info("Simulation started at %.1f steps/s", self.speed)

    def stop(self) -> None:
        """Cancel periodic stepping."""

        was_running = self.running
        self.state = SimulationState.IDLE
        self.scheduler.cancel()
        if was_running:
            logger.info("Simulation stopped at step %d", self.graph.step_count)

    def reset(self) -> None:
        """Stop and restore the graph to its initial state."""

        self.stop()
        with self._lock:
            self.intervals.clear()
            self.chart_series.clear()
            self.graph.reset()

    def set_speed(self, speed: float) -> None:
        """Change the speed, restarting the timer when running."""

        if speed <= 0:
            raise ValueError("speed must be positive")
        self.speed = float(speed)
        if self.running:
            self.stop()
            self.start()

    def activate_interactive_node(self, node_id: str) -> bool:
        """Activate an ``interactive`` node for the upcoming step."""

        with self._lock:
            node = self.graph.get_node(node_id)
            if node is None or node.activation_mode != "interactive":
                return False
            node.activated = True
            return True

    def chart_data(self, node_id: str) -> Dict[str, List[float]]:
        """Return a copy of the series recorded by chart ``node_id``."""

        with self._lock:
            return {k: list(v) for k, v in self.chart_series.get(node_id, {}).items()}

    def _tick(self) -> None:
        if self.running:
            self.step()

    # ---- Stepping ----------------------------------------------------------

    def step(self) -> StepResult:
        """Run one full pipeline step and notify the driver."""

        with self._lock:
            result = self._run_pipeline()
        self._log_step(result)
        self._emit(self.on_step, result.step_count, list(result.flows))
        if result.ended:
            self.stop()
            logger.info(
                "End condition met at step %d (%s)",
                result.step_count,
                ", ".join(result.end_nodes),
            )
            self._emit(self.on_end, result.step_count)
        return result

    def run(self, max_steps: int) -> List[StepResult]:
        """Step manually up to ``max_steps`` times or until an end condition."""

        results: List[StepResult] = []
        for _ in range(max_steps):
            result = self.step()
            results.append(result)
            if result.ended:
                break
        return results

    def _run_pipeline(self) -> StepResult:
        graph = self.graph
        self._flows = []

        self._activate_nodes()
        self._evaluate_state_connections()
        self._process_resource_flows()
        self._process_converters()
        self._process_gates()
        self._process_sources()
        self._process_drains()
        self._update_charts()
        end_nodes = self._evaluate_end_conditions()
        triggered = self._evaluate_triggers()

        graph.step_count += 1
        fired = [n.id for n in graph.nodes.values() if n.fired]
        for node in graph.nodes.values():
            node.fired = False
            # One-shot activations; trigger hits carry into the next step.
            if node.activation_mode != "automatic":
                node.activated = node.id in triggered

        return StepResult(
            step_count=graph.step_count,
            flows=self._flows,
            ended=bool(end_nodes),
            end_nodes=end_nodes,
            fired_nodes=fired,
        )

    # ---- Helpers -----------------------------------------------------------

    def _emit(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Driver callback %r failed", callback)

    def _endpoints(self, conn: Connection) -> tuple[Node, Node] | None:
        source = self.graph.get_node(conn.source_id)
        target = self.graph.get_node(conn.target_id)
        if source is None or target is None:
            return None
        return source, target

    def _active(self, connections: Iterable[Connection]) -> List[Connection]:
        return [c for c in connections if c.active]

    def _record(self, conn: Connection, amount: float, source: Node, target: Node) -> None:
        self._flows.append(FlowEvent(conn.id, amount, source.id, target.id))
        source.fired = True
        target.fired = True

    def _deposit(self, conn: Connection, source: Node, target: Node, amount: float) -> float:
        if not amount > 0 or target.headroom() <= 0:
            return 0
        deposited = target.add_resources(amount)
        if deposited > 0:
            self._record(conn, deposited, source, target)
        return deposited

    def _rate_property(self, node: Node, key: str) -> ParsedRate:
        raw = node.properties.get(key)
        if raw is None or raw == "":
            return ParsedRate(1)
        return self.evaluator.parse_rate(raw, node)

    def _fire_on_start_nodes(self) -> None:
        for node in self.graph.nodes.values():
            if node.activation_mode == "onStart":
                node.activated = True

    # ---- 1. Activation ---------------------------------------------------

    def _activate_nodes(self) -> None:
        for node in self.graph.nodes.values():
            if node.activation_mode == "automatic":
                node.activated = True

    # ---- 2. Registers and state connections ------------------------------

    def _evaluate_state_connections(self) -> None:
        ev = self.evaluator
        for node in self.graph.nodes_of_type("register"):
            formula = node.properties.get("formula")
            if formula:
                value = ev.evaluate_formula(formula, node)
                node.properties["value"] = value
                node.resources = value

        for conn in self.graph.all_connections():
            if not conn.is_state or not conn.active:
                continue
            ends = self._endpoints(conn)
            if ends is None:
                continue
            source, target = ends
            state_type = conn.state_type
            if state_type == "labelModifier":
                self._apply_label_modifier(conn, source, target)
            elif state_type == "nodeModifier":
                self._apply_node_modifier(conn, source, target)
            elif state_type == "activator":
                condition = (
                    conn.properties.get("condition")
                    or conn.properties.get("formula")
                    or ">0"
                )
                target.activated = ev.evaluate_condition(condition, source.value)

    def _modifier_value(self, conn: Connection, source: Node) -> float:
        formula = conn.properties.get("formula")
        if formula:
            return self.evaluator.evaluate_formula(formula, source)
        return source.value

    def _apply_label_modifier(self, conn: Connection, source: Node, target: Node) -> None:
        value = self._modifier_value(conn, source)
        if not math.isfinite(value):
            return
        new_rate = max(0, round_half_up(value * 100) / 100)
        for out in self.graph.outgoing(target.id, RESOURCE_CONNECTION):
            out.current_rate = new_rate

    def _apply_node_modifier(self, conn: Connection, source: Node, target: Node) -> None:
        value = self._modifier_value(conn, source)
        if not math.isfinite(value):
            return
        new_value = max(0, round_half_up(value))
        if target.type == "source":
            target.properties["production"] = new_value
        elif target.type == "drain":
            target.properties["consumption"] = new_value

    # ---- 3. Plain resource flows -------------------------------------------

    def _process_resource_flows(self) -> None:
        for conn in self.graph.all_connections():
            if not conn.is_resource or not conn.active:
                continue
            ends = self._endpoints(conn)
            if ends is None:
                continue
            source, target = ends
            if source.type in ("source", "converter", "gate"):
                continue
            if target.type in ("drain", "converter", "gate"):
                continue

            mode = (
                target.properties.get("pullMode")
                or source.properties.get("pullMode")
                or "pull"
            )
            if mode == "pull":
                fire = target.activated
            elif mode == "push":
                fire = source.activated
            else:
                fire = source.activated or target.activated
            if fire:
                rate = self.evaluator.parse_rate(conn.live_rate(), source)
                self._transfer(conn, source, target, rate)

    def _transfer(self, conn: Connection, source: Node, target: Node, rate: ParsedRate) -> None:
        amount = rate.value
        if not amount > 0:
            return
        if rate.all_or_nothing and source.type != "source" and source.resources < amount:
            return
        if not target.can_accept(amount):
            if rate.all_or_nothing:
                return
            amount = target.headroom()
            if amount <= 0:
                return
        removed = source.remove_resources(amount)
        if removed > 0:
            target.add_resources(removed)
            self._record(conn, removed, source, target)

    # ---- 4. Converters ------------------------------------------------------

    def _process_converters(self) -> None:
        graph = self.graph
        for node in graph.nodes_of_type("converter"):
            ins = self._active(graph.incoming(node.id, RESOURCE_CONNECTION))
            outs = self._active(graph.outgoing(node.id, RESOURCE_CONNECTION))
            if not ins or not outs:
                continue

            input_rate = self.evaluator.parse_rate(
                node.properties.get("inputRate") or 1, node
            ).value
            output_rate = self.evaluator.parse_rate(
                node.properties.get("outputRate") or 1, node
            ).value

            available = 0
            for conn in ins:
                source = graph.get_node(conn.source_id)
                if source is None:
                    continue
                if source.type == "source":
                    available += input_rate
                else:
                    available += min(source.resources, input_rate)
            if available < input_rate:
                continue

            remaining = input_rate
            for conn in ins:
                if remaining <= 0:
                    break
                source = graph.get_node(conn.source_id)
                if source is None:
                    continue
                removed = source.remove_resources(remaining)
                remaining -= removed
                if removed > 0:
                    self._record(conn, removed, source, node)

            # Every eligible output receives the full output rate.
            for conn in outs:
                target = graph.get_node(conn.target_id)
                if target is not None:
                    self._deposit(conn, node, target, output_rate)

    # ---- 5. Gates -----------------------------------------------------------

    def _process_gates(self) -> None:
        graph = self.graph
        for node in graph.nodes_of_type("gate"):
            ins = self._active(graph.incoming(node.id, RESOURCE_CONNECTION))
            outs = self._active(graph.outgoing(node.id, RESOURCE_CONNECTION))
            if not ins or not outs:
                continue

            # Withdrawal is unconditional, even when no output has room.
            total_input = 0
            for conn in ins:
                source = graph.get_node(conn.source_id)
                if source is None:
                    continue
                rate = self.evaluator.parse_rate(conn.live_rate(), source).value
                removed = source.remove_resources(rate) if rate > 0 else 0
                total_input += removed
                if removed > 0:
                    self._record(conn, removed, source, node)
            if total_input <= 0:
                continue

            if (node.properties.get("gateType") or "probabilistic") == "probabilistic":
                self._distribute_probabilistic(node, outs, total_input)
            else:
                self._distribute_deterministic(node, outs, total_input)

    def _gate_weights(self, node: Node, count: int) -> np.ndarray:
        text = str(node.properties.get("distribution") or "").strip()
        if text:
            parts = [as_number(p.strip().rstrip("%"), -1) for p in text.split(",")]
            weights = np.asarray(parts, dtype=float)
            if len(weights) == count and (weights >= 0).all() and weights.sum() > 0:
                return weights / weights.sum()
        return np.full(count, 1.0 / count)

    def _distribute_probabilistic(
        self, node: Node, outs: List[Connection], total_input: float
    ) -> None:
        cumulative = np.cumsum(self._gate_weights(node, len(outs)))
        draw = self.rng.random()
        # The last bucket catches draws lost to floating point rounding.
        index = min(int(np.searchsorted(cumulative, draw, side="right")), len(outs) - 1)
        conn = outs[index]
        target = self.graph.get_node(conn.target_id)
        if target is not None:
            self._deposit(conn, node, target, total_input)

    def _distribute_deterministic(
        self, node: Node, outs: List[Connection], total_input: float
    ) -> None:
        share = math.floor(total_input / len(outs))
        remainder = total_input - share * len(outs)
        for k, conn in enumerate(outs):
            amount = share + (remainder if k == 0 else 0)
            if amount <= 0:
                continue
            target = self.graph.get_node(conn.target_id)
            if target is not None:
                self._deposit(conn, node, target, amount)

    # ---- 6. Sources ---------------------------------------------------------

    def _process_sources(self) -> None:
        graph = self.graph
        for node in graph.nodes_of_type("source"):
            if not node.activated:
                continue
            production = self._rate_property(node, "production")
            if production.interval > 0 and not self.intervals.check(
                node.id, production.interval
            ):
                continue
            for conn in self._active(graph.outgoing(node.id, RESOURCE_CONNECTION)):
                target = graph.get_node(conn.target_id)
                if target is None:
                    continue
                rate = self.evaluator.parse_rate(conn.live_rate(), node).value
                self._deposit(conn, node, target, min(production.value, rate))

    # ---- 7. Drains ----------------------------------------------------------

    def _process_drains(self) -> None:
        graph = self.graph
        for node in graph.nodes_of_type("drain"):
            if not node.activated:
                continue
            consumption = self._rate_property(node, "consumption")
            if consumption.interval > 0 and not self.intervals.check(
                node.id, consumption.interval
            ):
                continue
            for conn in self._active(graph.incoming(node.id, RESOURCE_CONNECTION)):
                source = graph.get_node(conn.source_id)
                if source is None:
                    continue
                rate = self.evaluator.parse_rate(conn.live_rate(), node)
                amount = min(consumption.value, rate.value)
                if not amount > 0:
                    continue
                all_or_nothing = rate.all_or_nothing or consumption.all_or_nothing
                if all_or_nothing and source.type != "source" and source.resources < amount:
                    continue
                removed = source.remove_resources(amount)
                if removed > 0:
                    self._record(conn, removed, source, node)

    # ---- 8. Charts ----------------------------------------------------------

    def _update_charts(self) -> None:
        graph = self.graph
        for node in graph.nodes_of_type("chart"):
            series = self.chart_series.setdefault(node.id, {})
            max_points = int(as_number(node.properties.get("maxDataPoints"), 0))
            if max_points <= 0:
                max_points = Config.chart_max_points
            for conn in self._active(graph.incoming(node.id, STATE_CONNECTION)):
                source = graph.get_node(conn.source_id)
                if source is None:
                    continue
                data = series.setdefault(source.properties.get("name") or source.id, [])
                data.append(source.value)
                if len(data) > max_points:
                    del data[: len(data) - max_points]

    # ---- 9. End conditions --------------------------------------------------

    def _evaluate_end_conditions(self) -> List[str]:
        ended: List[str] = []
        for node in self.graph.nodes_of_type("endCondition"):
            condition = node.properties.get("condition")
            if condition and self.evaluator.evaluate_formula(condition, node):
                ended.append(node.id)
        return ended

    # ---- 10. Triggers -------------------------------------------------------

    def _evaluate_triggers(self) -> Set[str]:
        triggered: Set[str] = set()
        for conn in self.graph.all_connections():
            if not conn.is_state or not conn.active or conn.state_type != "trigger":
                continue
            ends = self._endpoints(conn)
            if ends is None:
                continue
            source, target = ends
            condition = conn.properties.get("condition") or ">0"
            if self.evaluator.evaluate_condition(condition, source.value):
                target.activated = True
                triggered.add(target.id)
        return triggered

    # ---- Structured logs ----------------------------------------------------

    def _log_step(self, result: StepResult) -> None:
        step = result.step_count
        name = self.graph.name
        if Config.is_log_enabled("step", "flow_log"):
            for flow in result.flows:
                entry = FlowLog(
                    step=step,
                    diagram=name,
                    payload=FlowPayload(
                        connection_id=flow.connection_id,
                        amount=flow.amount,
                        source_id=flow.source_id,
                        target_id=flow.target_id,
                    ),
                )
                log_record("step", "flow_log", value=entry.model_dump(mode="json"))
        if Config.is_log_enabled("step", "step_summary"):
            flow_total = float(sum(f.amount for f in result.flows))
            entry = StepSummaryLog(
                step=step,
                diagram=name,
                payload=StepSummaryPayload(
                    node_count=self.graph.node_count,
                    connection_count=self.graph.connection_count,
                    flow_count=len(result.flows),
                    flow_total=flow_total,
                    total_resources=float(self.graph.total_resources()),
                    ended=result.ended,
                ),
            )
            log_record("step", "step_summary", value=entry.model_dump(mode="json"))
            record_metric("flow_count", len(result.flows))
            record_metric("flow_total", flow_total)
            flush_metrics(step)
        if result.ended and Config.is_log_enabled("event", "simulation_end"):
            entry = SimulationEndLog(
                step=step,
                diagram=name,
                payload=SimulationEndPayload(end_nodes=result.end_nodes),
            )
            log_record("event", "simulation_end", value=entry.model_dump(mode="json"))
        logger.debug("Step %d: %d flows", step, len(result.flows))
