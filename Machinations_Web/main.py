# main.py

"""Headless entry point running a diagram and printing a JSON summary."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any

import numpy as np

from Machinations_Web.config import Config
from Machinations_Web.engine import Engine, ManualScheduler
from Machinations_Web.engine.batch import drive, run_trials
from Machinations_Web.graph.io import load_graph


def _configure_logging() -> None:
    """Configure application logging and capture uncaught exceptions."""

    logging.basicConfig(
        level=getattr(logging, str(Config.log_verbosity).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )

    def _log_excepthook(exc_type, exc, tb) -> None:
        logging.getLogger(__name__).exception(
            "Uncaught exception", exc_info=(exc_type, exc, tb)
        )

    sys.excepthook = _log_excepthook


def _split(labels: str) -> list[str]:
    return [label.strip() for label in labels.split(",") if label.strip()]


@dataclass
class MainService:
    """Handle CLI parsing and run the requested simulation."""

    argv: list[str] | None = None

    def run(self) -> dict[str, Any]:
        args = self._parse_args()
        _configure_logging()
        self._apply_log_overrides(args)
        if args.trials > 1:
            summary = run_trials(load_graph(args.graph), args.trials, args.steps, args.seed)
        else:
            summary = self._run_single(args)
        print(json.dumps(summary, indent=2))
        return summary

    # ------------------------------------------------------------------
    @staticmethod
    def _apply_log_overrides(args: argparse.Namespace) -> None:
        """Update :attr:`Config.log_files` and the logging mode from CLI flags."""

        if args.logging_mode:
            Config.logging_mode = _split(args.logging_mode)
        mappings = {
            "step": (args.enable_step, args.disable_step),
            "event": (args.enable_events, args.disable_events),
        }
        for cat, (en, dis) in mappings.items():
            cfg = Config.log_files.setdefault(cat, {})
            for label in _split(en):
                cfg[label] = True
            for label in _split(dis):
                cfg[label] = False

    # ------------------------------------------------------------------
    def _parse_args(self) -> argparse.Namespace:
        initial = argparse.ArgumentParser(add_help=False)
        initial.add_argument(
            "--config",
            default=Config.input_path("config.json"),
            help="Path to JSON configuration file",
        )
        known, _ = initial.parse_known_args(self.argv)
        if known.config and os.path.exists(known.config):
            Config.load_from_file(known.config)

        parser = argparse.ArgumentParser(
            parents=[initial], description="Run a Machinations diagram headlessly"
        )
        parser.add_argument("--graph", required=True, help="Path to diagram JSON file")
        parser.add_argument(
            "--steps", type=int, default=100, help="Maximum number of steps per run"
        )
        parser.add_argument(
            "--trials", type=int, default=1, help="Number of Monte-Carlo trials"
        )
        parser.add_argument(
            "--seed", type=int, default=Config.random_seed, help="Random seed"
        )
        parser.add_argument(
            "--logging-mode",
            default="",
            help="Comma-separated structured log categories (or 'diagnostic')",
        )
        parser.add_argument(
            "--enable-step", default="", help="Comma-separated step labels to enable"
        )
        parser.add_argument(
            "--disable-step", default="", help="Comma-separated step labels to disable"
        )
        parser.add_argument(
            "--enable-events", default="", help="Comma-separated event types to enable"
        )
        parser.add_argument(
            "--disable-events",
            default="",
            help="Comma-separated event types to disable",
        )
        args = parser.parse_args(self.argv)
        if args.steps < 0:
            parser.error("--steps must not be negative")
        if args.trials < 1:
            parser.error("--trials must be at least 1")
        return args

    # ------------------------------------------------------------------
    @staticmethod
    def _run_single(args: argparse.Namespace) -> dict[str, Any]:
        graph = load_graph(args.graph)
        engine = Engine(
            graph, rng=np.random.default_rng(args.seed), scheduler=ManualScheduler()
        )
        results = drive(engine, args.steps)

        last = results[-1] if results else None
        return {
            "diagram": graph.name,
            "steps": graph.step_count,
            "ended": bool(last and last.ended),
            "end_nodes": list(last.end_nodes) if last else [],
            "flow_count": sum(len(r.flows) for r in results),
            "nodes": {
                node.id: {"name": node.name, "type": node.type, "value": node.value}
                for node in graph.all_nodes()
                if node.type not in ("textLabel", "group")
            },
            "charts": {
                node.id: engine.chart_data(node.id)
                for node in graph.nodes_of_type("chart")
            },
        }


def main(argv: list[str] | None = None) -> None:
    """Entry point for ``python -m Machinations_Web.main``."""

    MainService(argv=argv).run()


if __name__ == "__main__":
    main()
