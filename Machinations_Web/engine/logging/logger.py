from __future__ import annotations

"""JSON-lines records and per-step CSV metrics for simulation runs."""

import csv
import json
from collections import Counter
from pathlib import Path
from typing import Any

from ...config import Config


class StepMetrics:
    """Accumulate numeric totals during a step and append them to a CSV."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.totals: Counter[str] = Counter()
        self._columns: list[str] | None = None

    def add(self, name: str, amount: float = 1) -> None:
        self.totals[name] += amount

    def flush(self, step: int) -> None:
        """Append one row for ``step`` and start a fresh accumulation."""

        if self._columns is None:
            self._columns = ["step", *sorted(self.totals)]
        new_file = not self.path.exists()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", newline="") as fh:
            writer = csv.DictWriter(fh, fieldnames=self._columns, extrasaction="ignore")
            if new_file:
                writer.writeheader()
            writer.writerow({"step": step, **self.totals})
        self.totals.clear()


_METRICS: StepMetrics | None = None


def _get_metrics() -> StepMetrics:
    global _METRICS
    target = Path(Config.output_dir) / "metrics.csv"
    if _METRICS is None or _METRICS.path != target:
        _METRICS = StepMetrics(target)
    return _METRICS


def log_record(
    category: str,
    label: str,
    *,
    step: int | None = None,
    value: dict[str, Any] | None = None,
    path: Path | None = None,
    **extra: Any,
) -> None:
    """Append one JSON object to ``<output_dir>/<category>_log.jsonl``.

    The object holds ``label``, the optional ``step``, then the keys of
    ``value`` and ``extra``.
    """

    target = path or Path(Config.output_dir) / f"{category}_log.jsonl"
    target.parent.mkdir(parents=True, exist_ok=True)
    record: dict[str, Any] = {"label": label}
    if step is not None:
        record["step"] = step
    record.update(value or {})
    record.update(extra)
    with target.open("a", encoding="utf-8") as fh:
        fh.write(json.dumps(record, default=str) + "\n")


def record_metric(name: str, amount: float = 1) -> None:
    """Add ``amount`` to the running total ``name`` of the current step."""

    _get_metrics().add(name, amount)


def flush_metrics(step: int) -> None:
    _get_metrics().flush(step)
