import sys
from pathlib import Path

# Ensure package import for tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import numpy as np
import pytest

from Machinations_Web.config import Config
from Machinations_Web.engine import Engine, ManualScheduler
from Machinations_Web.graph.model import Graph

_CONFIG_KEYS = (
    "config_file",
    "output_dir",
    "default_speed",
    "min_interval_ms",
    "history_size",
    "chart_max_points",
    "random_seed",
    "log_verbosity",
    "logging_mode",
)


@pytest.fixture(autouse=True)
def _isolate_config(tmp_path, monkeypatch):
    """Restore :class:`Config` and redirect structured logs after each test."""

    for key in _CONFIG_KEYS:
        monkeypatch.setattr(Config, key, getattr(Config, key))
    monkeypatch.setattr(Config, "output_dir", str(tmp_path / "output"))
    monkeypatch.setattr(Config, "logging_mode", [])
    monkeypatch.setattr(
        Config,
        "log_files",
        {k: dict(v) for k, v in Config.DEFAULT_LOG_FILES.items()},
    )
    yield


@pytest.fixture
def rng():
    return np.random.default_rng(42)


@pytest.fixture
def graph():
    return Graph("test-diagram")


@pytest.fixture
def make_engine(rng):
    """Return a factory building engines stepped through a manual scheduler."""

    def _make(graph, **kwargs):
        kwargs.setdefault("rng", rng)
        kwargs.setdefault("scheduler", ManualScheduler())
        return Engine(graph, **kwargs)

    return _make
