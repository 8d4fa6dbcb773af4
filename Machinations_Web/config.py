# config.py

import json
import os


class Config:
    """Process-wide settings, optionally read from ``input/config.json``.

    Attributes
    ----------
    default_speed:
        Steps per second used by a new :class:`~Machinations_Web.engine.Engine`.
    min_interval_ms:
        Lower bound of the timer interval derived from the speed.
    history_size:
        Maximum number of undo snapshots kept by
        :class:`~Machinations_Web.history.History`.
    chart_max_points:
        Series length used by chart nodes without ``maxDataPoints``.
    random_seed:
        Seed for the engine's random generator. ``None`` draws fresh entropy.
    logging_mode:
        Categories of structured logs written to :attr:`output_dir`. An empty
        list disables structured logging, ``"diagnostic"`` enables all of it.
    """

    # Package-relative locations
    base_dir = os.path.dirname(os.path.abspath(__file__))
    input_dir = os.path.join(base_dir, "input")
    config_file = os.path.join(input_dir, "config.json")
    output_dir = os.path.join(base_dir, "output")

    @staticmethod
    def input_path(*parts: str) -> str:
        """Join ``parts`` onto :attr:`input_dir`."""
        return os.path.join(Config.input_dir, *parts)

    @staticmethod
    def output_path(*parts: str) -> str:
        """Join ``parts`` onto the active :attr:`output_dir`."""
        return os.path.join(Config.output_dir, *parts)

    default_speed = 5.0  # steps per second
    min_interval_ms = 50.0
    history_size = 50
    chart_max_points = 100
    random_seed: int | None = None
    log_verbosity = "info"

    # category -> {label: enabled} for structured records
    DEFAULT_LOG_FILES = {
        "step": {
            "flow_log": True,
            "step_summary": True,
        },
        "event": {
            "simulation_end": True,
            "expression_fallback": False,
        },
    }
    log_files = {cat: dict(labels) for cat, labels in DEFAULT_LOG_FILES.items()}

    logging_mode: list[str] = []

    @classmethod
    def is_category_enabled(cls, category: str) -> bool:
        """Whether ``category`` is selected by :attr:`logging_mode`."""
        modes = set(cls.logging_mode or ())
        return category in modes or "diagnostic" in modes

    @classmethod
    def is_log_enabled(cls, category: str, label: str | None = None) -> bool:
        """Whether a record ``label`` of ``category`` should be written.

        Labels may carry a ``.jsonl`` suffix. Unknown labels are enabled.
        """

        if label is not None:
            labels = cls.log_files.get(category, {})
            if not labels.get(label.removesuffix(".jsonl"), True):
                return False
        return cls.is_category_enabled(category)

    @classmethod
    def load_from_file(cls, path: str) -> None:
        """Apply settings from the JSON document at ``path``.

        Keys that are not existing attributes are ignored. Dictionary
        settings such as :attr:`log_files` are merged rather than replaced,
        and a relative ``output_dir`` is taken relative to the file.

        Parameters
        ----------
        path:
            JSON configuration file.

        Raises
        ------
        FileNotFoundError
            If ``path`` does not exist.
        """

        if not os.path.isfile(path):
            raise FileNotFoundError(path)
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        cls.config_file = os.path.abspath(path)
        here = os.path.dirname(cls.config_file)

        for key, value in data.items():
            if key.startswith("_") or not hasattr(cls, key):
                continue
            if key == "output_dir" and not os.path.isabs(value):
                value = os.path.join(here, value)
            existing = getattr(cls, key)
            if isinstance(existing, dict) and isinstance(value, dict):
                _merge_into(existing, value)
            else:
                setattr(cls, key, value)


def _merge_into(current: dict, override: dict) -> None:
    for key, value in override.items():
        if isinstance(current.get(key), dict) and isinstance(value, dict):
            _merge_into(current[key], value)
        else:
            current[key] = value


def load_config(path: str | None = None) -> dict:
    """Load ``path`` (default ``input/config.json``) into :class:`Config`.

    Returns the raw document.
    """

    path = path or Config.input_path("config.json")
    Config.load_from_file(path)
    with open(path, encoding="utf-8") as f:
        return json.load(f)
