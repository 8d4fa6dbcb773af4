import json
import logging
import math
from pathlib import Path

import pytest

from Machinations_Web.config import Config
from Machinations_Web.engine.evaluator import (
    Evaluator,
    ExpressionError,
    IntervalCounters,
    ParsedRate,
    evaluate_expression,
    round_half_up,
)


@pytest.fixture
def evaluator(graph, rng):
    graph.create_node("pool", properties={"name": "Gold", "startValue": 5})
    return Evaluator(graph, rng)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("2 + 3 * 4", 14),
        ("(2 + 3) * 4", 20),
        ("7 / 2", 3.5),
        ("10 % 3", 1),
        ("-3 + 5", 2),
        ("2 * -3", -6),
        ("round(2.5)", 3),
        ("round(-2.5)", -2),
        ("Math.floor(2.7)", 2),
        ("ceil(2.1)", 3),
        ("abs(-4)", 4),
        ("max(1, 5, 3)", 5),
        ("Math.min(4, 2)", 2),
        ("sqrt(16)", 4),
        ("pow(2, 3)", 8),
        ("1.5e1", 15),
    ],
)
def test_arithmetic(text, expected):
    assert evaluate_expression(text) == expected


@pytest.mark.parametrize(
    "text, expected",
    [
        ("3 >= 2", True),
        ("3 < 2", False),
        ("1 === 1", True),
        ("1 !== 1", False),
        ("2 == 2 && 3 > 4", False),
        ("2 == 2 || 3 > 4", True),
        ("1 and not 0", True),
        ("!0", True),
        ("true", True),
        ("false or false", False),
    ],
)
def test_logic(text, expected):
    assert bool(evaluate_expression(text)) is expected


def test_division_by_zero_follows_float_semantics():
    assert evaluate_expression("1 / 0") == math.inf
    assert evaluate_expression("-1 / 0") == -math.inf
    assert math.isnan(evaluate_expression("0 / 0"))


def test_non_finite_literals():
    assert evaluate_expression("Infinity") == math.inf
    assert evaluate_expression("-Infinity + 1") == -math.inf
    assert evaluate_expression("min(inf, 3)") == 3
    assert math.isnan(evaluate_expression("NaN"))


def test_oversized_values_become_infinite(evaluator, graph):
    node = graph.create_node("register", properties={"value": 0})
    node.resources = 10**400
    assert evaluator.parse_rate("self * 10", node).value == math.inf
    assert evaluator.evaluate_formula("self", node) == math.inf
    assert evaluator.evaluate_formula("-self", node) == -math.inf
    assert evaluator.evaluate_condition(">0", 10**400) is True


def test_infinite_values_are_substituted(evaluator, graph):
    graph.create_node("pool", properties={"name": "Big"}).resources = math.inf
    assert evaluator.evaluate_formula("min({Big}, 5)") == 5
    assert evaluator.evaluate_formula("{Big} > 1") == 1
    node = graph.create_node("pool")
    node.resources = -math.inf
    assert evaluator.evaluate_formula("self - 1", node) == -math.inf
    assert evaluator.evaluate_condition("value < 0", -math.inf) is True
    assert evaluator.evaluate_condition(">0", math.inf) is True


@pytest.mark.parametrize(
    "text",
    ["", "2 +", "(1 + 2", "foo(1)", "os.system(1)", "__import__('os')", "1 2"],
)
def test_malformed_expressions_raise(text):
    with pytest.raises(ExpressionError):
        evaluate_expression(text)


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(2.4) == 2
    assert round_half_up(-0.5) == 0


def test_parse_rate_plain_values(evaluator):
    assert evaluator.parse_rate(3) == ParsedRate(3)
    assert evaluator.parse_rate(2.5) == ParsedRate(2.5)
    assert evaluator.parse_rate("3") == ParsedRate(3)
    assert evaluator.parse_rate("") == ParsedRate(1)
    assert evaluator.parse_rate(None) == ParsedRate(1)


def test_parse_rate_flags(evaluator):
    assert evaluator.parse_rate("&3") == ParsedRate(3, all_or_nothing=True)
    assert evaluator.parse_rate("/4") == ParsedRate(1, interval=4)
    assert evaluator.parse_rate("&/4") == ParsedRate(1, True, 4)


def test_parse_rate_references(evaluator, graph):
    assert evaluator.parse_rate("{Gold} * 2").value == 10
    assert evaluator.parse_rate("{Nobody} + 1").value == 1
    node = graph.create_node("pool", properties={"startValue": 8})
    assert evaluator.parse_rate("self / 2", node).value == 4


def test_parse_rate_falls_back_to_one(evaluator):
    assert evaluator.parse_rate("abc").value == 1
    assert evaluator.parse_rate("0 / 0").value == 1


def test_dice_stay_in_range(evaluator):
    rolls = [evaluator.parse_rate("2D6").value for _ in range(300)]
    assert all(isinstance(r, int) for r in rolls)
    assert all(2 <= r <= 12 for r in rolls)
    assert len(set(rolls)) > 1
    assert all(1 <= evaluator.parse_rate("D6").value <= 6 for _ in range(50))
    assert evaluator.parse_rate("3D1").value == 3
    assert evaluator.parse_rate("0D6").value == 0


def test_dice_in_expressions(evaluator):
    for _ in range(50):
        assert 3 <= evaluator.evaluate_formula("1d4 + 2") <= 6


def test_evaluate_formula(evaluator, graph):
    node = graph.create_node("register", properties={"value": 3})
    assert evaluator.evaluate_formula("{Gold} + self", node) == 8
    assert evaluator.evaluate_formula(4) == 4
    assert evaluator.evaluate_formula("2 > 1") == 1
    assert evaluator.evaluate_formula("") == 0
    assert evaluator.evaluate_formula("nonsense") == 0
    assert evaluator.evaluate_formula("0 / 0") == 0
    assert evaluator.evaluate_formula("1 / 0") == math.inf


@pytest.mark.parametrize(
    "condition, value, expected",
    [
        (">0", 5, True),
        (">0", 0, False),
        (">= 5", 4, False),
        ("==2", 2, True),
        ("value >= 3", 3, True),
        ("value * 2 < 3", 2.5, False),
        ("value >=", 2, True),
        ("value >=", 0, False),
        ("", 3, True),
    ],
)
def test_evaluate_condition(evaluator, condition, value, expected):
    assert evaluator.evaluate_condition(condition, value) is expected


def test_interval_counters():
    counters = IntervalCounters()
    fired = [counters.check("n", 3) for _ in range(7)]
    assert fired == [False, False, True, False, False, True, False]
    assert counters.get("n") == 1
    assert counters.check("other", 0)
    counters.clear()
    assert counters.get("n") == 0


def test_fallback_is_logged(evaluator, caplog):
    caplog.set_level(logging.DEBUG, logger="Machinations_Web.engine.evaluator")
    evaluator.evaluate_formula("nonsense")
    assert "fell back" in caplog.text


def test_fallback_structured_record(evaluator, monkeypatch):
    monkeypatch.setattr(Config, "logging_mode", ["event"])
    Config.log_files["event"]["expression_fallback"] = True
    evaluator.parse_rate("abc")
    lines = (Path(Config.output_dir) / "event_log.jsonl").read_text().splitlines()
    record = json.loads(lines[-1])
    assert record["label"] == "expression_fallback"
    assert record["kind"] == "rate"
    assert record["text"] == "abc"
