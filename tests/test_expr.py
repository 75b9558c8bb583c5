# tests/test_expr.py
import re

import pytest

from blockflow.errors import EvalError
from blockflow.expr import assigned_names, evaluate, split_list, to_text, truthy


def run_expr(expr: str, **env):
    return evaluate(expr, env)


def test_arithmetic_tighter_than_comparisons():
    assert run_expr("1 + 2 * 3 > 6") is True
    assert run_expr("(1 + 2) * 3") == 9
    assert run_expr("7 % 4") == 3
    assert run_expr("6 / 3") == 2
    assert run_expr("7 / 2") == 3.5


def test_boolean_operators_and_keywords():
    assert run_expr("1 < 2 && 3 < 4") is True
    assert run_expr("1 < 2 and 3 > 4") is False
    assert run_expr("not false or false") is True
    assert run_expr("!true || null == null") is True


def test_short_circuit_returns_operand_and_skips_right():
    assert run_expr("false && (1 / 0 == 1)") is False
    assert run_expr("0 || 'fallback'") == "fallback"


def test_string_concatenation_and_escapes():
    assert run_expr('"n=" + 3') == "n=3"
    assert run_expr("'it\\'s'") == "it's"
    assert run_expr('"a" + true') == "atrue"


def test_assignment_writes_variables():
    env = {"i": 1}
    assert evaluate("i = i + 1", env) == 2
    assert env["i"] == 2
    assert evaluate("i++", env) == 2
    assert env["i"] == 3
    assert evaluate("i += 10, j = i", env) == 13
    assert env == {"i": 13, "j": 13}


def test_lists_indexing_and_length():
    assert run_expr("[1, 2, 3]") == [1, 2, 3]
    assert run_expr("xs[1]", xs=[10, 20]) == 20
    assert run_expr("xs[-1]", xs=[10, 20]) is None
    assert run_expr("xs[5]", xs=[10, 20]) is None
    assert run_expr("s[0.5]", s="ab") is None
    assert run_expr("xs.length", xs=[10, 20, 30]) == 3
    assert run_expr("d.k", d={"k": "v"}) == "v"


def test_regex_literal_only_in_operand_position():
    rx = run_expr("/zero/i")
    assert isinstance(rx, re.Pattern)
    assert rx.search("Division by ZERO")
    assert run_expr("a / b / 2", a=8, b=2) == 2


def test_errors_are_eval_errors():
    with pytest.raises(EvalError) as exc:
        run_expr("missing + 1")
    assert "missing is not defined" in exc.value.message
    with pytest.raises(EvalError):
        run_expr("1 / 0")
    with pytest.raises(EvalError):
        run_expr("1 +")
    with pytest.raises(EvalError):
        run_expr("'a' - 1")


def test_empty_expression_is_none():
    assert evaluate("", {}) is None
    assert evaluate("   ", {}) is None


def test_truthy_and_to_text():
    assert not truthy(None) and not truthy(0) and not truthy("")
    assert truthy([]) and truthy("0")
    assert to_text(None) == "null"
    assert to_text(3.0) == "3"
    assert to_text([1, "a"]) == "1,a"


def test_split_list_respects_quotes_and_brackets():
    assert split_list("i=0; i<3; i=i+1", ";") == ["i=0", "i<3", "i=i+1"]
    assert split_list("a='x,y', b=[1, 2]", ",") == ["a='x,y'", "b=[1, 2]"]
    assert split_list("", ",") == []


def test_assigned_names():
    assert assigned_names("i=0") == ["i"]
    assert assigned_names("i=0, j=n") == ["i", "j"]
    assert assigned_names("i < 3") == []
