"""조건식 평가 테스트"""
from __future__ import annotations

import pytest

from kgflow.conditions import SubstitutionConditionEvaluator


@pytest.fixture
def evaluator():
    return SubstitutionConditionEvaluator()


@pytest.mark.parametrize("amount, expected", [(500, False), (2000, True)])
def test_greater_than(evaluator, amount, expected):
    assert evaluator.evaluate("amount > 1000", {"amount": amount}) is expected


def test_less_than(evaluator):
    assert evaluator.evaluate("balance < 10.5", {"balance": 3.2}) is True


def test_is_null(evaluator):
    assert evaluator.evaluate("status IS NULL", {"status": None}) is True


def test_is_not_null(evaluator):
    assert evaluator.evaluate("status IS NOT NULL", {"status": "active"}) is True
    assert evaluator.evaluate("status IS NOT NULL", {"status": None}) is False


def test_string_equality_is_quoted(evaluator):
    assert evaluator.evaluate("status == 'active'", {"status": "active"}) is True
    assert evaluator.evaluate("status != 'active'", {"status": "inactive"}) is True


def test_bool_renders_lowercase(evaluator):
    assert evaluator.evaluate("vip == true", {"vip": True}) is True


def test_where_is_stripped(evaluator):
    assert evaluator.substitute("where amount > 1", {"amount": 5}) == " 5 > 1"


def test_equality_takes_priority_over_greater_than(evaluator):
    # "==" 가 먼저 선택되어 ">" 는 피연산자 일부가 됨
    assert evaluator.evaluate("a>b == a>b", {}) is True


@pytest.mark.parametrize("condition", ["", None, "amount", "amount >= "])
def test_malformed_conditions_are_false(evaluator, condition):
    assert evaluator.evaluate(condition, {"amount": 5}) is False


def test_non_numeric_comparison_is_false(evaluator):
    assert evaluator.evaluate("name > 3", {"name": "abc"}) is False


def test_unresolved_key_is_false(evaluator):
    assert evaluator.evaluate("limit > 100", {}) is False


def test_substring_keys_collide(evaluator):
    # key "amount" 가 "max_amount" 내부까지 치환되어 식이 깨짐 (알려진 결함)
    context = {"amount": 500, "max_amount": 1000}

    assert evaluator.substitute("max_amount > amount", context) == "max_500 > 500"
    assert evaluator.evaluate("max_amount > amount", context) is False
