"""TraversalEngine 테스트"""
from __future__ import annotations

import pytest

from kgflow.errors import StorageError
from kgflow.flow import (
    MSG_INTERRUPTED,
    MSG_NO_REPLY,
    MSG_NO_SOLUTION,
    MSG_STEP_LIMIT,
    MSG_SYSTEM_ERROR,
    STATUS_COMPLETED,
    STATUS_INTERRUPTED,
    TraversalEngine,
    select_candidate,
)
from kgflow.conditions import SubstitutionConditionEvaluator
from kgflow.graph_store import GraphStore, InMemoryGraphStore
from kgflow.models import Candidate, Problem, Step, StepRelation
from kgflow.query_service import ExternalQueryService
from kgflow.schema import OP_QUERY, OP_REPLY, REL_FIRST_STEP, REL_NEXT_DEFAULT, REL_NEXT_IF

from conftest import BALANCE, CARD, TRANSFER


class StubQueryService(ExternalQueryService):
    """고정 값을 반환하며 호출 내역을 기록"""

    def __init__(self, values: dict | None = None):
        self.values = values or {}
        self.calls = []

    def query_scalar(self, system, table, field, condition):
        self.calls.append((system, table, field, condition))
        return self.values.get(field)


def _store(problem_id: str = "P-001") -> InMemoryGraphStore:
    store = InMemoryGraphStore()
    store.add_problem(Problem("test", problem_id))
    return store


# =============================================================================
# 기본 경로
# =============================================================================

def test_default_only_path_reaches_reply():
    store = _store()
    store.add_step(Step("P-001", 1, OP_QUERY, table_name="t", field="x"))
    store.add_step(Step("P-001", 2, OP_QUERY, table_name="t", field="y"))
    store.add_step(Step("P-001", 3, OP_REPLY, reply_content="你好 {name}"))
    store.add_relation(StepRelation("P-001", 1, REL_FIRST_STEP))
    store.add_relation(StepRelation("P-001", 2, REL_NEXT_DEFAULT, from_step_id=1))
    store.add_relation(StepRelation("P-001", 3, REL_NEXT_DEFAULT, from_step_id=2))

    queries = StubQueryService()
    engine = TraversalEngine(store, queries)

    for _ in range(3):
        result = engine.run("P-001", {"name": "张三"})
        assert result.status == STATUS_COMPLETED
        assert result.message == "你好 张三"
        assert result.visited == [("P-001", 1), ("P-001", 2), ("P-001", 3)]

    # 조건 없는 query Step 은 조회하지 않음
    assert queries.calls == []


def test_first_step_reply():
    store = _store()
    store.add_step(Step("P-001", 1, OP_REPLY, reply_content="直接回复"))
    store.add_relation(StepRelation("P-001", 1, REL_FIRST_STEP))

    message, context = TraversalEngine(store, StubQueryService()).execute_solution("P-001", None)

    assert message == "直接回复"
    assert context == {}


def test_balance_inquiry(engine):
    message, context = engine.execute_solution(BALANCE, {"customer_id": "C001"})

    assert message == "您的余额为100元"
    assert context == {"customer_id": "C001", "balance": 100}


def test_transfer_over_limit(engine):
    result = engine.run(TRANSFER, {"customer_id": "C001", "requested_amount": 5000})

    assert result.completed
    assert result.message == "您的转账金额5000元超过每日限额2000元，请提高限额。"
    assert result.results == {"daily_limit": 2000}
    assert result.context["daily_limit"] == 2000


def test_transfer_within_limit_falls_to_default(engine):
    message, _ = engine.execute_solution(TRANSFER, {"customer_id": "C001", "requested_amount": 1000})

    assert message == "您的转账金额未超过每日限额2000元。"


@pytest.mark.parametrize("card_id, expected", [
    ("6222001", "您的卡片6222001尚未激活，请通过手机银行激活。"),
    ("6222002", "您的卡片6222002已激活。"),
])
def test_card_activation_branches(engine, card_id, expected):
    message, _ = engine.execute_solution(CARD, {"card_id": card_id})

    assert message == expected


def test_does_not_mutate_input_context(engine):
    context = {"customer_id": "C001"}

    _, updated = engine.execute_solution(BALANCE, context)

    assert context == {"customer_id": "C001"}
    assert updated["balance"] == 100


# =============================================================================
# Interrupted
# =============================================================================

def test_unknown_problem_has_no_first_step(engine):
    result = engine.run("missing-001", {"a": 1})

    assert result.status == STATUS_INTERRUPTED
    assert result.reason == "no first step"
    assert result.message == MSG_NO_SOLUTION
    assert result.context == {"a": 1}


def test_query_step_without_edges_is_interrupted():
    store = _store()
    store.add_step(Step("P-001", 1, OP_QUERY, table_name="t", field="x", condition_sql="where id = 1"))
    store.add_relation(StepRelation("P-001", 1, REL_FIRST_STEP))

    result = TraversalEngine(store, StubQueryService({"x": 7})).run("P-001", {})

    assert result.status == STATUS_INTERRUPTED
    assert result.reason == "no next step"
    assert result.message == MSG_INTERRUPTED
    # 실패 시점까지의 context 유지
    assert result.context == {"x": 7}


def test_no_satisfied_branch(engine):
    result = engine.run(CARD, {"card_id": "6222003"})

    assert result.reason == "no satisfied branch"
    assert result.message == MSG_INTERRUPTED
    assert result.context["status"] == "frozen"


def test_null_query_result_is_not_stored(engine):
    result = engine.run(CARD, {"card_id": "0000"})

    assert "status" not in result.context
    assert result.reason == "no satisfied branch"


def test_query_condition_missing_variable(engine):
    result = engine.run(BALANCE, {})

    assert result.reason == "render failure"
    assert result.message == "抱歉，查询条件缺少参数: customer_id"


def test_reply_missing_variable(engine):
    # 한도 조회 실패 → default 분기 → 응답 템플릿의 daily_limit 없음
    result = engine.run(TRANSFER, {"customer_id": "C999", "requested_amount": 5000})

    assert result.reason == "render failure"
    assert result.message == "回复生成失败，缺少参数: daily_limit"
    assert result.context == {"customer_id": "C999", "requested_amount": 5000}


def test_empty_reply_template():
    store = _store()
    store.add_step(Step("P-001", 1, OP_REPLY, reply_content=""))
    store.add_relation(StepRelation("P-001", 1, REL_FIRST_STEP))

    result = TraversalEngine(store, StubQueryService()).run("P-001", {})

    assert result.reason == "missing reply"
    assert result.message == MSG_NO_REPLY


def test_unsupported_operation():
    store = _store()
    store.add_step(Step("P-001", 1, "notify"))
    store.add_relation(StepRelation("P-001", 1, REL_FIRST_STEP))

    result = TraversalEngine(store, StubQueryService()).run("P-001", {})

    assert result.reason == "unsupported operation"


def test_cycle_hits_step_limit():
    store = _store()
    store.add_step(Step("P-001", 1, OP_QUERY))
    store.add_step(Step("P-001", 2, OP_QUERY))
    store.add_relation(StepRelation("P-001", 1, REL_FIRST_STEP))
    store.add_relation(StepRelation("P-001", 2, REL_NEXT_DEFAULT, from_step_id=1))
    store.add_relation(StepRelation("P-001", 1, REL_NEXT_DEFAULT, from_step_id=2))

    result = TraversalEngine(store, StubQueryService(), max_steps=10).run("P-001", {})

    assert result.reason == "step limit exceeded"
    assert result.message == MSG_STEP_LIMIT
    assert len(result.visited) == 10


def test_default_step_limit_is_100():
    assert TraversalEngine(InMemoryGraphStore(), StubQueryService()).max_steps == 100


def test_max_steps_must_be_positive():
    with pytest.raises(ValueError):
        TraversalEngine(InMemoryGraphStore(), StubQueryService(), max_steps=0)


def test_invalid_context_value_is_interrupted():
    store = _store()
    store.add_step(Step("P-001", 1, OP_REPLY, reply_content="ok"))
    store.add_relation(StepRelation("P-001", 1, REL_FIRST_STEP))

    result = TraversalEngine(store, StubQueryService()).run("P-001", {"bad": object()})

    assert result.status == STATUS_INTERRUPTED
    assert result.message == MSG_SYSTEM_ERROR


class BrokenGraphStore(GraphStore):
    def first_step(self, problem_id):
        raise StorageError("connection refused")

    def next_candidates(self, problem_id, step_id):
        raise StorageError("connection refused")

    def problem_id_for_intent(self, intent_type):
        raise StorageError("connection refused")

    def list_problems(self):
        return []


def test_storage_failure_never_escapes():
    result = TraversalEngine(BrokenGraphStore(), StubQueryService()).run("P-001", {"k": "v"})

    assert result.reason == "storage failure"
    assert result.message == MSG_SYSTEM_ERROR
    assert result.context == {"k": "v"}


# =============================================================================
# 후보 선택 순서
# =============================================================================

def _branching_store(default_first: bool) -> InMemoryGraphStore:
    store = _store()
    store.add_step(Step("P-001", 1, OP_QUERY))
    store.add_step(Step("P-001", 2, OP_REPLY, reply_content="if"))
    store.add_step(Step("P-001", 3, OP_REPLY, reply_content="default"))
    store.add_relation(StepRelation("P-001", 1, REL_FIRST_STEP))
    edges = [
        StepRelation("P-001", 2, REL_NEXT_IF, from_step_id=1, condition_expression="amount > 1000"),
        StepRelation("P-001", 3, REL_NEXT_DEFAULT, from_step_id=1),
    ]
    if default_first:
        edges.reverse()
    for edge in edges:
        store.add_relation(edge)
    return store


@pytest.mark.parametrize("default_first", [True, False])
def test_false_if_and_default_select_default(default_first):
    engine = TraversalEngine(_branching_store(default_first), StubQueryService())

    message, _ = engine.execute_solution("P-001", {"amount": 500})

    assert message == "default"


@pytest.mark.parametrize("default_first, expected", [
    (True, "default"),
    (False, "if"),
])
def test_default_chosen_when_encountered(default_first, expected):
    engine = TraversalEngine(_branching_store(default_first), StubQueryService())

    message, _ = engine.execute_solution("P-001", {"amount": 2000})

    assert message == expected


def test_select_candidate_skips_if_without_condition():
    step = Step("P-001", 2, OP_REPLY)
    candidates = [Candidate(REL_NEXT_IF, step, condition=None)]

    assert select_candidate(candidates, {}, SubstitutionConditionEvaluator()) is None
