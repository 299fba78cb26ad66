"""
공용 fixture

- banking_store: 은행 상담 Problem 3종 (InMemoryGraphStore)
- bank_db / query_service: SQLite 인메모리 DB + SqlQueryService
- FakeDriver: 실행된 Cypher 를 기록하는 Neo4j 드라이버 대역
- FakeOpenAI: 고정 응답을 반환하는 OpenAI 클라이언트 대역
"""
from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from kgflow.flow import TraversalEngine
from kgflow.graph_store import InMemoryGraphStore
from kgflow.models import Problem, Step, StepRelation
from kgflow.query_service import SqlQueryService
from kgflow.schema import OP_QUERY, OP_REPLY, REL_FIRST_STEP, REL_NEXT_DEFAULT, REL_NEXT_IF


# =============================================================================
# Graph
# =============================================================================

TRANSFER = "transfer_limit_issue-001"
CARD = "card_activation_problem-001"
BALANCE = "balance_inquiry-001"


def build_banking_store() -> InMemoryGraphStore:
    store = InMemoryGraphStore()

    # 이체 한도: 한도 조회 → 초과 여부 분기
    store.add_problem(Problem("transfer_limit_issue", TRANSFER, "转账限额问题"))
    store.add_step(Step(
        TRANSFER, 1, OP_QUERY, system="core", table_name="customer_limits",
        field="daily_limit", condition_sql="where customer_id = '{customer_id}'",
    ))
    store.add_step(Step(
        TRANSFER, 2, OP_REPLY,
        reply_content="您的转账金额{requested_amount}元超过每日限额{daily_limit}元，请提高限额。",
    ))
    store.add_step(Step(TRANSFER, 3, OP_REPLY, reply_content="您的转账金额未超过每日限额{daily_limit}元。"))
    store.add_relation(StepRelation(TRANSFER, 1, REL_FIRST_STEP))
    store.add_relation(StepRelation(
        TRANSFER, 2, REL_NEXT_IF, from_step_id=1,
        condition_expression="requested_amount > daily_limit",
    ))
    store.add_relation(StepRelation(TRANSFER, 3, REL_NEXT_DEFAULT, from_step_id=1))

    # 카드 활성화: 상태 조회 → 상태별 분기 (default 없음)
    store.add_problem(Problem("card_activation_problem", CARD, "卡片激活问题"))
    store.add_step(Step(
        CARD, 1, OP_QUERY, system="core", table_name="cards",
        field="status", condition_sql="where card_id = '{card_id}'",
    ))
    store.add_step(Step(CARD, 2, OP_REPLY, reply_content="您的卡片{card_id}尚未激活，请通过手机银行激活。"))
    store.add_step(Step(CARD, 3, OP_REPLY, reply_content="您的卡片{card_id}已激活。"))
    store.add_relation(StepRelation(CARD, 1, REL_FIRST_STEP))
    store.add_relation(StepRelation(
        CARD, 2, REL_NEXT_IF, from_step_id=1, condition_expression="status == 'inactive'",
    ))
    store.add_relation(StepRelation(
        CARD, 3, REL_NEXT_IF, from_step_id=1, condition_expression="status == 'active'",
    ))

    # 잔액 조회: 조회 → 응답
    store.add_problem(Problem("balance_inquiry", BALANCE, "余额查询"))
    store.add_step(Step(
        BALANCE, 1, OP_QUERY, system="core", table_name="accounts",
        field="balance", condition_sql="where customer_id = '{customer_id}'",
    ))
    store.add_step(Step(BALANCE, 2, OP_REPLY, reply_content="您的余额为{balance}元"))
    store.add_relation(StepRelation(BALANCE, 1, REL_FIRST_STEP))
    store.add_relation(StepRelation(BALANCE, 2, REL_NEXT_DEFAULT, from_step_id=1))

    return store


@pytest.fixture
def banking_store() -> InMemoryGraphStore:
    return build_banking_store()


# =============================================================================
# SQL
# =============================================================================

@pytest.fixture
def bank_db():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE customer_limits (customer_id TEXT, daily_limit INTEGER)"))
        conn.execute(text("CREATE TABLE cards (card_id TEXT, status TEXT)"))
        conn.execute(text("CREATE TABLE accounts (customer_id TEXT, balance INTEGER)"))
        conn.execute(text(
            "INSERT INTO customer_limits VALUES ('C001', 2000), ('C002', 50000)"
        ))
        conn.execute(text(
            "INSERT INTO cards VALUES ('6222001', 'inactive'), ('6222002', 'active'), "
            "('6222003', 'frozen')"
        ))
        conn.execute(text("INSERT INTO accounts VALUES ('C001', 100)"))
    yield engine
    engine.dispose()


@pytest.fixture
def query_service(bank_db) -> SqlQueryService:
    return SqlQueryService({"core": bank_db})


@pytest.fixture
def engine(banking_store, query_service) -> TraversalEngine:
    return TraversalEngine(banking_store, query_service)


# =============================================================================
# Neo4j 드라이버 대역
# =============================================================================

class FakeResult:
    def __init__(self, records: list[dict]):
        self._records = records

    def __iter__(self):
        return iter(self._records)

    def consume(self):
        return None


class FakeSession:
    def __init__(self, driver: "FakeDriver"):
        self.driver = driver

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        return False

    def run(self, query: str, **params) -> FakeResult:
        self.driver.calls.append((query, params))
        return FakeResult(self.driver.handler(query, params))


class FakeDriver:
    """handler(query, params) → 레코드 목록 (예외를 던지면 실패 재현)"""

    def __init__(self, handler=None):
        self.handler = handler or (lambda query, params: [])
        self.calls: list[tuple[str, dict]] = []
        self.databases: list[str | None] = []
        self.closed = False

    def session(self, database=None):
        self.databases.append(database)
        return FakeSession(self)

    def queries(self) -> list[str]:
        return [q for q, _ in self.calls]

    def close(self):
        self.closed = True


@pytest.fixture
def fake_driver():
    return FakeDriver()


# =============================================================================
# OpenAI 클라이언트 대역
# =============================================================================

class FakeCompletions:
    def __init__(self, client: "FakeOpenAI"):
        self.client = client

    def create(self, **kwargs):
        self.client.requests.append(kwargs)
        if self.client.error is not None:
            raise self.client.error
        content = self.client.content
        if isinstance(content, dict):
            content = json.dumps(content, ensure_ascii=False)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
        )


class FakeOpenAI:
    def __init__(self, content=None, error: Exception | None = None):
        self.content = content
        self.error = error
        self.requests: list[dict] = []
        self.chat = SimpleNamespace(completions=FakeCompletions(self))


@pytest.fixture
def fake_openai():
    return FakeOpenAI
