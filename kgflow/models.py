"""
models.py - 솔루션 그래프 도메인 레코드

Problem / Step / StepRelation 은 관계형 테이블
(problem_definitions, solution_steps, step_relations) 및 Neo4j 노드와 1:1 대응.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any

from .schema import (
    OP_QUERY,
    OP_REPLY,
    REL_FIRST_STEP,
    REL_NEXT_IF,
    RELATION_TYPES,
)


@dataclass
class Problem:
    """문제 유형 (솔루션 그래프의 루트)"""
    problem_type: str
    problem_id: str | None = None
    description: str = ""
    is_active: bool = True

    @classmethod
    def from_record(cls, record: dict) -> "Problem":
        is_active = record.get("isActive", record.get("is_active", True))
        return cls(
            problem_type=record.get("problemType") or record.get("problem_type") or "",
            problem_id=record.get("problemId") or record.get("problem_id"),
            description=record.get("description") or "",
            is_active=True if is_active is None else bool(is_active),
        )


@dataclass
class Step:
    """솔루션 Step (query 또는 reply)"""
    problem_id: str
    step_id: int
    operation: str
    system: str | None = None
    table_name: str | None = None
    field: str | None = None
    condition_sql: str | None = None
    reply_content: str | None = None

    @property
    def key(self) -> tuple[str, int]:
        return (self.problem_id, self.step_id)

    @property
    def is_query(self) -> bool:
        return self.operation == OP_QUERY

    @property
    def is_reply(self) -> bool:
        return self.operation == OP_REPLY

    def properties(self) -> dict[str, Any]:
        """Neo4j 노드에 SET 할 부가 속성 (None 제외)"""
        props = {
            "system_a": self.system,
            "table_name": self.table_name,
            "field": self.field,
            "condition_sql": self.condition_sql,
            "reply_content": self.reply_content,
        }
        return {k: v for k, v in props.items() if v is not None}

    @classmethod
    def from_record(cls, record: dict) -> "Step":
        """Cypher 결과(camelCase) 또는 SQL row(snake_case)에서 생성"""
        def pick(camel: str, snake: str):
            value = record.get(camel)
            return value if value is not None else record.get(snake)

        return cls(
            problem_id=pick("problemId", "problem_id"),
            step_id=pick("stepId", "step_id"),
            operation=pick("operation", "operation") or "",
            system=pick("system", "system_a"),
            table_name=pick("tableName", "table_name"),
            field=pick("field", "field"),
            condition_sql=pick("conditionSql", "condition_sql"),
            reply_content=pick("replyContent", "reply_content"),
        )


@dataclass
class StepRelation:
    """Step 간(또는 Problem→Step) 관계"""
    problem_id: str
    to_step_id: int
    relation_type: str
    from_step_id: int | None = None
    condition_expression: str | None = None

    def validate(self) -> list[str]:
        """구조 오류 목록 반환 (비어 있으면 유효)"""
        errors = []
        if self.relation_type not in RELATION_TYPES:
            errors.append(f"지원하지 않는 관계 타입: {self.relation_type}")
        if self.relation_type != REL_FIRST_STEP and self.from_step_id is None:
            errors.append("from_step_id 없음")
        if self.relation_type == REL_NEXT_IF and not (self.condition_expression or "").strip():
            errors.append("NEXT_IF 관계에 condition 없음")
        return errors

    @classmethod
    def from_record(cls, record: dict) -> "StepRelation":
        return cls(
            problem_id=record["problem_id"],
            from_step_id=record.get("from_step_id"),
            to_step_id=record["to_step_id"],
            relation_type=record["relation_type"],
            condition_expression=record.get("condition_expression"),
        )


@dataclass
class Candidate:
    """다음 Step 후보 (GraphStore 반환 순서가 의미를 가짐)"""
    relation_type: str
    step: Step
    condition: str | None = None
