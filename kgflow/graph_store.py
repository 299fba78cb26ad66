"""
graph_store.py - 솔루션 그래프 조회 인터페이스

엔진은 GraphStore 의 세 가지 읽기 연산만 사용한다:
- first_step(problem_id)
- next_candidates(problem_id, step_id)   (반환 순서 = 선택 우선순위)
- problem_id_for_intent(intent_type)

구현:
- Neo4jGraphStore: Cypher 기반 (TTL 캐시, fail-soft / strict 모드)
- InMemoryGraphStore: 로컬 실행·테스트용 dict 기반
"""
from __future__ import annotations
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any

from neo4j import Driver

from .errors import NotFound, StorageError
from .models import Candidate, Problem, Step, StepRelation
from .schema import (
    QUERY_ALL_PROBLEMS,
    QUERY_FIRST_STEP,
    QUERY_NEXT_CANDIDATES,
    QUERY_PROBLEM_BY_INTENT,
    REL_FIRST_STEP,
    REL_NEXT_DEFAULT,
    REL_NEXT_IF,
)

logger = logging.getLogger(__name__)


class GraphStore(ABC):
    """솔루션 그래프 읽기 인터페이스"""

    @abstractmethod
    def first_step(self, problem_id: str) -> Step:
        """Problem 의 FIRST_STEP 대상. 없으면 NotFound."""

    @abstractmethod
    def next_candidates(self, problem_id: str, step_id: int) -> list[Candidate]:
        """다음 Step 후보 목록 (저장소 반환 순서 유지)"""

    @abstractmethod
    def problem_id_for_intent(self, intent_type: str) -> str:
        """의도 타입에 해당하는 활성 Problem ID. 없으면 NotFound."""

    @abstractmethod
    def list_problems(self) -> list[Problem]:
        """전체 Problem 목록"""


# =============================================================================
# Neo4j 구현
# =============================================================================

class Neo4jGraphStore(GraphStore):
    """Neo4j 기반 GraphStore"""

    def __init__(
        self,
        driver: Driver,
        database: str | None = None,
        strict: bool = False,
        cache_ttl: int = 300,
    ):
        self.driver = driver
        self.database = database
        self.strict = strict

        # 메모리 캐시 (key → (저장 시각, 값))
        self._cache: dict[str, tuple[float, Any]] = {}
        self._cache_ttl = cache_ttl
        self._cache_lock = threading.Lock()

    # =========================================================================
    # 캐시 유틸리티
    # =========================================================================

    def _get_cached(self, cache_key: str) -> list[dict] | None:
        with self._cache_lock:
            entry = self._cache.get(cache_key)
            if entry and (time.time() - entry[0]) < self._cache_ttl:
                return entry[1]
            return None

    def _set_cached(self, cache_key: str, records: list[dict]) -> None:
        with self._cache_lock:
            self._cache[cache_key] = (time.time(), records)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    # =========================================================================
    # 쿼리 실행
    # =========================================================================

    def _run(self, query: str, **params) -> list[dict]:
        try:
            with self.driver.session(database=self.database) as session:
                result = session.run(query, **params)
                return [dict(record) for record in result]
        except Exception as e:
            raise StorageError(str(e)) from e

    def _query(self, query: str, cache_key: str | None = None, **params) -> list[dict]:
        """쿼리 실행 (캐시 적용).

        실패 시 strict 이면 StorageError 전파, 아니면 로그 후 빈 결과 (캐시하지 않음).
        빈 결과는 캐시하지 않는다.
        """
        if cache_key:
            cached = self._get_cached(cache_key)
            if cached is not None:
                return cached

        try:
            records = self._run(query, **params)
        except StorageError as e:
            logger.error(f"그래프 쿼리 실패: {e}")
            if self.strict:
                raise
            return []

        if cache_key and records:
            self._set_cached(cache_key, records)
        return records

    # =========================================================================
    # GraphStore 연산
    # =========================================================================

    def problem_id_for_intent(self, intent_type: str) -> str:
        records = self._query(
            QUERY_PROBLEM_BY_INTENT, f"intent_{intent_type}", problemType=intent_type
        )
        if not records or not records[0].get("problemId"):
            raise NotFound(f"의도 {intent_type}에 해당하는 Problem 없음")
        return records[0]["problemId"]

    def first_step(self, problem_id: str) -> Step:
        records = self._query(QUERY_FIRST_STEP, f"first_{problem_id}", problemId=problem_id)
        if not records:
            raise NotFound(f"Problem {problem_id}의 첫 Step 없음")
        return Step.from_record(records[0])

    def next_candidates(self, problem_id: str, step_id: int) -> list[Candidate]:
        records = self._query(
            QUERY_NEXT_CANDIDATES,
            f"next_{problem_id}_{step_id}",
            problemId=problem_id,
            stepId=step_id,
        )
        return [
            Candidate(
                relation_type=r["relationType"],
                condition=r.get("condition"),
                step=Step.from_record(r),
            )
            for r in records
        ]

    def list_problems(self) -> list[Problem]:
        return [Problem.from_record(r) for r in self._query(QUERY_ALL_PROBLEMS)]


# =============================================================================
# In-memory 구현
# =============================================================================

class InMemoryGraphStore(GraphStore):
    """dict 기반 GraphStore. 후보 순서 = 관계 추가 순서."""

    def __init__(self):
        self.problems: dict[str, Problem] = {}
        self.steps: dict[tuple[str, int], Step] = {}
        self.relations: list[StepRelation] = []

    def add_problem(self, problem: Problem) -> Problem:
        if not problem.problem_id:
            raise ValueError("problem_id 필요")
        self.problems[problem.problem_id] = problem
        return problem

    def add_step(self, step: Step) -> Step:
        self.steps[step.key] = step
        return step

    def add_relation(self, relation: StepRelation) -> StepRelation:
        errors = relation.validate()
        if errors:
            raise ValueError("; ".join(errors))
        if relation.problem_id not in self.problems:
            raise ValueError(f"Problem 없음: {relation.problem_id}")
        for step_id in (relation.from_step_id, relation.to_step_id):
            if step_id is not None and (relation.problem_id, step_id) not in self.steps:
                raise ValueError(f"Step 없음: {relation.problem_id}/{step_id}")
        self.relations.append(relation)
        return relation

    def problem_id_for_intent(self, intent_type: str) -> str:
        for problem in sorted(self.problems.values(), key=lambda p: p.problem_id):
            if problem.problem_type == intent_type and problem.is_active:
                return problem.problem_id
        raise NotFound(f"의도 {intent_type}에 해당하는 Problem 없음")

    def first_step(self, problem_id: str) -> Step:
        for rel in self.relations:
            if rel.problem_id == problem_id and rel.relation_type == REL_FIRST_STEP:
                return self.steps[(problem_id, rel.to_step_id)]
        raise NotFound(f"Problem {problem_id}의 첫 Step 없음")

    def next_candidates(self, problem_id: str, step_id: int) -> list[Candidate]:
        return [
            Candidate(
                relation_type=rel.relation_type,
                condition=rel.condition_expression,
                step=self.steps[(problem_id, rel.to_step_id)],
            )
            for rel in self.relations
            if rel.problem_id == problem_id
            and rel.from_step_id == step_id
            and rel.relation_type in (REL_NEXT_DEFAULT, REL_NEXT_IF)
        ]

    def list_problems(self) -> list[Problem]:
        return sorted(self.problems.values(), key=lambda p: p.problem_id)
