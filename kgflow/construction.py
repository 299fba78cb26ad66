"""
construction.py - 솔루션 그래프 구축

Problem / Step / Relation 을 Neo4j 에 MERGE 기반으로 upsert 한다 (재실행 안전).

입력 소스:
- 관계형 DB (problem_definitions, solution_steps, step_relations) → seed_from_database
- TTL 파일 (rdflib) → ingest_ttl

Problem ID 생성 (TYPE-NNN):
같은 타입의 최대 번호를 조회한 뒤 +1 한다. 조회와 생성 사이에 잠금이 없으므로
같은 타입을 동시에 생성하면 ID 가 중복될 수 있다 (알려진 제약).
"""
from __future__ import annotations
import logging
from typing import Any, Union

from neo4j import Driver
from rdflib import Graph, Namespace, RDF
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from .models import Problem, Step, StepRelation
from .schema import (
    OPERATIONS,
    QUERY_CLEAR_GRAPH,
    QUERY_COUNT_PROBLEM,
    QUERY_COUNT_STEP,
    QUERY_CREATE_REL_FIRST_STEP,
    QUERY_CREATE_REL_NEXT_DEFAULT,
    QUERY_CREATE_REL_NEXT_IF,
    QUERY_DELETE_NODE,
    QUERY_DELETE_PROBLEM,
    QUERY_DELETE_RELATION,
    QUERY_GRAPH_EDGES,
    QUERY_GRAPH_NODES,
    QUERY_LATEST_PROBLEM_ID,
    QUERY_MERGE_PROBLEM,
    QUERY_MERGE_STEP,
    QUERY_STEPS_BY_PROBLEM,
    QUERY_UPDATE_PROBLEM,
    QUERY_ALL_PROBLEMS,
    REL_FIRST_STEP,
    REL_NEXT_DEFAULT,
    REL_NEXT_IF,
    SQL_ACTIVE_PROBLEMS,
    SQL_RELATIONS_BY_PROBLEM,
    SQL_STEPS_BY_PROBLEM,
    TTL_NAMESPACES,
    extract_local_id,
    format_problem_id,
    parse_problem_number,
)

logger = logging.getLogger(__name__)

_RELATION_QUERIES = {
    REL_FIRST_STEP: QUERY_CREATE_REL_FIRST_STEP,
    REL_NEXT_DEFAULT: QUERY_CREATE_REL_NEXT_DEFAULT,
    REL_NEXT_IF: QUERY_CREATE_REL_NEXT_IF,
}

# TTL 관계 predicate → 관계 타입
_TTL_RELATIONS = {
    "firstStep": REL_FIRST_STEP,
    "nextDefault": REL_NEXT_DEFAULT,
}


class GraphConstructionService:
    """Neo4j 솔루션 그래프 구축 서비스"""

    def __init__(self, driver: Driver, database: str | None = None):
        self.driver = driver
        self.database = database

    # =========================================================================
    # 쿼리 실행
    # =========================================================================

    def _execute(self, query: str, **params) -> list[dict]:
        """쿼리 실행. 실패 시 로그 후 빈 결과."""
        try:
            with self.driver.session(database=self.database) as session:
                result = session.run(query, **params)
                return [dict(record) for record in result]
        except Exception as e:
            logger.error(f"쿼리 실행 실패: {e}")
            return []

    def _count(self, query: str, **params) -> int:
        records = self._execute(query, **params)
        return int(records[0].get("count") or 0) if records else 0

    # =========================================================================
    # Problem
    # =========================================================================

    def generate_problem_id(self, problem_type: str) -> str:
        """타입별 다음 Problem ID (TYPE-001, TYPE-002, ...)"""
        records = self._execute(QUERY_LATEST_PROBLEM_ID, problemType=problem_type)

        next_num = 1
        if records and records[0].get("problemId"):
            latest_id = records[0]["problemId"]
            number = parse_problem_number(latest_id)
            if number is None:
                logger.warning(f"Problem ID 숫자 부분 파싱 실패: {latest_id}")
            else:
                next_num = number + 1

        return format_problem_id(problem_type, next_num)

    def create_problem_graph(self, problem: Problem) -> bool:
        """Problem 노드 upsert (ID 없으면 생성하여 problem 에 기록)"""
        if not problem.problem_id:
            problem.problem_id = self.generate_problem_id(problem.problem_type)

        logger.info(f"Problem 처리: {problem.problem_id} - {problem.problem_type}")
        records = self._execute(
            QUERY_MERGE_PROBLEM,
            problemId=problem.problem_id,
            problemType=problem.problem_type,
            description=problem.description,
            isActive=problem.is_active,
        )
        return bool(records)

    def update_problem_graph(self, problem: Problem) -> bool:
        logger.info(f"Problem 갱신: {problem.problem_id} - {problem.problem_type}")
        records = self._execute(
            QUERY_UPDATE_PROBLEM,
            problemId=problem.problem_id,
            problemType=problem.problem_type,
            description=problem.description,
            isActive=problem.is_active,
        )
        return bool(records)

    def delete_problem(self, problem_id: str) -> bool:
        """Problem 과 소속 Step 전체 삭제"""
        records = self._execute(QUERY_DELETE_PROBLEM, problemId=problem_id)
        return bool(records) and int(records[0].get("deleted") or 0) > 0

    def list_problems(self) -> list[Problem]:
        return [Problem.from_record(r) for r in self._execute(QUERY_ALL_PROBLEMS)]

    # =========================================================================
    # Step / Relation
    # =========================================================================

    def create_step_node(self, step: Step) -> bool:
        if step.operation not in OPERATIONS:
            logger.error(f"지원하지 않는 operation: {step.operation} ({step.key})")
            return False

        records = self._execute(
            QUERY_MERGE_STEP,
            problemId=step.problem_id,
            stepId=step.step_id,
            operation=step.operation,
            properties=step.properties(),
        )
        return bool(records)

    def create_step_relation(self, relation: StepRelation) -> bool:
        errors = relation.validate()
        if errors:
            logger.error(f"관계 검증 실패 {relation}: {'; '.join(errors)}")
            return False

        if self._count(QUERY_COUNT_PROBLEM, problemId=relation.problem_id) == 0:
            logger.error(f"Problem 노드 없음: {relation.problem_id}")
            return False

        step_ids = [relation.to_step_id]
        if relation.relation_type != REL_FIRST_STEP:
            step_ids.insert(0, relation.from_step_id)
        for step_id in step_ids:
            if self._count(QUERY_COUNT_STEP, problemId=relation.problem_id, stepId=step_id) == 0:
                logger.error(f"Step 노드 없음: {relation.problem_id}/{step_id}")
                return False

        records = self._execute(
            _RELATION_QUERIES[relation.relation_type],
            problemId=relation.problem_id,
            fromStepId=relation.from_step_id,
            toStepId=relation.to_step_id,
            condition=relation.condition_expression,
        )
        return bool(records)

    def get_steps_by_problem(self, problem_id: str) -> list[Step]:
        return [
            Step.from_record(r)
            for r in self._execute(QUERY_STEPS_BY_PROBLEM, problemId=problem_id)
        ]

    # =========================================================================
    # 노드/관계 삭제 (elementId 문자열 기준)
    # =========================================================================

    def delete_node(self, element_id: str) -> bool:
        records = self._execute(QUERY_DELETE_NODE, elementId=str(element_id))
        return bool(records) and int(records[0].get("deleted") or 0) > 0

    def delete_relation(self, element_id: str) -> bool:
        records = self._execute(QUERY_DELETE_RELATION, elementId=str(element_id))
        return bool(records) and int(records[0].get("deleted") or 0) > 0

    def clear_knowledge_graph(self) -> bool:
        try:
            with self.driver.session(database=self.database) as session:
                session.run(QUERY_CLEAR_GRAPH).consume()
            logger.info("그래프 초기화 완료")
            return True
        except Exception as e:
            logger.error(f"그래프 초기화 실패: {e}")
            return False

    def get_graph_data(self) -> dict[str, list[dict]]:
        """전체 노드/관계 (시각화용)"""
        return {
            "nodes": self._execute(QUERY_GRAPH_NODES),
            "edges": self._execute(QUERY_GRAPH_EDGES),
        }

    # =========================================================================
    # 일괄 구축
    # =========================================================================

    def create_knowledge_graph(
        self,
        problems: list[Problem],
        steps: list[Step],
        relations: list[StepRelation],
    ) -> dict[str, int]:
        """Problem → Step → Relation 순으로 upsert. 성공 개수 반환.

        비활성이거나 upsert 에 실패한 Problem 의 Step/Relation 은 건너뛴다.
        """
        stats = {"problems": 0, "steps": 0, "relations": 0, "failed": 0}
        upserted: set[str] = set()

        for problem in problems:
            if not problem.is_active:
                continue
            if self.create_problem_graph(problem):
                stats["problems"] += 1
                upserted.add(problem.problem_id)
            else:
                stats["failed"] += 1

        steps = [s for s in steps if s.problem_id in upserted]
        skipped = len([r for r in relations if r.problem_id not in upserted])
        relations = [r for r in relations if r.problem_id in upserted]
        if skipped:
            logger.info(f"대상 외 Problem 의 관계 {skipped}개 건너뜀")

        for step in steps:
            if self.create_step_node(step):
                stats["steps"] += 1
            else:
                stats["failed"] += 1

        for relation in relations:
            if self.create_step_relation(relation):
                stats["relations"] += 1
            else:
                stats["failed"] += 1

        logger.info(f"그래프 구축 완료: {stats}")
        return stats

    def seed_from_database(self, sql: Union[str, Engine]) -> dict[str, int]:
        """관계형 DB 의 활성 Problem 정의로 그래프 구축"""
        engine = create_engine(sql) if isinstance(sql, str) else sql
        problems: list[Problem] = []
        steps: list[Step] = []
        relations: list[StepRelation] = []

        try:
            with engine.connect() as conn:
                for row in conn.execute(text(SQL_ACTIVE_PROBLEMS)).mappings():
                    problem = Problem.from_record(dict(row))
                    problems.append(problem)
                    if not problem.problem_id:
                        logger.warning(f"problem_id 없는 행, Step 적재 생략: {problem.problem_type}")
                        continue

                    params = {"problem_id": problem.problem_id}
                    steps.extend(
                        Step.from_record(dict(r))
                        for r in conn.execute(text(SQL_STEPS_BY_PROBLEM), params).mappings()
                    )
                    relations.extend(
                        StepRelation.from_record(dict(r))
                        for r in conn.execute(text(SQL_RELATIONS_BY_PROBLEM), params).mappings()
                    )
        finally:
            if isinstance(sql, str):
                engine.dispose()

        if not problems:
            logger.warning("활성 Problem 없음")
        else:
            logger.info(f"활성 Problem {len(problems)}개 발견")
        return self.create_knowledge_graph(problems, steps, relations)

    # =========================================================================
    # TTL Ingestion
    # =========================================================================

    def ingest_ttl(self, ttl_path: str) -> dict[str, int]:
        """TTL 파일을 파싱하여 그래프 구축

        kg:Problem     (problemId?, problemType, description, isActive, firstStep)
        kg:Step        (problemId, stepId, operation, system, tableName, field,
                        conditionSql, replyContent, nextDefault)
        kg:Transition  (from, to, condition)  → NEXT_IF
        """
        g = Graph()
        g.parse(ttl_path, format="turtle")
        KG = Namespace(TTL_NAMESPACES["kg"])

        problems: dict[Any, Problem] = {}
        steps: dict[Any, Step] = {}

        for subject in g.subjects(RDF.type, KG.Problem):
            props = self._collect_properties(g, subject)
            problems[subject] = Problem(
                problem_id=props.get("problemId") or extract_local_id(str(subject)),
                problem_type=props.get("problemType", ""),
                description=props.get("description", ""),
                is_active=props.get("isActive", True),
            )

        for subject in g.subjects(RDF.type, KG.Step):
            props = self._collect_properties(g, subject)
            problem_ref = g.value(subject, KG.problem)
            problem_id = props.get("problemId")
            if problem_id is None and problem_ref in problems:
                problem_id = problems[problem_ref].problem_id
            steps[subject] = Step(
                problem_id=problem_id,
                step_id=props.get("stepId"),
                operation=props.get("operation", ""),
                system=props.get("system"),
                table_name=props.get("tableName"),
                field=props.get("field"),
                condition_sql=props.get("conditionSql"),
                reply_content=props.get("replyContent"),
            )

        relations: list[StepRelation] = []
        for predicate, rel_type in _TTL_RELATIONS.items():
            for s, o in g.subject_objects(KG[predicate]):
                if o not in steps or (rel_type != REL_FIRST_STEP and s not in steps):
                    logger.warning(f"관계 Step 참조 오류 [{predicate}]: {s} -> {o}")
                    continue
                target = steps[o]
                relations.append(StepRelation(
                    problem_id=target.problem_id,
                    from_step_id=None if rel_type == REL_FIRST_STEP else steps[s].step_id,
                    to_step_id=target.step_id,
                    relation_type=rel_type,
                ))

        for transition in g.subjects(RDF.type, KG.Transition):
            source = g.value(transition, KG["from"])
            target = g.value(transition, KG.to)
            if source not in steps or target not in steps:
                logger.warning(f"Transition Step 참조 오류: {extract_local_id(str(transition))}")
                continue
            condition = g.value(transition, KG.condition)
            relations.append(StepRelation(
                problem_id=steps[target].problem_id,
                from_step_id=steps[source].step_id,
                to_step_id=steps[target].step_id,
                relation_type=REL_NEXT_IF,
                condition_expression=str(condition) if condition is not None else None,
            ))

        return self.create_knowledge_graph(
            list(problems.values()), list(steps.values()), relations
        )

    def _collect_properties(self, g: Graph, subject) -> dict:
        """subject 의 리터럴 속성 수집 (로컬 이름 → Python 값)"""
        props = {}
        known_props = [
            "problemId", "problemType", "description", "isActive",
            "stepId", "operation", "system", "tableName", "field",
            "conditionSql", "replyContent",
        ]
        for p, o in g.predicate_objects(subject):
            p_local = extract_local_id(str(p))
            if p_local in known_props and hasattr(o, "toPython"):
                props[p_local] = o.toPython()
        return props
