"""
schema.py - Neo4j 스키마 및 Cypher 쿼리 모음

솔루션 그래프(Problem/Step)를 Neo4j에 저장하기 위한 스키마 정의,
Traversal 엔진과 그래프 구축 서비스에서 사용하는 쿼리 상수 모음.

그래프 구조:
  Problem -[:FIRST_STEP]-> Step               (진입점, Problem당 1개)
  Step -[:NEXT_DEFAULT]-> Step                (무조건 전이)
  Step -[:NEXT_IF {condition}]-> Step         (조건부 전이)

Step은 (problem_id, step_id) 복합 키로 식별되며,
operation 은 "query" (외부 시스템 조회) 또는 "reply" (응답 생성) 중 하나.
"""
from __future__ import annotations

# =============================================================================
# Operation / Relation 태그
# =============================================================================

OP_QUERY = "query"
OP_REPLY = "reply"
OPERATIONS = (OP_QUERY, OP_REPLY)

REL_FIRST_STEP = "FIRST_STEP"
REL_NEXT_DEFAULT = "NEXT_DEFAULT"
REL_NEXT_IF = "NEXT_IF"
NEXT_RELATIONS = (REL_NEXT_DEFAULT, REL_NEXT_IF)
RELATION_TYPES = (REL_FIRST_STEP, REL_NEXT_DEFAULT, REL_NEXT_IF)

# 검증 시 FIRST_STEP 으로부터 탐색하는 최대 깊이 (구축 시 가정과 동일)
MAX_VERIFY_DEPTH = 10

# =============================================================================
# TTL Namespace 정의
# =============================================================================

TTL_NAMESPACES = {
    "kg": "http://kgflow.local/ontology/solution#",
}

# =============================================================================
# Schema 생성 쿼리 (Constraints)
# =============================================================================

SCHEMA_QUERIES = [
    "CREATE CONSTRAINT problem_id_unique IF NOT EXISTS "
    "FOR (p:Problem) REQUIRE p.problem_id IS UNIQUE",
    "CREATE CONSTRAINT step_key_unique IF NOT EXISTS "
    "FOR (s:Step) REQUIRE (s.problem_id, s.step_id) IS UNIQUE",
]

QUERY_SHOW_CONSTRAINTS = """
SHOW CONSTRAINTS YIELD name, labelsOrTypes, properties
RETURN name, labelsOrTypes, properties
"""

# =============================================================================
# Traversal 관련 쿼리
# =============================================================================

_STEP_RETURN = """
       s.problem_id AS problemId, s.step_id AS stepId, s.operation AS operation,
       s.system_a AS system, s.table_name AS tableName, s.field AS field,
       s.condition_sql AS conditionSql, s.reply_content AS replyContent
"""

QUERY_PROBLEM_BY_INTENT = """
MATCH (p:Problem {problem_type: $problemType})
WHERE coalesce(p.is_active, true)
RETURN p.problem_id AS problemId
ORDER BY p.problem_id
LIMIT 1
"""

QUERY_FIRST_STEP = """
MATCH (p:Problem {problem_id: $problemId})-[:FIRST_STEP]->(s:Step)
RETURN""" + _STEP_RETURN + """
LIMIT 1
"""

# 후보 순서는 Neo4j 반환 순서를 그대로 유지 (ORDER BY 없음)
QUERY_NEXT_CANDIDATES = """
MATCH (cur:Step {problem_id: $problemId, step_id: $stepId})-[r:NEXT_DEFAULT|NEXT_IF]->(s:Step)
RETURN type(r) AS relationType, r.condition AS condition,""" + _STEP_RETURN

QUERY_ALL_PROBLEMS = """
MATCH (p:Problem)
RETURN p.problem_id AS problemId, p.problem_type AS problemType,
       p.description AS description, coalesce(p.is_active, true) AS isActive
ORDER BY p.problem_id
"""

# =============================================================================
# 그래프 구축 쿼리
# =============================================================================

QUERY_LATEST_PROBLEM_ID = """
MATCH (p:Problem)
WHERE p.problem_type = $problemType
RETURN p.problem_id AS problemId
ORDER BY p.problem_id DESC
LIMIT 1
"""

QUERY_MERGE_PROBLEM = """
MERGE (p:Problem {problem_id: $problemId})
SET p.problem_type = $problemType, p.description = $description, p.is_active = $isActive
RETURN p.problem_id AS problemId
"""

QUERY_UPDATE_PROBLEM = """
MATCH (p:Problem {problem_id: $problemId})
SET p.problem_type = $problemType, p.description = $description, p.is_active = $isActive
RETURN p.problem_id AS problemId
"""

QUERY_MERGE_STEP = """
MERGE (s:Step {problem_id: $problemId, step_id: $stepId})
SET s.operation = $operation, s += $properties
RETURN s.step_id AS stepId
"""

QUERY_COUNT_PROBLEM = """
MATCH (p:Problem {problem_id: $problemId})
RETURN count(p) AS count
"""

QUERY_COUNT_STEP = """
MATCH (s:Step {problem_id: $problemId, step_id: $stepId})
RETURN count(s) AS count
"""

QUERY_CREATE_REL_FIRST_STEP = """
MATCH (p:Problem {problem_id: $problemId})
MATCH (s:Step {problem_id: $problemId, step_id: $toStepId})
MERGE (p)-[r:FIRST_STEP]->(s)
RETURN elementId(r) AS relationId
"""

QUERY_CREATE_REL_NEXT_DEFAULT = """
MATCH (s1:Step {problem_id: $problemId, step_id: $fromStepId})
MATCH (s2:Step {problem_id: $problemId, step_id: $toStepId})
MERGE (s1)-[r:NEXT_DEFAULT]->(s2)
RETURN elementId(r) AS relationId
"""

QUERY_CREATE_REL_NEXT_IF = """
MATCH (s1:Step {problem_id: $problemId, step_id: $fromStepId})
MATCH (s2:Step {problem_id: $problemId, step_id: $toStepId})
MERGE (s1)-[r:NEXT_IF {condition: $condition}]->(s2)
RETURN elementId(r) AS relationId
"""

QUERY_DELETE_NODE = """
MATCH (n) WHERE elementId(n) = $elementId
DETACH DELETE n
RETURN count(*) AS deleted
"""

QUERY_DELETE_RELATION = """
MATCH ()-[r]->() WHERE elementId(r) = $elementId
DELETE r
RETURN count(*) AS deleted
"""

QUERY_DELETE_PROBLEM = """
MATCH (p:Problem {problem_id: $problemId})
OPTIONAL MATCH (s:Step {problem_id: $problemId})
DETACH DELETE p, s
RETURN count(*) AS deleted
"""

QUERY_CLEAR_GRAPH = """
MATCH (n)
DETACH DELETE n
"""

QUERY_STEPS_BY_PROBLEM = """
MATCH (s:Step {problem_id: $problemId})
RETURN elementId(s) AS elementId,""" + _STEP_RETURN + """
ORDER BY s.step_id
"""

QUERY_GRAPH_NODES = """
MATCH (n)
RETURN elementId(n) AS id, labels(n)[0] AS nodeType, properties(n) AS properties
"""

QUERY_GRAPH_EDGES = """
MATCH (a)-[r]->(b)
RETURN elementId(r) AS id, elementId(a) AS source, elementId(b) AS target,
       type(r) AS relationLabel, properties(r) AS properties
"""

# =============================================================================
# 관계형 DB 시드 쿼리 (problem_definitions / solution_steps / step_relations)
# =============================================================================

SQL_ACTIVE_PROBLEMS = """
SELECT problem_id, problem_type, description, is_active
FROM problem_definitions
WHERE is_active = 1
ORDER BY id
"""

SQL_STEPS_BY_PROBLEM = """
SELECT problem_id, step_id, operation, system_a, table_name, field,
       condition_sql, reply_content
FROM solution_steps
WHERE problem_id = :problem_id
ORDER BY step_id
"""

SQL_RELATIONS_BY_PROBLEM = """
SELECT problem_id, from_step_id, to_step_id, relation_type, condition_expression
FROM step_relations
WHERE problem_id = :problem_id
ORDER BY id
"""


# =============================================================================
# 유틸리티 함수
# =============================================================================

def extract_local_id(uri: str) -> str:
    """URI에서 로컬 ID 추출 (# 또는 / 뒤의 부분)"""
    if "#" in uri:
        return uri.split("#")[-1]
    return uri.split("/")[-1]


def format_problem_id(problem_type: str, number: int) -> str:
    """Problem ID 생성 (형식: TYPE-001, TYPE-002, ...)"""
    return f"{problem_type}-{number:03d}"


def parse_problem_number(problem_id: str | None) -> int | None:
    """Problem ID의 마지막 '-' 뒤 숫자 부분 파싱. 실패 시 None."""
    if not problem_id:
        return None
    numeric_part = problem_id.split("-")[-1]
    try:
        return int(numeric_part)
    except ValueError:
        return None
