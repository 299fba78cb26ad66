"""
kgflow - 지식 그래프 기반 솔루션 실행 엔진

Neo4j 에 저장된 Problem → Step 그래프(query / reply, 조건 분기)를
사용자 context 로 순회하여 응답 메시지를 생성한다.
OpenAI 의도 인식 + SQL 조회 + TTL/관계형 DB 기반 그래프 구축.
"""

__version__ = "0.1.0"

from .flow import TraversalEngine
from .graph_store import InMemoryGraphStore, Neo4jGraphStore
from .solution import SolutionService

__all__ = [
    "TraversalEngine",
    "InMemoryGraphStore",
    "Neo4jGraphStore",
    "SolutionService",
    "__version__",
]
