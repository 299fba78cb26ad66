"""
core.py - 인프라 레이어

Neo4j 드라이버, OpenAI 클라이언트, 외부 조회 DB 엔진 설정과 수명 관리.
스키마(constraints) 생성 및 연결 상태 확인 기능 포함.
"""

from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field

from neo4j import GraphDatabase, Driver
from openai import OpenAI

from .flow import DEFAULT_MAX_STEPS, TraversalEngine
from .graph_store import Neo4jGraphStore
from .nlu import DEFAULT_TIMEOUT, IntentExtractor
from .query_service import SqlQueryService
from .schema import QUERY_SHOW_CONSTRAINTS, SCHEMA_QUERIES
from .solution import DEFAULT_CONFIDENCE_THRESHOLD, SolutionService
from .state import ContextStore, get_context_store

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() == "true"


def _env_float(name: str) -> float | None:
    value = os.environ.get(name)
    return float(value) if value else None


@dataclass
class CoreConfig:
    """Core 설정"""
    # Neo4j
    neo4j_uri: str = ""
    neo4j_user: str = "neo4j"
    neo4j_password: str = ""
    neo4j_database: str | None = None

    # Neo4j 연결 풀 설정
    neo4j_max_connection_pool_size: int = 50
    neo4j_connection_acquisition_timeout: float = 60.0
    neo4j_max_connection_lifetime: int = 3600
    neo4j_connection_timeout: float = 30.0
    neo4j_keep_alive: bool = True

    # OpenAI (의도 인식)
    openai_api_key: str = ""
    openai_chat_model: str = "gpt-4o-mini"
    nlu_timeout: float = DEFAULT_TIMEOUT
    nlu_confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD

    # 외부 조회 시스템 (시스템명 → SQLAlchemy URL)
    sql_url: str = ""
    sql_systems: dict[str, str] = field(default_factory=dict)

    # 엔진
    max_steps: int = DEFAULT_MAX_STEPS
    strict: bool = False
    graph_cache_ttl: int = 300
    verify_enabled: bool = True

    # Context 저장소
    context_backend: str = "memory"
    context_ttl: float | None = None
    context_storage_dir: str = "./contexts"
    redis_url: str | None = None

    @classmethod
    def from_env(cls, db_mode: str = "aura") -> "CoreConfig":
        """환경변수에서 설정 로드

        Args:
            db_mode: "aura" (Neo4j AuraDB) 또는 "local" (로컬 Neo4j)
        """
        prefix = "NEO4J_LOCAL" if db_mode == "local" else "NEO4J_AURA"

        return cls(
            neo4j_uri=os.environ.get(f"{prefix}_URI", ""),
            neo4j_user=os.environ.get(f"{prefix}_USER", "neo4j"),
            neo4j_password=os.environ.get(f"{prefix}_PASSWORD", ""),
            neo4j_database=os.environ.get("NEO4J_DATABASE") or None,
            neo4j_max_connection_pool_size=int(os.environ.get("NEO4J_MAX_POOL_SIZE", "50")),
            neo4j_connection_acquisition_timeout=float(os.environ.get("NEO4J_ACQUISITION_TIMEOUT", "60.0")),
            neo4j_max_connection_lifetime=int(os.environ.get("NEO4J_MAX_CONNECTION_LIFETIME", "3600")),
            neo4j_connection_timeout=float(os.environ.get("NEO4J_CONNECTION_TIMEOUT", "30.0")),
            neo4j_keep_alive=_env_bool("NEO4J_KEEP_ALIVE", "true"),
            openai_api_key=os.environ.get("OPENAI_API_KEY", ""),
            openai_chat_model=os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o-mini"),
            nlu_timeout=float(os.environ.get("NLU_TIMEOUT", str(DEFAULT_TIMEOUT))),
            nlu_confidence_threshold=float(
                os.environ.get("NLU_CONFIDENCE_THRESHOLD", str(DEFAULT_CONFIDENCE_THRESHOLD))
            ),
            sql_url=os.environ.get("SQL_URL", ""),
            sql_systems=json.loads(os.environ.get("SQL_SYSTEMS") or "{}"),
            max_steps=int(os.environ.get("KGFLOW_MAX_STEPS", str(DEFAULT_MAX_STEPS))),
            strict=_env_bool("KGFLOW_STRICT"),
            graph_cache_ttl=int(os.environ.get("KGFLOW_CACHE_TTL", "300")),
            verify_enabled=_env_bool("KGFLOW_VERIFY", "true"),
            context_backend=os.environ.get("CONTEXT_BACKEND", "memory"),
            context_ttl=_env_float("CONTEXT_TTL"),
            context_storage_dir=os.environ.get("CONTEXT_STORAGE_DIR", "./contexts"),
            redis_url=os.environ.get("REDIS_URL"),
        )

    def query_systems(self) -> dict[str, str]:
        """SQL_URL 은 "default" 시스템으로 등록"""
        systems = dict(self.sql_systems)
        if self.sql_url:
            systems.setdefault("default", self.sql_url)
        return systems


class Core:
    """인프라 통합 클래스"""

    def __init__(self, config: CoreConfig):
        self.config = config

        # Neo4j 드라이버 (연결 풀 설정 적용)
        self.driver: Driver | None = None
        if config.neo4j_uri:
            self.driver = GraphDatabase.driver(
                config.neo4j_uri,
                auth=(config.neo4j_user, config.neo4j_password),
                max_connection_pool_size=config.neo4j_max_connection_pool_size,
                connection_acquisition_timeout=config.neo4j_connection_acquisition_timeout,
                max_connection_lifetime=config.neo4j_max_connection_lifetime,
                connection_timeout=config.neo4j_connection_timeout,
                keep_alive=config.neo4j_keep_alive,
            )

        # OpenAI 클라이언트 (키가 있을 때만)
        self.openai: OpenAI | None = None
        if config.openai_api_key:
            self.openai = OpenAI(api_key=config.openai_api_key)

        systems = config.query_systems()
        self.query_service = SqlQueryService(
            systems,
            default_system="default" if "default" in systems else None,
            strict=config.strict,
        )

    def close(self):
        """리소스 정리"""
        self.query_service.close()
        if self.driver:
            self.driver.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _require_driver(self) -> Driver:
        if not self.driver:
            raise RuntimeError("Neo4j 드라이버가 초기화되지 않음")
        return self.driver

    # =========================================================================
    # 구성 요소 생성
    # =========================================================================

    def graph_store(self) -> Neo4jGraphStore:
        return Neo4jGraphStore(
            self._require_driver(),
            database=self.config.neo4j_database,
            strict=self.config.strict,
            cache_ttl=self.config.graph_cache_ttl,
        )

    def traversal_engine(self, graph_store: Neo4jGraphStore | None = None) -> TraversalEngine:
        return TraversalEngine(
            graph_store or self.graph_store(),
            self.query_service,
            max_steps=self.config.max_steps,
        )

    def context_store(self) -> ContextStore:
        return get_context_store(
            self.config.context_backend,
            ttl=self.config.context_ttl,
            storage_dir=self.config.context_storage_dir,
            redis_url=self.config.redis_url,
        )

    def solution_service(self, context_store: ContextStore | None = None) -> SolutionService:
        if not self.openai:
            raise RuntimeError("OPENAI_API_KEY 가 설정되지 않음")
        graph_store = self.graph_store()
        return SolutionService(
            engine=self.traversal_engine(graph_store),
            graph_store=graph_store,
            intent_extractor=IntentExtractor(
                self.openai,
                model=self.config.openai_chat_model,
                timeout=self.config.nlu_timeout,
            ),
            context_store=context_store or self.context_store(),
            confidence_threshold=self.config.nlu_confidence_threshold,
        )

    # =========================================================================
    # Schema Management
    # =========================================================================

    def ensure_schema(self) -> None:
        """Neo4j에 constraints 생성"""
        driver = self._require_driver()

        with driver.session(database=self.config.neo4j_database) as session:
            for query in SCHEMA_QUERIES:
                try:
                    session.run(query).consume()
                    logger.info(f"Schema 실행 완료: {query[:60]}...")
                except Exception as e:
                    logger.warning(f"Schema 실행 실패 (무시 가능): {e}")

        logger.info("Schema 설정 완료")

    def check_schema(self) -> bool:
        """Problem.problem_id / Step(problem_id, step_id) 제약 존재 여부"""
        has_problem = has_step = False
        for record in self.run_query(QUERY_SHOW_CONSTRAINTS):
            labels = record.get("labelsOrTypes") or []
            props = record.get("properties") or []
            if "Problem" in labels and "problem_id" in props:
                has_problem = True
            if "Step" in labels and {"problem_id", "step_id"} <= set(props):
                has_step = True
        return has_problem and has_step

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def run_query(self, query: str, **params) -> list[dict]:
        """임의의 Cypher 쿼리 실행"""
        driver = self._require_driver()

        with driver.session(database=self.config.neo4j_database) as session:
            result = session.run(query, **params)
            return [dict(record) for record in result]

    def health_check(self) -> dict:
        """연결 상태 확인"""
        status = {
            "neo4j": False,
            "openai": False,
            "query_systems": sorted(self.query_service.systems),
        }

        if self.driver:
            try:
                self.driver.verify_connectivity()
                status["neo4j"] = True
            except Exception as e:
                logger.error(f"Neo4j 연결 실패: {e}")

        if self.openai:
            try:
                self.openai.models.list()
                status["openai"] = True
            except Exception as e:
                logger.error(f"OpenAI 연결 실패: {e}")

        return status
