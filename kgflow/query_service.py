"""
query_service.py - 외부 데이터 시스템 스칼라 조회

query Step 은 "SELECT field FROM table <condition>" 단일 컬럼 조회를 수행한다.
조회 실패는 기본적으로 로그만 남기고 None 을 반환 (fail-soft).
strict=True 이면 ExternalQueryFailure 로 전파 (테스트용).
"""
from __future__ import annotations
import logging
import threading
from abc import ABC, abstractmethod
from typing import Mapping, Union

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from .errors import ExternalQueryFailure
from .state import ContextValue, coerce_value

logger = logging.getLogger(__name__)


class ExternalQueryService(ABC):
    """외부 시스템 스칼라 조회 인터페이스"""

    @abstractmethod
    def query_scalar(
        self,
        system: str | None,
        table: str,
        field: str,
        condition: str,
    ) -> ContextValue:
        ...


def build_select(table: str, field: str, condition: str | None) -> str:
    """SELECT 문 생성 (condition 은 렌더링된 WHERE 절 전체)"""
    sql = f"SELECT {field} FROM {table}"
    if condition and condition.strip():
        sql = f"{sql} {condition.strip()}"
    return sql


class SqlQueryService(ExternalQueryService):
    """SQLAlchemy 기반 조회 서비스 (시스템명 → DB 엔진)"""

    def __init__(
        self,
        systems: Mapping[str, Union[str, Engine]] | None = None,
        default_system: str | None = None,
        strict: bool = False,
        engine_options: dict | None = None,
    ):
        self.systems: dict[str, Union[str, Engine]] = dict(systems or {})
        self.default_system = default_system or next(iter(self.systems), None)
        self.strict = strict
        self.engine_options = engine_options or {"pool_pre_ping": True}

        self._engines: dict[str, Engine] = {}
        self._owned: set[str] = set()
        self._lock = threading.Lock()

    def _resolve_engine(self, system: str | None) -> Engine:
        name = system if system in self.systems else self.default_system
        if name is None:
            raise ExternalQueryFailure(f"등록된 데이터 시스템 없음: {system}")
        if name != system:
            logger.debug(f"시스템 {system} 미등록, 기본 시스템 {name} 사용")

        with self._lock:
            engine = self._engines.get(name)
            if engine is None:
                target = self.systems[name]
                if isinstance(target, Engine):
                    engine = target
                else:
                    engine = create_engine(target, **self.engine_options)
                    self._owned.add(name)
                self._engines[name] = engine
            return engine

    def query_scalar(
        self,
        system: str | None,
        table: str,
        field: str,
        condition: str,
    ) -> ContextValue:
        logger.info(f"시스템 조회: {system}, 테이블: {table}, 필드: {field}")
        sql = build_select(table, field, condition)
        try:
            engine = self._resolve_engine(system)
            logger.info(f"SQL 실행: {sql}")
            with engine.connect() as conn:
                row = conn.exec_driver_sql(sql).first()
            if row is None:
                return None
            return coerce_value(row[0])
        except Exception as e:
            logger.error(f"시스템 조회 실패: {sql}, 오류: {e}")
            if self.strict:
                if isinstance(e, ExternalQueryFailure):
                    raise
                raise ExternalQueryFailure(str(e)) from e
            return None

    def close(self) -> None:
        """이 서비스가 생성한 엔진 정리"""
        with self._lock:
            for name in self._owned:
                self._engines[name].dispose()
            self._engines.clear()
            self._owned.clear()
