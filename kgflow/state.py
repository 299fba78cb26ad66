"""
state.py - 사용자별 대화 Context 관리

Context 는 변수명 → 스칼라 값(String | Number | Bool | Null) 매핑.
엔진은 Context 값을 받아 갱신된 값을 반환할 뿐이며,
턴 사이 보존은 호출자 측 ContextStore 가 담당한다.

백엔드:
- memory: 프로세스 내 dict (TTL 만료 지원)
- file: 사용자별 JSON 파일
- redis: 분산 캐시 (SETEX 기반 TTL)
"""
from __future__ import annotations
import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .errors import InvalidContextValue

logger = logging.getLogger(__name__)

ContextValue = Union[str, int, float, bool, None]
Context = Dict[str, ContextValue]


# =============================================================================
# Context 값 (tagged variant)
# =============================================================================

def coerce_value(value: Any) -> ContextValue:
    """임의 값을 Context 값 집합(String/Number/Bool/Null)으로 변환"""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        # DB DECIMAL 컬럼: 정수면 int, 아니면 float
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    raise InvalidContextValue(
        f"지원하지 않는 Context 값 타입: {type(value).__name__}"
    )


def normalize_context(values: Mapping[str, Any] | None) -> Context:
    """매핑 전체를 Context 로 변환"""
    return {str(k): coerce_value(v) for k, v in (values or {}).items()}


def format_value(value: ContextValue) -> str:
    """값의 자연스러운 텍스트 표현"""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


# =============================================================================
# ContextStore
# =============================================================================

class ContextStore(ABC):
    """사용자별 Context 저장소"""

    @abstractmethod
    def get(self, user_id: str) -> Context:
        """Context 조회 (없으면 빈 Context 생성)"""

    @abstractmethod
    def put(self, user_id: str, context: Mapping[str, Any]) -> None:
        """Context 저장"""

    @abstractmethod
    def clear(self, user_id: str) -> None:
        """Context 삭제"""


class MemoryContextStore(ContextStore):
    """프로세스 메모리 기반 저장소 (사용자 간 동시 접근 안전)"""

    def __init__(
        self,
        ttl: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._contexts: dict[str, Context] = {}
        self._expires_at: dict[str, float] = {}

    def _is_expired(self, user_id: str) -> bool:
        expires_at = self._expires_at.get(user_id)
        return expires_at is not None and self._clock() >= expires_at

    def _touch(self, user_id: str) -> None:
        if self.ttl is not None:
            self._expires_at[user_id] = self._clock() + self.ttl

    def get(self, user_id: str) -> Context:
        with self._lock:
            if self._is_expired(user_id):
                logger.info(f"Context 만료: {user_id}")
                self._contexts.pop(user_id, None)
                self._expires_at.pop(user_id, None)
            if user_id not in self._contexts:
                self._contexts[user_id] = {}
                self._touch(user_id)
            return dict(self._contexts[user_id])

    def put(self, user_id: str, context: Mapping[str, Any]) -> None:
        normalized = normalize_context(context)
        with self._lock:
            self._contexts[user_id] = normalized
            self._touch(user_id)

    def clear(self, user_id: str) -> None:
        with self._lock:
            self._contexts.pop(user_id, None)
            self._expires_at.pop(user_id, None)

    def purge_expired(self) -> int:
        """만료된 Context 일괄 제거. 제거 개수 반환."""
        with self._lock:
            expired = [uid for uid in self._contexts if self._is_expired(uid)]
            for uid in expired:
                self._contexts.pop(uid, None)
                self._expires_at.pop(uid, None)
        return len(expired)

    def list_users(self) -> list[str]:
        with self._lock:
            return [uid for uid in self._contexts if not self._is_expired(uid)]


class FileContextStore(ContextStore):
    """파일 기반 저장소 (사용자별 JSON, TTL은 수정 시각 기준)"""

    def __init__(self, storage_dir: str = "./contexts", ttl: float | None = None):
        self.storage_dir = storage_dir
        self.ttl = ttl
        self._lock = threading.Lock()
        os.makedirs(storage_dir, exist_ok=True)

    def _get_path(self, user_id: str) -> str:
        return os.path.join(self.storage_dir, f"{user_id}.json")

    def _is_expired(self, path: str) -> bool:
        if self.ttl is None:
            return False
        return (time.time() - os.path.getmtime(path)) >= self.ttl

    def get(self, user_id: str) -> Context:
        path = self._get_path(user_id)
        with self._lock:
            if os.path.exists(path) and self._is_expired(path):
                logger.info(f"Context 만료: {user_id}")
                os.remove(path)
            if not os.path.exists(path):
                self._write(path, {})
                return {}
            with open(path, "r", encoding="utf-8") as f:
                return normalize_context(json.load(f))

    def put(self, user_id: str, context: Mapping[str, Any]) -> None:
        with self._lock:
            self._write(self._get_path(user_id), normalize_context(context))

    def clear(self, user_id: str) -> None:
        path = self._get_path(user_id)
        with self._lock:
            if os.path.exists(path):
                os.remove(path)

    def list_users(self) -> list[str]:
        """저장된 모든 사용자 ID 반환"""
        files = os.listdir(self.storage_dir)
        return [f[: -len(".json")] for f in files if f.endswith(".json")]

    @staticmethod
    def _write(path: str, context: Context) -> None:
        with open(path, "w", encoding="utf-8") as f:
            f.write(json.dumps(context, ensure_ascii=False, indent=2))


class RedisContextStore(ContextStore):
    """Redis 기반 저장소"""

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "kgflow:context:",
        ttl: int | None = None,
        client: Optional[Any] = None,
    ):
        if client is None:
            if not redis_url:
                raise ValueError("redis 백엔드는 redis_url 또는 client가 필요합니다")
            import redis
            client = redis.from_url(redis_url)
        self.client = client
        self.prefix = prefix
        self.ttl = ttl

    def _get_key(self, user_id: str) -> str:
        return f"{self.prefix}{user_id}"

    def get(self, user_id: str) -> Context:
        data = self.client.get(self._get_key(user_id))
        if data is None:
            self.put(user_id, {})
            return {}
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        return normalize_context(json.loads(data))

    def put(self, user_id: str, context: Mapping[str, Any]) -> None:
        key = self._get_key(user_id)
        payload = json.dumps(normalize_context(context), ensure_ascii=False)
        if self.ttl:
            self.client.setex(key, self.ttl, payload)
        else:
            self.client.set(key, payload)

    def clear(self, user_id: str) -> None:
        self.client.delete(self._get_key(user_id))


def get_context_store(backend: str = "memory", **kwargs) -> ContextStore:
    """백엔드 타입에 따른 저장소 인스턴스 반환"""
    ttl = kwargs.get("ttl")
    if backend == "memory":
        return MemoryContextStore(ttl=ttl)
    elif backend == "file":
        return FileContextStore(kwargs.get("storage_dir") or "./contexts", ttl=ttl)
    elif backend == "redis":
        redis_url = kwargs.get("redis_url")
        if not redis_url:
            raise ValueError("redis 백엔드는 redis_url이 필요합니다")
        return RedisContextStore(redis_url, ttl=int(ttl) if ttl else None)
    else:
        raise ValueError(f"지원하지 않는 백엔드: {backend}")
