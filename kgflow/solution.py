"""
solution.py - 사용자 턴 처리 (호출자 측)

한 턴의 흐름:
  질의 → 의도/엔티티 추출 → context 병합 → Problem 조회
       → TraversalEngine 실행 → 갱신된 context 저장

같은 사용자의 턴은 사용자별 lock 으로 직렬화한다.
엔진 자체는 동시 턴을 직렬화하지 않으므로 이 gate 가 없으면 last-write-wins.
"""
from __future__ import annotations
import logging
import threading
import weakref

from .errors import NotFound, StorageError
from .flow import MSG_SYSTEM_ERROR, TraversalEngine
from .graph_store import GraphStore
from .nlu import IntentExtractor
from .state import ContextStore, MemoryContextStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.6

MSG_CLARIFY = "抱歉，我不确定您的具体问题。请问您是想查询账户余额，处理转账问题，还是激活银行卡？"
MSG_UNSUPPORTED_INTENT = "抱歉，我们目前无法处理 {intent} 类型的问题。"


def build_composite_prompt(user_id: str, query: str) -> str:
    return f"客户号为:{user_id}的客户有问题为：{query}"


class SolutionService:
    """의도 인식 + 솔루션 그래프 실행"""

    def __init__(
        self,
        engine: TraversalEngine,
        graph_store: GraphStore,
        intent_extractor: IntentExtractor,
        context_store: ContextStore | None = None,
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    ):
        self.engine = engine
        self.graph_store = graph_store
        self.intent_extractor = intent_extractor
        self.context_store = context_store or MemoryContextStore()
        self.confidence_threshold = confidence_threshold

        # 턴 진행 중인 호출자가 강한 참조를 쥐고 있는 동안만 유지됨
        self._locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def process_query(self, user_id: str, query: str) -> str:
        """사용자 질의 처리 후 응답 메시지 반환"""
        logger.info(f"사용자 {user_id} 질의 처리: {query}")

        with self._user_lock(user_id):
            context = self.context_store.get(user_id)

            result = self.intent_extractor.extract(build_composite_prompt(user_id, query))
            logger.info(
                f"인식 결과: intent={result.intent}, confidence={result.confidence}, "
                f"entities={result.entities}"
            )
            context.update(result.entities)

            if result.needs_clarification(self.confidence_threshold):
                self.context_store.put(user_id, context)
                return MSG_CLARIFY

            try:
                problem_id = self.graph_store.problem_id_for_intent(result.intent)
            except NotFound:
                logger.warning(f"의도 {result.intent}에 해당하는 Problem 없음")
                self.context_store.put(user_id, context)
                return MSG_UNSUPPORTED_INTENT.format(intent=result.intent)
            except StorageError as e:
                logger.error(f"Problem 조회 실패: {e}")
                self.context_store.put(user_id, context)
                return MSG_SYSTEM_ERROR

            response, updated_context = self.engine.execute_solution(problem_id, context)
            self.context_store.put(user_id, updated_context)
            return response

    def clear_context(self, user_id: str) -> None:
        """사용자 context 삭제"""
        with self._user_lock(user_id):
            self.context_store.clear(user_id)
        logger.info(f"사용자 {user_id} context 삭제")
