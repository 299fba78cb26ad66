"""
flow.py - 솔루션 그래프 Traversal 엔진

Problem 의 FIRST_STEP 부터 Step 을 하나씩 실행하며 다음 Step 을 선택한다.

상태 전이:
  AtStep(step) ──query──▶ 외부 조회 → 결과를 context 에 저장 → 다음 후보 선택
  AtStep(step) ──reply──▶ Completed(reply)
  어떤 실패든           ──▶ Interrupted(reason)

다음 Step 선택 규칙 (GraphStore 반환 순서대로 스캔):
- NEXT_DEFAULT 를 만나면 조건 없이 즉시 선택 (마지막 fallback 이 아님)
- NEXT_IF 는 조건이 true 일 때 선택
- 끝까지 선택이 없으면 Interrupted("no satisfied branch")

엔진은 예외를 호출자에게 던지지 않는다. 모든 실패는
(사용자 메시지, 실패 시점까지의 context) 로 변환된다.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from .conditions import ConditionEvaluator, SubstitutionConditionEvaluator
from .errors import (
    KGFlowError,
    MissingVariable,
    NoNextStep,
    NoSatisfiedBranch,
    NotFound,
    StepLimitExceeded,
    StorageError,
)
from .graph_store import GraphStore
from .models import Candidate, Step
from .query_service import ExternalQueryService
from .schema import REL_NEXT_DEFAULT, REL_NEXT_IF
from .state import Context, normalize_context
from .template import TemplateRenderer

logger = logging.getLogger(__name__)

# 순환 그래프 방지용 최대 실행 Step 수
DEFAULT_MAX_STEPS = 100

STATUS_COMPLETED = "completed"
STATUS_INTERRUPTED = "interrupted"

# 사용자 응답 메시지
MSG_NO_SOLUTION = "抱歉，找不到解决方案。"
MSG_INTERRUPTED = "抱歉，处理过程中断。"
MSG_NO_REPLY = "抱歉，无法生成回复。"
MSG_REPLY_MISSING_VARIABLE = "回复生成失败，缺少参数: {name}"
MSG_QUERY_MISSING_VARIABLE = "抱歉，查询条件缺少参数: {name}"
MSG_STEP_LIMIT = "抱歉，处理步骤过多，已中止。"
MSG_SYSTEM_ERROR = "抱歉，系统处理出错。"


@dataclass
class TraversalResult:
    """Traversal 종료 상태"""
    message: str
    context: Context
    status: str
    reason: str | None = None
    visited: list[tuple[str, int]] = field(default_factory=list)
    results: dict[str, Any] = field(default_factory=dict)
    error: Exception | None = None

    @property
    def completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    def as_pair(self) -> tuple[str, Context]:
        return self.message, self.context


class _Interrupt(Exception):
    """루프 내부 조기 종료 신호 (사유 + 사용자 메시지)"""

    def __init__(self, reason: str, message: str, error: Exception | None = None):
        super().__init__(reason)
        self.reason = reason
        self.message = message
        self.error = error


class TraversalEngine:
    """솔루션 그래프 실행 엔진"""

    def __init__(
        self,
        graph_store: GraphStore,
        query_service: ExternalQueryService,
        renderer: TemplateRenderer | None = None,
        evaluator: ConditionEvaluator | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        if max_steps < 1:
            raise ValueError("max_steps 는 1 이상이어야 합니다")
        self.graph_store = graph_store
        self.query_service = query_service
        self.renderer = renderer or TemplateRenderer()
        self.evaluator = evaluator or SubstitutionConditionEvaluator()
        self.max_steps = max_steps

    # =========================================================================
    # Public API
    # =========================================================================

    def execute_solution(
        self, problem_id: str, context: Mapping[str, Any] | None
    ) -> tuple[str, Context]:
        """(사용자 메시지, 갱신된 context) 반환. 예외를 던지지 않는다."""
        return self.run(problem_id, context).as_pair()

    def run(self, problem_id: str, context: Mapping[str, Any] | None) -> TraversalResult:
        ctx: Context = dict(context or {})
        results: dict[str, Any] = {}
        visited: list[tuple[str, int]] = []

        def interrupted(reason: str, message: str, error: Exception | None = None):
            logger.warning(f"Traversal 중단 [{problem_id}]: {reason}")
            return TraversalResult(
                message=message,
                context=ctx,
                status=STATUS_INTERRUPTED,
                reason=reason,
                visited=visited,
                results=results,
                error=error,
            )

        try:
            ctx.update(normalize_context(ctx))
            try:
                step = self.graph_store.first_step(problem_id)
            except NotFound as e:
                logger.error(f"첫 Step 없음: {problem_id}")
                return interrupted("no first step", MSG_NO_SOLUTION, e)

            while True:
                if len(visited) >= self.max_steps:
                    raise StepLimitExceeded(
                        f"{problem_id}: {self.max_steps} Step 초과"
                    )
                if step.key in visited:
                    logger.info(f"Step 재방문: {step.key}")
                visited.append(step.key)

                if step.is_reply:
                    reply = self._execute_reply_step(step, ctx)
                    return TraversalResult(
                        message=reply,
                        context=ctx,
                        status=STATUS_COMPLETED,
                        visited=visited,
                        results=results,
                    )

                if not step.is_query:
                    raise _Interrupt(
                        "unsupported operation",
                        MSG_INTERRUPTED,
                    )

                self._execute_query_step(step, ctx, results)
                step = self._select_next_step(problem_id, step, ctx)

        except _Interrupt as e:
            return interrupted(e.reason, e.message, e.error)
        except StepLimitExceeded as e:
            logger.error(str(e))
            return interrupted(e.reason, MSG_STEP_LIMIT, e)
        except (NoNextStep, NoSatisfiedBranch) as e:
            logger.error(str(e))
            return interrupted(e.reason, MSG_INTERRUPTED, e)
        except StorageError as e:
            logger.error(f"그래프 저장소 오류: {e}")
            return interrupted(e.reason, MSG_SYSTEM_ERROR, e)
        except KGFlowError as e:
            logger.error(f"Traversal 실패: {e}")
            return interrupted(e.reason, MSG_SYSTEM_ERROR, e)
        except Exception as e:
            logger.exception(f"솔루션 실행 실패: {problem_id}")
            return interrupted("system error", MSG_SYSTEM_ERROR, e)

    # =========================================================================
    # Step 실행
    # =========================================================================

    def _execute_query_step(
        self, step: Step, ctx: Context, results: dict[str, Any]
    ) -> None:
        """외부 조회 후 결과를 results 와 context 에 저장"""
        if not step.condition_sql:
            logger.warning(f"조회 조건 없음, 조회 생략: {step.key}")
            return

        try:
            condition = self.renderer.render(step.condition_sql, ctx)
        except MissingVariable as e:
            logger.error(f"조건 렌더링 실패, 변수 없음: {e.name}")
            raise _Interrupt(
                e.reason, MSG_QUERY_MISSING_VARIABLE.format(name=e.name), e
            )
        logger.info(f"조건: {condition}")

        value = self.query_service.query_scalar(
            step.system, step.table_name, step.field, condition
        )
        if value is not None:
            results[step.field] = value
            ctx[step.field] = value
            logger.info(f"조회 결과: {step.field} = {value}")

    def _execute_reply_step(self, step: Step, ctx: Context) -> str:
        if not step.reply_content:
            logger.error(f"응답 템플릿 없음: {step.key}")
            raise _Interrupt("missing reply", MSG_NO_REPLY)

        try:
            reply = self.renderer.render(step.reply_content, ctx)
        except MissingVariable as e:
            message = MSG_REPLY_MISSING_VARIABLE.format(name=e.name)
            logger.error(message)
            raise _Interrupt(e.reason, message, e)

        logger.info(f"응답 생성: {reply}")
        return reply

    # =========================================================================
    # 다음 Step 선택
    # =========================================================================

    def _select_next_step(self, problem_id: str, step: Step, ctx: Context) -> Step:
        candidates = self.graph_store.next_candidates(problem_id, step.step_id)
        if not candidates:
            raise NoNextStep(f"Step {step.step_id}의 후속 Step 없음")

        chosen = select_candidate(candidates, ctx, self.evaluator)
        if chosen is None:
            raise NoSatisfiedBranch(f"Step {step.step_id}: 조건을 만족하는 다음 Step 없음")
        return chosen.step


def select_candidate(
    candidates: list[Candidate],
    ctx: Mapping[str, Any],
    evaluator: ConditionEvaluator,
) -> Candidate | None:
    """반환 순서대로 스캔하여 첫 NEXT_DEFAULT 또는 참인 NEXT_IF 선택"""
    for candidate in candidates:
        if candidate.relation_type == REL_NEXT_DEFAULT:
            logger.info(f"기본 전이: Step {candidate.step.step_id}")
            return candidate
        if candidate.relation_type == REL_NEXT_IF and candidate.condition:
            if evaluator.evaluate(candidate.condition, ctx):
                logger.info(
                    f"조건 '{candidate.condition}' 만족, Step {candidate.step.step_id}로 전이"
                )
                return candidate
    return None
