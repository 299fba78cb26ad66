"""
verification.py - 솔루션 그래프 구조 검증

Problem 마다:
1. FIRST_STEP 관계 존재
2. FIRST_STEP 으로부터 깊이 10 이내에 도달 가능한 종료 Step(후속 NEXT_* 없음)이
   하나 이상 있고, 모두 reply Step 인지
3. NEXT_IF 관계에 condition 이 있는지

그래프를 수정하지 않으며, 결과는 Problem 별 bool + 로그로 보고한다.
"""
from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass, field

from .errors import NotFound
from .graph_store import GraphStore
from .models import Problem
from .schema import MAX_VERIFY_DEPTH, REL_NEXT_IF

logger = logging.getLogger(__name__)


@dataclass
class ProblemReport:
    """Problem 단위 검증 결과"""
    problem_id: str
    problem_type: str = ""
    has_first_step: bool = False
    end_steps: list[tuple[int, str]] = field(default_factory=list)
    issues: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.issues


class VerificationService:
    """GraphStore 기반 그래프 검증"""

    def __init__(
        self,
        graph_store: GraphStore,
        max_depth: int = MAX_VERIFY_DEPTH,
        enabled: bool = True,
    ):
        self.graph_store = graph_store
        self.max_depth = max_depth
        self.enabled = enabled

    def verify_knowledge_graph(self) -> bool:
        """전체 그래프 검증. 비활성화 설정이면 True."""
        if not self.enabled:
            logger.info("그래프 검증 비활성화됨")
            return True
        reports = self.verify_all()
        if not reports:
            logger.warning("검증할 Problem 없음 (그래프가 비었거나 조회 실패)")
            return False
        return all(report.valid for report in reports.values())

    def verify_all(self) -> dict[str, ProblemReport]:
        return {
            problem.problem_id: self.verify_problem(problem)
            for problem in self.graph_store.list_problems()
        }

    def verify_problem(self, problem: Problem) -> ProblemReport:
        report = ProblemReport(problem.problem_id, problem.problem_type)

        try:
            first = self.graph_store.first_step(problem.problem_id)
        except NotFound:
            logger.error(f"Problem {problem.problem_id}에 첫 Step 없음!")
            report.issues.append("FIRST_STEP 없음")
            return report
        report.has_first_step = True

        # BFS (깊이 제한)
        queue = deque([(first, 0)])
        seen = {first.key}
        while queue:
            step, depth = queue.popleft()
            candidates = self.graph_store.next_candidates(problem.problem_id, step.step_id)

            if not candidates:
                report.end_steps.append((step.step_id, step.operation))
                if not step.is_reply:
                    logger.error(
                        f"Problem {problem.problem_id}의 종료 Step {step.step_id}가 "
                        f"reply 가 아님 ({step.operation})!"
                    )
                    report.issues.append(f"종료 Step {step.step_id}가 reply 아님")
                continue

            for candidate in candidates:
                if candidate.relation_type == REL_NEXT_IF and not (candidate.condition or "").strip():
                    logger.error(
                        f"Problem {problem.problem_id}: Step {step.step_id} → "
                        f"{candidate.step.step_id} NEXT_IF 에 condition 없음"
                    )
                    report.issues.append(
                        f"NEXT_IF {step.step_id}->{candidate.step.step_id} condition 없음"
                    )
                if depth < self.max_depth and candidate.step.key not in seen:
                    seen.add(candidate.step.key)
                    queue.append((candidate.step, depth + 1))

        if not report.end_steps:
            logger.error(f"Problem {problem.problem_id}에 종료 Step 없음!")
            report.issues.append("종료 Step 없음")
        else:
            logger.info(
                f"Problem {problem.problem_id} ({problem.problem_type}) 경로 검증 완료, "
                f"종료 Step {len(report.end_steps)}개"
            )

        return report
