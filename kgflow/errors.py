"""
errors.py - 예외 정의

Traversal 엔진 내부에서 발생하는 실패는 모두 여기 정의된 예외로 표현되며,
엔진 경계에서 Interrupted 결과로 변환된다 (호출자에게 전파되지 않음).
"""
from __future__ import annotations


class KGFlowError(Exception):
    """kgflow 예외의 기본 클래스"""

    # Interrupted 결과에 기록되는 사유
    reason: str = "error"


class NotFound(KGFlowError):
    """Problem, 첫 Step 등 그래프 요소를 찾지 못함"""

    reason = "not found"


class MissingVariable(KGFlowError, KeyError):
    """템플릿/조건이 context에 없는 변수를 참조"""

    reason = "render failure"

    def __init__(self, name: str):
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"找不到变量: {self.name}"


class NoNextStep(KGFlowError):
    """비종료 Step에 다음 후보가 없음"""

    reason = "no next step"


class NoSatisfiedBranch(KGFlowError):
    """후보는 있으나 선택 규칙을 만족하는 것이 없음"""

    reason = "no satisfied branch"


class StepLimitExceeded(KGFlowError):
    """최대 실행 Step 수 초과 (순환 그래프 방지)"""

    reason = "step limit exceeded"


class ExternalQueryFailure(KGFlowError):
    """외부 시스템 조회 실패 (strict 모드에서만 전파)"""

    reason = "external query failure"


class StorageError(KGFlowError):
    """그래프 저장소 연결/쿼리 실패 (strict 모드에서만 전파)"""

    reason = "storage failure"


class InvalidContextValue(KGFlowError, TypeError):
    """Context 값이 String/Number/Bool/Null 어느 것도 아님"""

    reason = "invalid context value"
