"""
conditions.py - NEXT_IF 조건식 평가

조건식 DSL (텍스트 치환 기반):
1. Context 의 각 key 문자열을 값으로 치환 (문자열 값은 작은따옴표로 감쌈)
2. "IS NULL" → "== null", "IS NOT NULL" → "!= null", "where" 제거
3. 연산자 ==, !=, >, < 중 먼저 포함된 하나로 좌/우 분리
4. ==, != 는 trim 한 문자열 비교 / >, < 는 float 비교

주의: 치환은 토큰 단위가 아님. key 가 다른 토큰의 부분 문자열이면
식이 깨질 수 있다 (예: key "amount" 가 "max_amount" 안에서도 치환됨).
이 동작은 그대로 유지하며, 안전한 파서로 교체할 때는
ConditionEvaluator 구현만 바꾸면 된다.
"""
from __future__ import annotations
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping

from .state import format_value

logger = logging.getLogger(__name__)

# 우선순위 순서
OPERATORS = ("==", "!=", ">", "<")


class ConditionEvaluator(ABC):
    """조건식 평가기 인터페이스. evaluate 는 예외를 던지지 않는다."""

    @abstractmethod
    def evaluate(self, condition: str | None, context: Mapping[str, Any]) -> bool:
        ...


class SubstitutionConditionEvaluator(ConditionEvaluator):
    """텍스트 치환 기반 조건식 평가기"""

    def substitute(self, condition: str, context: Mapping[str, Any]) -> str:
        """Context 치환 + 정규화까지 적용한 식 반환"""
        for key, value in context.items():
            if not key:
                continue
            if isinstance(value, str):
                condition = condition.replace(key, f"'{value}'")
            else:
                condition = condition.replace(key, format_value(value))

        condition = condition.replace("IS NULL", "== null")
        condition = condition.replace("IS NOT NULL", "!= null")
        condition = condition.replace("where", "")
        return condition

    def evaluate(self, condition: str | None, context: Mapping[str, Any]) -> bool:
        if not condition:
            return False

        try:
            expression = self.substitute(condition, context)
            logger.info(f"조건 평가: {expression}")

            operator = next((op for op in OPERATORS if op in expression), None)
            if operator is None:
                logger.warning(f"지원하는 연산자 없음: {expression}")
                return False

            left, _, right = expression.partition(operator)
            left, right = left.strip(), right.strip()

            if operator == "==":
                return left == right
            if operator == "!=":
                return left != right

            left_num, right_num = float(left), float(right)
            if operator == ">":
                return left_num > right_num
            return left_num < right_num

        except Exception as e:
            logger.error(f"조건 평가 실패: {condition}, 오류: {e}")
            return False
