"""
nlu.py - 의도/엔티티 추출 (OpenAI)

사용자 질의에서 {intent, entities, confidence} 를 추출한다.
타임아웃·API 오류·파싱 실패 시에는 "unknown" 결과로 대체한다.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from openai import APITimeoutError, OpenAI

from .errors import InvalidContextValue
from .state import ContextValue, coerce_value

logger = logging.getLogger(__name__)

UNKNOWN_INTENT = "unknown"
DEFAULT_TIMEOUT = 30.0

SYSTEM_PROMPT = "你是一个专业的意图识别系统，请严格按照要求的JSON格式输出。"

# 지원 의도 (의도 타입 → 설명)
DEFAULT_INTENTS = {
    "transfer_limit_issue": "转账限额问题",
    "card_activation_problem": "卡片激活问题",
    "balance_inquiry": "余额查询",
}

# 추출 대상 엔티티 (엔티티명 → 설명)
DEFAULT_ENTITIES = {
    "requested_amount": "转账金额",
    "card_id": "卡号",
    "customer_id": "客户ID",
    "channel": "渠道(如mobile, web, atm等)",
}


@dataclass
class IntentResult:
    """의도 추출 결과"""
    intent: str = UNKNOWN_INTENT
    entities: dict[str, ContextValue] = field(default_factory=dict)
    confidence: float = 0.0

    @classmethod
    def unknown(cls) -> "IntentResult":
        return cls()

    @property
    def is_unknown(self) -> bool:
        return not self.intent or self.intent == UNKNOWN_INTENT

    def needs_clarification(self, threshold: float) -> bool:
        """unknown 이거나 신뢰도 미달이면 재질문 필요"""
        return self.is_unknown or self.confidence < threshold

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "IntentResult":
        entities = {}
        for key, value in (payload.get("entities") or {}).items():
            try:
                entities[str(key)] = coerce_value(value)
            except InvalidContextValue:
                logger.debug(f"엔티티 무시 (스칼라 아님): {key}")

        try:
            confidence = float(payload.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0

        return cls(
            intent=str(payload.get("intent") or UNKNOWN_INTENT),
            entities=entities,
            confidence=min(max(confidence, 0.0), 1.0),
        )


def extract_json(response: str) -> str:
    """응답에서 첫 '{' ~ 마지막 '}' 구간 추출 (없으면 원문)"""
    start = response.find("{")
    end = response.rfind("}")
    if start >= 0 and end > start:
        return response[start:end + 1]
    return response


class IntentExtractor:
    """LLM 기반 의도/엔티티 추출기"""

    def __init__(
        self,
        openai_client: OpenAI,
        model: str = "gpt-4o-mini",
        timeout: float = DEFAULT_TIMEOUT,
        intents: dict[str, str] | None = None,
        entities: dict[str, str] | None = None,
        temperature: float = 0.3,
    ):
        self.openai = openai_client
        self.model = model
        self.timeout = timeout
        self.intents = intents or DEFAULT_INTENTS
        self.entities = entities or DEFAULT_ENTITIES
        self.temperature = temperature

    def build_prompt(self, user_query: str) -> str:
        intent_lines = "\n".join(
            f"{i}. {name} - {desc}"
            for i, (name, desc) in enumerate(self.intents.items(), start=1)
        )
        entity_lines = "\n".join(f"- {name}: {desc}" for name, desc in self.entities.items())

        return f"""分析以下用户查询，提取意图和相关实体。
目前支持的意图类型有:
{intent_lines}

请提取所有相关实体，可能包括:
{entity_lines}
其中，客户号customer_id是必须要从问题中提取到的。

以JSON格式输出，格式为:
{{
    "intent": "意图类型",
    "entities": {{
        "实体名": "实体值"
    }},
    "confidence": 置信度(0到1之间的浮点数)
}}

用户查询: {user_query}"""

    def extract(self, user_query: str) -> IntentResult:
        """의도 추출. 실패 시 unknown 결과 반환."""
        try:
            response = self.openai.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": self.build_prompt(user_query)},
                ],
                response_format={"type": "json_object"},
                temperature=self.temperature,
                timeout=self.timeout,
            )
            content = response.choices[0].message.content
            if not content:
                raise ValueError("모델이 유효한 응답을 반환하지 않음")

            payload = json.loads(extract_json(content))
            if not isinstance(payload, dict):
                raise ValueError(f"JSON 객체가 아님: {content[:100]}")
            return IntentResult.from_payload(payload)

        except APITimeoutError:
            logger.warning(f"의도 인식 타임아웃 ({self.timeout}s), unknown 처리")
            return IntentResult.unknown()
        except Exception as e:
            logger.error(f"의도 인식 실패: {e}")
            return IntentResult.unknown()
