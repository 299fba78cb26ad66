"""IntentExtractor 테스트 (OpenAI 클라이언트 대역)"""
from __future__ import annotations

import httpx
import pytest
from openai import APITimeoutError

from kgflow.nlu import UNKNOWN_INTENT, IntentExtractor, IntentResult, extract_json


def test_extract_json():
    assert extract_json('```json\n{"intent": "x"}\n```') == '{"intent": "x"}'
    assert extract_json("no json") == "no json"


def test_from_payload_clamps_and_filters():
    result = IntentResult.from_payload({
        "intent": "balance_inquiry",
        "entities": {"customer_id": "C001", "amount": 5000, "tags": ["a"]},
        "confidence": 1.7,
    })

    assert result.intent == "balance_inquiry"
    assert result.entities == {"customer_id": "C001", "amount": 5000}
    assert result.confidence == 1.0


def test_from_payload_defaults():
    result = IntentResult.from_payload({"confidence": "high"})

    assert result.is_unknown
    assert result.confidence == 0.0
    assert result.entities == {}


@pytest.mark.parametrize("intent, confidence, expected", [
    ("balance_inquiry", 0.9, False),
    ("balance_inquiry", 0.59, True),
    (UNKNOWN_INTENT, 0.99, True),
])
def test_needs_clarification(intent, confidence, expected):
    assert IntentResult(intent, {}, confidence).needs_clarification(0.6) is expected


def test_extract(fake_openai):
    client = fake_openai(content={
        "intent": "transfer_limit_issue",
        "entities": {"customer_id": "C001", "requested_amount": 5000},
        "confidence": 0.92,
    })
    extractor = IntentExtractor(client, model="gpt-4o-mini", timeout=5)

    result = extractor.extract("客户号为:C001的客户有问题为：转账5000失败")

    assert result == IntentResult(
        "transfer_limit_issue", {"customer_id": "C001", "requested_amount": 5000}, 0.92
    )
    request = client.requests[0]
    assert request["model"] == "gpt-4o-mini"
    assert request["timeout"] == 5
    assert request["response_format"] == {"type": "json_object"}
    assert "转账5000失败" in request["messages"][1]["content"]


def test_prompt_lists_intents_and_entities(fake_openai):
    prompt = IntentExtractor(fake_openai()).build_prompt("查询余额")

    assert "1. transfer_limit_issue" in prompt
    assert "- card_id" in prompt
    assert prompt.endswith("用户查询: 查询余额")


def test_timeout_returns_unknown(fake_openai):
    error = APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))

    result = IntentExtractor(fake_openai(error=error)).extract("q")

    assert result.is_unknown
    assert result.confidence == 0.0


@pytest.mark.parametrize("content", [None, "not json", "[1, 2]"])
def test_bad_response_returns_unknown(fake_openai, content):
    assert IntentExtractor(fake_openai(content=content)).extract("q").is_unknown
