"""
template.py - 템플릿 변수 치환

"{name}" 토큰을 Context 값으로 치환한다.
값이 없거나 null 이면 MissingVariable 로 실패 (빈 문자열로 대체하지 않음).
"""
from __future__ import annotations
import re
from typing import Any, Mapping

from .errors import MissingVariable
from .state import format_value

_VARIABLE_PATTERN = re.compile(r"\{([^}]+)\}")


class TemplateRenderer:
    """{name} 토큰 치환기"""

    pattern = _VARIABLE_PATTERN

    def variables(self, template: str | None) -> list[str]:
        """템플릿이 참조하는 변수명 목록 (등장 순서)"""
        if not template:
            return []
        return self.pattern.findall(template)

    def render(self, template: str | None, context: Mapping[str, Any]) -> str:
        if template is None:
            return ""

        def _substitute(match: re.Match) -> str:
            name = match.group(1)
            value = context.get(name)
            if value is None:
                raise MissingVariable(name)
            return format_value(value)

        return self.pattern.sub(_substitute, template)


_default_renderer = TemplateRenderer()


def render_template(template: str | None, context: Mapping[str, Any]) -> str:
    return _default_renderer.render(template, context)
