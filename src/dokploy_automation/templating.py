from __future__ import annotations

import re
from typing import Any, Mapping

import jinja2
from jinja2.nativetypes import NativeEnvironment

_JINJA_MARKER = re.compile(r"{[{%]")

_native_env = NativeEnvironment(undefined=jinja2.StrictUndefined, autoescape=False)
_guard_env = jinja2.Environment(undefined=jinja2.Undefined, autoescape=False)
_text_env = jinja2.Environment(
    undefined=jinja2.Undefined,
    autoescape=False,
    keep_trailing_newline=True,
)


def looks_like_jinja(text: str) -> bool:
    return bool(_JINJA_MARKER.search(text))


def render_value(value: Any, variables: Mapping[str, Any]) -> Any:
    """Render Jinja expressions found anywhere inside ``value``.

    A string that is a single expression keeps the type of what it evaluates
    to, so ``"{{ packages }}"`` yields a list and ``"{{ port }}"`` an int.
    Undefined variables raise ``jinja2.UndefinedError``.
    """

    if isinstance(value, str):
        if not looks_like_jinja(value):
            return value
        result = _native_env.from_string(value).render(**variables)
        if isinstance(result, jinja2.Undefined):
            # a lone expression hands back the undefined object unrendered
            result._fail_with_undefined_error()
        return result
    if isinstance(value, dict):
        return {key: render_value(item, variables) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [render_value(item, variables) for item in value]
    return value


def render_text(template_text: str, variables: Mapping[str, Any]) -> str:
    return _text_env.from_string(template_text).render(**variables)


def evaluate_guard(expression: Any, variables: Mapping[str, Any]) -> bool:
    """Evaluate a ``when`` guard such as ``"dokploy_domain is defined"``."""

    if expression is None:
        return True
    if isinstance(expression, bool):
        return expression
    text = str(expression).strip()
    if looks_like_jinja(text):
        raise ValueError(f"guard '{text}' must be a bare expression without template delimiters")
    compiled = _guard_env.compile_expression(text, undefined_to_none=True)
    return bool(compiled(**variables))
