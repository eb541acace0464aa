import jinja2
import pytest

from dokploy_automation.templating import evaluate_guard, render_text, render_value


def test_single_expression_keeps_native_type():
    variables = {"packages": ["curl", "ufw"], "port": 3000}

    assert render_value("{{ packages }}", variables) == ["curl", "ufw"]
    assert render_value("{{ port }}", variables) == 3000


def test_renders_nested_structures():
    value = {"url": "https://{{ domain }}", "ports": ["{{ port }}", 443], "flag": True}

    rendered = render_value(value, {"domain": "panel.example.com", "port": 80})

    assert rendered == {"url": "https://panel.example.com", "ports": [80, 443], "flag": True}


def test_plain_strings_untouched():
    assert render_value("sh -c 'echo $HOME'", {}) == "sh -c 'echo $HOME'"


def test_undefined_variable_raises():
    with pytest.raises(jinja2.UndefinedError):
        render_value("{{ missing }}", {})


def test_undefined_variable_nested_in_data_raises():
    with pytest.raises(jinja2.UndefinedError, match="port"):
        render_value({"rules": [{"port": "{{ port }}"}]}, {})


def test_render_text_keeps_trailing_newline():
    assert render_text("port = {{ port }}\n", {"port": 22}) == "port = 22\n"


@pytest.mark.parametrize(
    "expression, variables, expected",
    [
        (None, {}, True),
        (True, {}, True),
        (False, {}, False),
        ("dokploy_domain", {}, False),
        ("dokploy_domain", {"dokploy_domain": "panel.example.com"}, True),
        ("dokploy_domain is defined", {}, False),
        ("dokploy_port != 3000", {"dokploy_port": 3001}, True),
    ],
)
def test_evaluate_guard(expression, variables, expected):
    assert evaluate_guard(expression, variables) is expected


def test_guard_rejects_template_delimiters():
    with pytest.raises(ValueError):
        evaluate_guard("{{ dokploy_domain }}", {})
