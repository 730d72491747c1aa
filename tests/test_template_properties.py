"""
Property-based tests for PromptTemplate and variable interpolation.
"""

import asyncio

import allure
import pytest
from hypothesis import given, settings, strategies as st

from promptkit.conversation import Conversation
from promptkit.errors import InvalidArgumentError, MalformedDataError, MissingVariablesError
from promptkit.template import PromptTemplate, find_variables, interpolate

from conftest import EchoSender


# Strategies for generating test data

variable_name_strategy = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz_0123456789"),
    min_size=1,
    max_size=12,
)

# Values never contain braces so a substituted value cannot look like a placeholder
value_strategy = st.text(
    alphabet=st.characters(blacklist_characters="{}", blacklist_categories=("Cs",)),
    min_size=0,
    max_size=30,
)

literal_strategy = st.text(
    alphabet=st.characters(blacklist_characters="{}", blacklist_categories=("Cs",)),
    min_size=0,
    max_size=20,
)


@st.composite
def template_strategy(draw):
    """Generate a template body with placeholders and a defaults mapping."""
    names = draw(st.lists(variable_name_strategy, min_size=0, max_size=5, unique=True))
    parts = [draw(literal_strategy)]
    for _ in range(draw(st.integers(min_value=0, max_value=8))):
        if names:
            parts.append("{{" + draw(st.sampled_from(names)) + "}}")
        parts.append(draw(literal_strategy))
    body = "".join(parts)
    if not body.strip():
        body = "prompt " + body

    default_names = draw(st.lists(st.sampled_from(names), unique=True)) if names else []
    defaults = {name: draw(value_strategy) for name in default_names}
    return PromptTemplate(body, defaults)


@st.composite
def covering_variables_strategy(draw, template: PromptTemplate):
    return {name: draw(value_strategy) for name in template.get_required_variables()}


@allure.feature("Prompt Templates")
@allure.story("Strict render resolves every placeholder")
@allure.severity(allure.severity_level.CRITICAL)
@settings(max_examples=100)
@given(data=st.data())
def test_strict_render_leaves_no_known_placeholders(data):
    """
    For any template and a mapping covering its required variables, the
    strict render contains no {{name}} token for a supplied or defaulted name.
    """
    template = data.draw(template_strategy())
    variables = data.draw(covering_variables_strategy(template))

    rendered = template.render(variables, strict=True)

    for name in list(variables) + list(template.defaults):
        assert "{{" + name + "}}" not in rendered, (
            f"Placeholder '{name}' survived rendering: {rendered!r}"
        )


@allure.feature("Prompt Templates")
@allure.story("Required variables track defaults")
@allure.severity(allure.severity_level.CRITICAL)
@settings(max_examples=100)
@given(
    data=st.data(),
    operations=st.lists(
        st.tuples(st.booleans(), variable_name_strategy, value_strategy),
        max_size=10,
    ),
)
def test_required_variables_equal_variables_minus_defaults(data, operations):
    """
    After any sequence of set_default/remove_default calls, required
    variables are the template variables without a default, in order.
    """
    template = data.draw(template_strategy())

    for is_set, name, value in operations:
        if is_set:
            template.set_default(name, value)
        else:
            template.remove_default(name)

        expected = [v for v in template.get_variables() if v not in template.defaults]
        assert template.get_required_variables() == expected


@allure.feature("Prompt Templates")
@allure.story("JSON round-trip")
@allure.severity(allure.severity_level.CRITICAL)
@settings(max_examples=100)
@given(data=st.data())
def test_json_round_trip_renders_identically(data):
    """A deserialized template renders the same as the original."""
    template = data.draw(template_strategy())
    variables = data.draw(covering_variables_strategy(template))

    restored = PromptTemplate.from_json(template.to_json())

    assert restored == template
    assert restored.render(variables) == template.render(variables)
    assert restored.render({}, strict=False) == template.render({}, strict=False)


@allure.feature("Prompt Templates")
@allure.story("Composition")
@allure.severity(allure.severity_level.NORMAL)
@settings(max_examples=100)
@given(data=st.data(), separator=st.sampled_from(["\n\n", " ", "\n---\n", ""]))
def test_compose_renders_as_concatenation(data, separator):
    """
    Rendering a composed template equals rendering each part and joining
    with the separator, when the two parts share no variable names.
    """
    first = data.draw(template_strategy())
    second = data.draw(template_strategy())
    # Shared names could resolve to the other operand's default
    if set(first.get_variables()) & set(second.get_variables()):
        return

    variables = {
        **data.draw(covering_variables_strategy(first)),
        **data.draw(covering_variables_strategy(second)),
    }
    composed = first.compose(second, separator)

    assert composed.render(variables) == (
        first.render(variables) + separator + second.render(variables)
    )


def test_compose_other_defaults_win_and_operands_unchanged():
    first = PromptTemplate("{{tone}} intro", {"tone": "formal", "x": "1"})
    second = PromptTemplate("{{tone}} outro", {"tone": "casual"})

    composed = first.compose(second)

    assert composed.template == "{{tone}} intro\n\n{{tone}} outro"
    assert composed.defaults == {"tone": "casual", "x": "1"}
    assert first.defaults == {"tone": "formal", "x": "1"}
    assert second.defaults == {"tone": "casual"}
    with pytest.raises(InvalidArgumentError):
        first.compose("not a template")


@allure.feature("Prompt Templates")
@allure.story("Missing variables")
@allure.severity(allure.severity_level.CRITICAL)
def test_missing_variable_strict_and_lenient():
    template = PromptTemplate("Hello {{name}}")

    with pytest.raises(MissingVariablesError) as excinfo:
        template.render({}, strict=True)
    assert excinfo.value.missing == ["name"]
    assert "name" in str(excinfo.value)

    assert template.render({}, strict=False) == "Hello {{name}}"


def test_strict_render_reports_all_missing_in_order():
    template = PromptTemplate("{{b}} {{a}} {{b}} {{c}}", {"c": "C"})

    with pytest.raises(MissingVariablesError) as excinfo:
        template.render()
    assert excinfo.value.missing == ["b", "a"]


@allure.feature("Prompt Templates")
@allure.story("Default override")
@allure.severity(allure.severity_level.NORMAL)
def test_default_then_override():
    template = PromptTemplate("{{style}}")
    template.set_default("style", "concise")

    assert template.render({}, strict=True) == "concise"
    assert template.render({"style": "bold"}) == "bold"


def test_set_default_none_becomes_empty_and_remove_default():
    template = PromptTemplate("[{{x}}]")
    template.set_default("x", None)
    assert template.render() == "[]"

    assert template.remove_default("x") is True
    assert template.remove_default("x") is False
    assert template.get_required_variables() == ["x"]

    with pytest.raises(InvalidArgumentError):
        template.set_default("  ", "v")


def test_defaults_property_is_a_copy():
    template = PromptTemplate("{{a}}", {"a": "1"})
    template.defaults["a"] = "changed"
    assert template.render() == "1"


def test_substituted_values_are_not_rescanned():
    template = PromptTemplate("{{a}} {{b}}")
    assert template.render({"a": "{{b}}", "b": "B"}) == "{{b}} B"


@pytest.mark.parametrize("body", ["{{", "{{ name }}", "{{a-b}}", "{name}", "}}"])
def test_malformed_placeholders_are_literal(body):
    template = PromptTemplate(body)
    assert template.get_variables() == []
    assert template.render() == body


def test_variables_are_case_sensitive():
    template = PromptTemplate("{{Name}} {{name}}")
    assert template.get_variables() == ["Name", "name"]
    with pytest.raises(MissingVariablesError) as excinfo:
        template.render({"name": "x"})
    assert excinfo.value.missing == ["Name"]


def test_empty_mapping_value_is_a_valid_substitution():
    assert PromptTemplate("a{{x}}b").render({"x": ""}) == "ab"


@pytest.mark.parametrize("body", ["", "   ", "\n\t"])
def test_blank_template_rejected(body):
    with pytest.raises(InvalidArgumentError):
        PromptTemplate(body)


def test_find_variables_and_interpolate():
    assert find_variables("{{a}} and {{b}} and {{a}}") == ["a", "b"]
    assert interpolate("Hi {{who}}", {"who": "there"}) == "Hi there"
    with pytest.raises(MissingVariablesError) as excinfo:
        interpolate("{{x}}", {}, template_location="greeting.json")
    assert excinfo.value.template_location == "greeting.json"
    assert "greeting.json" in str(excinfo.value)


@allure.feature("Prompt Templates")
@allure.story("Persistence errors")
@allure.severity(allure.severity_level.NORMAL)
@pytest.mark.parametrize("text", [
    '{"defaults": {}}',
    '{"template": ""}',
    '{"template": 5}',
    '{"template": "x", "defaults": {"a": 1}}',
    '{"template": "x", "defaults": []}',
    '["template"]',
])
def test_from_json_rejects_malformed_data(text):
    with pytest.raises(MalformedDataError):
        PromptTemplate.from_json(text)


def test_from_json_reports_position_of_syntax_errors():
    with pytest.raises(MalformedDataError) as excinfo:
        PromptTemplate.from_json('{\n  "template": "x",\n  oops\n}')
    assert excinfo.value.line == 3
    assert excinfo.value.column is not None


def test_from_json_rejects_empty_text():
    with pytest.raises(InvalidArgumentError):
        PromptTemplate.from_json("   ")


def test_from_json_without_defaults():
    template = PromptTemplate.from_json('{"template": "Hi {{x}}"}')
    assert template.defaults == {}


def test_save_and_load(tmp_path):
    template = PromptTemplate("Translate {{text}} to {{lang}}", {"lang": "français"})
    path = tmp_path / "nested" / "translate.json"

    template.save(path)

    assert "français" in path.read_text(encoding="utf-8")
    assert PromptTemplate.load(path) == template


def test_loaded_template_names_its_file_in_errors(tmp_path):
    path = tmp_path / "greeting.json"
    PromptTemplate("Hello {{name}}").save(path)

    template = PromptTemplate.load(path)

    assert template.source == str(path)
    with pytest.raises(MissingVariablesError) as excinfo:
        template.render()
    assert excinfo.value.missing == ["name"]
    assert excinfo.value.template_location == str(path)
    assert PromptTemplate("Hello {{name}}").source is None


def test_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        PromptTemplate.load(tmp_path / "absent.json")


def test_render_and_send_uses_sender():
    sender = EchoSender()
    template = PromptTemplate("Summarize {{text}}")

    reply = asyncio.run(template.render_and_send(sender, {"text": "this"}, system_prompt="Be brief"))

    assert reply == "Summarize this"
    assert sender.calls[0]["messages"][0] == {"role": "system", "content": "Be brief"}


def test_render_and_send_fails_before_sending():
    sender = EchoSender()
    with pytest.raises(MissingVariablesError):
        asyncio.run(PromptTemplate("{{x}}").render_and_send(sender))
    assert sender.call_count == 0


def test_send_in_conversation():
    sender = EchoSender(lambda prompt: "ok")
    conversation = Conversation(sender)

    reply = asyncio.run(PromptTemplate("Q: {{q}}").send_in(conversation, {"q": "why"}))

    assert reply == "ok"
    assert conversation.get_history() == [("user", "Q: why"), ("assistant", "ok")]
