"""
Tests for the PromptLibrary catalogue.
"""

import json
from datetime import datetime, timezone

import allure
import pytest
from hypothesis import given, settings, strategies as st

from promptkit.errors import InvalidArgumentError, MalformedDataError
from promptkit.library import PromptEntry, PromptLibrary
from promptkit.template import PromptTemplate


entry_name_strategy = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789-_."),
    min_size=1,
    max_size=15,
)

tag_strategy = st.text(
    alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz-"),
    min_size=1,
    max_size=10,
)


@st.composite
def library_strategy(draw):
    library = PromptLibrary()
    names = draw(st.lists(entry_name_strategy, max_size=6, unique_by=str.casefold))
    for name in names:
        library.add(
            name,
            PromptTemplate(
                "Body for " + name + " {{x}}",
                draw(st.dictionaries(st.sampled_from(["x", "y"]), st.text(max_size=5))),
            ),
            description=draw(st.one_of(st.none(), st.text(max_size=20))),
            category=draw(st.one_of(st.none(), st.sampled_from(["coding", "writing", "data"]))),
            tags=draw(st.lists(tag_strategy, max_size=3)),
        )
    return library


@allure.feature("Prompt Library")
@allure.story("Library round-trip")
@allure.severity(allure.severity_level.CRITICAL)
@settings(max_examples=50)
@given(library=library_strategy())
def test_library_json_round_trip(library: PromptLibrary):
    restored = PromptLibrary.from_json(library.to_json())

    assert restored.names == library.names
    for original, copy in zip(library.entries, restored.entries):
        assert copy.template == original.template
        assert copy.description == original.description
        assert copy.category == original.category
        assert copy.tag_list == original.tag_list
        assert copy.created_at == original.created_at
        assert copy.updated_at == original.updated_at


def test_default_library_contents():
    library = PromptLibrary.create_default()

    assert library.names == [
        "code-review", "debug-error", "explain-code", "extract-json",
        "generate-tests", "rewrite", "summarize", "translate",
    ]
    summarize = library.get("summarize").template
    assert summarize.get_required_variables() == ["text"]
    assert "under 100 words" in summarize.render({"text": "t"})
    assert library.categories() == ["coding", "data", "writing"]


@allure.feature("Prompt Library")
@allure.story("Lookup and search")
@allure.severity(allure.severity_level.NORMAL)
def test_names_are_case_insensitive():
    library = PromptLibrary()
    library.add("Greeting", PromptTemplate("Hi"))

    assert "greeting" in library
    assert library.get("GREETING").name == "Greeting"
    with pytest.raises(InvalidArgumentError):
        library.add("greeting", PromptTemplate("Hello"))

    library.set("greeting", PromptTemplate("Hello"))
    assert len(library) == 1
    assert library.get("Greeting").template.template == "Hello"

    assert library.remove("GREETING") is True
    assert library.remove("greeting") is False
    with pytest.raises(KeyError):
        library.get("greeting")
    assert library.find("greeting") is None


def test_search_category_and_tags():
    library = PromptLibrary.create_default()

    assert {e.name for e in library.search("JSON")} == {"extract-json"}
    assert len(library.search("  ")) == len(library)
    assert [e.name for e in library.find_by_category("Writing")] == ["rewrite", "summarize", "translate"]
    assert [e.name for e in library.find_by_tag("QUALITY")] == ["code-review", "generate-tests"]
    assert library.find_by_tag("") == []
    assert "i18n" in library.tags()


def test_update_and_merge():
    library = PromptLibrary()
    library.add("a", PromptTemplate("A"), tags=["one"])
    before = library.get("a").updated_at

    entry = library.update("a", description="first letter", tags=["two"])

    assert entry.description == "first letter"
    assert entry.tag_list == ["two"]
    assert entry.updated_at >= before
    with pytest.raises(KeyError):
        library.update("missing", description="x")

    other = PromptLibrary()
    other.add("A", PromptTemplate("other A"))
    other.add("b", PromptTemplate("B"))

    assert library.merge(other) == 1
    assert library.get("a").template.template == "A"
    assert library.merge(other, overwrite=True) == 2
    assert library.get("a").template.template == "other A"


def test_merged_entries_are_independent_copies():
    source = PromptLibrary()
    source.add("shared", PromptTemplate("Hi {{who}}", {"who": "you"}), description="d", tags=["x"])
    target = PromptLibrary()

    assert target.merge(source) == 1

    copied = target.get("shared")
    copied.add_tag("y")
    copied.description = "changed"
    copied.template.set_default("who", "me")

    original = source.get("shared")
    assert original is not copied
    assert original.tag_list == ["x"]
    assert original.description == "d"
    assert original.template.defaults == {"who": "you"}
    assert copied.created_at == original.created_at


@pytest.mark.parametrize("name", ["", "  ", "has space", "slash/name", "semi;colon"])
def test_invalid_entry_names(name):
    with pytest.raises(InvalidArgumentError):
        PromptEntry(name, PromptTemplate("x"))


def test_entry_tags():
    entry = PromptEntry(" trimmed ", PromptTemplate("x"), tags=["Beta", "alpha", "beta", " "])

    assert entry.name == "trimmed"
    assert entry.tag_list == ["alpha", "Beta"]
    assert entry.has_tag("BETA")
    assert entry.remove_tag("beta") is True
    assert entry.remove_tag("beta") is False
    with pytest.raises(InvalidArgumentError):
        entry.add_tag(" ")


@allure.feature("Prompt Library")
@allure.story("Entry tags")
@allure.severity(allure.severity_level.NORMAL)
@settings(max_examples=50)
@given(initial=st.lists(tag_strategy, max_size=4), extra=tag_strategy)
def test_tag_changes_show_in_equality_and_repr(initial, extra):
    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    entry = PromptEntry("e", PromptTemplate("x"), tags=initial, created_at=created, updated_at=created)
    twin = PromptEntry("e", PromptTemplate("x"), tags=initial, created_at=created, updated_at=created)
    assert entry == twin

    entry.add_tag(extra)
    twin.updated_at = entry.updated_at

    assert entry.has_tag(extra)
    assert entry.tags == entry.tag_list
    assert (entry == twin) == twin.has_tag(extra)
    assert all(tag in repr(entry) for tag in entry.tags)


def test_remove_tag_updates_timestamp():
    stamp = datetime(2024, 1, 1, tzinfo=timezone.utc)
    entry = PromptEntry("e", PromptTemplate("x"), tags=["keep", "drop"], updated_at=stamp)

    assert entry.remove_tag("missing") is False
    assert entry.updated_at == stamp

    assert entry.remove_tag("DROP") is True
    assert entry.updated_at > stamp
    assert entry.tags == ["keep"]
    assert "drop" not in repr(entry)


@pytest.mark.parametrize("kwargs", [{"description": 5}, {"category": ["coding"]}, {"tags": "abc"}])
def test_entry_rejects_wrong_field_types(kwargs):
    with pytest.raises(InvalidArgumentError):
        PromptEntry("e", PromptTemplate("x"), **kwargs)


def test_load_skips_blank_entries_and_keeps_timestamps(tmp_path):
    path = tmp_path / "lib.json"
    path.write_text(json.dumps({
        "version": 1,
        "entries": [
            {"name": "ok", "template": "T {{x}}", "defaults": {"x": "1"},
             "createdAt": "2024-01-02T03:04:05+00:00", "updatedAt": "2024-01-03T00:00:00Z"},
            {"name": "", "template": "skipped"},
            {"name": "no-body", "template": "  "},
        ],
    }), encoding="utf-8")

    library = PromptLibrary.load(path)

    assert library.names == ["ok"]
    entry = library.get("ok")
    assert entry.template.render() == "T 1"
    assert entry.created_at == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert entry.updated_at == datetime(2024, 1, 3, tzinfo=timezone.utc)


@pytest.mark.parametrize("text", [
    '{"version": 1}',
    '{"entries": {}}',
    '{"entries": [{"name": "x", "template": "t", "tags": "a"}]}',
    '{"entries": [{"name": "bad name", "template": "t"}]}',
    '{"entries": [{"name": "x", "template": "t", "defaults": {"a": 2}}]}',
    '{"entries": [{"name": "x", "template": "t", "category": 5}]}',
    '{"entries": [{"name": "x", "template": "t", "description": 5}]}',
    '{"entries": [{"name": "x", "template": "t", "description": ["d"]}]}',
])
def test_from_json_rejects_malformed_data(text):
    with pytest.raises(MalformedDataError):
        PromptLibrary.from_json(text)
