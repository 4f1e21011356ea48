import json

import pytest

from knowledge_rag.generation.prompt_builder import DEFAULT_PROMPT_SOURCE, PromptBuilder


def test_defaults_are_bundled():
    builder = PromptBuilder.with_defaults()

    assert builder.list_prompts() == ["rag_context", "rag_no_context"]
    assert PromptBuilder().register_from_source(DEFAULT_PROMPT_SOURCE) == ["rag_context", "rag_no_context"]


def test_relative_file_resolves_against_base_dir(tmp_path):
    (tmp_path / "extra.json").write_text(
        json.dumps({"name": "greeting", "system": "Be brief.", "user": "Hi {{ name }}"}),
        encoding="utf-8",
    )
    builder = PromptBuilder()

    assert builder.register_from_source("extra.json", base_dir=tmp_path) == ["greeting"]
    assert builder.build("greeting", name="Ada") == "Be brief.\n\nHi Ada"


@pytest.mark.parametrize(
    "source, error",
    [
        ("pkg:knowledge_rag.generation", ValueError),
        ("pkg:knowledge_rag.generation:prompts/missing.json", FileNotFoundError),
        ("pkg:no_such_package_xyz:prompts.json", FileNotFoundError),
        ("file:/definitely/not/here.json", FileNotFoundError),
    ],
)
def test_bad_sources(source, error):
    with pytest.raises(error):
        PromptBuilder().register_from_source(source)


def test_non_json_file_is_rejected(tmp_path):
    path = tmp_path / "prompts.yaml"
    path.write_text("name: x", encoding="utf-8")

    with pytest.raises(ValueError):
        PromptBuilder().register_from_file(path)


@pytest.mark.parametrize(
    "data, error",
    [
        ({"system": "s"}, KeyError),
        ({"name": ""}, ValueError),
        ({"name": 3}, TypeError),
        ({"name": "x", "user": 5}, TypeError),
    ],
)
def test_invalid_template_definitions(data, error):
    with pytest.raises(error):
        PromptBuilder().register_from_dict(data)


def test_unknown_template_lists_available():
    with pytest.raises(KeyError, match="rag_context"):
        PromptBuilder.with_defaults().get_template("nope")
