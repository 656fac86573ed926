import json

import pytest

from scriptboard.errors import ParseFailure
from scriptboard.planning.schemas import (
    ModuleResponse,
    NarrativeResponse,
    SceneResponse,
    extract_json_object,
    parse_structured_response,
)
from scriptboard.utils.types import LayoutType


def test_fenced_json_is_unwrapped():
    raw = 'Here you go:\n```json\n{"scenes": [], "characters": []}\n```\nEnjoy.'
    assert extract_json_object(raw) == {"scenes": [], "characters": []}


def test_prose_around_object_is_ignored():
    parsed = parse_structured_response(
        'Sure! {"scenes": [{"scene_number": 2, "script_snippet": "a", "visual_prompt": "b"}]} done',
        SceneResponse,
    )
    assert parsed.scenes[0].scene_number == 2


@pytest.mark.parametrize("raw", ["", None, ["{}"], "no json here", "[1, 2, 3]", '{"scenes": [}'])
def test_unusable_text_is_a_parse_failure(raw):
    with pytest.raises(ParseFailure):
        parse_structured_response(raw, SceneResponse)


def test_schema_mismatch_is_a_parse_failure():
    raw = json.dumps({"scenes": [{"scene_number": 1, "visual_prompt": "missing snippet"}]})
    with pytest.raises(ParseFailure):
        parse_structured_response(raw, SceneResponse)


def test_lenient_fields():
    raw = json.dumps(
        {
            "characters": [{"id": None, "name": "Max", "description": None}],
            "scenes": [
                {
                    "scene_number": "4",
                    "script_snippet": "s",
                    "visual_prompt": "p",
                    "characters": None,
                    "layout_type": "Hologram",
                },
                {"script_snippet": "s2", "visual_prompt": "p2", "layout_type": " Split "},
            ],
            "unexpected": True,
        }
    )
    parsed = parse_structured_response(raw, SceneResponse)
    first, second = parsed.scenes
    assert first.scene_number == 4
    assert first.characters == []
    assert first.layout_type is None
    assert second.scene_number is None
    assert second.layout_type is LayoutType.SPLIT
    assert parsed.characters[0].id == ""


def test_module_and_narrative_schemas():
    modules = parse_structured_response(
        json.dumps(
            {
                "modules": [
                    {
                        "principle_name": "Awareness",
                        "level_1_principle": "why",
                        "level_2_strategy": "what",
                        "level_3_actionable_steps": None,
                        "level_4_reflection_question": "?",
                    }
                ]
            }
        ),
        ModuleResponse,
    )
    assert modules.modules[0].level_3_actionable_steps == []

    narrative = parse_structured_response(
        json.dumps({"story_arc": None, "scene_briefs": [{"scene_number": 1, "connects_to": None}]}),
        NarrativeResponse,
    )
    assert narrative.story_arc == ""
    assert narrative.scene_briefs[0].connects_to == []
