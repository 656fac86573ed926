from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from scriptboard.errors import ParseFailure
from scriptboard.utils.types import LayoutType


FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", flags=re.IGNORECASE)
LAYOUT_VALUES = {t.value for t in LayoutType}

ResponseT = TypeVar("ResponseT", bound=BaseModel)


def _list_or_empty(value: Any) -> Any:
    return [] if value is None else value


def _known_layout(value: Any) -> Any:
    # Unknown layout tags are dropped instead of failing the whole response.
    if isinstance(value, str) and value.strip().lower() in LAYOUT_VALUES:
        return value.strip().lower()
    return None


class Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class RawCharacter(Lenient):
    id: str = ""
    name: str
    description: str = ""

    @field_validator("id", "description", mode="before")
    @classmethod
    def blank_if_none(cls, value: Any) -> Any:
        return "" if value is None else value


class RawScene(Lenient):
    scene_number: Optional[int] = None
    script_snippet: str
    visual_prompt: str
    characters: List[str] = Field(default_factory=list)
    layout_type: Optional[LayoutType] = None
    external_asset_suggestion: Optional[str] = None

    @field_validator("characters", mode="before")
    @classmethod
    def characters_or_empty(cls, value: Any) -> Any:
        return _list_or_empty(value)

    @field_validator("layout_type", mode="before")
    @classmethod
    def layout_or_none(cls, value: Any) -> Any:
        return _known_layout(value)


class SceneResponse(Lenient):
    characters: List[RawCharacter] = Field(default_factory=list)
    scenes: List[RawScene] = Field(default_factory=list)
    story_arc: Optional[str] = None
    key_themes: List[str] = Field(default_factory=list)
    style_guide: Optional[str] = None

    @field_validator("characters", "scenes", "key_themes", mode="before")
    @classmethod
    def lists_or_empty(cls, value: Any) -> Any:
        return _list_or_empty(value)


class RawModule(Lenient):
    module_number: Optional[int] = None
    principle_name: str
    level_1_principle: str
    level_2_strategy: str
    level_3_actionable_steps: List[str] = Field(default_factory=list)
    level_4_reflection_question: str

    @field_validator("level_3_actionable_steps", mode="before")
    @classmethod
    def steps_or_empty(cls, value: Any) -> Any:
        return _list_or_empty(value)


class ModuleResponse(Lenient):
    modules: List[RawModule] = Field(default_factory=list)
    core_question: Optional[str] = None

    @field_validator("modules", mode="before")
    @classmethod
    def modules_or_empty(cls, value: Any) -> Any:
        return _list_or_empty(value)


class SceneBrief(Lenient):
    scene_number: int
    focal_element: str = ""
    emotional_beat: str = ""
    visual_tone: Optional[str] = None
    narrative_role: str = ""
    connects_to: List[int] = Field(default_factory=list)
    layout_type: Optional[LayoutType] = None
    overlay_suggestion: Optional[str] = None

    @field_validator("connects_to", mode="before")
    @classmethod
    def connects_or_empty(cls, value: Any) -> Any:
        return _list_or_empty(value)

    @field_validator("layout_type", mode="before")
    @classmethod
    def layout_or_none(cls, value: Any) -> Any:
        return _known_layout(value)


class NarrativeResponse(Lenient):
    story_arc: str = ""
    key_themes: List[str] = Field(default_factory=list)
    emotional_progression: List[str] = Field(default_factory=list)
    style_guide: str = ""
    scene_briefs: List[SceneBrief] = Field(default_factory=list)

    @field_validator("key_themes", "emotional_progression", "scene_briefs", mode="before")
    @classmethod
    def lists_or_empty(cls, value: Any) -> Any:
        return _list_or_empty(value)

    @field_validator("story_arc", "style_guide", mode="before")
    @classmethod
    def blank_if_none(cls, value: Any) -> Any:
        return "" if value is None else value


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    if not isinstance(text, str):
        return None
    candidate = text.strip()
    fenced = FENCE_RE.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    try:
        parsed = json.loads(candidate[start : end + 1])
    except json.JSONDecodeError:
        return None
    if isinstance(parsed, dict):
        return parsed
    return None


def parse_structured_response(raw: str, schema: Type[ResponseT]) -> ResponseT:
    """Validated ``schema`` instance for a model answer; ``ParseFailure`` otherwise."""
    data = extract_json_object(raw)
    if data is None:
        raise ParseFailure(f"response is not a JSON object ({len(raw or '')} chars)")
    try:
        return schema.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ParseFailure(
            f"response does not match {schema.__name__}: {exc.error_count()} error(s)"
        ) from exc
