from __future__ import annotations

import threading
from typing import Optional

from scriptboard.errors import GenerationError, ParseFailure
from scriptboard.generation.budget import RetryBudget
from scriptboard.generation.client import TextGenerator
from scriptboard.planning.schemas import NarrativeResponse, parse_structured_response
from scriptboard.utils.logging import get_logger
from scriptboard.utils.types import GlobalContext


NARRATIVE_SYSTEM_PROMPT = (
    "You are a Visual Story Architect specializing in minimalist visual storytelling. "
    "You understand narrative arcs, emotional beats, and how to convey meaning through "
    "single focal elements rather than cluttered compositions."
)


def build_narrative_prompt(script: str, total_scenes: int) -> str:
    return (
        f"Analyze the script below and break this script into {total_scenes} scenes. "
        "For each scene give the ONE focal element, the emotional beat, the visual tone "
        "(triumphant|defeated|neutral|chaotic|calm), its narrative role, the scene numbers "
        "it visually rhymes with and a layout type (character|object|split|overlay|ui|diagram). "
        "Only use characters named in the script.\n"
        "Return JSON only: "
        '{"story_arc":"...","key_themes":["..."],"emotional_progression":["..."],'
        '"style_guide":"...","scene_briefs":[{"scene_number":1,"focal_element":"...",'
        '"emotional_beat":"...","visual_tone":"calm","narrative_role":"...",'
        '"connects_to":[],"layout_type":"character","overlay_suggestion":null}]}'
        f"\n\n{script}"
    )


def analyze_narrative(
    generator: TextGenerator,
    script: str,
    total_scenes: int,
    *,
    max_retries: int = 2,
    temperature: float = 0.7,
    max_output_tokens: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> GlobalContext:
    """
    One cheap call over the whole script producing story-level context and
    per-scene briefs, later narrowed to each chunk's scene range.
    """
    logger = get_logger("scriptboard")
    budget = RetryBudget(max_retries)
    prompt = build_narrative_prompt(script, total_scenes)

    for attempt in budget.attempts():
        try:
            raw = generator.generate(
                prompt,
                structured=True,
                temperature=temperature,
                max_output_tokens=max_output_tokens,
                system_prompt=NARRATIVE_SYSTEM_PROMPT,
                cancel=cancel,
            )
            parsed = parse_structured_response(raw, NarrativeResponse)
        except GenerationError as exc:
            if budget.is_last(attempt):
                raise
            kind = "unparseable response" if isinstance(exc, ParseFailure) else "generation failed"
            logger.warning("narrative attempt=%d %s, retrying: %s", attempt + 1, kind, exc)
            continue

        logger.info(
            "narrative briefs=%d planned_scenes=%d", len(parsed.scene_briefs), total_scenes
        )
        return GlobalContext(
            story_arc=parsed.story_arc,
            key_themes=tuple(parsed.key_themes),
            emotional_progression=tuple(parsed.emotional_progression),
            style_guide=parsed.style_guide,
            scene_briefs=tuple(b.model_dump(mode="json") for b in parsed.scene_briefs),
        )

    raise GenerationError("narrative analysis exhausted its attempts")  # pragma: no cover
