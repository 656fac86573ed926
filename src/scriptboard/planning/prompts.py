from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel

from scriptboard.errors import ValidationError
from scriptboard.planning.schemas import ModuleResponse, SceneResponse
from scriptboard.utils.types import Chunk, GenerationUnit, GlobalContext, SideEntity


@dataclass
class GenerationRequest:
    system_prompt: str
    prompt: str


@dataclass
class Extraction:
    # (self-reported number, unit) pairs in the order the model returned them
    units: List[Tuple[Optional[int], GenerationUnit]]
    side_entities: List[SideEntity] = field(default_factory=list)
    global_metadata: Optional[Dict[str, Any]] = None


def _context_block(context: Optional[GlobalContext]) -> str:
    if context is None or context.is_empty():
        return ""
    payload = {k: v for k, v in context.to_dict().items() if v}
    return "\n\n=== CONTEXT (keep consistent) ===\n" + json.dumps(payload, ensure_ascii=False)


class UnitStrategy:
    """
    Everything that differs between pipeline variants: prompt wording, the
    response schema, how units are pulled out of a response, and how shared
    context is narrowed for one chunk. The retry and numbering loop lives in
    ``ChunkGenerator`` and is the same for every strategy.
    """

    name = "base"
    unit_label = "unit"
    schema: Type[BaseModel] = BaseModel

    def scope_context(
        self, context: Optional[GlobalContext], chunk: Chunk
    ) -> Optional[GlobalContext]:
        if context is None:
            return None
        return context.for_range(chunk.start_sequence_number, chunk.last_expected_number)

    def build_request(
        self,
        chunk: Chunk,
        context: Optional[GlobalContext],
        attempt: int = 0,
        previous_count: Optional[int] = None,
    ) -> GenerationRequest:
        system = self.system_prompt(chunk) + _context_block(context)
        if attempt > 0:
            system += self.retry_instruction(chunk, previous_count)
        return GenerationRequest(system_prompt=system, prompt=self.user_prompt(chunk))

    def retry_instruction(self, chunk: Chunk, previous_count: Optional[int]) -> str:
        got = "no usable output" if not previous_count else f"only {previous_count} {self.unit_label}s"
        return (
            f"\n\nRETRY: the previous attempt returned {got}. You MUST generate EXACTLY "
            f"{chunk.expected_unit_count} {self.unit_label}s, starting at {self.unit_label} "
            f"{chunk.start_sequence_number}. Process the text linearly; do not skip or reorder content."
        )

    def system_prompt(self, chunk: Chunk) -> str:
        raise NotImplementedError

    def user_prompt(self, chunk: Chunk) -> str:
        raise NotImplementedError

    def extract(self, response: Any) -> Extraction:
        raise NotImplementedError


class SceneStrategy(UnitStrategy):
    """Script text to storyboard scenes plus the characters they use."""

    name = "scenes"
    unit_label = "scene"
    schema = SceneResponse

    def system_prompt(self, chunk: Chunk) -> str:
        base = (
            "You are a linear storyboard translator for short explainer videos.\n"
            "Rules:\n"
            "1) Scene 1 is the first words of the text, the next scene the next words. Never jump ahead.\n"
            "2) script_snippet is LITERAL text copied from the segment, in order.\n"
            "3) visual_prompt is short (30-50 words) with ONE focal element.\n"
            "4) Reuse character ids from the context when a character appears again.\n"
            f"Generate EXACTLY {chunk.expected_unit_count} scenes starting at scene "
            f"{chunk.start_sequence_number}.\n"
            "Return JSON only:\n"
            '{"characters":[{"id":"char_x","name":"...","description":"..."}],'
            '"scenes":[{"scene_number":' + str(chunk.start_sequence_number) + ","
            '"script_snippet":"...","visual_prompt":"...",'
            '"layout_type":"character|object|split|overlay|ui|diagram",'
            '"external_asset_suggestion":null,"characters":["char_x"]}]'
        )
        if chunk.is_first:
            base += ',"story_arc":"...","key_themes":["..."],"style_guide":"..."'
        return base + "}"

    def user_prompt(self, chunk: Chunk) -> str:
        return (
            f"SCRIPT SEGMENT TO TRANSLATE (process in order, scene "
            f"{chunk.start_sequence_number} onwards):\n\n{chunk.text}"
        )

    def extract(self, response: SceneResponse) -> Extraction:
        units = [
            (
                s.scene_number,
                GenerationUnit(
                    sequence_number=0,
                    content={"script_snippet": s.script_snippet, "visual_prompt": s.visual_prompt},
                    characters=list(s.characters),
                    layout_type=s.layout_type,
                    external_asset_suggestion=s.external_asset_suggestion,
                ),
            )
            for s in response.scenes
        ]
        entities = [
            SideEntity(identifier=c.id, display_name=c.name, description=c.description)
            for c in response.characters
        ]
        metadata = {
            k: v
            for k, v in (
                ("story_arc", response.story_arc),
                ("key_themes", list(response.key_themes)),
                ("style_guide", response.style_guide),
            )
            if v
        }
        return Extraction(units=units, side_entities=entities, global_metadata=metadata or None)


class ModuleStrategy(UnitStrategy):
    """Source text to principle modules (principle, strategy, steps, reflection)."""

    name = "modules"
    unit_label = "module"
    schema = ModuleResponse

    def scope_context(
        self, context: Optional[GlobalContext], chunk: Chunk
    ) -> Optional[GlobalContext]:
        # Scene briefs mean nothing to modules; only the story-level fields carry over.
        if context is None:
            return None
        return context.for_range(0, -1)

    def system_prompt(self, chunk: Chunk) -> str:
        base = (
            "You structure source material into teaching modules.\n"
            "Each module has four levels: the principle (why), the strategy (what), "
            "actionable steps (how) and a reflection question.\n"
            "Cover the text in order; every module must be grounded in the segment.\n"
            f"Generate EXACTLY {chunk.expected_unit_count} modules starting at module "
            f"{chunk.start_sequence_number}.\n"
            "Return JSON only:\n"
            '{"modules":[{"module_number":' + str(chunk.start_sequence_number) + ","
            '"principle_name":"...","level_1_principle":"...","level_2_strategy":"...",'
            '"level_3_actionable_steps":["..."],"level_4_reflection_question":"..."}]'
        )
        if chunk.is_first:
            base += ',"core_question":"..."'
        return base + "}"

    def user_prompt(self, chunk: Chunk) -> str:
        return (
            f"SOURCE SEGMENT (process in order, module {chunk.start_sequence_number} onwards):"
            f"\n\n{chunk.text}"
        )

    def extract(self, response: ModuleResponse) -> Extraction:
        units = [
            (
                m.module_number,
                GenerationUnit(
                    sequence_number=0,
                    content={
                        "principle_name": m.principle_name,
                        "level_1_principle": m.level_1_principle,
                        "level_2_strategy": m.level_2_strategy,
                        "level_3_actionable_steps": list(m.level_3_actionable_steps),
                        "level_4_reflection_question": m.level_4_reflection_question,
                    },
                ),
            )
            for m in response.modules
        ]
        metadata = {"core_question": response.core_question} if response.core_question else None
        return Extraction(units=units, global_metadata=metadata)


STRATEGIES: Dict[str, Type[UnitStrategy]] = {
    SceneStrategy.name: SceneStrategy,
    ModuleStrategy.name: ModuleStrategy,
}


def get_strategy(name: str) -> UnitStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValidationError(
            f"unknown strategy {name!r} (expected one of {sorted(STRATEGIES)})"
        ) from None
