from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple


class LayoutType(str, Enum):
    SPLIT = "split"
    OVERLAY = "overlay"
    UI = "ui"
    DIAGRAM = "diagram"
    CHARACTER = "character"
    OBJECT = "object"


@dataclass
class GenerationUnit:
    """One scene or principle module, numbered within its run."""

    sequence_number: int
    content: Dict[str, Any] = field(default_factory=dict)
    characters: List[str] = field(default_factory=list)
    layout_type: Optional[LayoutType] = None
    external_asset_suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"sequence_number": self.sequence_number}
        out.update(self.content)
        out["characters"] = list(self.characters)
        out["layout_type"] = self.layout_type.value if self.layout_type else None
        out["external_asset_suggestion"] = self.external_asset_suggestion
        return out


@dataclass
class SideEntity:
    identifier: str
    display_name: str
    description: str = ""
    is_approved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.identifier,
            "name": self.display_name,
            "description": self.description,
            "is_approved": self.is_approved,
        }


@dataclass
class Chunk:
    index: int
    text: str
    expected_unit_count: int
    start_sequence_number: int
    is_first: bool

    @property
    def last_expected_number(self) -> int:
        return self.start_sequence_number + self.expected_unit_count - 1


@dataclass(frozen=True)
class GlobalContext:
    """
    Story and style information shared by every chunk of a run.

    Built once (by the narrative pre-pass, by the caller, or from the first
    chunk's metadata) and never mutated; ``for_range`` and ``merged`` return
    new values.
    """

    story_arc: str = ""
    key_themes: Tuple[str, ...] = ()
    emotional_progression: Tuple[str, ...] = ()
    style_guide: str = ""
    scene_briefs: Tuple[Dict[str, Any], ...] = ()
    characters: Tuple[SideEntity, ...] = ()

    def for_range(self, start: int, end: int) -> "GlobalContext":
        briefs = tuple(
            b for b in self.scene_briefs if start <= int(b.get("scene_number", 0)) <= end
        )
        return replace(self, scene_briefs=briefs)

    def merged(self, metadata: Optional[Dict[str, Any]]) -> "GlobalContext":
        # Fields already set win over metadata discovered later.
        if not metadata:
            return self
        return replace(
            self,
            story_arc=self.story_arc or str(metadata.get("story_arc") or ""),
            key_themes=self.key_themes or tuple(metadata.get("key_themes") or ()),
            emotional_progression=self.emotional_progression
            or tuple(metadata.get("emotional_progression") or ()),
            style_guide=self.style_guide or str(metadata.get("style_guide") or ""),
        )

    def with_characters(self, entities: Iterable[SideEntity]) -> "GlobalContext":
        return replace(self, characters=tuple(entities))

    def overridden_by(self, preferred: "GlobalContext") -> "GlobalContext":
        """Copy where every non-empty field of ``preferred`` replaces ours."""
        updates = {f.name: getattr(preferred, f.name) for f in fields(preferred)}
        return replace(self, **{k: v for k, v in updates.items() if v})

    def is_empty(self) -> bool:
        return not (
            self.story_arc
            or self.key_themes
            or self.emotional_progression
            or self.style_guide
            or self.scene_briefs
            or self.characters
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "story_arc": self.story_arc,
            "key_themes": list(self.key_themes),
            "emotional_progression": list(self.emotional_progression),
            "style_guide": self.style_guide,
            "scene_briefs": [dict(b) for b in self.scene_briefs],
            "characters": [c.to_dict() for c in self.characters],
        }


@dataclass
class UndercountWarning:
    chunk_index: int
    expected: int
    actual: int
    min_expected: int

    @property
    def message(self) -> str:
        return (
            f"chunk {self.chunk_index} expected {self.expected} units "
            f"(min {self.min_expected}), got {self.actual}"
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "chunk_index": self.chunk_index,
            "expected": self.expected,
            "actual": self.actual,
            "min_expected": self.min_expected,
        }


@dataclass
class ChunkResult:
    chunk: Chunk
    units: List[GenerationUnit]
    side_entities: List[SideEntity] = field(default_factory=list)
    global_metadata: Optional[Dict[str, Any]] = None
    attempts: int = 1
    warning: Optional[UndercountWarning] = None


@dataclass
class PipelineResult:
    units: List[GenerationUnit]
    side_entities: List[SideEntity]
    global_metadata: Optional[Dict[str, Any]]
    warnings: List[UndercountWarning]
    estimated_units: int
    chunk_count: int
    mode: str
    context: Optional[GlobalContext] = None

    @property
    def completed_with_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "estimated_units": self.estimated_units,
            "actual_units": len(self.units),
            "chunk_count": self.chunk_count,
            "completed_with_warnings": self.completed_with_warnings,
            "warnings": [w.to_dict() for w in self.warnings],
            "global_metadata": self.global_metadata,
            "side_entities": [e.to_dict() for e in self.side_entities],
            "units": [u.to_dict() for u in self.units],
        }
