from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from scriptboard.errors import AssemblyError
from scriptboard.utils.types import ChunkResult, GenerationUnit, SideEntity, UndercountWarning


@dataclass
class AssembledSequence:
    units: List[GenerationUnit]
    side_entities: List[SideEntity]
    global_metadata: Optional[Dict[str, Any]]
    warnings: List[UndercountWarning]


def dedupe_entities(entities: Iterable[SideEntity]) -> List[SideEntity]:
    """Entities in order, keeping the first one seen for each display name."""
    merged: List[SideEntity] = []
    seen = set()
    for entity in entities:
        if entity.display_name in seen:
            continue
        seen.add(entity.display_name)
        merged.append(entity)
    return merged


def merge_side_entities(results: Iterable[ChunkResult]) -> List[SideEntity]:
    return dedupe_entities(e for result in results for e in result.side_entities)


def verify_contiguous(units: Sequence[GenerationUnit]) -> None:
    for expected, unit in enumerate(units, start=1):
        if unit.sequence_number != expected:
            raise AssemblyError(
                f"unit at position {expected} has sequence_number {unit.sequence_number}"
            )


def assemble(results: Sequence[ChunkResult]) -> AssembledSequence:
    units: List[GenerationUnit] = []
    for result in results:
        units.extend(result.units)
    units.sort(key=lambda u: u.sequence_number)
    verify_contiguous(units)

    metadata = next((r.global_metadata for r in results if r.chunk.is_first), None)
    return AssembledSequence(
        units=units,
        side_entities=merge_side_entities(results),
        global_metadata=metadata,
        warnings=[r.warning for r in results if r.warning is not None],
    )
