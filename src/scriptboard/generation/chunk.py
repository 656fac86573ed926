from __future__ import annotations

import math
import threading
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

from scriptboard.errors import Cancelled, GenerationError, ParseFailure
from scriptboard.generation.budget import DEFAULT_TOLERANCE, RetryBudget, is_undercount, min_expected
from scriptboard.generation.client import TextGenerator
from scriptboard.planning.prompts import Extraction, UnitStrategy
from scriptboard.planning.schemas import parse_structured_response
from scriptboard.utils.logging import get_logger
from scriptboard.utils.types import Chunk, ChunkResult, GenerationUnit, GlobalContext, UndercountWarning


logger = get_logger("scriptboard")


def renumber(
    reported: Sequence[Tuple[Optional[int], GenerationUnit]], start: int
) -> List[GenerationUnit]:
    """
    Order units by the number the model gave them, then number them
    ``start, start + 1, ...``. Units without a number keep their place
    relative to each other, after the numbered ones.
    """
    ordered = sorted(reported, key=lambda pair: math.inf if pair[0] is None else pair[0])
    return [replace(unit, sequence_number=start + i) for i, (_, unit) in enumerate(ordered)]


class ChunkGenerator:
    def __init__(
        self,
        generator: TextGenerator,
        strategy: UnitStrategy,
        *,
        max_retries: int = 2,
        tolerance: float = DEFAULT_TOLERANCE,
        temperature: float = 0.5,
        max_output_tokens: Optional[int] = None,
    ):
        self.generator = generator
        self.strategy = strategy
        self.max_retries = max_retries
        self.tolerance = tolerance
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def generate(
        self,
        chunk: Chunk,
        context: Optional[GlobalContext] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ChunkResult:
        """
        Generate the units for one chunk, retrying while the answer is short.

        A short answer on the last attempt is kept (with an
        ``UndercountWarning``); the best answer seen is what is kept. A
        ``GenerationError`` on the last attempt propagates, and so does a
        ``ParseFailure`` when no attempt produced a single unit.
        """
        budget = RetryBudget(self.max_retries)
        floor_count = min_expected(chunk.expected_unit_count, self.tolerance)
        scoped = self.strategy.scope_context(context, chunk)

        best: Optional[Tuple[Extraction, List[GenerationUnit]]] = None
        last_error: Optional[GenerationError] = None
        previous_count: Optional[int] = None

        for attempt in budget.attempts():
            if cancel is not None and cancel.is_set():
                raise Cancelled(f"chunk {chunk.index} cancelled before attempt {attempt + 1}")

            request = self.strategy.build_request(
                chunk, scoped, attempt=attempt, previous_count=previous_count
            )
            try:
                raw = self.generator.generate(
                    request.prompt,
                    structured=True,
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                    system_prompt=request.system_prompt,
                    cancel=cancel,
                )
                response = parse_structured_response(raw, self.strategy.schema)
            except ParseFailure as exc:
                last_error = exc
                previous_count = 0
                logger.warning(
                    "chunk=%03d attempt=%d unparseable response: %s", chunk.index, attempt + 1, exc
                )
                continue
            except GenerationError as exc:
                last_error = exc
                if budget.is_last(attempt):
                    logger.error(
                        "chunk=%03d attempt=%d generation failed: %s", chunk.index, attempt + 1, exc
                    )
                    raise
                logger.warning(
                    "chunk=%03d attempt=%d generation failed, retrying: %s",
                    chunk.index,
                    attempt + 1,
                    exc,
                )
                continue

            extraction = self.strategy.extract(response)
            units = renumber(extraction.units, chunk.start_sequence_number)
            if best is None or len(units) > len(best[1]):
                best = (extraction, units)

            if not is_undercount(len(units), chunk.expected_unit_count, self.tolerance):
                return self._result(chunk, extraction, units, attempt + 1)

            previous_count = len(units)
            if not budget.is_last(attempt):
                logger.warning(
                    "chunk=%03d expected=%d actual=%d min=%d, retrying (attempt %d)",
                    chunk.index,
                    chunk.expected_unit_count,
                    len(units),
                    floor_count,
                    attempt + 2,
                )

        if best is None or not best[1]:
            raise ParseFailure(
                f"chunk {chunk.index} produced no units after {len(budget.attempts())} attempts"
            ) from last_error

        extraction, units = best
        warning = UndercountWarning(
            chunk_index=chunk.index,
            expected=chunk.expected_unit_count,
            actual=len(units),
            min_expected=floor_count,
        )
        logger.warning("%s; proceeding with available units", warning.message)
        return self._result(chunk, extraction, units, len(budget.attempts()), warning)

    @staticmethod
    def _result(
        chunk: Chunk,
        extraction: Extraction,
        units: List[GenerationUnit],
        attempts: int,
        warning: Optional[UndercountWarning] = None,
    ) -> ChunkResult:
        return ChunkResult(
            chunk=chunk,
            units=units,
            side_entities=list(extraction.side_entities),
            global_metadata=extraction.global_metadata if chunk.is_first else None,
            attempts=attempts,
            warning=warning,
        )
