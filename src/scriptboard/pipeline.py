from __future__ import annotations

import datetime as dt
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from scriptboard.assembly import assemble, dedupe_entities
from scriptboard.errors import Cancelled, PipelineCancelled, PipelineError, ScriptboardError, ValidationError
from scriptboard.generation.budget import DEFAULT_TOLERANCE
from scriptboard.generation.chunk import ChunkGenerator
from scriptboard.generation.client import TextGenerator
from scriptboard.planning.estimate import (
    RatioPolicy,
    UnitPolicy,
    chunk_count,
    estimate_units,
    policy_from_config,
)
from scriptboard.planning.narrative import analyze_narrative
from scriptboard.planning.prompts import UnitStrategy, get_strategy
from scriptboard.planning.segments import split_into_segments
from scriptboard.utils.io import ensure_dir, load_yaml, merge_dict, write_json, write_jsonl
from scriptboard.utils.logging import get_logger
from scriptboard.utils.types import Chunk, ChunkResult, GlobalContext, PipelineResult


class RunState(str, Enum):
    ESTIMATING = "estimating"
    SINGLE_SHOT = "single_shot"
    CHUNKING = "chunking"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PipelineConfig:
    policy: UnitPolicy
    max_units_per_chunk: int = 50
    max_retries: int = 2
    tolerance: float = DEFAULT_TOLERANCE
    temperature: float = 0.5
    max_output_tokens: Optional[int] = 16384
    strategy: str = "scenes"
    narrative_prepass: bool = False
    narrative_temperature: float = 0.7

    def validate(self) -> None:
        if self.max_units_per_chunk <= 0:
            raise ValidationError("max_units_per_chunk must be > 0")
        if self.max_retries < 0:
            raise ValidationError("max_retries must be >= 0")
        if not 0 <= self.tolerance < 1:
            raise ValidationError("tolerance must be in [0, 1)")
        if self.max_output_tokens is not None and self.max_output_tokens <= 0:
            raise ValidationError("max_output_tokens must be > 0")

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "PipelineConfig":
        chunk_cfg = cfg.get("chunking", {})
        gen_cfg = cfg.get("generation", {})
        narrative_cfg = cfg.get("narrative", {})
        return cls(
            policy=policy_from_config(cfg.get("estimate", {})),
            max_units_per_chunk=int(chunk_cfg.get("max_units_per_chunk", 50)),
            max_retries=int(chunk_cfg.get("max_retries", 2)),
            tolerance=float(chunk_cfg.get("tolerance", DEFAULT_TOLERANCE)),
            temperature=float(gen_cfg.get("temperature", 0.5)),
            max_output_tokens=int(gen_cfg.get("max_output_tokens", 16384)),
            strategy=str(cfg.get("strategy", "scenes")),
            narrative_prepass=bool(narrative_cfg.get("prepass", False)),
            narrative_temperature=float(narrative_cfg.get("temperature", 0.7)),
        )


@dataclass
class PipelineRun:
    """State of one run. Owned by a single ``Pipeline.run`` call, never shared."""

    text: str
    state: RunState = RunState.ESTIMATING
    estimated_units: int = 0
    chunks: List[Chunk] = field(default_factory=list)
    results: List[ChunkResult] = field(default_factory=list)
    next_sequence_number: int = 1

    def transition(self, state: RunState) -> None:
        get_logger("scriptboard").info("state %s -> %s", self.state.value, state.value)
        self.state = state

    def record(self, result: ChunkResult) -> None:
        self.results.append(result)
        self.next_sequence_number += len(result.units)


def load_config(base_cfg: Path, overlays: Optional[List[Path]] = None) -> Dict[str, Any]:
    cfg = load_yaml(base_cfg)
    for p in overlays or []:
        cfg = merge_dict(cfg, load_yaml(p))
    return cfg


def plan_segments(
    text: str, policy: UnitPolicy, max_units_per_chunk: int
) -> List[Tuple[str, int]]:
    """
    Sentence-aligned segments, each paired with its own unit estimate.

    Segments are estimated at the policy's flat ``words_per_unit`` rate. The
    duration policy rounds whole scripts up to full minutes, and doing that
    per segment would ask every chunk for more units than its words support
    (a 500-word segment would expect 60 units instead of 50).
    """
    segment_policy = RatioPolicy(words_per_unit=policy.words_per_unit)
    words_per_segment = max(1, round(max_units_per_chunk * policy.words_per_unit))
    return [
        (segment, estimate_units(segment, segment_policy))
        for segment in split_into_segments(text, words_per_segment)
    ]


class Pipeline:
    def __init__(
        self,
        generator: TextGenerator,
        config: PipelineConfig,
        strategy: Optional[UnitStrategy] = None,
    ):
        config.validate()
        self.generator = generator
        self.config = config
        self.strategy = strategy or get_strategy(config.strategy)
        self.chunk_generator = ChunkGenerator(
            generator,
            self.strategy,
            max_retries=config.max_retries,
            tolerance=config.tolerance,
            temperature=config.temperature,
            max_output_tokens=config.max_output_tokens,
        )
        self.logger = get_logger("scriptboard")

    def run(
        self,
        text: str,
        *,
        context: Optional[GlobalContext] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PipelineResult:
        if not text or not text.strip():
            raise ValidationError("input text is required")
        text = text.strip()

        run = PipelineRun(text=text)
        run.estimated_units = estimate_units(text, self.config.policy)
        planned_chunks = chunk_count(run.estimated_units, self.config.max_units_per_chunk)
        self.logger.info(
            "estimated_units=%d planned_chunks=%d strategy=%s",
            run.estimated_units,
            planned_chunks,
            self.strategy.name,
        )

        try:
            if self.config.narrative_prepass:
                context = self._prepass(text, run.estimated_units, context, cancel)
            if planned_chunks <= 1:
                run.transition(RunState.SINGLE_SHOT)
                self._run_chunk(run, text, run.estimated_units, context, cancel)
                mode = "single_shot"
            else:
                run.transition(RunState.CHUNKING)
                segments = plan_segments(text, self.config.policy, self.config.max_units_per_chunk)
                for segment, expected in segments:
                    result = self._run_chunk(run, segment, expected, context, cancel)
                    context = self._carry_forward(context, result)
                mode = "chunked"
            run.transition(RunState.ASSEMBLING)
            assembled = assemble(run.results)
        except Cancelled as exc:
            failed_at = self._failed_chunk(run)
            run.transition(RunState.FAILED)
            raise PipelineCancelled(str(exc), cause=exc, chunk_index=failed_at) from exc
        except ScriptboardError as exc:
            failed_at = self._failed_chunk(run)
            run.transition(RunState.FAILED)
            stage = "narrative pre-pass" if failed_at is None else f"chunk {failed_at}"
            self.logger.error("run failed at %s: %s", stage, exc)
            raise PipelineError(
                f"pipeline failed at {stage}: {exc}", cause=exc, chunk_index=failed_at
            ) from exc

        run.transition(RunState.DONE)
        self.logger.info(
            "units=%d estimated=%d chunks=%d warnings=%d",
            len(assembled.units),
            run.estimated_units,
            len(run.chunks),
            len(assembled.warnings),
        )
        return PipelineResult(
            units=assembled.units,
            side_entities=assembled.side_entities,
            global_metadata=assembled.global_metadata,
            warnings=assembled.warnings,
            estimated_units=run.estimated_units,
            chunk_count=len(run.chunks),
            mode=mode,
            context=context,
        )

    def _run_chunk(
        self,
        run: PipelineRun,
        text: str,
        expected: int,
        context: Optional[GlobalContext],
        cancel: Optional[threading.Event],
    ) -> ChunkResult:
        chunk = Chunk(
            index=len(run.chunks),
            text=text,
            expected_unit_count=expected,
            start_sequence_number=run.next_sequence_number,
            is_first=not run.chunks,
        )
        run.chunks.append(chunk)
        self.logger.info(
            "chunk=%03d expected=%d start=%d", chunk.index, expected, chunk.start_sequence_number
        )
        result = self.chunk_generator.generate(chunk, context, cancel)
        run.record(result)
        self.logger.info(
            "chunk=%03d complete units=%d attempts=%d", chunk.index, len(result.units), result.attempts
        )
        return result

    def _prepass(
        self,
        text: str,
        total_units: int,
        context: Optional[GlobalContext],
        cancel: Optional[threading.Event],
    ) -> GlobalContext:
        analyzed = analyze_narrative(
            self.generator,
            text,
            total_units,
            max_retries=self.config.max_retries,
            temperature=self.config.narrative_temperature,
            max_output_tokens=self.config.max_output_tokens,
            cancel=cancel,
        )
        # what the caller supplied wins over what the model inferred
        return analyzed if context is None else analyzed.overridden_by(context)

    @staticmethod
    def _failed_chunk(run: PipelineRun) -> Optional[int]:
        # no chunk has started while the run is still estimating (pre-pass)
        if run.state is RunState.ESTIMATING:
            return None
        return len(run.results)

    def _carry_forward(
        self, context: Optional[GlobalContext], result: ChunkResult
    ) -> Optional[GlobalContext]:
        """Context for the next chunk: known fields and characters win over new ones."""
        base = context or GlobalContext()
        if result.chunk.is_first:
            base = base.merged(result.global_metadata)
        carried = base.with_characters(
            dedupe_entities([*base.characters, *result.side_entities])
        )
        return None if carried.is_empty() else carried


def run_pipeline(
    text: str,
    generator: TextGenerator,
    config: PipelineConfig,
    *,
    context: Optional[GlobalContext] = None,
    cancel: Optional[threading.Event] = None,
) -> PipelineResult:
    return Pipeline(generator, config).run(text, context=context, cancel=cancel)


def write_run_artifacts(result: PipelineResult, output_root: Path, run_name: str = "run") -> Path:
    run_id = f"{run_name}_{dt.datetime.now(dt.timezone.utc).strftime('%Y%m%dT%H%M%SZ')}"
    run_dir = output_root / run_id
    ensure_dir(run_dir)
    summary = {k: v for k, v in result.to_dict().items() if k not in ("units", "side_entities")}
    summary["run_id"] = run_id
    write_json(run_dir / "run_summary.json", summary)
    write_jsonl(run_dir / "units.jsonl", [u.to_dict() for u in result.units])
    write_json(run_dir / "side_entities.json", [e.to_dict() for e in result.side_entities])
    if result.context is not None:
        write_json(run_dir / "global_context.json", result.context.to_dict())
    return run_dir
