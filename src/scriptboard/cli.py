from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List

from scriptboard.errors import PipelineError, ValidationError
from scriptboard.generation.client import GeneratorConfig, build_generator
from scriptboard.pipeline import (
    Pipeline,
    PipelineConfig,
    load_config,
    plan_segments,
    write_run_artifacts,
)
from scriptboard.planning.estimate import chunk_count, estimate_units
from scriptboard.utils.io import read_text
from scriptboard.utils.logging import get_logger


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="scriptboard script-to-storyboard pipeline")
    sub = p.add_subparsers(dest="command", required=True)

    def add_common(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("--config", type=str, default="configs/default.yaml")
        cmd.add_argument("--overlay", type=str, action="append", default=[])
        cmd.add_argument("--script", type=str, default="")
        cmd.add_argument("--script_file", type=str, default="")

    run = sub.add_parser("run", help="Generate units for a script")
    add_common(run)
    run.add_argument("--strategy", type=str, default="", help="scenes|modules")
    run.add_argument("--narrative_prepass", action="store_true")
    run.add_argument("--dry_run", action="store_true")

    est = sub.add_parser("estimate", help="Print the unit estimate and chunk plan")
    add_common(est)

    split = sub.add_parser("split", help="Print the sentence-aligned segments")
    add_common(split)
    return p


def _script_text(args: argparse.Namespace) -> str:
    if args.script_file and not args.script:
        return read_text(Path(args.script_file))
    if not args.script:
        raise ValidationError("script is required via --script or --script_file")
    return args.script


def _load(args: argparse.Namespace) -> Dict[str, Any]:
    return load_config(Path(args.config), overlays=[Path(o) for o in args.overlay])


def _run(args: argparse.Namespace, cfg: Dict[str, Any]) -> None:
    if args.strategy:
        cfg["strategy"] = args.strategy
    if args.narrative_prepass:
        cfg.setdefault("narrative", {})["prepass"] = True
    gen_cfg = cfg.get("generation", {})
    dry_run = True if args.dry_run else bool(gen_cfg.get("dry_run", False))

    config = PipelineConfig.from_dict(cfg)
    generator = build_generator(GeneratorConfig.from_dict(gen_cfg), dry_run=dry_run)
    result = Pipeline(generator, config).run(_script_text(args))

    run_cfg = cfg.get("run", {})
    run_dir = write_run_artifacts(
        result,
        output_root=Path(run_cfg.get("output_root", "outputs/runs")),
        run_name=str(run_cfg.get("name", "run")),
    )
    if result.completed_with_warnings:
        get_logger("scriptboard").warning(
            "completed with %d undercount warning(s)", len(result.warnings)
        )
    print(run_dir.as_posix())


def _estimate(args: argparse.Namespace, cfg: Dict[str, Any]) -> None:
    config = PipelineConfig.from_dict(cfg)
    text = _script_text(args)
    total = estimate_units(text, config.policy)
    chunks = chunk_count(total, config.max_units_per_chunk)
    print(f"units={total} chunks={chunks}")
    if chunks > 1:
        for i, (_, expected) in enumerate(
            plan_segments(text, config.policy, config.max_units_per_chunk)
        ):
            print(f"segment={i:03d} expected_units={expected}")


def _split(args: argparse.Namespace, cfg: Dict[str, Any]) -> None:
    config = PipelineConfig.from_dict(cfg)
    for i, (segment, _) in enumerate(
        plan_segments(_script_text(args), config.policy, config.max_units_per_chunk)
    ):
        print(f"[{i:03d}] {segment}")


def main(argv: List[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    commands = {"run": _run, "estimate": _estimate, "split": _split}

    try:
        cfg = _load(args)
        commands[args.command](args, cfg)
    except (PipelineError, ValidationError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
