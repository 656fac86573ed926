import json
from pathlib import Path

from scriptboard.cli import main

from fakes import SENTENCE_12


DEFAULT_CONFIG = str(Path(__file__).resolve().parents[1] / "configs" / "default.yaml")


def test_estimate_prints_plan(capsys):
    script = " ".join([SENTENCE_12] * 150)
    assert main(["estimate", "--config", DEFAULT_CONFIG, "--script", script]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "units=150 chunks=3"
    assert out[1:] == [f"segment={i:03d} expected_units=50" for i in range(3)]


def test_split_prints_segments(capsys):
    script = " ".join([SENTENCE_12] * 4)
    assert main(["split", "--config", DEFAULT_CONFIG, "--script", script]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out == [f"[000] {script}"]


def test_dry_run_writes_artifacts(tmp_path, capsys):
    overlay = tmp_path / "overlay.yaml"
    overlay.write_text(
        f"run:\n  name: test\n  output_root: {tmp_path.as_posix()}/runs\n"
        "chunking:\n  max_units_per_chunk: 4\n",
        encoding="utf-8",
    )
    script_file = tmp_path / "script.txt"
    script_file.write_text(" ".join([SENTENCE_12] * 10), encoding="utf-8")

    code = main(
        [
            "run",
            "--config", DEFAULT_CONFIG,
            "--overlay", str(overlay),
            "--script_file", str(script_file),
            "--dry_run",
        ]
    )
    assert code == 0
    run_dir = Path(capsys.readouterr().out.strip())
    assert run_dir.parent == tmp_path / "runs"

    summary = json.loads((run_dir / "run_summary.json").read_text(encoding="utf-8"))
    assert summary["mode"] == "chunked"
    assert summary["actual_units"] == 10
    assert summary["chunk_count"] == 3
    assert summary["completed_with_warnings"] is False
    units = (run_dir / "units.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(units) == 10
    assert (run_dir / "global_context.json").exists()


def test_missing_script_is_an_error(capsys):
    assert main(["estimate", "--config", DEFAULT_CONFIG]) == 1
    assert "error:" in capsys.readouterr().err
