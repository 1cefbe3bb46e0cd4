from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, List

import pytest

from tweengraph.animation import Animation, Frame
from tweengraph.config import ClockConfig, ScenarioConfig
from tweengraph.exporters import (
    determine_scenario_name,
    export_animation_outputs,
    export_frame_summary_csv,
    export_instruction_stream,
    export_manifest_json,
    prepare_output_directory,
)
from tweengraph.plugins import ExporterPlugin, ExportResult

import scene_scripts


@pytest.fixture()
def config() -> ScenarioConfig:
    return ScenarioConfig(
        script="scene_scripts:fade_in_title",
        clock=ClockConfig(fps=4),
        metadata={"name": "Fade In!"},
    )


@pytest.fixture()
def frames(config: ScenarioConfig) -> List[Frame]:
    return Animation(scene_scripts.fade_in_title, config).render()


class OpcodeTally(ExporterPlugin):
    name = "opcode-tally"
    description = "Total instruction count per kind"

    def export(self, frames, config, output_dir: Path, **kwargs: Any) -> ExportResult:
        totals = {}
        for frame in frames:
            for kind, count in frame.stream.stats().items():
                totals[kind] = totals.get(kind, 0) + count
        path = output_dir / "tally.json"
        path.write_text(json.dumps(totals), encoding="utf-8")
        return ExportResult(output_path=path, message="tally written", metadata=totals)


def test_scenario_name_preference(config: ScenarioConfig) -> None:
    assert determine_scenario_name(config) == "fade_in_"
    assert determine_scenario_name(ScenarioConfig(script="pkg.mod:intro")) == "intro"
    assert determine_scenario_name(ScenarioConfig()) == "animation"


def test_prepare_output_directory_never_reuses(tmp_path: Path) -> None:
    first = prepare_output_directory(tmp_path, "show", timestamp="t0")
    second = prepare_output_directory(tmp_path, "show", timestamp="t0")
    assert first == tmp_path / "show" / "t0"
    assert second == tmp_path / "show" / "t0_1"
    assert first.is_dir() and second.is_dir()


def test_instruction_stream_is_json_lines(frames: List[Frame], tmp_path: Path) -> None:
    path = tmp_path / "frames.jsonl"
    assert export_instruction_stream(frames, path) == len(frames)
    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == len(frames)
    last = json.loads(lines[-1])
    assert last["index"] == len(frames) - 1
    assert last["strings"] == ["HELLO"]
    assert last["instructions"][1][0] == 13


def test_frame_summary_csv(frames: List[Frame], tmp_path: Path) -> None:
    path = tmp_path / "summary.csv"
    export_frame_summary_csv(frames, path)
    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["frame"] for row in rows] == ["0", "1", "2", "3"]
    assert rows[0]["instructions"] == "0"
    assert rows[0]["text"] == "0"
    assert rows[3]["text"] == "1"
    assert rows[3]["opacity"] == "1"


def test_manifest_lists_used_opcodes(frames: List[Frame], config: ScenarioConfig, tmp_path: Path) -> None:
    path = tmp_path / "manifest.json"
    export_manifest_json(frames, config, path)
    manifest = json.loads(path.read_text(encoding="utf-8"))
    assert manifest["frames"] == 4
    assert manifest["duration_s"] == 0.75
    assert manifest["opcodes"] == {
        "2": {"name": "opacity", "arity": 1},
        "13": {"name": "text", "arity": 4},
    }
    assert manifest["clock"]["fps"] == 4
    assert manifest["metadata"] == {"name": "Fade In!"}


def test_export_animation_outputs_runs_plugins(frames: List[Frame], config: ScenarioConfig, tmp_path: Path) -> None:
    output_dir = export_animation_outputs(
        frames,
        config,
        output_root=tmp_path,
        plugins=[OpcodeTally()],
        timestamp="run",
    )
    assert output_dir == tmp_path / "fade_in_" / "run"
    assert (output_dir / "fade_in__instructions.jsonl").exists()
    assert (output_dir / "fade_in__frames.csv").exists()
    assert (output_dir / "manifest.json").exists()
    assert json.loads((output_dir / "tally.json").read_text(encoding="utf-8")) == {"opacity": 3, "text": 3}


def test_export_defaults_to_settings_root(
    frames: List[Frame], config: ScenarioConfig, clean_settings, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("TWEENGRAPH_OUTPUTS", str(tmp_path / "default"))
    output_dir = export_animation_outputs(frames, config, scenario_name="custom", timestamp="t")
    assert output_dir == (tmp_path / "default").resolve() / "custom" / "t"
