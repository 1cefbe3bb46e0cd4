"""Output exporters for rendered instruction streams.

Provides helpers for writing frames to a JSON-lines instruction log, a
per-frame summary table, and a JSON manifest an external renderer can read
before replaying the log.
"""

from __future__ import annotations

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .animation import Frame
from .config import ScenarioConfig
from .core.instructions import PROTOCOL_VERSION, instruction_kind
from .settings import output_root as default_output_root

logger = logging.getLogger(__name__)


def determine_scenario_name(config: ScenarioConfig, fallback: str = "animation") -> str:
    """
    Determine a filesystem-friendly scenario name.

    Preference order:
    1. `config.metadata["scenario"]`
    2. `config.metadata["name"]`
    3. The function part of `config.script`
    4. Provided fallback string
    """
    for key in ("scenario", "name"):
        value = config.metadata.get(key)
        if isinstance(value, str) and value.strip():
            return _sanitize_name(value)
    if config.script:
        return _sanitize_name(config.script.rpartition(":")[2])
    return _sanitize_name(fallback)


def _sanitize_name(name: str) -> str:
    safe = "".join(ch if ch.isalnum() or ch in ("-", "_") else "_" for ch in name.strip().lower())
    return safe or "animation"


def prepare_output_directory(output_root: Path, scenario_name: str, timestamp: Optional[str] = None) -> Path:
    """
    Create the directory where all artefacts for a run will be stored.

    An existing directory is never reused; a numeric suffix is appended.
    """
    ts = timestamp or datetime.now().strftime("%Y%m%d_%H%M%S_%f")

    output_dir = Path(output_root) / scenario_name / ts
    counter = 1
    while output_dir.exists():
        output_dir = Path(output_root) / scenario_name / f"{ts}_{counter}"
        counter += 1

    output_dir.mkdir(parents=True, exist_ok=False)
    return output_dir


def export_instruction_stream(frames: Iterable[Frame], output_path: Path) -> int:
    """
    Write one JSON object per frame (``index``, ``time``, ``strings``,
    ``instructions``) to a JSON-lines file. Returns the number of frames.
    """
    count = 0
    with Path(output_path).open("w", encoding="utf-8") as handle:
        for frame in frames:
            handle.write(json.dumps(frame.to_dict(), separators=(",", ":")))
            handle.write("\n")
            count += 1
    return count


def export_frame_summary_csv(frames: Sequence[Frame], output_path: Path) -> None:
    """
    Write one row per frame with the instruction total and the count of each
    instruction kind seen anywhere in the run.
    """
    stats = [frame.stream.stats() for frame in frames]
    kinds: List[str] = sorted({name for counts in stats for name in counts})
    fieldnames = ["frame", "time_s", "instructions", *kinds]
    with Path(output_path).open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=fieldnames)
        writer.writeheader()
        for frame, counts in zip(frames, stats):
            row: Dict[str, Any] = {
                "frame": frame.index,
                "time_s": round(frame.time, 9),
                "instructions": len(frame.stream),
            }
            row.update({kind: counts.get(kind, 0) for kind in kinds})
            writer.writerow(row)


def export_manifest_json(frames: Sequence[Frame], config: ScenarioConfig, output_path: Path) -> None:
    """
    Write a JSON manifest describing the run (no per-frame instructions).

    The ``opcodes`` table lists every opcode used in the run with its name and
    arity where the kind is declared.
    """
    used = sorted({instr.opcode for frame in frames for instr in frame.stream})
    opcodes = {}
    for opcode in used:
        kind = instruction_kind(opcode)
        opcodes[str(opcode)] = (
            {"name": kind.name, "arity": kind.arity} if kind is not None else {"name": None, "arity": None}
        )

    payload = {
        "protocol_version": PROTOCOL_VERSION,
        "script": config.script,
        "clock": config.clock.model_dump(),
        "canvas": {
            "resolution": list(config.canvas.resolution),
            "units": config.canvas.units,
            "glyph_width": config.canvas.glyph_width,
            "line_width": config.canvas.line_width,
        },
        "frames": len(frames),
        "duration_s": frames[-1].time if frames else 0.0,
        "opcodes": opcodes,
        "metadata": config.metadata,
    }

    with Path(output_path).open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)


def export_animation_outputs(
    frames: Sequence[Frame],
    config: ScenarioConfig,
    output_root: Optional[Path] = None,
    plugins: Sequence[Any] = (),
    scenario_name: Optional[str] = None,
    timestamp: Optional[str] = None,
) -> Path:
    """
    Export all default artefacts for a run, then every requested plugin.

    Returns the path to the directory containing the artefacts.
    """
    if output_root is None:
        output_root = default_output_root()
    else:
        output_root = Path(output_root)
    output_root.mkdir(parents=True, exist_ok=True)

    frames = list(frames)
    scenario_name = scenario_name or determine_scenario_name(config)
    output_dir = prepare_output_directory(output_root, scenario_name, timestamp)

    export_instruction_stream(frames, output_dir / f"{scenario_name}_instructions.jsonl")
    export_frame_summary_csv(frames, output_dir / f"{scenario_name}_frames.csv")
    export_manifest_json(frames, config, output_dir / "manifest.json")

    for plugin in plugins:
        result = plugin.export(frames, config, output_dir)
        logger.info("Exporter '%s' wrote %s", plugin.name, result.output_path)
        if result.message:
            logger.info(result.message)

    logger.info("Exported %d frame(s) to %s", len(frames), output_dir)
    return output_dir
