"""
Configuration models and loader for animation scenarios.

A scenario YAML file names the root script procedure, the virtual clock, the
canvas the root transform maps onto, and seed values for the host registry.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any, Dict, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, field_validator


PositiveFloat = Annotated[float, Field(gt=0)]
PositiveInt = Annotated[int, Field(gt=0)]


class ClockConfig(BaseModel):
    """Virtual clock and run limits."""

    fps: PositiveFloat = Field(default=60.0, description="Ticks per virtual second")
    duration_s: Optional[PositiveFloat] = Field(
        default=None, description="Stop after this much virtual time even if the script is still running"
    )
    max_frames: Optional[PositiveInt] = Field(default=None, description="Hard cap on emitted frames")
    stall_budget_s: PositiveFloat = Field(
        default=1.0, description="Wall seconds a task may run between suspension points before a warning"
    )
    stall_watchdog: bool = Field(
        default=False, description="Dump tracebacks with faulthandler when a task exceeds the stall budget"
    )

    @property
    def frame_duration(self) -> float:
        return 1.0 / self.fps

    def frame_limit(self) -> Optional[int]:
        """Number of frames allowed by ``duration_s`` and ``max_frames`` (frame 0 included)."""
        limits = []
        if self.duration_s is not None:
            limits.append(int(round(self.duration_s * self.fps)) + 1)
        if self.max_frames is not None:
            limits.append(self.max_frames)
        return min(limits) if limits else None


class CanvasConfig(BaseModel):
    """Output surface the root transform maps scene units onto."""

    resolution: Tuple[PositiveInt, PositiveInt] = Field(
        default=(512, 480), description="(width, height) in pixels"
    )
    units: PositiveFloat = Field(
        default=256.0, description="Scene units between the canvas centre and its right edge"
    )
    glyph_width: PositiveFloat = Field(default=8.0, description="Advance of one glyph at text size 1")
    line_width: PositiveFloat = Field(default=1.0, description="Default stroke width in scene units")


class ScenarioConfig(BaseModel):
    """Top-level configuration object for an animation scenario."""

    script: Optional[str] = Field(
        default=None, description="Root procedure as 'package.module:function'"
    )
    clock: ClockConfig = Field(default_factory=ClockConfig)
    canvas: CanvasConfig = Field(default_factory=CanvasConfig)
    values: Dict[str, Any] = Field(
        default_factory=dict, description="Initial host registry values"
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Optional metadata for bookkeeping"
    )

    @field_validator("script")
    @classmethod
    def _validate_script(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        module, sep, attr = value.partition(":")
        if not sep or not module.strip() or not attr.strip():
            raise ValueError(f"Script must look like 'module:function', got '{value}'")
        return value.strip()


def load_scenario_config(path: Union[str, Path]) -> ScenarioConfig:
    """
    Load and validate a scenario from a YAML file.

    Parameters
    ----------
    path:
        Path to the YAML configuration file.

    Returns
    -------
    ScenarioConfig
        Parsed and validated configuration object.
    """
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        raw_data = yaml.safe_load(handle) or {}

    if not isinstance(raw_data, dict):
        raise ValueError(f"Scenario file must contain a mapping at the top level: {config_path}")
    return ScenarioConfig.model_validate(raw_data)
