"""
Frame driver tying the signal graph, scene tree and scheduler together.

An `Animation` owns one scene. Every frame it ticks the scheduler on the
virtual clock and traverses the tree into an `InstructionStream`. Frame 0 is
emitted at t=0, after the root procedure has run up to its first suspension
point.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from itertools import islice
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from .config import ScenarioConfig, load_scenario_config
from .core.instructions import InstructionStream
from .core.nodes import MonospaceMetrics, SceneTree, TextMetrics
from .core.registry import ValueRegistry
from .core.scheduler import Scheduler
from .core.signal import SignalGraph
from .core.transform import root_matrix

logger = logging.getLogger(__name__)

Procedure = Callable[..., Any]


@dataclass
class Frame:
    """Instructions emitted for one virtual instant."""

    index: int
    time: float
    stream: InstructionStream

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "time": self.time, **self.stream.to_dict()}


def load_script(reference: str) -> Procedure:
    """
    Import a root procedure given as ``"package.module:function"``.

    Raises
    ------
    ValueError
        If the reference is malformed.
    AttributeError
        If the module has no such attribute.
    """
    module_name, sep, attr = reference.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Script reference must look like 'module:function', got '{reference}'")
    module = importlib.import_module(module_name)
    target: Any = module
    for part in attr.split("."):
        try:
            target = getattr(target, part)
        except AttributeError:
            raise AttributeError(f"'{module_name}' has no attribute '{attr}'") from None
    if not callable(target):
        raise TypeError(f"Script '{reference}' is not callable")
    return target


class Animation:
    """
    Drive a root script procedure and produce one `Frame` per tick.

    Parameters
    ----------
    procedure:
        Root procedure called as ``procedure(scene, root)``. When omitted the
        scenario's ``script`` reference is imported.
    config:
        Scenario configuration; defaults to an unlimited 60 fps clock.
    metrics:
        Text measurement override; defaults to monospace glyphs of
        ``canvas.glyph_width``.
    """

    def __init__(
        self,
        procedure: Optional[Procedure] = None,
        config: Optional[ScenarioConfig] = None,
        metrics: Optional[TextMetrics] = None,
    ):
        self.config = config or ScenarioConfig()
        canvas = self.config.canvas
        clock = self.config.clock
        width, height = canvas.resolution

        self.graph = SignalGraph()
        self.values = ValueRegistry(self.graph, self.config.values)
        self.tree = SceneTree(
            self.graph,
            metrics=metrics or MonospaceMetrics(canvas.glyph_width),
            base_matrix=root_matrix(width, height, canvas.units),
            line_width=canvas.line_width,
        )
        self.scheduler = Scheduler(
            self.graph,
            stall_budget_s=clock.stall_budget_s,
            watchdog=clock.stall_watchdog,
            tree=self.tree,
            values=self.values,
        )
        self._procedure = procedure
        self._frame_index = 0

    @classmethod
    def from_config(cls, path: Union[str, Path], procedure: Optional[Procedure] = None) -> "Animation":
        return cls(procedure, load_scenario_config(path))

    @property
    def root(self):
        return self.tree.root

    @property
    def now(self) -> float:
        return self.graph.now

    @property
    def finished(self) -> bool:
        return self.scheduler.finished

    def start(self) -> None:
        """Schedule the root procedure; it first runs on the next tick."""
        procedure = self._procedure
        if procedure is None:
            if self.config.script is None:
                raise ValueError("No root procedure given and the scenario names no script")
            procedure = load_script(self.config.script)
        self.scheduler.start(procedure, self.scheduler, self.tree.root)
        logger.info(
            "Starting %s at %.1f fps",
            getattr(procedure, "__name__", "procedure"),
            self.config.clock.fps,
        )

    def step(self) -> Frame:
        """Advance one frame and return its instructions."""
        if self.scheduler.root_task is None:
            self.start()
        index = self._frame_index
        target = index * self.config.clock.frame_duration
        self.scheduler.tick(max(target - self.graph.now, 0.0))
        frame = Frame(index=index, time=self.graph.now, stream=self.tree.emit())
        self._frame_index += 1
        return frame

    def frames(self) -> Iterator[Frame]:
        """
        Yield frames until the root procedure settles or a clock limit is hit.

        The frame on which the root procedure settles is still yielded.
        """
        limit = self.config.clock.frame_limit()
        while limit is None or self._frame_index < limit:
            frame = self.step()
            yield frame
            if self.finished:
                logger.info("Animation finished after %d frame(s)", frame.index + 1)
                return
        logger.info("Frame limit reached (%d)", limit)

    def render(self, max_frames: Optional[int] = None) -> List[Frame]:
        return list(islice(self.frames(), max_frames))

    def run(self, sink: Optional[Callable[[Frame], None]] = None) -> int:
        """Drive the animation to completion, handing each frame to ``sink``."""
        count = 0
        for frame in self.frames():
            if sink is not None:
                sink(frame)
            count += 1
        return count
