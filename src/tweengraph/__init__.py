"""
Batch animation compositor: reactive signals, a scene graph of drawable nodes
and a cooperative scheduler on a virtual clock, producing one draw-instruction
stream per frame for an external renderer.
"""

from .animation import Animation, Frame, load_script
from .config import CanvasConfig, ClockConfig, ScenarioConfig, load_scenario_config
from .core import (
    Circle,
    DerivedSignal,
    Ellipse,
    Instruction,
    InstructionStream,
    Node,
    Opcode,
    Polyline,
    SceneTree,
    Scheduler,
    Signal,
    SignalGraph,
    Task,
    TaskState,
    Text,
    ValueRegistry,
    Vec2,
    define_instruction,
    from_owner,
    replay,
    traverse_and_emit,
    vec2,
)
from .errors import (
    CyclicDependency,
    DetachedNodeReference,
    InvalidInterpolation,
    SchedulerStall,
    SignalWriteError,
    TweengraphError,
)
from .exporters import (
    determine_scenario_name,
    export_animation_outputs,
    export_frame_summary_csv,
    export_instruction_stream,
    export_manifest_json,
    prepare_output_directory,
)
from .logging_config import setup_logging
from .settings import get_settings, output_root, reset_settings_cache

__all__ = [
    "Animation",
    "Frame",
    "load_script",
    "CanvasConfig",
    "ClockConfig",
    "ScenarioConfig",
    "load_scenario_config",
    "Circle",
    "DerivedSignal",
    "Ellipse",
    "Instruction",
    "InstructionStream",
    "Node",
    "Opcode",
    "Polyline",
    "SceneTree",
    "Scheduler",
    "Signal",
    "SignalGraph",
    "Task",
    "TaskState",
    "Text",
    "ValueRegistry",
    "Vec2",
    "define_instruction",
    "from_owner",
    "replay",
    "traverse_and_emit",
    "vec2",
    "CyclicDependency",
    "DetachedNodeReference",
    "InvalidInterpolation",
    "SchedulerStall",
    "SignalWriteError",
    "TweengraphError",
    "determine_scenario_name",
    "export_animation_outputs",
    "export_frame_summary_csv",
    "export_instruction_stream",
    "export_manifest_json",
    "prepare_output_directory",
    "setup_logging",
    "get_settings",
    "output_root",
    "reset_settings_cache",
]

__version__ = "0.1.0"
