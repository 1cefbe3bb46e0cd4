"""
Engine core: signals, interpolation, scene nodes, scheduler and the draw
instruction protocol.
"""

from .interpolation import (
    available_easings,
    discover_interpolation_plugins,
    get_easing,
    hold,
    integer,
    interpolation_for,
    linear,
    mapping,
    register_interpolation,
    resolve_interpolation,
    unregister_interpolation,
    vector,
)
from .instructions import (
    PROTOCOL_VERSION,
    USER_OPCODE_BASE,
    Instruction,
    InstructionKind,
    InstructionStream,
    Opcode,
    define_instruction,
    instruction_kind,
    replay,
    undefine_instruction,
)
from .nodes import (
    Circle,
    DrawContext,
    Ellipse,
    MonospaceMetrics,
    Node,
    Polyline,
    SceneTree,
    Shape,
    Text,
    TextMetrics,
    traverse_and_emit,
)
from .registry import SignalView, ValueRegistry
from .scheduler import Scheduler, Task, TaskState
from .signal import DerivedSignal, OwnerExpression, Signal, SignalBase, SignalGraph, Tween, from_owner
from .vector import Vec2, as_vec2, vec2

__all__ = [
    "available_easings",
    "discover_interpolation_plugins",
    "get_easing",
    "hold",
    "integer",
    "interpolation_for",
    "linear",
    "mapping",
    "register_interpolation",
    "resolve_interpolation",
    "unregister_interpolation",
    "vector",
    "PROTOCOL_VERSION",
    "USER_OPCODE_BASE",
    "Instruction",
    "InstructionKind",
    "InstructionStream",
    "Opcode",
    "define_instruction",
    "instruction_kind",
    "replay",
    "undefine_instruction",
    "Circle",
    "DrawContext",
    "Ellipse",
    "MonospaceMetrics",
    "Node",
    "Polyline",
    "SceneTree",
    "Shape",
    "Text",
    "TextMetrics",
    "traverse_and_emit",
    "SignalView",
    "ValueRegistry",
    "Scheduler",
    "Task",
    "TaskState",
    "DerivedSignal",
    "OwnerExpression",
    "Signal",
    "SignalBase",
    "SignalGraph",
    "Tween",
    "from_owner",
    "Vec2",
    "as_vec2",
    "vec2",
]
