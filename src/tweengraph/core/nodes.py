"""
Scene graph of signal-driven nodes.

A `SceneTree` indexes every node by integer id; `Node` objects are stable
handles into it. Parent/child links are stored as ids. The tree keeps attached
nodes alive; a detached node lives as long as a script still refers to it and
is released (with whatever hangs below it) once nothing does.

Nodes carry transform (`position`, `scale`, `rotation`), `opacity` and
`visible` signals plus a free-form property bundle. `Shape` subclasses add a
single `draw(ctx)` entry point; plain `Node` instances are containers that
only propagate their transform and visibility to children.
"""

from __future__ import annotations

import gc
import itertools
import logging
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Protocol, Sequence

import numpy as np

from ..errors import DetachedNodeReference
from .instructions import InstructionStream, Opcode
from .interpolation import Interpolation
from .signal import SignalBase, SignalGraph
from .transform import angle_of, apply, axis_lengths, identity, local_matrix, rough_scale
from .vector import Vec2, as_vec2

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Text metrics
# ---------------------------------------------------------------------------


class TextMetrics(Protocol):
    """Measures text width in scene units."""

    def measure(self, text: str, size: float) -> float:
        ...


@dataclass(frozen=True)
class MonospaceMetrics:
    """Fixed-advance metrics matching a pixel font."""

    glyph_width: float = 8.0

    def measure(self, text: str, size: float) -> float:
        return len(text) * self.glyph_width * size


# ---------------------------------------------------------------------------
# Draw context
# ---------------------------------------------------------------------------


@dataclass
class DrawContext:
    """Accumulated transform/opacity and the output stream for one draw call."""

    matrix: np.ndarray
    opacity: float
    stream: InstructionStream

    def point(self, x: float, y: float) -> Vec2:
        return apply(self.matrix, x, y)

    def length(self, value: float) -> float:
        return float(value) * rough_scale(self.matrix)

    @property
    def angle(self) -> float:
        return angle_of(self.matrix)

    def emit(self, opcode: int, *operands: float) -> None:
        self.stream.emit(opcode, *operands)

    def text(self, x: float, y: float, size: float, text: str) -> None:
        self.stream.emit(Opcode.TEXT, x, y, size, self.stream.intern(text))


# ---------------------------------------------------------------------------
# Tree arena
# ---------------------------------------------------------------------------


class SceneTree:
    """
    Registry of every node of one scene.

    Attached nodes are held by the tree. Detached and never-attached nodes are
    only weakly indexed: once the last script reference goes away they are
    released and their children are detached in turn. `collect` forces that
    release instead of waiting for the garbage collector.

    Parameters
    ----------
    graph:
        Signal graph used for node properties.
    metrics:
        Text measurement used by `Text` nodes.
    base_matrix:
        Matrix mapping scene units to the global output space.
    line_width:
        Stroke width used by `Polyline` nodes that do not set one.
    """

    def __init__(
        self,
        graph: SignalGraph,
        metrics: Optional[TextMetrics] = None,
        base_matrix: Optional[np.ndarray] = None,
        line_width: float = 1.0,
    ):
        self.graph = graph
        self.line_width = float(line_width)
        self.metrics: TextMetrics = metrics or MonospaceMetrics()
        self.base_matrix = identity() if base_matrix is None else np.asarray(base_matrix, dtype=np.float64)
        self._ids = itertools.count()
        self._nodes: "weakref.WeakValueDictionary[int, Node]" = weakref.WeakValueDictionary()
        self._held: Dict[int, Node] = {}
        self._parent: Dict[int, Optional[int]] = {}
        self._children: Dict[int, List[int]] = {}
        self._released = 0
        self.root = Node(self)
        self._held[self.root.id] = self.root

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node: "Node") -> bool:
        return self._nodes.get(node.id) is node

    def _register(self, node: "Node") -> int:
        node_id = next(self._ids)
        self._nodes[node_id] = node
        self._parent[node_id] = None
        self._children[node_id] = []
        finalizer = weakref.finalize(node, self._release, node_id)
        finalizer.atexit = False
        return node_id

    def _release(self, node_id: int) -> None:
        self._parent.pop(node_id, None)
        self._released += 1
        for child_id in self._children.pop(node_id, []):
            if child_id in self._parent:
                self._parent[child_id] = None
            self._held.pop(child_id, None)

    def node(self, node_id: int) -> "Node":
        try:
            return self._nodes[node_id]
        except KeyError:
            raise DetachedNodeReference(f"Node #{node_id} was released from the scene") from None

    def _require(self, node: "Node") -> None:
        if node.tree is not self:
            raise DetachedNodeReference(f"{node!r} belongs to a different scene")

    def attach(self, parent: "Node", child: "Node") -> "Node":
        """
        Append ``child`` to ``parent``'s children.

        Raises
        ------
        DetachedNodeReference
            If either node belongs to another scene, ``child`` already has a
            parent, or the attachment would make ``child`` its own ancestor.
        """
        self._require(parent)
        self._require(child)
        if child is self.root:
            raise DetachedNodeReference("The root node cannot be attached")
        current = self._parent[child.id]
        if current is not None:
            raise DetachedNodeReference(
                f"{child!r} is already owned by node #{current}; detach it first"
            )
        ancestor: Optional[int] = parent.id
        while ancestor is not None:
            if ancestor == child.id:
                raise DetachedNodeReference(f"Attaching {child!r} under {parent!r} would create a cycle")
            ancestor = self._parent[ancestor]

        self._children[parent.id].append(child.id)
        self._parent[child.id] = parent.id
        self._held[child.id] = child
        return child

    def detach(self, parent: "Node", child: "Node") -> None:
        """Remove ``child`` from ``parent``; absent children are ignored."""
        self._require(parent)
        siblings = self._children[parent.id]
        if child.id not in siblings or self._nodes.get(child.id) is not child:
            return
        siblings.remove(child.id)
        self._parent[child.id] = None
        del self._held[child.id]

    def children(self, node: "Node") -> List["Node"]:
        self._require(node)
        return [self._nodes[child_id] for child_id in self._children[node.id]]

    def parent(self, node: "Node") -> Optional["Node"]:
        self._require(node)
        parent_id = self._parent[node.id]
        return None if parent_id is None else self._nodes[parent_id]

    def is_attached(self, node: "Node") -> bool:
        """True when ``node`` is reachable from the root."""
        if node not in self:
            return False
        current: Optional[int] = node.id
        while current is not None:
            if current == self.root.id:
                return True
            current = self._parent[current]
        return False

    def walk(self, node: Optional["Node"] = None) -> Iterator["Node"]:
        """Depth-first pre-order iteration in paint order."""
        start = self.root if node is None else node
        self._require(start)
        stack = [start.id]
        while stack:
            node_id = stack.pop()
            yield self._nodes[node_id]
            stack.extend(reversed(self._children[node_id]))

    def collect(self) -> int:
        """
        Release every unreferenced detached node now.

        Nodes form reference cycles with their property signals, so they are
        otherwise only released when the garbage collector runs. Returns the
        number of nodes released since the previous call.
        """
        while True:
            before = self._released
            gc.collect()
            if self._released == before:
                break
        released, self._released = self._released, 0
        if released:
            logger.debug("Released %d detached node(s)", released)
        return released

    def emit(self, stream: Optional[InstructionStream] = None) -> InstructionStream:
        return traverse_and_emit(self.root, stream)


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


class Node:
    """
    Container node with transform, visibility and custom signal properties.

    Parameters
    ----------
    tree:
        Owning scene tree.
    position:
        Literal, callable, signal, ``{"x", "y"}`` mapping or owner expression.
    interpolations:
        Per-property interpolation overrides for tweened writes, e.g.
        ``{"instance": integer}``.
    **properties:
        Additional named properties seeded the same way; each becomes a signal
        reachable as an attribute (``node.instance``).
    """

    def __init__(
        self,
        tree: SceneTree,
        position: Any = None,
        *,
        scale: Any = 1.0,
        rotation: Any = 0.0,
        opacity: Any = 1.0,
        visible: Any = True,
        interpolations: Optional[Dict[str, Interpolation]] = None,
        **properties: Any,
    ):
        self._tree = tree
        self._properties: Dict[str, SignalBase] = {}
        self._seeding: Dict[str, tuple] = {}
        self._interpolations = dict(interpolations or {})
        self.id = tree._register(self)
        self.define("position", Vec2() if position is None else position, coerce=as_vec2)
        self.define("scale", scale, coerce=as_vec2)
        self.define("rotation", rotation)
        self.define("opacity", opacity)
        self.define("visible", visible)
        for name, value in properties.items():
            self.define(name, value)

    def __getattr__(self, name: str) -> SignalBase:
        properties = self.__dict__.get("_properties")
        if properties is not None and name in properties:
            return properties[name]
        raise AttributeError(f"{type(self).__name__} has no property '{name}'")

    def __repr__(self) -> str:
        return f"<{type(self).__name__} #{self.id}>"

    @property
    def tree(self) -> SceneTree:
        return self._tree

    def define(
        self,
        name: str,
        value: Any,
        *,
        interpolation: Optional[Interpolation] = None,
        coerce: Optional[Callable[[Any], Any]] = None,
    ) -> SignalBase:
        """Add a property signal seeded from ``value``."""
        if name in self._properties:
            raise ValueError(f"Property '{name}' already defined on {self!r}")
        interpolation = interpolation or self._interpolations.get(name)
        self._seeding[name] = (interpolation, coerce)
        signal = self._lift(name, value)
        self._properties[name] = signal
        return signal

    def bind(self, name: str, value: Any) -> SignalBase:
        """
        Replace property ``name`` with a signal seeded from ``value``.

        ``value`` takes the same forms as at construction, so a property can
        switch to an expression after the node was built::

            playback.bind("visible", lambda: selected() == 3)

        Signals that read the old property are invalidated and a signal owned
        by this node is disposed.
        """
        old = self.get_property(name)
        signal = self._lift(name, value)
        self._properties[name] = signal
        self._tree.graph._invalidate_dependents(old)
        if old.owner is self:
            old.dispose()
        return signal

    def _lift(self, name: str, value: Any) -> SignalBase:
        interpolation, coerce = self._seeding.get(name, (None, None))
        return self._tree.graph.lift(
            value,
            owner=self,
            name=f"{type(self).__name__}#{self.id}.{name}",
            interpolation=interpolation,
            coerce=coerce,
        )

    def get_property(self, name: str) -> SignalBase:
        try:
            return self._properties[name]
        except KeyError:
            raise AttributeError(f"{type(self).__name__} has no property '{name}'") from None

    @property
    def property_names(self) -> List[str]:
        return list(self._properties)

    def add_child(self, child: "Node") -> "Node":
        return self._tree.attach(self, child)

    def add_children(self, children: Iterable["Node"]) -> None:
        for child in children:
            self._tree.attach(self, child)

    def remove(self, child: "Node") -> None:
        self._tree.detach(self, child)

    @property
    def children(self) -> List["Node"]:
        return self._tree.children(self)

    @property
    def parent(self) -> Optional["Node"]:
        return self._tree.parent(self)

    def local_matrix(self) -> np.ndarray:
        return local_matrix(self.position(), self.scale(), float(self.rotation()))


class Shape(Node):
    """Node variant with a draw behaviour."""

    def draw(self, ctx: DrawContext) -> None:
        raise NotImplementedError


class Circle(Shape):
    def __init__(self, tree: SceneTree, position: Any = None, radius: Any = 8.0, **kwargs: Any):
        super().__init__(tree, position, radius=radius, **kwargs)

    def draw(self, ctx: DrawContext) -> None:
        centre = ctx.point(0.0, 0.0)
        ctx.emit(Opcode.CIRCLE, centre.x, centre.y, ctx.length(self.radius()))


class Ellipse(Shape):
    def __init__(self, tree: SceneTree, position: Any = None, radii: Any = (8.0, 4.0), **kwargs: Any):
        super().__init__(tree, position, **kwargs)
        self.define("radii", radii, coerce=as_vec2)

    def draw(self, ctx: DrawContext) -> None:
        centre = ctx.point(0.0, 0.0)
        radii = self.radii()
        sx, sy = axis_lengths(ctx.matrix)
        ctx.emit(Opcode.ELLIPSE, centre.x, centre.y, radii.x * sx, radii.y * sy, ctx.angle)


class Polyline(Shape):
    """Stroked path through ``points`` (local coordinates)."""

    def __init__(
        self,
        tree: SceneTree,
        position: Any = None,
        points: Any = (),
        closed: Any = False,
        line_width: Any = None,
        **kwargs: Any,
    ):
        if line_width is None:
            line_width = tree.line_width
        super().__init__(tree, position, closed=closed, line_width=line_width, **kwargs)
        self.define("points", points, coerce=_as_points)

    def draw(self, ctx: DrawContext) -> None:
        points: Sequence[Vec2] = self.points()
        if len(points) < 2:
            return
        ctx.emit(Opcode.LINE_WIDTH, ctx.length(self.line_width()))
        first = ctx.point(points[0].x, points[0].y)
        ctx.emit(Opcode.MOVE_TO, first.x, first.y)
        for point in points[1:]:
            p = ctx.point(point.x, point.y)
            ctx.emit(Opcode.LINE_TO, p.x, p.y)
        if self.closed():
            ctx.emit(Opcode.CLOSE_PATH)
        ctx.emit(Opcode.STROKE_PATH)


class Text(Shape):
    """Text label; non-string values are formatted with ``str``."""

    def __init__(self, tree: SceneTree, position: Any = None, text: Any = "", size: Any = 1.0, **kwargs: Any):
        super().__init__(tree, position, size=size, **kwargs)
        self.define("text", text, coerce=str)
        metrics = tree.metrics
        self._properties["width"] = tree.graph.derive(
            lambda: metrics.measure(str(self.text()), float(self.size())),
            name=f"Text#{self.id}.width",
            owner=self,
        )

    def draw(self, ctx: DrawContext) -> None:
        origin = ctx.point(0.0, 0.0)
        ctx.text(origin.x, origin.y, ctx.length(self.size()), str(self.text()))


def _as_points(value: Any) -> tuple:
    return tuple(as_vec2(point) for point in value)


# ---------------------------------------------------------------------------
# Traversal
# ---------------------------------------------------------------------------


def traverse_and_emit(root: Node, stream: Optional[InstructionStream] = None) -> InstructionStream:
    """
    Emit draw instructions for the subtree under ``root``.

    Depth-first pre-order in child insertion order. Each node's global matrix
    is ``parent @ translate @ rotate @ scale``. A node whose ``visible`` is
    false, or whose accumulated opacity is not positive, is skipped together
    with its subtree. Nothing is emitted when an ancestor of ``root`` is
    hidden. An ``OPACITY`` instruction precedes the first shape and every
    change of accumulated opacity.
    """
    tree = root.tree
    stream = InstructionStream() if stream is None else stream
    parent = tree.parent(root)
    matrix = tree.base_matrix
    opacity = 1.0
    if parent is not None:
        chain = []
        current: Optional[Node] = parent
        while current is not None:
            chain.append(current)
            current = tree.parent(current)
        for ancestor in reversed(chain):
            if not ancestor.visible():
                return stream
            matrix = matrix @ ancestor.local_matrix()
            opacity *= float(ancestor.opacity())
    emitted: List[Optional[float]] = [None]
    _visit(root, matrix, opacity, stream, emitted)
    return stream


def _visit(
    node: Node,
    parent_matrix: np.ndarray,
    parent_opacity: float,
    stream: InstructionStream,
    emitted: List[Optional[float]],
) -> None:
    if not node.visible():
        return
    opacity = parent_opacity * float(node.opacity())
    if opacity <= 0.0:
        return
    matrix = parent_matrix @ node.local_matrix()
    if isinstance(node, Shape):
        if emitted[0] != opacity:
            stream.emit(Opcode.OPACITY, opacity)
            emitted[0] = opacity
        node.draw(DrawContext(matrix=matrix, opacity=opacity, stream=stream))
    for child in node.tree.children(node):
        _visit(child, matrix, opacity, stream, emitted)
