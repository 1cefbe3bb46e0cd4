"""Shared fixtures: a fresh signal graph, scene tree and scheduler per test."""

from __future__ import annotations

from typing import Iterator

import pytest

from tweengraph.core.instructions import define_instruction, undefine_instruction
from tweengraph.core.nodes import SceneTree
from tweengraph.core.registry import ValueRegistry
from tweengraph.core.scheduler import Scheduler
from tweengraph.core.signal import SignalGraph
from tweengraph.settings import reset_settings_cache

PLAYBACK_FRAME = 128
PLAYBACK_SPRITES = 129


@pytest.fixture()
def graph() -> SignalGraph:
    return SignalGraph()


@pytest.fixture()
def tree(graph: SignalGraph) -> SceneTree:
    return SceneTree(graph)


@pytest.fixture()
def values(graph: SignalGraph) -> ValueRegistry:
    return ValueRegistry(graph)


@pytest.fixture()
def scene(graph: SignalGraph, tree: SceneTree, values: ValueRegistry) -> Scheduler:
    return Scheduler(graph, tree=tree, values=values)


@pytest.fixture()
def playback_opcodes() -> Iterator[None]:
    """Declare the application-defined playback instructions for one test."""
    define_instruction("playback_frame", PLAYBACK_FRAME, 4)
    define_instruction("playback_sprites", PLAYBACK_SPRITES, 7)
    yield
    undefine_instruction(PLAYBACK_FRAME)
    undefine_instruction(PLAYBACK_SPRITES)


@pytest.fixture()
def clean_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.delenv("TWEENGRAPH_OUTPUTS", raising=False)
    monkeypatch.delenv("TWEENGRAPH_LOG_LEVEL", raising=False)
    reset_settings_cache()
    yield
    reset_settings_cache()
