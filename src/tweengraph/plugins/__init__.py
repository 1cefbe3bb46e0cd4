"""
Plugin system for tweengraph exporters and interpolation kinds.

Plugins are discovered via Python entry points:
  - Exporters: "tweengraph.exporters"
  - Interpolations: "tweengraph.interpolations"

Example plugin registration in pyproject.toml:
    [project.entry-points."tweengraph.exporters"]
    my_exporter = "my_package:MyExporterPlugin"

    [project.entry-points."tweengraph.interpolations"]
    my_kinds = "my_package:register_interpolations"
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from importlib.metadata import entry_points
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Sequence

from ..core.interpolation import (
    discover_interpolation_plugins,
    register_interpolation,
    unregister_interpolation,
)

if TYPE_CHECKING:
    from ..animation import Frame
    from ..config import ScenarioConfig

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    """Result returned by an exporter plugin."""

    output_path: Path
    """Path to the primary output (file or directory)"""

    message: str = ""
    """Optional message to log after the export"""

    metadata: Dict[str, Any] = field(default_factory=dict)
    """Optional metadata about the export"""


class ExporterPlugin(ABC):
    """
    Abstract base class for exporter plugins.

    Example
    -------
    >>> class OpcodeHistogram(ExporterPlugin):
    ...     name = "opcode-histogram"
    ...     description = "Count opcodes over the whole run"
    ...
    ...     def export(self, frames, config, output_dir, **kwargs) -> ExportResult:
    ...         ...
    ...         return ExportResult(output_path=output_dir / "histogram.json")
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this exporter."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @abstractmethod
    def export(
        self,
        frames: Sequence["Frame"],
        config: "ScenarioConfig",
        output_dir: Path,
        **kwargs: Any,
    ) -> ExportResult:
        """
        Export a finished run in the plugin's format.

        Parameters
        ----------
        frames : Sequence[Frame]
            Frames in emission order, each carrying its instruction stream
        config : ScenarioConfig
            Scenario configuration
        output_dir : Path
            Directory created for this run

        Returns
        -------
        ExportResult
            Result containing output path and optional metadata
        """
        ...


def discover_plugins() -> Dict[str, ExporterPlugin]:
    """
    Discover installed exporter plugins via entry points.

    Plugins register themselves in their pyproject.toml:
        [project.entry-points."tweengraph.exporters"]
        plugin_name = "package.module:PluginClass"

    Returns
    -------
    Dict[str, ExporterPlugin]
        Dictionary mapping plugin names to plugin instances
    """
    plugins: Dict[str, ExporterPlugin] = {}

    for ep in entry_points(group="tweengraph.exporters"):
        try:
            plugin_class = ep.load()
            plugin_instance = plugin_class()
        except Exception as e:
            logger.warning("Failed to load plugin '%s': %s", ep.name, e)
            continue

        if not isinstance(plugin_instance, ExporterPlugin):
            logger.warning(
                "Plugin '%s' does not implement ExporterPlugin interface, skipping",
                ep.name,
            )
            continue

        plugins[plugin_instance.name] = plugin_instance
        logger.debug("Discovered exporter plugin: %s", plugin_instance.name)

    return plugins


def discover_all_plugins() -> Dict[str, ExporterPlugin]:
    """
    Discover all plugin types (interpolation kinds and exporters).

    Call this before running scripts so custom value kinds can be tweened.
    """
    discover_interpolation_plugins()
    return discover_plugins()


__all__ = [
    "ExportResult",
    "ExporterPlugin",
    "discover_plugins",
    "register_interpolation",
    "unregister_interpolation",
    "discover_interpolation_plugins",
    "discover_all_plugins",
]
