"""
Matrix expansion.

Turns a list of target architectures into one dependency graph in which
architecture-independent steps appear once and architecture-dependent
steps appear once per architecture. Because shared steps are keyed by
name only, every matrix entry resolves them to the same graph node.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from crosskit.core.exceptions import ConfigurationError
from crosskit.env import Environment
from crosskit.graph.graph import DependencyGraph
from crosskit.graph.step import StepKey
from crosskit.matrix.targets import TargetMatrixEntry, parse_architectures
from crosskit.recipes import components
from crosskit.recipes.options import BuildOptions

logger = logging.getLogger(__name__)


@dataclass
class MatrixPlan:
    """
    Result of expanding the build matrix.

    Attributes:
        graph: Combined graph (shared steps once, per-architecture steps per entry)
        entries: Matrix entries in requested order
        toolchain_keys: Architecture → its architecture-specific step keys
        image_key: Key of the final assembly step
    """

    graph: DependencyGraph
    entries: List[TargetMatrixEntry]
    toolchain_keys: Dict[str, List[StepKey]] = field(default_factory=dict)
    image_key: StepKey = components.IMAGE

    @property
    def architectures(self) -> List[str]:
        return [entry.architecture for entry in self.entries]

    def graph_for(self, architecture: str) -> DependencyGraph:
        """Subgraph with everything one architecture's toolchain needs."""
        if architecture not in self.toolchain_keys:
            raise KeyError(architecture)
        return self.graph.subgraph(self.toolchain_keys[architecture])

    def shared_keys(self) -> List[StepKey]:
        """Architecture-independent steps, excluding the final image."""
        return [
            key
            for key in self.graph
            if key.architecture is None and key != self.image_key
        ]


class MatrixExpander:
    """
    Builds the toolchain graph for a set of target architectures.

    Example:
        >>> options = BuildOptions(sdk_archive=host_artifact("sdk", archive))
        >>> plan = MatrixExpander().expand(["aarch64", "x86_64"], options)
        >>> [str(k) for k in plan.toolchain_keys["aarch64"]]
        ['cctools[aarch64]', 'cctools-aliases[aarch64]', 'gcc[aarch64]']
    """

    def expand(
        self,
        architectures: Iterable[str],
        options: Optional[BuildOptions] = None,
        image_architectures: Optional[Iterable[str]] = None,
    ) -> MatrixPlan:
        """
        Expand the matrix into a graph.

        Args:
            architectures: Target architectures (aliases accepted)
            options: Build options; ``sdk_archive``/``zig_scripts`` are
                registered as external artifacts when present
            image_architectures: Architectures the final image assembles
                (default: all of them)

        Returns:
            MatrixPlan

        Raises:
            ConfigurationError: On unsupported architectures or an image
                architecture that is not part of the matrix
        """
        options = options or BuildOptions()
        entries = [
            TargetMatrixEntry(arch, options.kernel_version, options.deployment_target)
            for arch in parse_architectures(list(architectures))
        ]

        if image_architectures is None:
            image_entries = entries
        else:
            selected = parse_architectures(list(image_architectures))
            unknown = [a for a in selected if a not in {e.architecture for e in entries}]
            if unknown:
                raise ConfigurationError(
                    f"Image architectures not in the matrix: {', '.join(unknown)}"
                )
            image_entries = [e for e in entries if e.architecture in selected]

        graph = DependencyGraph(Environment.from_base(options.base_image))
        if options.sdk_archive is not None:
            graph.add_external(components.SDK_ARCHIVE, options.sdk_archive)
        if options.zig_scripts is not None:
            graph.add_external(components.ZIG_SCRIPTS, options.zig_scripts)

        for step in components.shared_steps(options):
            graph.add(step)

        plan = MatrixPlan(graph=graph, entries=entries)
        for entry in entries:
            steps = components.architecture_steps(entry, options)
            for step in steps:
                graph.add(step)
            plan.toolchain_keys[entry.architecture] = [s.key for s in steps]

        graph.add(components.image_step(image_entries, options))

        logger.debug(
            f"Expanded matrix {', '.join(plan.architectures)} into {len(graph)} steps"
        )
        return plan


__all__ = ["MatrixPlan", "MatrixExpander"]
