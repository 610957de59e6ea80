"""
Build-step dependency graph.

Edges are inferred from each step's declared base and inputs. Externally
supplied artifacts (host files) live in the graph as pre-resolved nodes so
that steps can depend on them the same way they depend on other steps.
"""

import logging
from collections import deque
from typing import Dict, Iterable, Iterator, List, Optional, Set

from crosskit.core.exceptions import GraphError
from crosskit.env import Artifact, Environment
from crosskit.graph.step import BuildStep, StepKey

logger = logging.getLogger(__name__)


class DependencyGraph:
    """
    Directed acyclic graph of build steps.

    Attributes:
        root: Environment that steps without a declared base start from

    Example:
        >>> graph = DependencyGraph(Environment.from_base("ubuntu:noble"))
        >>> graph.add(base_step)
        >>> graph.add(xar_step)
        >>> graph.topological_order()
        [StepKey(name='base'), StepKey(name='xar')]
    """

    def __init__(self, root: Environment):
        self.root = root
        self._steps: Dict[StepKey, BuildStep] = {}
        self._externals: Dict[StepKey, Artifact] = {}
        self._dependents: Dict[StepKey, List[StepKey]] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add(self, step: BuildStep) -> BuildStep:
        """
        Add a step.

        Adding an identical step twice is a no-op, which is how shared steps
        requested by several matrix entries end up as a single node.

        Raises:
            GraphError: If a different step with the same key already exists
        """
        existing = self._steps.get(step.key)
        if existing is not None:
            if existing != step:
                raise GraphError(f"Conflicting definitions for step {step.key}")
            return existing

        if step.key in self._externals:
            raise GraphError(f"Step {step.key} collides with an external artifact")

        self._steps[step.key] = step
        for dependency in step.dependencies():
            self._dependents.setdefault(dependency, []).append(step.key)
        return step

    def add_external(self, key: StepKey, artifact: Artifact) -> Artifact:
        """Register an externally supplied artifact under ``key``."""
        if key in self._steps:
            raise GraphError(f"External artifact {key} collides with a step")

        existing = self._externals.get(key)
        if existing is not None and existing.fingerprint != artifact.fingerprint:
            raise GraphError(f"Conflicting external artifacts for {key}")

        self._externals[key] = artifact
        return artifact

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __contains__(self, key: StepKey) -> bool:
        return key in self._steps or key in self._externals

    def __iter__(self) -> Iterator[StepKey]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def step(self, key: StepKey) -> BuildStep:
        return self._steps[key]

    def steps(self) -> List[BuildStep]:
        return list(self._steps.values())

    @property
    def externals(self) -> Dict[StepKey, Artifact]:
        return dict(self._externals)

    def dependencies(self, key: StepKey) -> List[StepKey]:
        """Direct dependencies of a step (empty for externals)."""
        step = self._steps.get(key)
        return step.dependencies() if step else []

    def dependents(self, key: StepKey) -> List[StepKey]:
        """Steps that directly consume ``key``."""
        return list(self._dependents.get(key, []))

    def descendants(self, key: StepKey) -> Set[StepKey]:
        """Every step that transitively depends on ``key``."""
        seen: Set[StepKey] = set()
        queue = deque(self.dependents(key))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.dependents(current))
        return seen

    def ancestors(self, keys: Iterable[StepKey]) -> Set[StepKey]:
        """The given keys plus everything they transitively depend on."""
        seen: Set[StepKey] = set()
        queue = deque(keys)
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self.dependencies(current))
        return seen

    def architectures(self) -> List[str]:
        """Architectures that have at least one step in this graph."""
        return sorted({k.architecture for k in self._steps if k.architecture})

    # ------------------------------------------------------------------
    # Validation and ordering
    # ------------------------------------------------------------------

    def validate(self):
        """
        Check that every dependency is known and the graph is acyclic.

        Raises:
            GraphError: On unknown inputs or cycles
        """
        for step in self._steps.values():
            for dependency in step.dependencies():
                if dependency not in self:
                    raise GraphError(
                        f"Step {step.key} depends on unknown input {dependency}"
                    )
        self.topological_order()

    def topological_order(
        self, targets: Optional[Iterable[StepKey]] = None
    ) -> List[StepKey]:
        """
        Order steps so every step comes after its dependencies.

        Ties are broken by insertion order, so the order is deterministic
        for a given graph.

        Args:
            targets: Restrict to these steps and their ancestors

        Raises:
            GraphError: If the graph contains a cycle
        """
        if targets is None:
            selected = list(self._steps)
        else:
            targets = list(targets)
            missing = [k for k in targets if k not in self]
            if missing:
                raise GraphError(f"Unknown steps: {', '.join(map(str, missing))}")
            closure = self.ancestors(targets)
            selected = [k for k in self._steps if k in closure]

        selected_set = set(selected)
        indegree = {
            key: sum(1 for d in self.dependencies(key) if d in selected_set)
            for key in selected
        }
        ready = deque(key for key in selected if indegree[key] == 0)
        order: List[StepKey] = []

        while ready:
            key = ready.popleft()
            order.append(key)
            for dependent in self.dependents(key):
                if dependent in indegree:
                    indegree[dependent] -= 1
                    if indegree[dependent] == 0:
                        ready.append(dependent)

        if len(order) != len(selected):
            stuck = [str(k) for k in selected if k not in set(order)]
            raise GraphError(f"Dependency cycle among steps: {', '.join(stuck)}")

        return order

    def subgraph(self, targets: Iterable[StepKey]) -> "DependencyGraph":
        """New graph holding only ``targets`` and their ancestors."""
        targets = list(targets)
        closure = self.ancestors(targets)
        graph = DependencyGraph(self.root)
        for key, artifact in self._externals.items():
            if key in closure:
                graph.add_external(key, artifact)
        for key in self.topological_order(targets):
            graph.add(self._steps[key])
        return graph
