"""
Concurrent build-step executor.

The executor walks a DependencyGraph in dependency order, submitting every
step whose base and inputs are available to a thread pool. Each step is
fingerprinted from its recipe and resolved inputs before it runs; a
fingerprint already in the artifact cache is reused instead of executed.

A failing step cancels every step that transitively depends on it. Other
branches (for instance, another architecture) keep going unless the
executor runs in fail-fast mode, where no new step is started after the
first failure but running steps are left to finish.
"""

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from crosskit.backends.base import ExecutionBackend
from crosskit.core.exceptions import BuildFailure, CommandFailedError, CrossKitError
from crosskit.env import Artifact, Environment
from crosskit.graph.cache import ArtifactCache
from crosskit.graph.graph import DependencyGraph
from crosskit.graph.step import BuildStep, StepKey, resolve_inputs

logger = logging.getLogger(__name__)


@dataclass
class ExecutionReport:
    """Outcome of scheduling a graph."""

    artifacts: Dict[StepKey, Artifact] = field(default_factory=dict)
    failures: Dict[StepKey, BuildFailure] = field(default_factory=dict)
    cancelled: Set[StepKey] = field(default_factory=set)
    executed: List[StepKey] = field(default_factory=list)
    cached: List[StepKey] = field(default_factory=list)
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled

    def artifact(self, key: StepKey) -> Artifact:
        return self.artifacts[key]

    def failed_architectures(self) -> List[str]:
        """Architectures with a failed or cancelled step."""
        keys = list(self.failures) + list(self.cancelled)
        return sorted({k.architecture for k in keys if k.architecture})

    def raise_for_status(self):
        """Raise the first failure (in step-name order) if any step failed."""
        if self.failures:
            first = sorted(self.failures, key=str)[0]
            raise self.failures[first]
        if self.cancelled:
            first = sorted(self.cancelled, key=str)[0]
            raise BuildFailure(
                str(first), "cancelled", architecture=first.architecture
            )


class Executor:
    """
    Schedules build steps on a thread pool with fingerprint caching.

    Example:
        >>> executor = Executor(DockerBackend(), parallelism=16)
        >>> report = executor.schedule(plan.graph)
        >>> report.raise_for_status()
        >>> image = report.artifact(plan.image_key).environment
    """

    def __init__(
        self,
        backend: ExecutionBackend,
        cache: Optional[ArtifactCache] = None,
        parallelism: int = 16,
        fail_fast: bool = False,
    ):
        """
        Initialize executor.

        Args:
            backend: Execution backend that materializes environments
            cache: Artifact cache (default: a new enabled cache)
            parallelism: Maximum number of steps running at once
            fail_fast: Stop starting new steps after the first failure
        """
        if parallelism < 1:
            raise ValueError(f"parallelism must be at least 1, got {parallelism}")

        self.backend = backend
        self.cache = cache if cache is not None else ArtifactCache()
        self.parallelism = parallelism
        self.fail_fast = fail_fast

    def schedule(
        self, graph: DependencyGraph, targets: Optional[Iterable[StepKey]] = None
    ) -> ExecutionReport:
        """
        Execute a graph (or the part of it ``targets`` need).

        Args:
            graph: Graph to execute
            targets: Only run these steps and their ancestors

        Returns:
            ExecutionReport with artifacts, failures and cancelled steps

        Raises:
            GraphError: If the graph is invalid (nothing is executed)
        """
        graph.validate()
        order = graph.topological_order(targets)
        selected = set(order)

        report = ExecutionReport()
        report.artifacts.update(graph.externals)

        waiting = {
            key: {d for d in graph.dependencies(key) if d in selected}
            for key in order
        }
        ready = [key for key in order if not waiting[key]]
        halted = False
        start = time.monotonic()

        logger.info(
            f"Scheduling {len(order)} steps (parallelism={self.parallelism})"
        )

        with ThreadPoolExecutor(max_workers=self.parallelism) as pool:
            running: Dict[Future, StepKey] = {}

            while ready or running:
                while ready and not halted:
                    key = ready.pop(0)
                    step = graph.step(key)
                    future = pool.submit(self._run, graph, step, dict(report.artifacts))
                    running[future] = key

                if not running:
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    key = running.pop(future)
                    failure = None
                    try:
                        artifact, created = future.result()
                    except BuildFailure as e:
                        failure = e
                    except (CrossKitError, OSError) as e:
                        failure = BuildFailure(
                            str(key),
                            f"{type(e).__name__}: {e}",
                            architecture=key.architecture,
                        )

                    if failure is not None:
                        report.failures[key] = failure
                        logger.error(f"✗ {key}: {failure.reason}")
                        self._cancel_dependents(graph, key, selected, report)
                        if self.fail_fast:
                            halted = True
                        continue

                    report.artifacts[key] = artifact
                    (report.executed if created else report.cached).append(key)

                    for dependent in graph.dependents(key):
                        if dependent not in waiting or dependent in report.cancelled:
                            continue
                        waiting[dependent].discard(key)
                        if not waiting[dependent]:
                            ready.append(dependent)

            if halted:
                for key in order:
                    if key not in report.artifacts and key not in report.failures:
                        report.cancelled.add(key)

        report.duration = time.monotonic() - start
        logger.info(
            f"Executed {len(report.executed)} steps, {len(report.cached)} cached, "
            f"{len(report.failures)} failed, {len(report.cancelled)} cancelled "
            f"({report.duration:.1f}s)"
        )
        return report

    def _cancel_dependents(
        self,
        graph: DependencyGraph,
        key: StepKey,
        selected: Set[StepKey],
        report: ExecutionReport,
    ):
        for dependent in graph.descendants(key):
            if dependent in selected and dependent not in report.artifacts:
                if dependent not in report.cancelled:
                    logger.warning(f"Cancelled {dependent} (depends on {key})")
                report.cancelled.add(dependent)

    def _run(
        self,
        graph: DependencyGraph,
        step: BuildStep,
        artifacts: Mapping[StepKey, Artifact],
    ) -> Tuple[Artifact, bool]:
        """Resolve inputs, fingerprint, and execute the step on a cache miss."""
        inputs = resolve_inputs(step, artifacts)
        if step.base is None:
            base_env = graph.root
        else:
            base = artifacts.get(step.base)
            if base is None or base.environment is None:
                raise BuildFailure(
                    str(step.key),
                    f"base environment {step.base} cannot be resolved",
                    architecture=step.architecture,
                )
            base_env = base.environment

        fingerprint = step.fingerprint(base_env, inputs)
        return self.cache.get_or_create(
            fingerprint, lambda: self._execute(step, base_env, inputs, fingerprint)
        )

    def _execute(
        self,
        step: BuildStep,
        base_env: Environment,
        inputs: Mapping[str, Artifact],
        fingerprint: str,
    ) -> Artifact:
        env = step.build(base_env, inputs)
        fresh_from = None if self.cache.enabled else base_env

        logger.info(f"▶ {step.key}")
        started = time.monotonic()
        try:
            self.backend.materialize(env, fresh_from=fresh_from)
        except CommandFailedError as e:
            raise BuildFailure(
                str(step.key),
                str(e),
                architecture=step.architecture,
                inputs={alias: a.fingerprint for alias, a in inputs.items()},
                command=e.command,
                output=e.output,
            ) from e
        except (CrossKitError, OSError) as e:
            raise BuildFailure(
                str(step.key),
                f"{type(e).__name__}: {e}",
                architecture=step.architecture,
                inputs={alias: a.fingerprint for alias, a in inputs.items()},
            ) from e

        logger.info(f"✓ {step.key} ({time.monotonic() - started:.1f}s)")
        return Artifact(
            name=str(step.key),
            fingerprint=fingerprint,
            path=step.output,
            step=str(step.key),
            environment=env,
        )
