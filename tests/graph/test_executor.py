"""
Unit tests for the concurrent executor and the artifact cache.

Tests cover:
- Execution in dependency order and report contents
- Cache reuse across schedules and disabled caching
- Shared steps executed once for several consumers
- Failure isolation between independent branches
- Fail-fast mode
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from crosskit.core.exceptions import BuildFailure, SnapshotStoreError
from crosskit.env import Artifact, Environment
from crosskit.graph import ArtifactCache, BuildStep, DependencyGraph, Exec, Executor, StepKey
from tests.mocks import FakeBackend


def diamond_graph(architectures=("aarch64", "x86_64")):
    """base → libs → cctools[arch] → gcc[arch] → image."""
    graph = DependencyGraph(Environment.from_base("ubuntu:noble"))
    graph.add(BuildStep(key=StepKey("base"), recipe=(Exec(("apt-get", "update")),)))
    graph.add(
        BuildStep(
            key=StepKey("libs"),
            base=StepKey("base"),
            recipe=(Exec(("make", "libs")),),
            output="/libs",
        )
    )
    image_inputs = {}
    for arch in architectures:
        graph.add(
            BuildStep(
                key=StepKey("cctools", arch),
                base=StepKey("base"),
                inputs={"libs": StepKey("libs")},
                recipe=(Exec(("build-cctools", arch)),),
                output=f"/cctools/{arch}",
            )
        )
        graph.add(
            BuildStep(
                key=StepKey("gcc", arch),
                base=StepKey("base"),
                inputs={"cctools": StepKey("cctools", arch)},
                recipe=(Exec(("build-gcc", arch)),),
                output=f"/gcc/{arch}",
            )
        )
        image_inputs[f"gcc-{arch}"] = StepKey("gcc", arch)
    graph.add(
        BuildStep(
            key=StepKey("image"),
            base=StepKey("base"),
            inputs=image_inputs,
            recipe=(Exec(("assemble",)),),
        )
    )
    return graph


def fails_on(program, argument=None):
    def predicate(command, env):
        return command[0] == program and (argument is None or argument in command)

    return predicate


class BrokenBackend(FakeBackend):
    """Fake backend whose infrastructure breaks while running one command."""

    def __init__(self, command, error):
        super().__init__()
        self.broken_command = command
        self.error = error

    def _apply(self, handle, mutation, before):
        if mutation.args == self.broken_command:
            raise self.error
        return super()._apply(handle, mutation, before)


class TestArtifactCache:
    """Tests for ArtifactCache."""

    def test_get_or_create_computes_once(self):
        cache = ArtifactCache()
        calls = []

        def factory():
            calls.append(1)
            return Artifact(name="xar", fingerprint="f" * 64, path="/xar")

        first, created = cache.get_or_create("f" * 64, factory)
        second, created_again = cache.get_or_create("f" * 64, factory)

        assert created and not created_again
        assert first is second
        assert len(calls) == 1
        assert (cache.hits, cache.misses) == (1, 1)

    def test_concurrent_requests_share_inflight_execution(self):
        """Test that concurrent requesters wait for the single running factory."""
        cache = ArtifactCache()
        started = threading.Event()
        calls = []

        def factory():
            calls.append(1)
            started.set()
            time.sleep(0.05)
            return Artifact(name="sdk", fingerprint="s" * 64, path="/sdk")

        with ThreadPoolExecutor(max_workers=4) as pool:
            futures = [pool.submit(cache.get_or_create, "s" * 64, factory) for _ in range(4)]
            results = [f.result() for f in futures]

        assert len(calls) == 1
        assert sum(1 for _, created in results if created) == 1
        assert len({id(a) for a, _ in results}) == 1

    def test_failure_is_not_cached(self):
        cache = ArtifactCache()

        def broken():
            raise BuildFailure("xar", "boom")

        with pytest.raises(BuildFailure):
            cache.get_or_create("x" * 64, broken)

        assert "x" * 64 not in cache
        artifact, created = cache.get_or_create(
            "x" * 64, lambda: Artifact(name="xar", fingerprint="x" * 64, path="/xar")
        )
        assert created

    def test_disabled_cache_stores_nothing(self):
        cache = ArtifactCache(enabled=False)
        factory = lambda: Artifact(name="a", fingerprint="a" * 64, path="/a")  # noqa: E731

        cache.get_or_create("a" * 64, factory)
        _, created = cache.get_or_create("a" * 64, factory)

        assert created
        assert len(cache) == 0


class TestExecutor:
    """Tests for Executor.schedule()."""

    def test_executes_every_step(self):
        backend = FakeBackend()
        report = Executor(backend, parallelism=4).schedule(diamond_graph())

        assert report.ok
        assert len(report.executed) == 7
        assert report.cached == []
        assert report.artifact(StepKey("gcc", "x86_64")).path == "/gcc/x86_64"

    def test_dependencies_run_first(self):
        backend = FakeBackend()
        Executor(backend, parallelism=4).schedule(diamond_graph())

        commands = backend.commands
        assert commands[0] == ("apt-get", "update")
        assert commands[-1] == ("assemble",)
        for arch in ("aarch64", "x86_64"):
            assert commands.index(("build-cctools", arch)) < commands.index(("build-gcc", arch))

    def test_shared_step_runs_once(self):
        """Test that a step consumed by every architecture executes once."""
        backend = FakeBackend()
        Executor(backend, parallelism=8).schedule(diamond_graph())

        assert backend.executed("make") == [("make", "libs")]
        assert len(backend.executed("apt-get")) == 1

    def test_second_schedule_hits_cache(self):
        """Test that rescheduling an unchanged graph executes nothing."""
        backend = FakeBackend()
        cache = ArtifactCache()
        executor = Executor(backend, cache, parallelism=4)

        first = executor.schedule(diamond_graph())
        applied = backend.applied
        second = executor.schedule(diamond_graph())

        assert second.ok
        assert second.executed == []
        assert len(second.cached) == 7
        assert backend.applied == applied
        for key, artifact in first.artifacts.items():
            assert second.artifacts[key].fingerprint == artifact.fingerprint

    def test_fingerprints_independent_of_requested_order(self):
        """Test that the order architectures are added in does not matter."""
        a = Executor(FakeBackend()).schedule(diamond_graph(("aarch64", "x86_64")))
        b = Executor(FakeBackend()).schedule(diamond_graph(("x86_64", "aarch64")))

        for arch in ("aarch64", "x86_64"):
            key = StepKey("gcc", arch)
            assert a.artifact(key).fingerprint == b.artifact(key).fingerprint

    def test_fingerprints_independent_of_parallelism(self):
        """Test that serial and concurrent scheduling build the same image."""
        serial = Executor(FakeBackend(), parallelism=1).schedule(diamond_graph())
        concurrent = Executor(FakeBackend(), parallelism=8).schedule(diamond_graph())

        assert serial.artifact(StepKey("image")).fingerprint == (
            concurrent.artifact(StepKey("image")).fingerprint
        )
        assert serial.artifact(StepKey("image")).environment == (
            concurrent.artifact(StepKey("image")).environment
        )

    def test_disabled_cache_reexecutes(self):
        backend = FakeBackend()
        executor = Executor(backend, ArtifactCache(enabled=False), parallelism=2)

        executor.schedule(diamond_graph())
        executor.schedule(diamond_graph())

        assert backend.executed("make") == [("make", "libs"), ("make", "libs")]

    def test_failure_cancels_only_dependents(self):
        """Test that one architecture failing leaves the other intact."""
        backend = FakeBackend(fail_when=fails_on("build-cctools", "aarch64"))
        report = Executor(backend, parallelism=4).schedule(diamond_graph())

        assert not report.ok
        assert set(report.failures) == {StepKey("cctools", "aarch64")}
        assert report.cancelled == {StepKey("gcc", "aarch64"), StepKey("image")}
        assert StepKey("gcc", "x86_64") in report.artifacts
        assert report.failed_architectures() == ["aarch64"]

    @pytest.mark.parametrize(
        "error",
        [
            FileNotFoundError(2, "No such file or directory", "docker"),
            SnapshotStoreError("Failed to save snapshot index: disk full"),
        ],
    )
    def test_backend_error_isolated_to_branch(self, error):
        """Test that errors other than failed commands still cancel only dependents."""
        backend = BrokenBackend(("build-cctools", "aarch64"), error)

        report = Executor(backend, parallelism=4).schedule(diamond_graph())

        failure = report.failures[StepKey("cctools", "aarch64")]
        assert failure.architecture == "aarch64"
        assert type(error).__name__ in failure.reason
        assert failure.__cause__ is error
        assert StepKey("gcc", "x86_64") in report.artifacts
        assert report.cancelled == {StepKey("gcc", "aarch64"), StepKey("image")}

    def test_failure_carries_context(self):
        backend = FakeBackend(fail_when=fails_on("build-gcc", "x86_64"))
        report = Executor(backend).schedule(diamond_graph())

        failure = report.failures[StepKey("gcc", "x86_64")]
        assert failure.architecture == "x86_64"
        assert failure.command == ("build-gcc", "x86_64")
        assert "simulated failure" in failure.output
        assert "cctools" in failure.inputs

        with pytest.raises(BuildFailure, match=r"\[x86_64\]"):
            report.raise_for_status()

    def test_failed_step_can_be_retried(self):
        """Test that a retry only re-executes the failed branch."""
        broken = {"on": True}
        backend = FakeBackend(
            fail_when=lambda command, env: broken["on"] and command == ("build-gcc", "x86_64")
        )
        executor = Executor(backend, ArtifactCache(), parallelism=4)

        assert not executor.schedule(diamond_graph()).ok
        broken["on"] = False
        before = len(backend.commands)
        report = executor.schedule(diamond_graph())

        assert report.ok
        assert set(report.executed) == {StepKey("gcc", "x86_64"), StepKey("image")}
        assert backend.commands[before:] == [("build-gcc", "x86_64"), ("assemble",)]

    def test_fail_fast_starts_nothing_new(self):
        backend = FakeBackend(fail_when=fails_on("build-cctools", "aarch64"))
        report = Executor(backend, parallelism=1, fail_fast=True).schedule(diamond_graph())

        assert set(report.failures) == {StepKey("cctools", "aarch64")}
        assert backend.executed("build-gcc") == []
        assert StepKey("gcc", "x86_64") in report.cancelled
        assert StepKey("libs") in report.artifacts
        assert report.failed_architectures() == ["aarch64", "x86_64"]

    def test_targets_restrict_execution(self):
        backend = FakeBackend()
        report = Executor(backend).schedule(
            diamond_graph(), targets=[StepKey("gcc", "aarch64")]
        )

        assert StepKey("gcc", "aarch64") in report.artifacts
        assert StepKey("gcc", "x86_64") not in report.artifacts
        assert backend.executed("assemble") == []

    def test_invalid_parallelism(self):
        with pytest.raises(ValueError):
            Executor(FakeBackend(), parallelism=0)
