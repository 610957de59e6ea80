"""
Unit tests for the execution backend base class.

Tests cover:
- Prefix reuse when materializing related environments
- Forced re-execution with fresh_from
- Concurrent materialization of a shared prefix
- Persistence through the snapshot store
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from crosskit.backends.base import ExecutionBackend
from crosskit.backends.snapshots import SnapshotStore
from crosskit.core.exceptions import CommandFailedError
from crosskit.env import Environment
from tests.mocks import FakeBackend


class CountingBackend(ExecutionBackend):
    """Backend whose handles are strings, so they can be persisted."""

    name = "counting"

    def __init__(self, store=None, available=True, delay=0.0):
        super().__init__(store=store)
        self.available = available
        self.delay = delay
        self.calls = []
        self._calls_lock = threading.Lock()

    def _from_base(self, image):
        with self._calls_lock:
            self.calls.append(("base", image))
        return f"img:{image}"

    def _apply(self, handle, mutation, before):
        time.sleep(self.delay)
        with self._calls_lock:
            self.calls.append(("apply", mutation.args))
        return f"{handle}+{len(self.calls)}", "output of " + " ".join(mutation.args)

    def _is_available(self, handle):
        return self.available

    def _export(self, handle, env, source, destination):
        destination.write_text(source)
        return destination

    def _publish(self, handle, env, reference, credentials):
        return "sha256:0"


@pytest.fixture
def base():
    return Environment.from_base("ubuntu:noble")


class TestMaterialize:
    """Tests for ExecutionBackend.materialize()."""

    def test_materializes_whole_chain(self, base, fake_backend):
        env = base.with_exec(["apt-get", "update"]).with_exec(["make"])

        fake_backend.materialize(env)

        assert fake_backend.bases == ["ubuntu:noble"]
        assert fake_backend.commands == [("apt-get", "update"), ("make",)]
        assert fake_backend.applied == 2
        assert fake_backend.is_materialized(env)

    def test_reuses_materialized_prefix(self, base, fake_backend):
        prefix = base.with_exec(["apt-get", "update"])
        fake_backend.materialize(prefix.with_exec(["build", "xar"]))
        fake_backend.materialize(prefix.with_exec(["build", "tapi"]))

        assert fake_backend.executed("apt-get") == [("apt-get", "update")]
        assert fake_backend.applied == 3

    def test_equal_chains_are_not_reexecuted(self, base, fake_backend):
        fake_backend.materialize(base.with_exec(["make"]))
        fake_backend.materialize(Environment.from_base("ubuntu:noble").with_exec(["make"]))

        assert fake_backend.applied == 1

    def test_fresh_from_forces_reexecution(self, base, fake_backend):
        prefix = base.with_exec(["apt-get", "update"])
        env = prefix.with_exec(["make"])
        fake_backend.materialize(env)

        fake_backend.materialize(env, fresh_from=prefix)

        assert fake_backend.executed("make") == [("make",), ("make",)]
        assert fake_backend.executed("apt-get") == [("apt-get", "update")]

    def test_fresh_from_must_be_ancestor(self, base, fake_backend):
        with pytest.raises(ValueError, match="ancestor"):
            fake_backend.materialize(
                base.with_exec(["a"]), fresh_from=base.with_exec(["b"])
            )

    def test_failed_command_is_not_remembered(self, base):
        backend = FakeBackend(fail_when=lambda command, env: command == ("false",))
        env = base.with_exec(["true"]).with_exec(["false"])

        with pytest.raises(CommandFailedError) as exc_info:
            backend.materialize(env)

        assert exc_info.value.exit_code == 1
        assert backend.is_materialized(env.parent)
        assert not backend.is_materialized(env)

    def test_concurrent_branches_share_prefix(self, base):
        """Test that concurrent materializations never repeat a shared mutation."""
        backend = CountingBackend(delay=0.01)
        prefix = base.with_exec(["apt-get", "update"]).with_exec(["apt-get", "install"])
        branches = [prefix.with_exec(["build", str(i)]) for i in range(6)]

        with ThreadPoolExecutor(max_workers=6) as pool:
            list(pool.map(backend.materialize, branches))

        applied = [args for kind, args in backend.calls if kind == "apply"]
        assert applied.count(("apt-get", "update")) == 1
        assert applied.count(("apt-get", "install")) == 1
        assert len(applied) == 8

    def test_stdout_returns_last_command_output(self, base):
        backend = CountingBackend()
        env = base.with_exec(["echo", "hi"]).with_env_variable("A", "1")

        assert backend.stdout(env) == "output of echo hi"
        assert backend.stdout(base) == ""

    def test_export_resolves_relative_paths(self, base, tmp_path):
        backend = CountingBackend()
        env = base.with_workdir("/workspace")

        result = backend.export(env, "out/hello-clang", tmp_path / "x86_64" / "hello-clang")

        assert result.read_text() == "/workspace/out/hello-clang"


class TestSnapshotPersistence:
    """Tests for reusing snapshots across backend instances."""

    def test_second_backend_reuses_store(self, base, tmp_path):
        store_path = tmp_path / "snapshots.json"
        env = base.with_exec(["apt-get", "update"]).with_exec(["make"])

        CountingBackend(store=SnapshotStore(store_path)).materialize(env)
        second = CountingBackend(store=SnapshotStore(store_path))
        second.materialize(env)

        assert second.calls == []
        assert second.stdout(env) == "output of make"

    def test_stale_handles_are_forgotten(self, base, tmp_path):
        """Test that a snapshot deleted behind our back is rebuilt."""
        store_path = tmp_path / "snapshots.json"
        env = base.with_exec(["make"])
        CountingBackend(store=SnapshotStore(store_path)).materialize(env)

        store = SnapshotStore(store_path)
        second = CountingBackend(store=store, available=False)
        second.materialize(env)

        assert ("apply", ("make",)) in second.calls
        assert ("base", "ubuntu:noble") in second.calls

    def test_unpersistable_handles_are_not_stored(self, base, tmp_path):
        store = SnapshotStore(tmp_path / "snapshots.json")
        FakeBackend(store=store).materialize(base.with_exec(["true"]))

        assert len(store) == 0
