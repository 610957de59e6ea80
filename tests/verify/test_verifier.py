"""
Unit tests for toolchain verification.

Tests cover:
- Every (architecture, frontend) pair is checked
- Wrong binary formats and compiler failures fail individual pairs
- Exports only for fully passing architectures
- Fail-fast skipping
"""

import pytest

from crosskit.core.exceptions import CommandFailedError, VerificationFailure
from crosskit.env import Environment
from crosskit.matrix.targets import matrix_entries
from crosskit.verify.frontends import FRONTEND_NAMES, FRONTENDS, get_frontend
from crosskit.verify.verifier import Verifier
from tests.mocks import FakeBackend, macho_descriptor


class UnreliableBackend(FakeBackend):
    """Fake backend with a broken compiler binary and a failing export."""

    def __init__(self, broken_program=None, failing_export=None):
        super().__init__()
        self.broken_program = broken_program
        self.failing_export = failing_export

    def _apply(self, handle, mutation, before):
        if mutation.args and mutation.args[0] == self.broken_program:
            raise PermissionError(13, "Permission denied", self.broken_program)
        return super()._apply(handle, mutation, before)

    def _export(self, handle, env, source, destination):
        if (destination.parent.name, destination.name) == self.failing_export:
            raise CommandFailedError(["docker", "cp", source], 1, "no space left on device")
        return super()._export(handle, env, source, destination)


@pytest.fixture
def image():
    return Environment.from_base("ubuntu:noble").with_workdir("/workspace")


@pytest.fixture
def entries():
    return matrix_entries(["aarch64", "x86_64"], "24", "11.0.0")


class TestFrontends:
    """Tests for the compiler frontend commands."""

    def test_frontend_names(self):
        assert FRONTEND_NAMES == ("clang", "clang++", "gcc", "g++", "gfortran", "zig-c", "rust")

    def test_clang_passes_target(self, image, entries):
        env = get_frontend("clang").compile(image, entries[0])

        assert env.mutation.args == (
            "aarch64-apple-darwin24-clang",
            "--target=aarch64-apple-darwin24",
            "samples/hello.c",
            "-o",
            "out/hello-clang",
        )

    def test_gfortran(self, image, entries):
        env = get_frontend("gfortran").compile(image, entries[1])

        assert env.mutation.args[0] == "x86_64-apple-darwin24-gfortran"
        assert env.mutation.args[1] == "samples/hello.f90"

    def test_rust_uses_zig_linker_and_restores_workdir(self, image, entries):
        env = get_frontend("rust").compile(image, entries[1])

        assert env.workdir == "/workspace"
        cargo = next(m for m in env.mutations() if m.args and m.args[0] == "cargo")
        assert cargo.args == ("cargo", "build", "--target", "x86_64-apple-darwin")
        assert env.variables["CC"] == "zig-cc-x86_64-macos"

    def test_unknown_frontend(self):
        with pytest.raises(KeyError):
            get_frontend("javac")


class TestVerifier:
    """Tests for Verifier.verify()."""

    def test_all_pairs_pass(self, image, entries, samples, tmp_path):
        backend = FakeBackend()
        verifier = Verifier(backend, samples, export_dir=tmp_path / "out")

        report = verifier.verify(image, entries)

        assert report.ok
        assert len(report.results) == len(entries) * len(FRONTENDS)
        assert report.passed_architectures() == ["aarch64", "x86_64"]
        clang = report.results[0]
        assert (clang.architecture, clang.frontend) == ("aarch64", "clang")
        assert "Mach-O 64-bit arm64 executable" in clang.descriptor

    def test_binaries_exported_per_architecture(self, image, entries, samples, tmp_path):
        backend = FakeBackend()
        Verifier(backend, samples, export_dir=tmp_path / "out").verify(image, entries)

        for entry in entries:
            for name in FRONTEND_NAMES:
                exported = tmp_path / "out" / entry.architecture / f"hello-{name}"
                assert exported.read_text().startswith(
                    f"Mach-O 64-bit {entry.canonical_name} executable"
                )

    def test_wrong_architecture_fails(self, image, entries, samples):
        """Test that a binary for the wrong architecture is rejected."""
        backend = FakeBackend(descriptor_for=lambda arch: macho_descriptor("x86_64"))

        report = Verifier(backend, samples).verify(image, entries)

        assert report.failed_architectures() == ["aarch64"]
        failure = report.failures[0]
        assert "expected 'Mach-O 64-bit arm64 executable'" in failure.reason
        with pytest.raises(VerificationFailure) as exc_info:
            report.raise_for_status()
        assert exc_info.value.architecture == "aarch64"

    def test_compiler_failure_isolated_to_pair(self, image, entries, samples, tmp_path):
        backend = FakeBackend(
            fail_when=lambda command, env: command[0] == "x86_64-apple-darwin24-gfortran"
        )

        report = Verifier(backend, samples, export_dir=tmp_path / "out").verify(image, entries)

        failures = [(r.architecture, r.frontend) for r in report.failures]
        assert failures == [("x86_64", "gfortran")]
        assert "simulated failure" in report.failures[0].output
        assert (tmp_path / "out" / "aarch64" / "hello-gfortran").exists()
        assert not (tmp_path / "out" / "x86_64").exists()

    def test_backend_error_isolated_to_pair(self, image, entries, samples, tmp_path):
        backend = UnreliableBackend(broken_program="x86_64-apple-darwin24-gfortran")

        report = Verifier(backend, samples, export_dir=tmp_path / "out").verify(image, entries)

        assert [(r.architecture, r.frontend) for r in report.failures] == [("x86_64", "gfortran")]
        assert report.failures[0].reason.startswith("PermissionError")
        assert len(report.results) == len(entries) * len(FRONTENDS)
        assert report.passed_architectures() == ["aarch64"]

    def test_export_failure_recorded_on_pair(self, image, entries, samples, tmp_path):
        backend = UnreliableBackend(failing_export=("x86_64", "hello-gcc"))

        report = Verifier(backend, samples, export_dir=tmp_path / "out").verify(image, entries)

        failure = report.failures[0]
        assert [(r.architecture, r.frontend) for r in report.failures] == [("x86_64", "gcc")]
        assert "export" in failure.reason
        assert failure.output == "no space left on device"
        assert (tmp_path / "out" / "x86_64" / "hello-clang").exists()
        assert report.passed_architectures() == ["aarch64"]
        with pytest.raises(VerificationFailure):
            report.raise_for_status()

    def test_missing_binary_fails(self, image, entries, samples):
        """Test that a compiler exiting 0 without output is caught by `file`."""
        backend = FakeBackend()
        simulate = backend._simulate

        def no_rust_output(files, command, workdir):
            if command[0] == "mv" and "hello-rust" in command[-1]:
                return ""
            return simulate(files, command, workdir)

        backend._simulate = no_rust_output

        report = Verifier(backend, samples).verify(image, entries[:1])

        assert [r.frontend for r in report.failures] == ["rust"]
        assert "cannot open" in report.failures[0].output

    def test_fail_fast_skips_remaining_pairs(self, image, entries, samples):
        backend = FakeBackend(fail_when=lambda command, env: command[0].endswith("-clang"))

        report = Verifier(backend, samples, parallelism=1, fail_fast=True).verify(
            image, entries
        )

        assert not report.results[0].passed
        assert not report.results[0].skipped
        assert all(r.skipped for r in report.results[1:])
        assert report.failed_architectures() == ["aarch64", "x86_64"]

    def test_samples_copied_once_for_all_pairs(self, image, entries, samples):
        backend = FakeBackend()

        Verifier(backend, samples).verify(image, entries)

        assert backend.executed("mkdir") == [("mkdir", "-p", "out")]

    def test_subset_of_frontends(self, image, entries, samples):
        backend = FakeBackend()
        verifier = Verifier(backend, samples, frontends=[get_frontend("zig-c")])

        report = verifier.verify(image, entries)

        assert [(r.architecture, r.frontend) for r in report.results] == [
            ("aarch64", "zig-c"),
            ("x86_64", "zig-c"),
        ]
        assert report.ok

    def test_invalid_parallelism(self, samples):
        with pytest.raises(ValueError):
            Verifier(FakeBackend(), samples, parallelism=0)
