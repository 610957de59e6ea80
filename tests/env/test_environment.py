"""
Unit tests for environment snapshots.

Tests cover:
- Fingerprint determinism and chaining
- Structural sharing between branches
- Variable expansion and workdir resolution
- Ancestry checks
"""

import pytest

from crosskit.env import (
    DEFAULT_PATH,
    Environment,
    MutationKind,
    expand_variables,
    host_artifact,
)


@pytest.fixture
def base():
    return Environment.from_base("ubuntu:noble")


class TestFingerprints:
    """Tests for fingerprint chaining."""

    def test_equal_sequences_have_equal_fingerprints(self, base):
        """Test that two chains with the same mutations are equal."""
        a = base.with_workdir("/workspace").with_exec(["make", "-j4"])
        b = base.with_workdir("/workspace").with_exec(["make", "-j4"])

        assert a.fingerprint == b.fingerprint
        assert a == b
        assert hash(a) == hash(b)

    def test_different_commands_differ(self, base):
        """Test that different commands give different fingerprints."""
        a = base.with_exec(["make", "-j4"])
        b = base.with_exec(["make", "-j8"])

        assert a.fingerprint != b.fingerprint

    def test_order_matters(self, base):
        """Test that mutation order is part of the identity."""
        a = base.with_env_variable("A", "1").with_env_variable("B", "2")
        b = base.with_env_variable("B", "2").with_env_variable("A", "1")

        assert a.fingerprint != b.fingerprint
        assert a.variables == b.variables

    def test_base_image_is_part_of_identity(self):
        """Test that different base images never share fingerprints."""
        a = Environment.from_base("ubuntu:noble").with_exec(["true"])
        b = Environment.from_base("ubuntu:jammy").with_exec(["true"])

        assert a.fingerprint != b.fingerprint

    def test_copied_artifact_content_is_part_of_identity(self, base, tmp_path):
        """Test that copying different content gives different fingerprints."""
        first = tmp_path / "one.txt"
        second = tmp_path / "two.txt"
        first.write_text("one")
        second.write_text("two")

        a = base.with_file("/tmp/input", host_artifact("input", first))
        b = base.with_file("/tmp/input", host_artifact("input", second))

        assert a.fingerprint != b.fingerprint


class TestStructuralSharing:
    """Tests for persistent snapshot chains."""

    def test_branches_share_prefix(self, base):
        """Test that extending never copies the parent."""
        prefix = base.with_workdir("/workspace").with_exec(["apt-get", "update"])
        xar = prefix.with_exec(["git", "clone", "xar"])
        tapi = prefix.with_exec(["git", "clone", "tapi"])

        assert xar.parent is prefix
        assert tapi.parent is prefix
        assert xar.lineage()[:3] == tapi.lineage()[:3]

    def test_extending_does_not_modify_parent(self, base):
        """Test that parents are immutable."""
        child = base.with_env_variable("FOO", "bar")

        assert "FOO" not in base.variables
        assert child.variables["FOO"] == "bar"
        assert base.depth == 0
        assert child.depth == 1

    def test_lineage_and_mutations(self, base):
        """Test lineage order and the mutation sequence."""
        env = base.with_workdir("/tmp").with_exec(["ls"])

        lineage = env.lineage()
        assert lineage[0] is base
        assert lineage[-1] is env
        assert [m.kind for m in env.mutations()] == [
            MutationKind.WORKDIR,
            MutationKind.EXEC,
        ]

    def test_is_descendant_of(self, base):
        """Test ancestry checks."""
        parent = base.with_exec(["true"])
        child = parent.with_exec(["false"])
        sibling = base.with_exec(["echo"])

        assert child.is_descendant_of(parent)
        assert child.is_descendant_of(base)
        assert child.is_descendant_of(child)
        assert not child.is_descendant_of(sibling)
        assert not parent.is_descendant_of(child)

    def test_root(self, base):
        env = base.with_exec(["a"]).with_exec(["b"])
        assert env.root is base


class TestVariablesAndWorkdir:
    """Tests for variables and working directory handling."""

    def test_default_path(self, base):
        assert base.variables["PATH"] == DEFAULT_PATH

    def test_expand_path(self, base):
        """Test prepending to PATH."""
        env = base.with_env_variable("PATH", "/osxcross/bin:$PATH", expand=True)

        assert env.variables["PATH"] == f"/osxcross/bin:{DEFAULT_PATH}"

    def test_unexpanded_value_is_literal(self, base):
        env = base.with_env_variable("LITERAL", "$PATH")
        assert env.variables["LITERAL"] == "$PATH"

    def test_last_write_wins(self, base):
        env = base.with_env_variable("CC", "gcc").with_env_variable("CC", "clang")
        assert env.variables["CC"] == "clang"

    def test_expand_unknown_variable_is_empty(self):
        assert expand_variables("a${MISSING}b$ALSO_MISSING", {}) == "ab"

    def test_relative_workdir(self, base):
        """Test that relative workdirs resolve against the current one."""
        env = base.with_workdir("/tmp/libdispatch").with_workdir("build")
        assert env.workdir == "/tmp/libdispatch/build"

        env = env.with_workdir("../..")
        assert env.workdir == "/tmp"

    def test_directory_destination_is_absolute(self, base, tmp_path):
        (tmp_path / "lib").mkdir()
        artifact = host_artifact("lib", tmp_path / "lib")

        env = base.with_workdir("/workspace").with_directory("samples", artifact)

        assert env.mutation.args == ("/workspace/samples",)
        assert env.mutation.source is artifact

    def test_empty_command_rejected(self, base):
        with pytest.raises(ValueError, match="cannot be empty"):
            base.with_exec([])

    def test_with_packages(self, base):
        env = base.with_packages("file", "curl")
        assert env.mutation.args == ("apt-get", "install", "-y", "file", "curl")
