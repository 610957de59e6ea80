"""
Unit tests for core helpers.

Tests cover:
- Atomic writes and directory creation
- File and tree content hashing
- Stage timing logs
"""

import logging
import os

import pytest

from crosskit.core.filesystem import (
    FilesystemError,
    atomic_write,
    compute_file_hash,
    compute_tree_hash,
    ensure_directory,
)
from crosskit.core.timing import timed_stage


@pytest.mark.unit
def test_atomic_write_text_and_bytes(tmp_path):
    target = tmp_path / "nested" / "index.json"

    atomic_write(target, '{"version": 1}')
    assert target.read_text() == '{"version": 1}'

    atomic_write(target, b"\x00\x01")
    assert target.read_bytes() == b"\x00\x01"
    assert [p.name for p in target.parent.iterdir()] == ["index.json"]


@pytest.mark.unit
def test_ensure_directory_is_idempotent(tmp_path):
    first = ensure_directory(tmp_path / "a" / "b")
    second = ensure_directory(tmp_path / "a" / "b")

    assert first == second
    assert first.is_dir()


@pytest.mark.unit
def test_compute_file_hash(tmp_path):
    path = tmp_path / "hello.txt"
    path.write_bytes(b"hello world")

    assert compute_file_hash(path) == (
        "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9"
    )

    with pytest.raises(FilesystemError):
        compute_file_hash(tmp_path / "missing")
    with pytest.raises(ValueError, match="Unsupported hash algorithm"):
        compute_file_hash(path, algorithm="nope")


class TestTreeHash:
    """Tests for compute_tree_hash()."""

    def make_tree(self, root):
        (root / "rust" / "src").mkdir(parents=True)
        (root / "hello.c").write_text("int main(void) { return 0; }\n")
        (root / "rust" / "src" / "main.rs").write_text("fn main() {}\n")
        return root

    def test_equal_content_equal_hash(self, tmp_path):
        a = self.make_tree(tmp_path / "a")
        b = self.make_tree(tmp_path / "b")

        assert compute_tree_hash(a) == compute_tree_hash(b)

    def test_content_change(self, tmp_path):
        a = self.make_tree(tmp_path / "a")
        before = compute_tree_hash(a)

        (a / "hello.c").write_text("int main(void) { return 1; }\n")

        assert compute_tree_hash(a) != before

    def test_rename_changes_hash(self, tmp_path):
        a = self.make_tree(tmp_path / "a")
        before = compute_tree_hash(a)

        (a / "hello.c").rename(a / "hi.c")

        assert compute_tree_hash(a) != before

    def test_executable_bit(self, tmp_path):
        a = self.make_tree(tmp_path / "a")
        before = compute_tree_hash(a)

        os.chmod(a / "hello.c", 0o755)

        assert compute_tree_hash(a) != before

    def test_single_file(self, tmp_path):
        path = tmp_path / "sdk.tar.xz"
        path.write_bytes(b"sdk")

        assert compute_tree_hash(path) == compute_file_hash(path)

    def test_missing_path(self, tmp_path):
        with pytest.raises(FilesystemError, match="Path not found"):
            compute_tree_hash(tmp_path / "missing")


class TestTimedStage:
    """Tests for timed_stage()."""

    def test_logs_completion(self, caplog):
        with caplog.at_level(logging.INFO, logger="crosskit.core.timing"):
            with timed_stage("image push"):
                pass

        messages = [r.getMessage() for r in caplog.records]
        assert messages[0] == "Starting image push..."
        assert messages[1].startswith("✓ image push completed in ")

    def test_logs_and_reraises_failure(self, caplog):
        with caplog.at_level(logging.INFO, logger="crosskit.core.timing"):
            with pytest.raises(RuntimeError, match="boom"):
                with timed_stage("tests"):
                    raise RuntimeError("boom")

        assert "✗ tests failed after" in caplog.records[-1].getMessage()
        assert caplog.records[-1].levelno == logging.ERROR

