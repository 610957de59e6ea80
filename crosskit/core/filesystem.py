"""
Filesystem helpers shared by the snapshot store, SDK fetcher and exports.

Provides atomic writes (temp file + rename), content hashing for files and
directory trees, and directory creation.
"""

import hashlib
import os
import tempfile
from pathlib import Path
from typing import Union

from crosskit.core.exceptions import CrossKitError


class FilesystemError(CrossKitError):
    """Raised when a path the helpers need is missing or unreadable."""

    pass


def atomic_write(
    file_path: Union[str, Path], content: Union[str, bytes], encoding: str = "utf-8"
) -> None:
    """
    Replace ``file_path`` with ``content`` in a single rename.

    Readers either see the previous contents or the new ones; a failed
    write leaves the previous file in place and removes the temp file.

    Args:
        file_path: Destination; parent directories are created
        content: Text or raw bytes
        encoding: Applied when content is text

    Example:
        >>> atomic_write('snapshots.json', '{"version": 1}')
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    # Same directory so the rename stays on one filesystem
    temp_fd, temp_path_str = tempfile.mkstemp(
        dir=file_path.parent, prefix=f".{file_path.name}.", suffix=".tmp"
    )
    temp_path = Path(temp_path_str)

    try:
        if isinstance(content, str):
            with open(temp_fd, "w", encoding=encoding) as f:
                f.write(content)
        else:
            with open(temp_fd, "wb") as f:
                f.write(content)

        temp_path.replace(file_path)

    except Exception:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise


def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Create ``path`` and its parents if needed.

    Args:
        path: Directory path

    Returns:
        The resolved directory path
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path.resolve()


def compute_file_hash(
    file_path: Union[str, Path], algorithm: str = "sha256", chunk_size: int = 8192
) -> str:
    """
    Hash the contents of a single file.

    The file is streamed so large SDK archives are never held in memory.

    Args:
        file_path: Path to file
        algorithm: Any name accepted by ``hashlib.new``
        chunk_size: Read size in bytes

    Returns:
        Hex digest of the hash

    Raises:
        FilesystemError: If the file does not exist
        ValueError: If the algorithm is not supported
    """
    file_path = Path(file_path)

    if not file_path.is_file():
        raise FilesystemError(f"File not found: {file_path}")

    try:
        hasher = hashlib.new(algorithm)
    except ValueError:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    with open(file_path, "rb") as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)

    return hasher.hexdigest()


def compute_tree_hash(path: Union[str, Path], algorithm: str = "sha256") -> str:
    """
    Compute a content hash for a file or a whole directory tree.

    Directory hashes cover relative paths, file contents and the executable
    bit, visited in sorted order so the result does not depend on the
    filesystem's listing order.

    Args:
        path: File or directory to hash
        algorithm: Hash algorithm

    Returns:
        Hex digest of the tree
    """
    path = Path(path)

    if path.is_file():
        return compute_file_hash(path, algorithm)

    if not path.is_dir():
        raise FilesystemError(f"Path not found: {path}")

    hasher = hashlib.new(algorithm)
    for item in sorted(path.rglob("*")):
        if not item.is_file():
            continue
        rel = item.relative_to(path).as_posix()
        executable = "x" if os.access(item, os.X_OK) else "-"
        hasher.update(f"{rel}\0{executable}\0".encode("utf-8"))
        hasher.update(compute_file_hash(item, algorithm).encode("ascii"))

    return hasher.hexdigest()


__all__ = [
    "FilesystemError",
    "atomic_write",
    "ensure_directory",
    "compute_file_hash",
    "compute_tree_hash",
]
