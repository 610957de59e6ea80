"""
Execution backends for crosskit.

Backends materialize Environment snapshots in an isolated execution
environment, export files from them and publish them to registries.
"""

from crosskit.backends.base import ExecutionBackend
from crosskit.backends.docker import DockerBackend
from crosskit.backends.snapshots import SnapshotStore

__all__ = ["ExecutionBackend", "DockerBackend", "SnapshotStore"]
