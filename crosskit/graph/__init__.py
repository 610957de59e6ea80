"""
Build-step dependency graph, artifact cache and executor.
"""

from crosskit.graph.cache import ArtifactCache
from crosskit.graph.executor import ExecutionReport, Executor
from crosskit.graph.graph import DependencyGraph
from crosskit.graph.step import (
    BuildStep,
    CopyDirectory,
    CopyFile,
    Exec,
    SetEnv,
    StepKey,
    Workdir,
    shell,
)

__all__ = [
    "ArtifactCache",
    "ExecutionReport",
    "Executor",
    "DependencyGraph",
    "BuildStep",
    "CopyDirectory",
    "CopyFile",
    "Exec",
    "SetEnv",
    "StepKey",
    "Workdir",
    "shell",
]
