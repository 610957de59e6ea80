"""
Core functionality for crosskit.

This package contains the foundational modules that other components depend on.
"""

from .exceptions import (
    CrossKitError,
    ConfigurationError,
    GraphError,
    CommandFailedError,
    BuildFailure,
    SnapshotStoreError,
    VerificationFailure,
    PublishFailure,
    DownloadError,
    PipelineError,
)

from .filesystem import (
    FilesystemError,
    atomic_write,
    ensure_directory,
    compute_file_hash,
    compute_tree_hash,
)

from .locking import (
    LockManager,
    LockTimeout,
    get_global_cache_dir,
)

from .timing import timed_stage

__all__ = [
    # Exceptions
    "CrossKitError",
    "ConfigurationError",
    "GraphError",
    "CommandFailedError",
    "BuildFailure",
    "SnapshotStoreError",
    "VerificationFailure",
    "PublishFailure",
    "DownloadError",
    "PipelineError",
    # Filesystem
    "FilesystemError",
    "atomic_write",
    "ensure_directory",
    "compute_file_hash",
    "compute_tree_hash",
    # Locking
    "LockManager",
    "LockTimeout",
    "get_global_cache_dir",
    # Timing
    "timed_stage",
]
