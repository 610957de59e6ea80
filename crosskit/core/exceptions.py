"""
Centralized exception hierarchy for crosskit.

Every failure raised by the pipeline derives from CrossKitError so callers
can catch the whole family, while each stage (configuration, build,
verification, publish) has its own type carrying the context needed to
locate the root cause.
"""

from typing import Dict, Optional, Sequence


# ============================================================================
# Base Exceptions
# ============================================================================


class CrossKitError(Exception):
    """Base exception for all crosskit errors."""

    pass


# ============================================================================
# Configuration Exceptions
# ============================================================================


class ConfigurationError(CrossKitError):
    """Raised for invalid configuration, before anything executes."""

    pass


class GraphError(ConfigurationError):
    """Raised when a dependency graph is malformed (cycle, unknown input)."""

    pass


# ============================================================================
# Execution Exceptions
# ============================================================================


class CommandFailedError(CrossKitError):
    """Raised by an execution backend when a command exits non-zero."""

    def __init__(self, command: Sequence[str], exit_code: int, output: str = ""):
        self.command = tuple(command)
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            f"Command {' '.join(self.command)!r} exited with code {exit_code}"
        )


class BuildFailure(CrossKitError):
    """Raised when a build step cannot produce its output."""

    def __init__(
        self,
        step: str,
        reason: str,
        architecture: Optional[str] = None,
        inputs: Optional[Dict[str, str]] = None,
        command: Optional[Sequence[str]] = None,
        output: str = "",
    ):
        self.step = step
        self.reason = reason
        self.architecture = architecture
        self.inputs = dict(inputs or {})
        self.command = tuple(command) if command else None
        self.output = output

        msg = f"Build step {step} failed: {reason}"
        if architecture:
            msg = f"[{architecture}] {msg}"
        super().__init__(msg)


class SnapshotStoreError(CrossKitError):
    """Raised when the persistent snapshot index cannot be read or written."""

    pass


class LockTimeout(CrossKitError):
    """Raised when another process holds a crosskit file lock past the timeout."""

    pass


# ============================================================================
# Verification Exceptions
# ============================================================================


class VerificationFailure(CrossKitError):
    """Raised when a frontend fails to produce a binary for its architecture."""

    def __init__(self, architecture: str, frontend: str, reason: str):
        self.architecture = architecture
        self.frontend = frontend
        self.reason = reason
        super().__init__(f"[{architecture}] {frontend}: {reason}")


# ============================================================================
# Publish Exceptions
# ============================================================================


class PublishFailure(CrossKitError):
    """Raised when the assembled image cannot be pushed to the registry."""

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"Failed to publish {reference}: {reason}")


# ============================================================================
# Source Retrieval Exceptions
# ============================================================================


class DownloadError(CrossKitError):
    """Raised when an external artifact cannot be fetched."""

    pass


# ============================================================================
# Pipeline Exceptions
# ============================================================================


class PipelineError(CrossKitError):
    """Raised by the driver when a stage fails, naming stage and architecture."""

    def __init__(
        self,
        stage: str,
        cause: Exception,
        architecture: Optional[str] = None,
        failed_steps: Optional[Sequence[str]] = None,
    ):
        self.stage = stage
        self.cause = cause
        self.architecture = architecture
        self.failed_steps = list(failed_steps or [])

        where = f"{stage} ({architecture})" if architecture else stage
        msg = f"Stage {where} failed: {cause}"
        if len(self.failed_steps) > 1:
            msg += f" (failed steps: {', '.join(self.failed_steps)})"
        super().__init__(msg)
