"""
Environment and artifact model.

Environments are persistent, structurally-shared snapshot chains; artifacts
are immutable, fingerprinted outputs addressed inside a snapshot or on the
host.
"""

from crosskit.env.artifact import Artifact, host_artifact
from crosskit.env.environment import (
    DEFAULT_PATH,
    Environment,
    Mutation,
    MutationKind,
    expand_variables,
)

__all__ = [
    "Artifact",
    "host_artifact",
    "DEFAULT_PATH",
    "Environment",
    "Mutation",
    "MutationKind",
    "expand_variables",
]
