"""
Build artifacts.

An Artifact is the immutable output of a build step: a directory or file
addressed by a path inside the Environment snapshot that produced it. Its
fingerprint is derived from the producing step's recipe and the
fingerprints of that step's resolved inputs, so equal inputs always give
equal fingerprints.

Artifacts supplied from outside the graph (an SDK archive on the host, the
zig wrapper scripts, the verification samples) are host artifacts: they
carry a host path instead of an environment and are fingerprinted by
content.
"""

import hashlib
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from crosskit.core.filesystem import compute_tree_hash

if TYPE_CHECKING:
    from crosskit.env.environment import Environment


@dataclass(frozen=True)
class Artifact:
    """
    Immutable, content-identified build output.

    Attributes:
        name: Logical name (e.g., 'xar', 'gcc[aarch64]')
        fingerprint: Deterministic identity of the content
        path: Location of the payload inside the producing environment
        step: Identity of the producing step (None for host artifacts)
        environment: Snapshot holding the payload
        host_path: Payload location on the host for external artifacts
    """

    name: str
    fingerprint: str
    path: str
    step: Optional[str] = None
    environment: Optional["Environment"] = field(
        default=None, compare=False, repr=False
    )
    host_path: Optional[Path] = field(default=None, compare=False)

    @property
    def is_external(self) -> bool:
        """True when the payload lives on the host rather than in a snapshot."""
        return self.environment is None

    def subpath(self, relative: str) -> "Artifact":
        """
        Address a subdirectory or file inside this artifact.

        Example:
            >>> libs = xar.subpath("lib")
        """
        relative = relative.strip("/")
        if not relative:
            return self

        fingerprint = hashlib.sha256(
            f"{self.fingerprint}:{relative}".encode("utf-8")
        ).hexdigest()
        host_path = self.host_path / relative if self.host_path else None

        return Artifact(
            name=f"{self.name}/{relative}",
            fingerprint=fingerprint,
            path=posixpath.join(self.path, relative),
            step=self.step,
            environment=self.environment,
            host_path=host_path,
        )


def host_artifact(name: str, path: Union[str, Path]) -> Artifact:
    """
    Create an external artifact from a host file or directory.

    The fingerprint covers the content only, so moving the file does not
    invalidate cached steps that consumed it.

    Args:
        name: Logical artifact name
        path: Host file or directory

    Returns:
        Artifact with host_path set
    """
    path = Path(path).resolve()
    return Artifact(
        name=name,
        fingerprint=compute_tree_hash(path),
        path=path.name,
        host_path=path,
    )
