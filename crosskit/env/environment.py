"""
Persistent environment snapshots.

An Environment is an append-only chain of mutations over a base image.
Each node stores one mutation and a pointer to its parent, so extending an
environment never copies history and any number of branches can share a
common prefix. Nodes are immutable; every ``with_*`` call returns a new
node.

The fingerprint of a node is the hash of its parent's fingerprint and its
own mutation, which makes two environments with equal mutation sequences
equal, and lets an execution backend recognise an already-materialized
prefix in O(1) per node.

Example:
    >>> base = Environment.from_base("ubuntu:noble").with_workdir("/workspace")
    >>> xar = base.with_exec(["git", "clone", XAR_URL, "/tmp/xar"])
    >>> tapi = base.with_exec(["git", "clone", TAPI_URL, "/tmp/libtapi"])
    >>> xar.lineage()[0] is tapi.lineage()[0]
    True
"""

import hashlib
import json
import posixpath
import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence, Tuple

from crosskit.env.artifact import Artifact

# Debian/Ubuntu image default, the value "$PATH" expands to on a fresh base.
DEFAULT_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

_VARIABLE_RE = re.compile(r"\$(?:\{(\w+)\}|(\w+))")


class MutationKind(Enum):
    """Kinds of environment mutations."""

    EXEC = "exec"
    ENV = "env"
    WORKDIR = "workdir"
    DIRECTORY = "directory"
    FILE = "file"


@dataclass(frozen=True)
class Mutation:
    """
    A single environment mutation.

    Attributes:
        kind: Mutation kind
        args: Command argv for EXEC, (name, value) for ENV, (path,) for
            WORKDIR, (destination,) for DIRECTORY and FILE
        source: Artifact copied in by DIRECTORY and FILE mutations
    """

    kind: MutationKind
    args: Tuple[str, ...]
    source: Optional[Artifact] = None

    def digest(self) -> str:
        """Stable identity of this mutation."""
        payload = {
            "kind": self.kind.value,
            "args": list(self.args),
            "source": self.source.fingerprint if self.source else None,
        }
        return hashlib.sha256(
            json.dumps(payload, sort_keys=True).encode("utf-8")
        ).hexdigest()

    def describe(self) -> str:
        """Human-readable one-line description for logs."""
        if self.kind == MutationKind.EXEC:
            return " ".join(self.args)
        if self.kind == MutationKind.ENV:
            return f"{self.args[0]}={self.args[1]}"
        if self.source is not None:
            return f"{self.kind.value} {self.source.name} -> {self.args[0]}"
        return f"{self.kind.value} {self.args[0]}"


def expand_variables(value: str, variables: Mapping[str, str]) -> str:
    """Expand ``$NAME`` and ``${NAME}`` references; unknown names expand to ''."""

    def replace(match):
        name = match.group(1) or match.group(2)
        return variables.get(name, "")

    return _VARIABLE_RE.sub(replace, value)


class Environment:
    """
    Immutable environment snapshot node.

    Attributes:
        base: Base image identifier shared by the whole chain
        parent: Previous node, or None for the root
        mutation: Mutation applied on top of the parent (None for the root)
        depth: Number of mutations between the root and this node
        fingerprint: Hash identifying the full mutation sequence
    """

    __slots__ = (
        "base",
        "parent",
        "mutation",
        "depth",
        "fingerprint",
        "_variables",
        "_workdir",
    )

    def __init__(
        self,
        base: str,
        parent: Optional["Environment"],
        mutation: Optional[Mutation],
        variables: Mapping[str, str],
        workdir: str,
        fingerprint: str,
    ):
        self.base = base
        self.parent = parent
        self.mutation = mutation
        self.depth = parent.depth + 1 if parent is not None else 0
        self.fingerprint = fingerprint
        self._variables = variables
        self._workdir = workdir

    @classmethod
    def from_base(
        cls,
        image: str,
        workdir: str = "/",
        variables: Optional[Mapping[str, str]] = None,
    ) -> "Environment":
        """
        Create the root snapshot for a base image.

        Args:
            image: Base image reference (e.g., 'ubuntu:noble')
            workdir: Initial working directory
            variables: Initial variables (default: PATH of the base image)
        """
        seed = dict(variables) if variables is not None else {"PATH": DEFAULT_PATH}
        payload = json.dumps(
            {"base": image, "workdir": workdir, "variables": seed}, sort_keys=True
        )
        fingerprint = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        return cls(image, None, None, MappingProxyType(seed), workdir, fingerprint)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _extend(
        self,
        mutation: Mutation,
        variables: Optional[Mapping[str, str]] = None,
        workdir: Optional[str] = None,
    ) -> "Environment":
        fingerprint = hashlib.sha256(
            f"{self.fingerprint}:{mutation.digest()}".encode("utf-8")
        ).hexdigest()
        return Environment(
            self.base,
            self,
            mutation,
            variables if variables is not None else self._variables,
            workdir if workdir is not None else self._workdir,
            fingerprint,
        )

    def _absolute(self, path: str) -> str:
        return posixpath.normpath(posixpath.join(self._workdir, path))

    def with_exec(self, args: Sequence[str]) -> "Environment":
        """Run a command (argv, no shell) in the current workdir."""
        if not args:
            raise ValueError("Command cannot be empty")
        return self._extend(Mutation(MutationKind.EXEC, tuple(str(a) for a in args)))

    def with_env_variable(
        self, name: str, value: str, expand: bool = False
    ) -> "Environment":
        """
        Set an environment variable (last write wins).

        Args:
            name: Variable name
            value: Variable value
            expand: Expand ``$NAME`` references against the current variables
        """
        if expand:
            value = expand_variables(value, self._variables)

        variables = dict(self._variables)
        variables[name] = value
        return self._extend(
            Mutation(MutationKind.ENV, (name, value)),
            variables=MappingProxyType(variables),
        )

    def with_workdir(self, path: str) -> "Environment":
        """Change the working directory; relative paths resolve against the current one."""
        workdir = self._absolute(path)
        return self._extend(Mutation(MutationKind.WORKDIR, (workdir,)), workdir=workdir)

    def with_directory(self, path: str, artifact: Artifact) -> "Environment":
        """Overlay an artifact's directory contents at ``path``."""
        return self._extend(
            Mutation(MutationKind.DIRECTORY, (self._absolute(path),), artifact)
        )

    def with_file(self, path: str, artifact: Artifact) -> "Environment":
        """Place an artifact's file at ``path``."""
        return self._extend(
            Mutation(MutationKind.FILE, (self._absolute(path),), artifact)
        )

    def with_packages(self, *packages: str) -> "Environment":
        """Install distribution packages."""
        return self.with_exec(["apt-get", "install", "-y", *packages])

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def variables(self) -> Mapping[str, str]:
        """Read-only environment variable mapping."""
        return self._variables

    @property
    def workdir(self) -> str:
        return self._workdir

    @property
    def root(self) -> "Environment":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def lineage(self) -> List["Environment"]:
        """Nodes from the root to this node, inclusive."""
        nodes = []
        node: Optional[Environment] = self
        while node is not None:
            nodes.append(node)
            node = node.parent
        nodes.reverse()
        return nodes

    def mutations(self) -> Tuple[Mutation, ...]:
        """Ordered mutation sequence applied to the base."""
        return tuple(n.mutation for n in self.lineage() if n.mutation is not None)

    def is_descendant_of(self, other: "Environment") -> bool:
        """True if ``other`` is this node or one of its ancestors."""
        node: Optional[Environment] = self
        while node is not None and node.depth >= other.depth:
            if node.fingerprint == other.fingerprint:
                return True
            node = node.parent
        return False

    def __eq__(self, other):
        if not isinstance(other, Environment):
            return NotImplemented
        return self.fingerprint == other.fingerprint

    def __hash__(self):
        return hash(self.fingerprint)

    def __repr__(self):
        return (
            f"Environment(base={self.base!r}, depth={self.depth}, "
            f"fingerprint={self.fingerprint[:12]})"
        )
