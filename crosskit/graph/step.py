"""
Build steps and recipe operations.

A BuildStep declares everything it depends on up front: the environment it
starts from (``base``), the artifacts it consumes (``inputs``, addressed in
the recipe by a local alias), an ordered recipe of operations, and the
path of its output. Because nothing is discovered while executing, the
graph and the fingerprint of every step are known statically.
"""

import hashlib
import json
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple, Union

from crosskit.core.exceptions import BuildFailure
from crosskit.env import Artifact, Environment


@dataclass(frozen=True)
class StepKey:
    """
    Identity of a step in the graph.

    Architecture-specific steps carry their architecture; shared steps do
    not, which is what makes every matrix entry resolve to the same node.
    """

    name: str
    architecture: Optional[str] = None

    def __str__(self):
        if self.architecture:
            return f"{self.name}[{self.architecture}]"
        return self.name


# ============================================================================
# Recipe Operations
# ============================================================================


@dataclass(frozen=True)
class Exec:
    """Run a command (argv)."""

    args: Tuple[str, ...]

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))

    def apply(self, env: Environment, inputs: Mapping[str, Artifact]) -> Environment:
        return env.with_exec(self.args)


@dataclass(frozen=True)
class SetEnv:
    """Set an environment variable, optionally expanding ``$NAME`` references."""

    name: str
    value: str
    expand: bool = False

    def apply(self, env: Environment, inputs: Mapping[str, Artifact]) -> Environment:
        return env.with_env_variable(self.name, self.value, expand=self.expand)


@dataclass(frozen=True)
class Workdir:
    """Change the working directory."""

    path: str

    def apply(self, env: Environment, inputs: Mapping[str, Artifact]) -> Environment:
        return env.with_workdir(self.path)


@dataclass(frozen=True)
class CopyDirectory:
    """Overlay an input artifact (or a subdirectory of it) at ``destination``."""

    input: str
    destination: str
    subpath: str = ""

    def apply(self, env: Environment, inputs: Mapping[str, Artifact]) -> Environment:
        return env.with_directory(
            self.destination, _resolve(inputs, self.input, self.subpath)
        )


@dataclass(frozen=True)
class CopyFile:
    """Place an input artifact's file at ``destination``."""

    input: str
    destination: str
    subpath: str = ""

    def apply(self, env: Environment, inputs: Mapping[str, Artifact]) -> Environment:
        return env.with_file(
            self.destination, _resolve(inputs, self.input, self.subpath)
        )


Operation = Union[Exec, SetEnv, Workdir, CopyDirectory, CopyFile]


def _resolve(inputs: Mapping[str, Artifact], alias: str, subpath: str) -> Artifact:
    try:
        artifact = inputs[alias]
    except KeyError:
        raise KeyError(f"Recipe references undeclared input '{alias}'")
    return artifact.subpath(subpath) if subpath else artifact


def describe_operation(op: Operation) -> dict:
    """Canonical, JSON-serializable description of an operation."""
    data = asdict(op)
    data["op"] = type(op).__name__
    return data


def shell(script: str) -> Exec:
    """Run a script through bash (for pipes, globs and loops)."""
    return Exec(("bash", "-c", script))


# ============================================================================
# Build Step
# ============================================================================


@dataclass(frozen=True)
class BuildStep:
    """
    A named unit of work producing one artifact.

    Attributes:
        key: Step identity
        recipe: Ordered operations applied to the base environment
        output: Path of the produced artifact inside the resulting environment
            ('/' for steps whose product is the environment itself)
        base: Step whose output environment this step starts from
            (None: the graph root)
        inputs: Local alias → key of every consumed artifact
        description: Free text for logs and ``plan`` output
    """

    key: StepKey
    recipe: Tuple[Operation, ...]
    output: str = "/"
    base: Optional[StepKey] = None
    inputs: Dict[str, StepKey] = field(default_factory=dict)
    description: str = ""

    def __post_init__(self):
        object.__setattr__(self, "recipe", tuple(self.recipe))
        object.__setattr__(self, "inputs", dict(self.inputs))

    @property
    def architecture(self) -> Optional[str]:
        return self.key.architecture

    def dependencies(self) -> List[StepKey]:
        """Base and input keys, deduplicated, in declaration order."""
        keys: List[StepKey] = []
        for key in ([self.base] if self.base else []) + list(self.inputs.values()):
            if key not in keys:
                keys.append(key)
        return keys

    def recipe_digest(self) -> str:
        """Identity of the recipe itself (name, operations, output path)."""
        payload = {
            "step": str(self.key),
            "recipe": [describe_operation(op) for op in self.recipe],
            "output": self.output,
        }
        return hashlib.sha256(
            json.dumps(payload, sort_keys=True).encode("utf-8")
        ).hexdigest()

    def fingerprint(
        self, base_env: Environment, inputs: Mapping[str, Artifact]
    ) -> str:
        """
        Fingerprint of this step for the given resolved inputs.

        Equal recipes over equal inputs always give equal fingerprints, which
        is what the artifact cache is keyed by.
        """
        payload = {
            "recipe": self.recipe_digest(),
            "base": base_env.fingerprint,
            "inputs": {alias: inputs[alias].fingerprint for alias in sorted(inputs)},
        }
        return hashlib.sha256(
            json.dumps(payload, sort_keys=True).encode("utf-8")
        ).hexdigest()

    def build(
        self, base_env: Environment, inputs: Mapping[str, Artifact]
    ) -> Environment:
        """Apply the recipe to the base environment (no execution happens here)."""
        env = base_env
        for op in self.recipe:
            try:
                env = op.apply(env, inputs)
            except KeyError as e:
                raise BuildFailure(
                    str(self.key),
                    f"input cannot be resolved: {e}",
                    architecture=self.architecture,
                )
        return env


def resolve_inputs(
    step: BuildStep, artifacts: Mapping[StepKey, Artifact]
) -> Dict[str, Artifact]:
    """Map a step's input aliases to produced artifacts."""
    resolved = {}
    for alias, key in step.inputs.items():
        if key not in artifacts:
            raise BuildFailure(
                str(step.key),
                f"input cannot be resolved: {key}",
                architecture=step.architecture,
            )
        resolved[alias] = artifacts[key]
    return resolved


__all__ = [
    "StepKey",
    "Exec",
    "SetEnv",
    "Workdir",
    "CopyDirectory",
    "CopyFile",
    "Operation",
    "describe_operation",
    "shell",
    "BuildStep",
    "resolve_inputs",
]
