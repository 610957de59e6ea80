"""
Target matrix entries.

A matrix entry is one macOS target architecture together with the Darwin
kernel version and deployment target it is built for. Everything that
depends on the architecture name (target triples, the name the linker uses
internally, the name ``file`` prints for the binary format, Rust and Zig
target names) is derived here and nowhere else.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from crosskit.core.exceptions import ConfigurationError

SUPPORTED_ARCHITECTURES = ("aarch64", "x86_64")

ARCHITECTURE_ALIASES = {
    "arm64": "aarch64",
    "amd64": "x86_64",
}

# Name `file` prints in "Mach-O 64-bit <name> executable"
CANONICAL_NAMES = {
    "aarch64": "arm64",
    "x86_64": "x86_64",
}


@dataclass(frozen=True)
class TripleOverride:
    """
    Architecture whose triple is spelled differently while building cctools.

    autoconf does not recognize ``aarch64-apple-darwin``, so cctools is
    configured for ``<configure>-apple-darwin<k>``, the generated Makefiles
    are rewritten to ``<build>-apple-darwin<k>``, and the installed
    ``<build>`` binaries get ``<architecture>`` aliases afterwards.
    """

    configure: str
    build: str


TRIPLE_OVERRIDES: Dict[str, TripleOverride] = {
    "aarch64": TripleOverride(configure="arm", build="arm64"),
}


@dataclass(frozen=True)
class TargetMatrixEntry:
    """
    One target architecture of the build matrix.

    Attributes:
        architecture: Target architecture ('aarch64' or 'x86_64')
        kernel_version: Darwin kernel version (e.g., '24')
        deployment_target: Minimum macOS version (e.g., '11.0.0')

    Example:
        >>> entry = TargetMatrixEntry("aarch64", "24", "11.0.0")
        >>> entry.triple
        'aarch64-apple-darwin24'
        >>> entry.configure_triple
        'arm-apple-darwin24'
        >>> entry.expected_descriptor
        'Mach-O 64-bit arm64 executable'
    """

    architecture: str
    kernel_version: str
    deployment_target: str

    def __post_init__(self):
        if self.architecture not in SUPPORTED_ARCHITECTURES:
            raise ConfigurationError(
                f"Unsupported architecture: {self.architecture}. "
                f"Supported: {', '.join(SUPPORTED_ARCHITECTURES)}"
            )

    @property
    def override(self) -> Optional[TripleOverride]:
        return TRIPLE_OVERRIDES.get(self.architecture)

    def _triple_for(self, name: str) -> str:
        return f"{name}-apple-darwin{self.kernel_version}"

    @property
    def triple(self) -> str:
        """Public target triple, e.g. 'x86_64-apple-darwin24'."""
        return self._triple_for(self.architecture)

    @property
    def configure_triple(self) -> str:
        """Triple passed to cctools' configure script."""
        if self.override:
            return self._triple_for(self.override.configure)
        return self.triple

    @property
    def build_triple(self) -> str:
        """Triple the cctools binaries are installed under."""
        if self.override:
            return self._triple_for(self.override.build)
        return self.triple

    @property
    def needs_aliases(self) -> bool:
        """True if the installed binaries need public-triple aliases."""
        return self.build_triple != self.triple

    @property
    def canonical_name(self) -> str:
        return CANONICAL_NAMES[self.architecture]

    @property
    def expected_descriptor(self) -> str:
        """Substring `file` must report for a binary built for this entry."""
        return f"Mach-O 64-bit {self.canonical_name} executable"

    @property
    def rust_target(self) -> str:
        return f"{self.architecture}-apple-darwin"

    @property
    def zig_target(self) -> str:
        return f"{self.architecture}-macos"

    @property
    def zig_cc(self) -> str:
        """Name of the per-architecture zig cc wrapper script."""
        return f"zig-cc-{self.architecture}-macos"

    @property
    def cctools_prefix(self) -> str:
        return f"/cctools/{self.architecture}"

    @property
    def gcc_prefix(self) -> str:
        return f"/gcc/{self.architecture}"


def normalize_architecture(name: str) -> str:
    """
    Map an architecture name or alias to its canonical matrix name.

    Raises:
        ConfigurationError: If the architecture is not supported
    """
    arch = name.strip().lower()
    arch = ARCHITECTURE_ALIASES.get(arch, arch)
    if arch not in SUPPORTED_ARCHITECTURES:
        raise ConfigurationError(
            f"Unsupported architecture: {name!r}. "
            f"Supported: {', '.join(SUPPORTED_ARCHITECTURES)}"
        )
    return arch


def parse_architectures(value: Union[str, Iterable[str]]) -> List[str]:
    """
    Parse a comma-separated (or list) architecture selection.

    Aliases are normalized and duplicates dropped; order is preserved.

    Args:
        value: e.g. 'aarch64,x86_64' or ['arm64', 'x86_64']

    Returns:
        List of canonical architecture names

    Raises:
        ConfigurationError: If empty or an architecture is unsupported
    """
    if isinstance(value, str):
        names = [part for part in re.split(r"[,\s]+", value) if part]
    else:
        names = [str(part) for part in value]

    architectures: List[str] = []
    for name in names:
        arch = normalize_architecture(name)
        if arch not in architectures:
            architectures.append(arch)

    if not architectures:
        raise ConfigurationError("At least one target architecture is required")
    return architectures


def matrix_entries(
    architectures: Iterable[str], kernel_version: str, deployment_target: str
) -> List[TargetMatrixEntry]:
    """Build one matrix entry per architecture."""
    return [
        TargetMatrixEntry(arch, kernel_version, deployment_target)
        for arch in parse_architectures(list(architectures))
    ]


__all__ = [
    "SUPPORTED_ARCHITECTURES",
    "ARCHITECTURE_ALIASES",
    "CANONICAL_NAMES",
    "TripleOverride",
    "TRIPLE_OVERRIDES",
    "TargetMatrixEntry",
    "normalize_architecture",
    "parse_architectures",
    "matrix_entries",
]
