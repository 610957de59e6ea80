"""
Pinned upstream sources.

Every component built from source is cloned at a fixed ref so that a
recipe, and therefore its fingerprint, always describes the same code.
Branch names that move (``main``, ``master``, ``HEAD``...) are rejected.
"""

import re
from dataclasses import dataclass
from typing import Dict, Tuple

from crosskit.core.exceptions import ConfigurationError
from crosskit.graph.step import Exec

FLOATING_REFS = frozenset(
    {"main", "master", "head", "trunk", "develop", "development", "latest", "stable"}
)

_COMMIT_RE = re.compile(r"^[0-9a-f]{40}$")
_VERSIONED_RE = re.compile(r"\d+[.-]\d+")


def is_pinned_ref(ref: str) -> bool:
    """
    True for a full commit SHA or a ref carrying a version.

    Example:
        >>> is_pinned_ref("1300.6.5")
        True
        >>> is_pinned_ref("gcc-14-2-darwin")
        True
        >>> is_pinned_ref("master")
        False
    """
    if not ref or ref.strip().lower() in FLOATING_REFS:
        return False
    return bool(_COMMIT_RE.match(ref) or _VERSIONED_RE.search(ref))


@dataclass(frozen=True)
class SourcePin:
    """
    Git repository pinned at a ref.

    Attributes:
        name: Component name
        url: Clone URL
        ref: Commit SHA, tag or versioned branch

    Raises:
        ConfigurationError: If the ref is floating
    """

    name: str
    url: str
    ref: str

    def __post_init__(self):
        if not is_pinned_ref(self.ref):
            raise ConfigurationError(
                f"Source {self.name} must be pinned to a commit or versioned ref, "
                f"got {self.ref!r}"
            )

    def clone(self, destination: str) -> Tuple[Exec, Exec]:
        """Recipe operations that clone the repository and check out the ref."""
        return (
            Exec(("git", "clone", self.url, destination)),
            Exec(("git", "-C", destination, "checkout", self.ref)),
        )


CCTOOLS_VERSION = "1010.6"
LINKER_VERSION = "951.9"
OSXCROSS_WRAPPER_VERSION = "1.5"

PINNED_SOURCES: Dict[str, SourcePin] = {
    pin.name: pin
    for pin in (
        SourcePin(
            "xar",
            "https://github.com/tpoechtrager/xar",
            "5fa4675419cfec60ac19a9c7f7c2d0e7c831a497",
        ),
        SourcePin(
            "libdispatch",
            "https://github.com/tpoechtrager/apple-libdispatch",
            "fdf3fc85a9557635668c78801d79f10161d83f12",
        ),
        SourcePin(
            "libtapi",
            "https://github.com/tpoechtrager/apple-libtapi",
            "1300.6.5",
        ),
        SourcePin(
            "cctools",
            "https://github.com/tpoechtrager/cctools-port",
            f"{CCTOOLS_VERSION}-ld64-{LINKER_VERSION}",
        ),
        SourcePin(
            "osxcross",
            "https://github.com/tpoechtrager/osxcross",
            "29fe6dd35522073c9df5800f8cd1feb4b9a993a8",
        ),
        SourcePin(
            "gcc",
            "https://github.com/iains/gcc-14-branch",
            "gcc-14-2-darwin",
        ),
    )
}


__all__ = [
    "FLOATING_REFS",
    "is_pinned_ref",
    "SourcePin",
    "CCTOOLS_VERSION",
    "LINKER_VERSION",
    "OSXCROSS_WRAPPER_VERSION",
    "PINNED_SOURCES",
]
