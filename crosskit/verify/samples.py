"""
Sample programs compiled during verification.

The source tree's ``samples/`` directory is used when it exists; otherwise
the built-in hello-world programs below are written to a host directory.
"""

import logging
from pathlib import Path
from typing import Dict, Optional

from crosskit.core.filesystem import atomic_write, ensure_directory
from crosskit.env import Artifact, host_artifact

logger = logging.getLogger(__name__)

SAMPLE_FILES: Dict[str, str] = {
    "hello.c": """#include <stdio.h>

int main(void) {
    printf("Hello, World!\\n");
    return 0;
}
""",
    "hello.cpp": """#include <iostream>

int main() {
    std::cout << "Hello, World!" << std::endl;
    return 0;
}
""",
    "hello.f90": """program hello
    print *, "Hello, World!"
end program hello
""",
    "rust/Cargo.toml": """[package]
name = "hello"
version = "0.1.0"
edition = "2021"

[dependencies]
""",
    "rust/src/main.rs": """fn main() {
    println!("Hello, World!");
}
""",
}


def write_samples(destination: Path) -> Path:
    """Write the built-in samples into ``destination``."""
    destination = ensure_directory(destination)
    for relative, content in SAMPLE_FILES.items():
        path = destination / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(path, content)
    return destination


def load_samples(source_tree: Optional[Path], scratch: Path) -> Artifact:
    """
    Get the samples directory as a host artifact.

    Args:
        source_tree: Project tree that may contain ``samples/``
        scratch: Where to write the built-in samples if it does not

    Returns:
        Host directory artifact
    """
    if source_tree is not None and (source_tree / "samples").is_dir():
        logger.debug(f"Using samples from {source_tree / 'samples'}")
        return host_artifact("samples", source_tree / "samples")

    return host_artifact("samples", write_samples(scratch))


__all__ = ["SAMPLE_FILES", "write_samples", "load_samples"]
