"""
zig cc wrapper scripts.

Cargo (and other build systems) want a single executable as the C
compiler, so each target architecture gets a ``zig-cc-<arch>-macos``
script that runs ``zig cc`` against the SDK sysroot. Scripts shipped in the
source tree's ``zig/`` directory are used as-is; missing ones are
generated.
"""

import logging
import shutil
from pathlib import Path
from typing import Iterable, Optional

from crosskit.core.filesystem import atomic_write, ensure_directory
from crosskit.env import Artifact, host_artifact
from crosskit.matrix.targets import TargetMatrixEntry

logger = logging.getLogger(__name__)

ZIG_CC_TEMPLATE = """#!/bin/sh
exec zig cc -target {target} \\
    --sysroot=/sdk \\
    -I/sdk/usr/include \\
    -L/sdk/usr/lib \\
    -F/sdk/System/Library/Frameworks \\
    "$@"
"""


def render_zig_cc(entry: TargetMatrixEntry) -> str:
    """Script body for one architecture."""
    return ZIG_CC_TEMPLATE.format(target=entry.zig_target)


def prepare_zig_scripts(
    entries: Iterable[TargetMatrixEntry],
    destination: Path,
    source_tree: Optional[Path] = None,
) -> Artifact:
    """
    Collect the wrapper scripts for every entry into ``destination``.

    Args:
        entries: Matrix entries needing a wrapper
        destination: Host directory to write the scripts to
        source_tree: Project tree whose ``zig/`` directory may provide scripts

    Returns:
        Host directory artifact holding one script per architecture
    """
    destination = ensure_directory(destination)

    for entry in entries:
        target = destination / entry.zig_cc
        shipped = source_tree / "zig" / entry.zig_cc if source_tree else None

        if shipped is not None and shipped.is_file():
            shutil.copyfile(shipped, target)
            logger.debug(f"Using {shipped}")
        else:
            atomic_write(target, render_zig_cc(entry))
            logger.debug(f"Generated {target}")
        target.chmod(0o755)

    return host_artifact("zig-scripts", destination)


__all__ = ["ZIG_CC_TEMPLATE", "render_zig_cc", "prepare_zig_scripts"]
