"""
Run exported binaries on a macOS host.

The verifier only checks binary formats. On a Mac the exported programs
can also be executed, which is what ``crosskit validate`` does.
"""

import logging
import platform
import subprocess
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

from crosskit.core.exceptions import ConfigurationError, VerificationFailure
from crosskit.matrix.targets import normalize_architecture
from crosskit.verify.frontends import FRONTEND_NAMES

logger = logging.getLogger(__name__)


def host_architecture() -> str:
    """Architecture of the running machine, in matrix naming."""
    return normalize_architecture(platform.machine())


def validate_exports(
    export_dir: Path,
    architecture: Optional[str] = None,
    frontends: Sequence[str] = FRONTEND_NAMES,
    system: Optional[str] = None,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> Dict[str, str]:
    """
    Execute every exported sample binary for one architecture.

    Args:
        export_dir: Export root (binaries under ``<export_dir>/<arch>/``)
        architecture: Architecture to run ('arm64' is accepted for 'aarch64');
            default: the host's
        frontends: Frontends whose binaries are run
        system: Override for ``platform.system()``
        runner: subprocess.run compatible callable

    Returns:
        Frontend → program output

    Raises:
        ConfigurationError: If not running on macOS or binaries are missing
        VerificationFailure: If a binary exits non-zero
    """
    system = system or platform.system()
    if system != "Darwin":
        raise ConfigurationError(
            f"Validation runs the cross-compiled binaries and requires macOS "
            f"(this host is {system})"
        )

    arch = normalize_architecture(architecture) if architecture else host_architecture()
    directory = Path(export_dir) / arch
    if not directory.is_dir():
        raise ConfigurationError(
            f"No exported binaries in {directory}; run 'crosskit test' first"
        )

    outputs: Dict[str, str] = {}
    for frontend in frontends:
        binary = directory / f"hello-{frontend}"
        if not binary.is_file():
            raise ConfigurationError(f"Missing exported binary: {binary}")

        result = runner([str(binary)], capture_output=True, text=True)
        if result.returncode != 0:
            raise VerificationFailure(
                arch,
                frontend,
                f"{binary.name} exited with code {result.returncode}: "
                f"{result.stderr.strip()}",
            )
        outputs[frontend] = result.stdout
        logger.info(f"✓ {binary.name}: {result.stdout.strip()}")

    return outputs


__all__ = ["host_architecture", "validate_exports"]
