"""Build options shared by every recipe."""

from dataclasses import dataclass
from typing import Dict, Optional

from crosskit.core.exceptions import ConfigurationError
from crosskit.env import Artifact

ZIG_VERSION = "0.13.0"

# Host architecture names accepted for the zig download, mapped to the
# name used in zig's release archives.
ZIG_HOST_ARCHITECTURES = {
    "aarch64": "aarch64",
    "arm64": "aarch64",
    "x86_64": "x86_64",
    "amd64": "x86_64",
}


def zig_archive_name(host_architecture: str, version: str = ZIG_VERSION) -> str:
    """
    Name of the zig release archive for the build host.

    Raises:
        ConfigurationError: If the host architecture has no zig release
    """
    try:
        arch = ZIG_HOST_ARCHITECTURES[host_architecture.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported host architecture for zig: {host_architecture}. "
            f"Supported: {', '.join(sorted(ZIG_HOST_ARCHITECTURES))}"
        )
    return f"zig-linux-{arch}-{version}.tar.xz"


def zig_archive_url(host_architecture: str, version: str = ZIG_VERSION) -> str:
    name = zig_archive_name(host_architecture, version)
    return f"https://ziglang.org/download/{version}/{name}"


@dataclass(frozen=True)
class BuildOptions:
    """
    Settings every recipe is parameterized by.

    Attributes:
        sdk_version: macOS SDK version (e.g., '15.0')
        kernel_version: Darwin kernel version (e.g., '24')
        deployment_target: MACOSX_DEPLOYMENT_TARGET value
        base_image: Image every environment starts from
        host_architecture: Architecture of the build host (selects the zig download)
        sdk_archive: Host artifact holding MacOSX<version>.sdk.tar.xz
        zig_scripts: Host directory artifact with the zig-cc-<arch>-macos scripts
    """

    sdk_version: str = "15.0"
    kernel_version: str = "24"
    deployment_target: str = "11.0.0"
    base_image: str = "ubuntu:noble"
    host_architecture: str = "x86_64"
    sdk_archive: Optional[Artifact] = None
    zig_scripts: Optional[Artifact] = None

    @property
    def sdk_name(self) -> str:
        return f"MacOSX{self.sdk_version}.sdk"

    @property
    def sdk_archive_name(self) -> str:
        return f"{self.sdk_name}.tar.xz"


def job_variables(parallelism: int) -> Dict[str, str]:
    """
    Per-command job-count variables (``make`` and libtapi's build.sh).

    Backends pass these to every command without recording them in
    snapshots, so changing the job count keeps every cached step valid.
    """
    return {"MAKEFLAGS": f"-j{parallelism}", "JOBS": str(parallelism)}


__all__ = [
    "ZIG_VERSION",
    "ZIG_HOST_ARCHITECTURES",
    "zig_archive_name",
    "zig_archive_url",
    "BuildOptions",
    "job_variables",
]
