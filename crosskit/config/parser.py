"""YAML configuration parser for crosskit.

This module provides parsing and validation for crosskit.yaml configuration files.

Example crosskit.yaml:

    version: 1
    architectures: [aarch64, x86_64]
    sdk_version: "15.0"
    kernel_version: "24"
    deployment_target: "11.0.0"
    download_sdk: true
    parallelism: 16
"""

import dataclasses
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from crosskit.core.exceptions import ConfigurationError
from crosskit.core.locking import get_global_cache_dir
from crosskit.env import Artifact
from crosskit.matrix.targets import parse_architectures
from crosskit.publish.publisher import DEFAULT_REPOSITORY, validate_repository
from crosskit.recipes.options import BuildOptions, zig_archive_name

CONFIG_FILENAME = "crosskit.yaml"

_DOTTED_VERSION_RE = re.compile(r"^\d+(?:\.\d+){1,2}$")
_KERNEL_VERSION_RE = re.compile(r"^\d+$")


@dataclass
class PipelineConfig:
    """Complete pipeline configuration."""

    architectures: List[str] = field(default_factory=lambda: ["aarch64", "x86_64"])
    sdk_version: str = "15.0"
    kernel_version: str = "24"
    deployment_target: str = "11.0.0"
    download_sdk: bool = True
    parallelism: int = 16
    base_image: str = "ubuntu:noble"
    host_architecture: str = "x86_64"
    sdk_dir: Path = Path("sdks")
    export_dir: Path = Path("out")
    repository: str = DEFAULT_REPOSITORY
    fail_fast: bool = False
    cache_dir: Path = field(default_factory=get_global_cache_dir)

    def build_options(
        self,
        sdk_archive: Optional[Artifact] = None,
        zig_scripts: Optional[Artifact] = None,
    ) -> BuildOptions:
        """Recipe options for this configuration."""
        return BuildOptions(
            sdk_version=self.sdk_version,
            kernel_version=self.kernel_version,
            deployment_target=self.deployment_target,
            base_image=self.base_image,
            host_architecture=self.host_architecture,
            sdk_archive=sdk_archive,
            zig_scripts=zig_scripts,
        )

    def replace(self, **changes: Any) -> "PipelineConfig":
        """Copy with overrides; None values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **changes)


_FIELDS = {f.name for f in dataclasses.fields(PipelineConfig)}
_PATH_FIELDS = {"sdk_dir", "export_dir", "cache_dir"}
_STRING_FIELDS = {
    "sdk_version",
    "kernel_version",
    "deployment_target",
    "base_image",
    "host_architecture",
    "repository",
}
_BOOL_FIELDS = {"download_sdk", "fail_fast"}


def load_config(config_path: Optional[Path] = None) -> PipelineConfig:
    """
    Load configuration from crosskit.yaml.

    Args:
        config_path: Path to the file (default: ./crosskit.yaml if it exists)

    Returns:
        Validated configuration (defaults if no file is found)

    Raises:
        ConfigurationError: If the file is missing (when given explicitly),
            unreadable, or invalid
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME
        if not config_path.exists():
            return validate_config(PipelineConfig())

    config_path = Path(config_path)
    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML syntax: {e}")

    if data is None:
        data = {}

    return parse_config(data, base_dir=config_path.parent)


def parse_config(data: Dict[str, Any], base_dir: Optional[Path] = None) -> PipelineConfig:
    """
    Build a configuration from parsed YAML data.

    Args:
        data: Mapping of configuration keys
        base_dir: Directory relative paths are resolved against

    Raises:
        ConfigurationError: On unknown keys or invalid values
    """
    if not isinstance(data, dict):
        raise ConfigurationError("Configuration must be a mapping")

    data = dict(data)
    version = data.pop("version", 1)
    if version != 1:
        raise ConfigurationError(f"Unsupported version: {version} (expected 1)")

    unknown = sorted(set(data) - _FIELDS)
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

    values: Dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue
        if key in _PATH_FIELDS:
            path = Path(str(value)).expanduser()
            if base_dir is not None and not path.is_absolute():
                path = base_dir / path
            values[key] = path
        elif key in _STRING_FIELDS:
            # YAML reads 15.0 as a float and 24 as an int
            values[key] = str(value)
        elif key in _BOOL_FIELDS:
            if not isinstance(value, bool):
                raise ConfigurationError(f"{key} must be true or false, got {value!r}")
            values[key] = value
        elif key == "architectures":
            values[key] = parse_architectures(value)
        else:
            values[key] = value

    return validate_config(PipelineConfig(**values))


def validate_config(config: PipelineConfig) -> PipelineConfig:
    """
    Validate a configuration before anything runs.

    Returns:
        The configuration, with architectures normalized

    Raises:
        ConfigurationError: On the first invalid value
    """
    config.architectures = parse_architectures(config.architectures)

    if not _DOTTED_VERSION_RE.match(config.sdk_version):
        raise ConfigurationError(
            f"sdk_version must look like '15.0', got {config.sdk_version!r}"
        )
    if not _DOTTED_VERSION_RE.match(config.deployment_target):
        raise ConfigurationError(
            f"deployment_target must look like '11.0.0', got {config.deployment_target!r}"
        )
    if not _KERNEL_VERSION_RE.match(config.kernel_version):
        raise ConfigurationError(
            f"kernel_version must be numeric, got {config.kernel_version!r}"
        )

    if isinstance(config.parallelism, bool) or not isinstance(config.parallelism, int):
        raise ConfigurationError(
            f"parallelism must be an integer, got {config.parallelism!r}"
        )
    if config.parallelism < 1:
        raise ConfigurationError(
            f"parallelism must be at least 1, got {config.parallelism}"
        )

    if not config.base_image:
        raise ConfigurationError("base_image cannot be empty")

    zig_archive_name(config.host_architecture)
    validate_repository(config.repository)
    return config


__all__ = [
    "CONFIG_FILENAME",
    "PipelineConfig",
    "load_config",
    "parse_config",
    "validate_config",
]
