"""
Helpers the crosskit subcommands share.

Configuration loading with command-line overrides, registry credentials
and the summary and error output printed at the end of a command.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from crosskit.config.parser import PipelineConfig, load_config, validate_config
from crosskit.graph.cache import ArtifactCache
from crosskit.publish.publisher import RegistryCredentials

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================


def resolve_source_tree(path: Optional[Path] = None) -> Path:
    """Resolve the project source tree (default: current directory)."""
    return Path(path).resolve() if path else Path.cwd()


def load_pipeline_config(args) -> PipelineConfig:
    """
    Load crosskit.yaml and apply command-line overrides.

    Args:
        args: Parsed arguments (config, source and the build options)

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If the file or any override is invalid
    """
    source_tree = resolve_source_tree(getattr(args, "source", None))
    config_path = getattr(args, "config", None)
    if config_path is None and (source_tree / "crosskit.yaml").exists():
        config_path = source_tree / "crosskit.yaml"

    config = load_config(config_path) if config_path else PipelineConfig()

    config = config.replace(
        architectures=getattr(args, "architectures", None),
        sdk_version=getattr(args, "sdk_version", None),
        kernel_version=getattr(args, "kernel_version", None),
        deployment_target=getattr(args, "deployment_target", None),
        download_sdk=getattr(args, "download_sdk", None),
        parallelism=getattr(args, "parallelism", None),
        export_dir=getattr(args, "export_dir", None),
        fail_fast=True if getattr(args, "fail_fast", False) else None,
    )
    return validate_config(config)


def create_cache(args) -> ArtifactCache:
    """Artifact cache honoring ``--no-cache``."""
    return ArtifactCache(enabled=not getattr(args, "no_cache", False))


def registry_credentials(args, registry: str = "ghcr.io") -> Optional[RegistryCredentials]:
    """Credentials from ``--registry-username`` and CROSSKIT_REGISTRY_PASSWORD."""
    return RegistryCredentials.from_environment(
        getattr(args, "registry_username", None), registry=registry
    )


def registry_of(repository: str) -> str:
    """Registry host of a repository reference ('docker.io' if none)."""
    first = repository.split("/", 1)[0]
    if "/" in repository and ("." in first or ":" in first or first == "localhost"):
        return first
    return "docker.io"


# ============================================================================
# Output
# ============================================================================


def format_success_message(
    title: str,
    details: Dict[str, Any],
    next_steps: Optional[list] = None,
    width: int = 70,
) -> str:
    """
    Render the boxed summary printed when a command succeeds.

    Args:
        title: Heading line
        details: Rows printed as ``key: value``
        next_steps: Follow-up commands to suggest, if any
        width: Length of the ``=`` rules

    Returns:
        The message, newline-terminated
    """
    lines = []
    lines.append("=" * width)
    lines.append(title)
    lines.append("=" * width)
    lines.append("")

    for key, value in details.items():
        lines.append(f"{key}: {value}")

    if next_steps:
        lines.append("")
        lines.append("Next steps:")
        for step in next_steps:
            lines.append(f"  {step}")

    lines.append("")
    return "\n".join(lines)


def print_error(message: str, details: Optional[str] = None):
    """
    Write ``message`` to stderr, with an indented detail line.

    Args:
        message: Summary of the failure
        details: Stage, architecture or command output
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        print(f"  {details}", file=sys.stderr)

