"""
CI command implementation.

Builds the image, verifies every architecture and publishes the image when
registry credentials are available.
"""

import logging

from crosskit.cli.utils import (
    create_cache,
    format_success_message,
    load_pipeline_config,
    print_error,
    registry_credentials,
    registry_of,
    resolve_source_tree,
)
from crosskit.pipeline import create_backend, run_pipeline

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the ci command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    source_tree = resolve_source_tree(args.source)
    config = load_pipeline_config(args)
    credentials = registry_credentials(args, registry_of(config.repository))
    if credentials is None:
        logger.info("No registry credentials, the image will not be pushed")

    result = run_pipeline(
        source_tree,
        config,
        credentials,
        create_backend(config),
        cache=create_cache(args),
    )

    if not result.ok:
        for error in result.errors:
            print_error(str(error))
        return 1

    details = {
        "Architectures": ", ".join(result.build.architectures),
        "Binaries": config.export_dir,
    }
    if result.publish is not None and not result.publish.skipped:
        details["Published"] = ", ".join(result.publish.references)
    print(format_success_message("✓ macOS cross-compiler CI pipeline completed", details))
    return 0
