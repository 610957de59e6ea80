"""
Publish command implementation.

Pushes the image to the registry. The image is rebuilt from cached steps,
so after a successful build this only performs the push.
"""

import logging

from crosskit.cli.utils import (
    create_cache,
    load_pipeline_config,
    print_error,
    registry_credentials,
    registry_of,
    resolve_source_tree,
)
from crosskit.pipeline import build_only, create_backend, publish
from crosskit.publish.publisher import PASSWORD_VARIABLE

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the publish command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    config = load_pipeline_config(args)
    credentials = registry_credentials(args, registry_of(config.repository))
    if credentials is None:
        print_error(
            "Registry credentials required",
            f"Pass --registry-username and set {PASSWORD_VARIABLE}",
        )
        return 1

    backend = create_backend(config)
    build = build_only(
        resolve_source_tree(args.source), config, backend, cache=create_cache(args)
    )
    if not build.complete:
        error = build.error()
        print_error(str(error) if error else "The image could not be built")
        return 1

    result = publish(
        build.image,
        config.sdk_version,
        credentials,
        backend,
        repository=config.repository,
        tags=args.tags,
    )
    for reference in result.references:
        print(f"✓ Pushed {reference}")
    print(f"  Digest: {result.digest}")
    return 0
