"""
Build command implementation.

Builds the cross-compiler image without testing or publishing it.
"""

import logging

from crosskit.cli.utils import (
    create_cache,
    format_success_message,
    load_pipeline_config,
    print_error,
    resolve_source_tree,
)
from crosskit.pipeline import build_only, create_backend

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the build command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    config = load_pipeline_config(args)
    result = build_only(
        resolve_source_tree(args.source),
        config,
        create_backend(config),
        cache=create_cache(args),
    )

    error = result.error()
    if error is not None:
        output = getattr(error.cause, "output", "")
        print_error(str(error), output[-2000:] or None)
        if result.image is not None:
            logger.warning(
                f"A partial image was assembled for {', '.join(result.architectures)}"
            )
        return 1

    report = result.report
    print(
        format_success_message(
            "✓ Cross-compiler image built",
            {
                "Architectures": ", ".join(result.architectures),
                "Steps executed": len(report.executed),
                "Steps cached": len(report.cached),
                "Duration": f"{report.duration:.1f}s",
            },
            next_steps=["crosskit test", "crosskit publish --registry-username NAME"],
        )
    )
    return 0
