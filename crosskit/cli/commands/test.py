"""
Test command implementation.

Builds the image (reusing cached steps) and compiles the samples with every
frontend for each architecture.
"""

import logging
from pathlib import Path

from crosskit.cli.utils import (
    create_cache,
    load_pipeline_config,
    print_error,
    resolve_source_tree,
)
from crosskit.pipeline import build_only, create_backend, verify_only
from crosskit.verify.samples import load_samples

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the test command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    source_tree = resolve_source_tree(args.source)
    config = load_pipeline_config(args)
    backend = create_backend(config)

    build = build_only(source_tree, config, backend, cache=create_cache(args))
    error = build.error()
    if error is not None:
        print_error(str(error))
    if build.image is None:
        return 1

    samples = load_samples(source_tree, Path(config.cache_dir) / "samples")
    report = verify_only(build.image, config, backend, samples, entries=build.entries)

    print("")
    for result in report.results:
        mark = "✓" if result.passed else "✗"
        detail = result.descriptor if result.passed else result.reason
        print(f"  {mark} {result.architecture:<8} {result.frontend:<9} {detail}")
    print("")

    if not report.ok:
        for arch in report.failed_architectures():
            print_error(f"Verification failed for {arch}")
        return 1

    if error is not None:
        return 1

    print(f"✓ Cross-compiler tests passed for {', '.join(build.architectures)}")
    print(f"  Binaries exported to {config.export_dir}")
    return 0
