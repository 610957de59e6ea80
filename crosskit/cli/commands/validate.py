"""
Validate command implementation.

Runs the binaries exported by ``crosskit test`` on a macOS host.
"""

import logging
from pathlib import Path

from crosskit.cli.utils import load_pipeline_config, print_error
from crosskit.core.exceptions import VerificationFailure
from crosskit.verify.host import validate_exports

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the validate command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    config = load_pipeline_config(args)
    export_dir = Path(args.export_dir) if args.export_dir else config.export_dir

    try:
        outputs = validate_exports(export_dir, args.user_arch)
    except VerificationFailure as e:
        print_error(str(e))
        return 1

    print(f"✓ All {len(outputs)} cross-compiled executables validated successfully")
    return 0
