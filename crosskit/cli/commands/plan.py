"""
Plan command implementation.

Prints the build steps in execution order without running anything.
"""

import logging

from crosskit.cli.utils import load_pipeline_config
from crosskit.matrix.expander import MatrixExpander
from crosskit.matrix.targets import normalize_architecture

logger = logging.getLogger(__name__)


def run(args) -> int:
    """
    Run the plan command.

    Args:
        args: Parsed command-line arguments

    Returns:
        Exit code (0 for success)
    """
    config = load_pipeline_config(args)
    plan = MatrixExpander().expand(config.architectures, config.build_options())

    graph = plan.graph
    if args.only:
        graph = plan.graph_for(normalize_architecture(args.only))

    print(f"Build plan for {', '.join(plan.architectures)} (SDK {config.sdk_version})")
    print("")
    for index, key in enumerate(graph.topological_order(), start=1):
        step = graph.step(key)
        needs = ", ".join(str(d) for d in step.dependencies()) or "-"
        print(f"{index:3}. {str(key):<26} {step.description}")
        print(f"     needs: {needs}")

    print("")
    print(f"{len(graph)} steps")
    return 0
