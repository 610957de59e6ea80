"""
Target architecture matrix and its expansion into a build graph.
"""

from crosskit.matrix.expander import MatrixExpander, MatrixPlan
from crosskit.matrix.targets import (
    SUPPORTED_ARCHITECTURES,
    TargetMatrixEntry,
    matrix_entries,
    normalize_architecture,
    parse_architectures,
)

__all__ = [
    "MatrixExpander",
    "MatrixPlan",
    "SUPPORTED_ARCHITECTURES",
    "TargetMatrixEntry",
    "matrix_entries",
    "normalize_architecture",
    "parse_architectures",
]
