"""
Verification of the assembled toolchain.
"""

from crosskit.verify.frontends import FRONTEND_NAMES, FRONTENDS, Frontend
from crosskit.verify.host import validate_exports
from crosskit.verify.samples import load_samples, write_samples
from crosskit.verify.verifier import PairResult, VerificationReport, Verifier

__all__ = [
    "FRONTEND_NAMES",
    "FRONTENDS",
    "Frontend",
    "validate_exports",
    "load_samples",
    "write_samples",
    "PairResult",
    "VerificationReport",
    "Verifier",
]
