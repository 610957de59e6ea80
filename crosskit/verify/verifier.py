"""
Toolchain verification.

For every (architecture, frontend) pair the verifier compiles a fixed
sample inside the assembled image, runs ``file`` on the result and checks
that the binary is a Mach-O executable for that architecture. Pairs run
concurrently and fail individually. When every pair of an architecture
passes, its binaries are exported to ``<export_dir>/<arch>/``.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from crosskit.backends.base import ExecutionBackend
from crosskit.core.exceptions import CommandFailedError, CrossKitError, VerificationFailure
from crosskit.env import Artifact, Environment
from crosskit.matrix.targets import TargetMatrixEntry
from crosskit.verify.frontends import FRONTENDS, OUTPUT_DIR, SAMPLES_DIR, Frontend

logger = logging.getLogger(__name__)


@dataclass
class PairResult:
    """Outcome of one (architecture, frontend) check."""

    architecture: str
    frontend: str
    passed: bool
    descriptor: str = ""
    reason: str = ""
    skipped: bool = False
    output: str = ""
    environment: Optional[Environment] = field(default=None, repr=False)
    binary: Optional[str] = None
    exported: Optional[Path] = None


@dataclass
class VerificationReport:
    """Results of verifying every requested pair."""

    results: List[PairResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.passed for r in self.results)

    @property
    def failures(self) -> List[PairResult]:
        return [r for r in self.results if not r.passed]

    def for_architecture(self, architecture: str) -> List[PairResult]:
        return [r for r in self.results if r.architecture == architecture]

    def failed_architectures(self) -> List[str]:
        return sorted({r.architecture for r in self.failures})

    def passed_architectures(self) -> List[str]:
        archs = {r.architecture for r in self.results}
        return sorted(archs - set(self.failed_architectures()))

    def raise_for_status(self):
        """
        Raise for the first failed pair (skipped pairs count as failed).

        Raises:
            VerificationFailure
        """
        for result in self.results:
            if not result.passed:
                raise VerificationFailure(
                    result.architecture, result.frontend, result.reason
                )


class Verifier:
    """
    Compiles the samples with every frontend for each architecture.

    Example:
        >>> verifier = Verifier(backend, samples, export_dir=Path("out"))
        >>> report = verifier.verify(image, plan.entries)
        >>> report.raise_for_status()
    """

    def __init__(
        self,
        backend: ExecutionBackend,
        samples: Artifact,
        parallelism: int = 16,
        fail_fast: bool = False,
        export_dir: Optional[Path] = None,
        frontends: Sequence[Frontend] = FRONTENDS,
    ):
        """
        Initialize verifier.

        Args:
            backend: Execution backend holding the image
            samples: Directory artifact with hello.c, hello.cpp, hello.f90 and rust/
            parallelism: Maximum pairs checked at once
            fail_fast: Do not start further pairs after the first failure
            export_dir: Where passing binaries are exported (None: no export)
            frontends: Frontends to check
        """
        if parallelism < 1:
            raise ValueError(f"parallelism must be at least 1, got {parallelism}")

        self.backend = backend
        self.samples = samples
        self.parallelism = parallelism
        self.fail_fast = fail_fast
        self.export_dir = Path(export_dir) if export_dir else None
        self.frontends = tuple(frontends)

    def prepare(self, environment: Environment) -> Environment:
        """Image plus samples and an empty output directory."""
        return environment.with_directory(SAMPLES_DIR, self.samples).with_exec(
            ["mkdir", "-p", OUTPUT_DIR]
        )

    def verify(
        self, environment: Environment, entries: Sequence[TargetMatrixEntry]
    ) -> VerificationReport:
        """
        Verify every (architecture, frontend) pair.

        Args:
            environment: Assembled toolchain image
            entries: Matrix entries to verify

        Returns:
            VerificationReport, in entry then frontend order
        """
        prepared = self.prepare(environment)
        pairs = [(entry, frontend) for entry in entries for frontend in self.frontends]
        halted = threading.Event()

        logger.info(
            f"Verifying {len(pairs)} (architecture, frontend) pairs "
            f"for {', '.join(e.architecture for e in entries)}"
        )

        def check(entry: TargetMatrixEntry, frontend: Frontend) -> PairResult:
            if halted.is_set():
                return PairResult(
                    entry.architecture,
                    frontend.name,
                    passed=False,
                    skipped=True,
                    reason="skipped after an earlier failure",
                )
            result = self._check(prepared, entry, frontend)
            if not result.passed and self.fail_fast:
                halted.set()
            return result

        with ThreadPoolExecutor(max_workers=self.parallelism) as pool:
            futures = [pool.submit(check, entry, frontend) for entry, frontend in pairs]
            report = VerificationReport([f.result() for f in futures])

        for entry in entries:
            results = report.for_architecture(entry.architecture)
            if all(r.passed for r in results):
                logger.info(f"✓ {entry.architecture}: all {len(results)} frontends passed")
                if self.export_dir is not None:
                    self._export(entry, results)
            else:
                failed = [r.frontend for r in results if not r.passed]
                logger.error(f"✗ {entry.architecture}: failed {', '.join(failed)}")

        return report

    def _check(
        self, prepared: Environment, entry: TargetMatrixEntry, frontend: Frontend
    ) -> PairResult:
        arch = entry.architecture
        built = frontend.compile(prepared, entry)
        described = built.with_exec(["file", frontend.output])

        try:
            descriptor = self.backend.stdout(described).strip()
        except CommandFailedError as e:
            logger.error(f"✗ [{arch}] {frontend.name}: {e}")
            return PairResult(
                arch, frontend.name, passed=False, reason=str(e), output=e.output
            )
        except (CrossKitError, OSError) as e:
            logger.error(f"✗ [{arch}] {frontend.name}: {e}")
            return PairResult(
                arch, frontend.name, passed=False, reason=f"{type(e).__name__}: {e}"
            )

        expected = entry.expected_descriptor
        if expected not in descriptor:
            logger.error(f"✗ [{arch}] {frontend.name}: {descriptor}")
            return PairResult(
                arch,
                frontend.name,
                passed=False,
                descriptor=descriptor,
                reason=f"expected '{expected}', got '{descriptor}'",
            )

        logger.debug(f"✓ [{arch}] {frontend.name}: {descriptor}")
        return PairResult(
            arch,
            frontend.name,
            passed=True,
            descriptor=descriptor,
            environment=built,
            binary=frontend.output,
        )

    def _export(self, entry: TargetMatrixEntry, results: List[PairResult]):
        """Export every binary; a pair whose export fails is marked failed."""
        destination = self.export_dir / entry.architecture
        exported = 0
        for result in results:
            target = destination / Path(result.binary).name
            try:
                result.exported = self.backend.export(
                    result.environment, result.binary, target
                )
            except (CrossKitError, OSError) as e:
                logger.error(
                    f"✗ [{entry.architecture}] export of {result.binary} failed: {e}"
                )
                result.passed = False
                result.reason = f"export to {target} failed: {e}"
                if isinstance(e, CommandFailedError):
                    result.output = e.output
                continue
            exported += 1
        logger.info(f"Exported {exported} binaries to {destination}")


__all__ = ["PairResult", "VerificationReport", "Verifier"]
