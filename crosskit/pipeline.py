"""
Pipeline driver.

Wires configuration, host-side sources, matrix expansion, execution,
verification and publishing together. Each entry point corresponds to a
CLI command:

    run_pipeline  build → verify → publish (``crosskit ci``)
    build_only    build the image (``crosskit build``)
    verify_only   verify an already built image (``crosskit test``)
    publish       push an already built image (``crosskit publish``)

Stages are wrapped in ``timed_stage`` and failures are reported as
``PipelineError`` naming the stage and, where there is one, the
architecture.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from crosskit.backends.base import ExecutionBackend
from crosskit.backends.docker import DockerBackend
from crosskit.backends.snapshots import SnapshotStore
from crosskit.config.parser import PipelineConfig
from crosskit.core.exceptions import (
    BuildFailure,
    CrossKitError,
    PipelineError,
    PublishFailure,
    VerificationFailure,
)
from crosskit.core.timing import timed_stage
from crosskit.env import Artifact, Environment
from crosskit.graph.cache import ArtifactCache
from crosskit.graph.executor import ExecutionReport, Executor
from crosskit.matrix.expander import MatrixExpander, MatrixPlan
from crosskit.matrix.targets import TargetMatrixEntry, matrix_entries
from crosskit.publish.publisher import (
    Publisher,
    PublishResult,
    RegistryCredentials,
    default_tags,
)
from crosskit.recipes.options import BuildOptions, job_variables
from crosskit.sources.sdk import SdkFetcher
from crosskit.sources.zig import prepare_zig_scripts
from crosskit.verify.samples import load_samples
from crosskit.verify.verifier import VerificationReport, Verifier

logger = logging.getLogger(__name__)


# ============================================================================
# Results
# ============================================================================


@dataclass
class BuildResult:
    """
    Outcome of the build stage.

    Attributes:
        plan: Expanded matrix
        report: Execution report of the full matrix
        image: Assembled image (None if nothing could be assembled)
        architectures: Architectures contained in ``image``
        failed_architectures: Requested architectures that did not build
    """

    plan: MatrixPlan
    report: ExecutionReport
    image: Optional[Environment] = None
    architectures: List[str] = field(default_factory=list)
    failed_architectures: List[str] = field(default_factory=list)
    partial_report: Optional[ExecutionReport] = None

    @property
    def complete(self) -> bool:
        return self.image is not None and not self.failed_architectures

    @property
    def entries(self) -> List[TargetMatrixEntry]:
        """Matrix entries of the architectures in the image."""
        return [e for e in self.plan.entries if e.architecture in self.architectures]

    def failed_steps(self) -> List[str]:
        """Every failed step of the full and partial builds, in name order."""
        keys = set()
        for report in (self.report, self.partial_report):
            if report is not None:
                keys.update(str(key) for key in report.failures)
        return sorted(keys)

    def error(self) -> Optional[PipelineError]:
        """
        PipelineError caused by the first failed step, if any.

        Its message also names every other failed step, so a run where
        several architectures break reports all of them.
        """
        for report in (self.report, self.partial_report):
            if report is None or report.ok:
                continue
            try:
                report.raise_for_status()
            except BuildFailure as e:
                return PipelineError(
                    "build", e, e.architecture, failed_steps=self.failed_steps()
                )
        return None

    def raise_for_status(self):
        error = self.error()
        if error is not None:
            raise error


@dataclass
class PipelineResult:
    """Outcome of a full run; ``ok`` only if every stage succeeded."""

    build: Optional[BuildResult] = None
    verification: Optional[VerificationReport] = None
    publish: Optional[PublishResult] = None
    errors: List[PipelineError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_status(self):
        if self.errors:
            raise self.errors[0]


# ============================================================================
# Setup
# ============================================================================


def create_backend(config: PipelineConfig) -> ExecutionBackend:
    """Docker backend with a persistent snapshot index under the cache dir."""
    store = SnapshotStore(Path(config.cache_dir) / "snapshots.json")
    return DockerBackend(store=store, build_variables=job_variables(config.parallelism))


def prepare_options(
    source_tree: Optional[Path],
    config: PipelineConfig,
    fetcher: Optional[SdkFetcher] = None,
) -> BuildOptions:
    """
    Gather host-side inputs (SDK archive, zig wrapper scripts).

    Raises:
        PipelineError: If the SDK archive cannot be obtained
    """
    cache_dir = Path(config.cache_dir)
    sdk_dir = config.sdk_dir
    if source_tree is not None and not Path(sdk_dir).is_absolute():
        sdk_dir = Path(source_tree) / sdk_dir

    fetcher = fetcher or SdkFetcher(cache_dir=cache_dir, sdk_dir=sdk_dir)
    try:
        with timed_stage(f"SDK {config.sdk_version} retrieval"):
            sdk_archive = fetcher.fetch(config.sdk_version, download=config.download_sdk)
    except CrossKitError as e:
        raise PipelineError("sdk", e) from e

    entries = matrix_entries(
        config.architectures, config.kernel_version, config.deployment_target
    )
    scripts_dir = cache_dir / "zig-scripts" / "-".join(
        sorted(e.architecture for e in entries)
    )
    zig_scripts = prepare_zig_scripts(entries, scripts_dir, source_tree)

    return config.build_options(sdk_archive=sdk_archive, zig_scripts=zig_scripts)


# ============================================================================
# Stages
# ============================================================================


def build_only(
    source_tree: Optional[Path],
    config: PipelineConfig,
    backend: ExecutionBackend,
    cache: Optional[ArtifactCache] = None,
    options: Optional[BuildOptions] = None,
    fetcher: Optional[SdkFetcher] = None,
) -> BuildResult:
    """
    Build the cross-compiler image.

    When some architectures fail and ``fail_fast`` is off, an image holding
    only the surviving architectures is assembled from the cached steps.

    Args:
        source_tree: Project tree (zig/ scripts, sdks/)
        config: Pipeline configuration
        backend: Execution backend
        cache: Artifact cache shared across schedules (default: new)
        options: Prepared build options (default: prepared here)
        fetcher: SDK fetcher override

    Returns:
        BuildResult; check ``complete`` or call ``raise_for_status()``
    """
    options = options or prepare_options(source_tree, config, fetcher)
    cache = cache if cache is not None else ArtifactCache()
    expander = MatrixExpander()
    executor = Executor(
        backend, cache, parallelism=config.parallelism, fail_fast=config.fail_fast
    )

    with timed_stage("cross-compiler image build"):
        plan = expander.expand(config.architectures, options)
        report = executor.schedule(plan.graph)

    result = BuildResult(plan=plan, report=report)
    if report.ok:
        result.image = report.artifact(plan.image_key).environment
        result.architectures = plan.architectures
        return result

    failed = report.failed_architectures()
    result.failed_architectures = [a for a in plan.architectures if a in failed]
    survivors = [a for a in plan.architectures if a not in failed]

    for arch in result.failed_architectures:
        logger.error(f"✗ Toolchain for {arch} failed to build")

    if config.fail_fast or not failed or not survivors:
        return result

    with timed_stage(f"partial image assembly ({', '.join(survivors)})"):
        partial = expander.expand(
            config.architectures, options, image_architectures=survivors
        )
        partial_report = executor.schedule(partial.graph, targets=[partial.image_key])

    result.partial_report = partial_report
    if partial_report.ok:
        result.image = partial_report.artifact(partial.image_key).environment
        result.architectures = survivors
        logger.warning(f"Assembled partial image for {', '.join(survivors)}")
    return result


def verify_only(
    environment: Environment,
    config: PipelineConfig,
    backend: ExecutionBackend,
    samples: Artifact,
    entries: Optional[Sequence[TargetMatrixEntry]] = None,
) -> VerificationReport:
    """
    Verify an assembled image.

    Args:
        environment: Image to verify
        config: Pipeline configuration (export_dir, parallelism, fail_fast)
        backend: Execution backend holding the image
        samples: Sample programs directory artifact
        entries: Matrix entries to verify (default: the configured architectures)

    Returns:
        VerificationReport
    """
    if entries is None:
        entries = matrix_entries(
            config.architectures, config.kernel_version, config.deployment_target
        )

    verifier = Verifier(
        backend,
        samples,
        parallelism=config.parallelism,
        fail_fast=config.fail_fast,
        export_dir=config.export_dir,
    )
    with timed_stage("tests"):
        return verifier.verify(environment, entries)


def publish(
    environment: Environment,
    sdk_version: str,
    credentials: Optional[RegistryCredentials],
    backend: ExecutionBackend,
    repository: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
) -> PublishResult:
    """
    Push an image under ``latest`` and the SDK version.

    Returns:
        PublishResult (skipped when no credentials are given)

    Raises:
        PipelineError: If the push fails
    """
    publisher = Publisher(backend, repository) if repository else Publisher(backend)
    tags = list(tags) if tags else default_tags(sdk_version)

    if credentials is None:
        return publisher.publish(environment, tags, None)

    try:
        with timed_stage("image push"):
            return publisher.publish(environment, tags, credentials)
    except PublishFailure as e:
        raise PipelineError("publish", e) from e


def run_pipeline(
    source_tree: Optional[Path],
    config: PipelineConfig,
    credentials: Optional[RegistryCredentials],
    backend: ExecutionBackend,
    cache: Optional[ArtifactCache] = None,
    fetcher: Optional[SdkFetcher] = None,
) -> PipelineResult:
    """
    Build, verify and (with credentials) publish.

    A partial image is still verified, but the run reports failure and
    nothing is published.

    Returns:
        PipelineResult; ``ok`` only if every stage succeeded
    """
    logger.info("Starting macOS cross-compiler CI pipeline")
    result = PipelineResult()

    with timed_stage("pipeline"):
        build = build_only(source_tree, config, backend, cache=cache, fetcher=fetcher)
        result.build = build
        error = build.error()
        if error is not None:
            result.errors.append(error)
        if build.image is None:
            return result

        samples = load_samples(source_tree, Path(config.cache_dir) / "samples")
        verification = verify_only(
            build.image, config, backend, samples, entries=build.entries
        )
        result.verification = verification
        try:
            verification.raise_for_status()
        except VerificationFailure as e:
            result.errors.append(PipelineError("verification", e, e.architecture))

        if not result.ok:
            logger.error("✗ Not publishing: the build or verification failed")
            return result

        try:
            result.publish = publish(
                build.image,
                config.sdk_version,
                credentials,
                backend,
                repository=config.repository,
            )
        except PipelineError as e:
            result.errors.append(e)

    if result.ok:
        logger.info("✓ macOS cross-compiler CI pipeline completed successfully")
    return result


__all__ = [
    "BuildResult",
    "PipelineResult",
    "create_backend",
    "prepare_options",
    "build_only",
    "verify_only",
    "publish",
    "run_pipeline",
]
