"""
Image publishing.

Pushes the assembled environment to a registry under one or more tags.
Publishing reads build state but never changes it, so a failed push can
be retried on its own without rebuilding anything.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from crosskit.backends.base import ExecutionBackend
from crosskit.core.exceptions import CommandFailedError, ConfigurationError, PublishFailure
from crosskit.env import Environment

logger = logging.getLogger(__name__)

DEFAULT_REPOSITORY = "ghcr.io/shepherdjerred/macos-cross-compiler"
PASSWORD_VARIABLE = "CROSSKIT_REGISTRY_PASSWORD"

_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_REGISTRY_RE = re.compile(r"^[A-Za-z0-9.-]+(?::[0-9]+)?$")


@dataclass(frozen=True)
class RegistryCredentials:
    """
    Registry login.

    The password is excluded from ``repr`` so credentials never end up in
    logs or tracebacks.
    """

    username: str
    password: str = field(repr=False)
    registry: str = "ghcr.io"

    @classmethod
    def from_environment(
        cls,
        username: Optional[str],
        registry: str = "ghcr.io",
        environ: Optional[Mapping[str, str]] = None,
    ) -> Optional["RegistryCredentials"]:
        """
        Credentials from a username and ``CROSSKIT_REGISTRY_PASSWORD``.

        Returns:
            Credentials, or None if either part is missing
        """
        environ = os.environ if environ is None else environ
        password = environ.get(PASSWORD_VARIABLE)
        if not username or not password:
            return None
        return cls(username=username, password=password, registry=registry)


@dataclass
class PublishResult:
    """
    Outcome of a publish.

    Attributes:
        references: Pushed references (repository:tag)
        digests: Reference → content digest
        skipped: True when nothing was pushed (no credentials)
        reason: Why the publish was skipped
    """

    references: List[str] = field(default_factory=list)
    digests: Dict[str, str] = field(default_factory=dict)
    skipped: bool = False
    reason: str = ""

    @property
    def digest(self) -> Optional[str]:
        values = set(self.digests.values())
        return values.pop() if len(values) == 1 else None


def is_valid_tag(tag: str) -> bool:
    """
    Check a tag against the Docker tag grammar.

    Example:
        >>> is_valid_tag("15.0")
        True
        >>> is_valid_tag("-latest")
        False
    """
    return bool(_TAG_RE.match(tag))


def validate_repository(repository: str):
    """
    Check a repository reference (``[registry/]path``).

    Raises:
        ConfigurationError: If the reference is malformed
    """
    parts = repository.split("/")
    if len(parts) > 1 and ("." in parts[0] or ":" in parts[0] or parts[0] == "localhost"):
        registry, parts = parts[0], parts[1:]
        if not _REGISTRY_RE.match(registry):
            raise ConfigurationError(f"Invalid registry in {repository!r}")

    if not parts or not all(_COMPONENT_RE.match(p) for p in parts):
        raise ConfigurationError(f"Invalid repository name: {repository!r}")


def default_tags(sdk_version: str) -> List[str]:
    """Tags every release is published under: latest and the SDK version."""
    return ["latest", sdk_version]


class Publisher:
    """
    Tags and pushes an environment.

    Example:
        >>> publisher = Publisher(backend)
        >>> result = publisher.publish(image, default_tags("15.0"), credentials)
        >>> result.digest
        'sha256:...'
    """

    def __init__(self, backend: ExecutionBackend, repository: str = DEFAULT_REPOSITORY):
        validate_repository(repository)
        self.backend = backend
        self.repository = repository

    def reference(self, tag: str) -> str:
        return f"{self.repository}:{tag}"

    def publish(
        self,
        environment: Environment,
        tags: Sequence[str],
        credentials: Optional[RegistryCredentials],
    ) -> PublishResult:
        """
        Push ``environment`` under every tag.

        Args:
            environment: Assembled image
            tags: Tags to push
            credentials: Registry login (None: skip publishing)

        Returns:
            PublishResult (``skipped`` when no credentials are given)

        Raises:
            ConfigurationError: If a tag is invalid or no tags are given
            PublishFailure: On transport or authentication errors, or if
                the tags end up pointing at different digests
        """
        if credentials is None:
            logger.info("No registry credentials provided, skipping publish")
            return PublishResult(skipped=True, reason="no credentials")

        tags = list(dict.fromkeys(tags))
        if not tags:
            raise ConfigurationError("At least one tag is required to publish")
        invalid = [t for t in tags if not is_valid_tag(t)]
        if invalid:
            raise ConfigurationError(f"Invalid image tags: {', '.join(invalid)}")

        result = PublishResult()
        for tag in tags:
            reference = self.reference(tag)
            logger.info(f"Pushing {reference}")
            try:
                digest = self.backend.publish(environment, reference, credentials)
            except CommandFailedError as e:
                raise PublishFailure(reference, e.output.strip() or str(e)) from e
            except OSError as e:
                raise PublishFailure(reference, str(e)) from e

            result.references.append(reference)
            result.digests[reference] = digest
            logger.info(f"✓ Pushed {reference} ({digest})")

        if len(set(result.digests.values())) > 1:
            raise PublishFailure(
                ", ".join(result.references),
                f"tags resolved to different digests: {result.digests}",
            )
        return result


__all__ = [
    "DEFAULT_REPOSITORY",
    "PASSWORD_VARIABLE",
    "RegistryCredentials",
    "PublishResult",
    "is_valid_tag",
    "validate_repository",
    "default_tags",
    "Publisher",
]
