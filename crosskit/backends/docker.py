"""
Docker CLI execution backend.

Every EXEC mutation runs in a throwaway container created from the
previous snapshot image and is committed to a new image; that image ID is
the snapshot handle. Environment variables and the working directory are
passed per run and baked into a release image, committed once per
environment, when it is published.

Artifact copies stage the payload on the host (``docker cp`` out of the
producing snapshot, or straight from a host artifact) and merge it into
the target at the container root, so destination parents are created as
needed.
"""

import json
import logging
import shutil
import subprocess
import tempfile
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from crosskit.backends.base import ExecutionBackend
from crosskit.backends.snapshots import SnapshotStore
from crosskit.core.exceptions import CommandFailedError
from crosskit.env import Artifact, Environment, Mutation, MutationKind

logger = logging.getLogger(__name__)


class DockerBackend(ExecutionBackend):
    """
    Execution backend driving the ``docker`` command-line client.

    Example:
        >>> backend = DockerBackend(store=SnapshotStore())
        >>> env = Environment.from_base("ubuntu:noble").with_exec(["true"])
        >>> image_id = backend.materialize(env)
    """

    name = "docker"

    def __init__(
        self,
        docker: str = "docker",
        store: Optional[SnapshotStore] = None,
        platform: Optional[str] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        build_variables: Optional[Dict[str, str]] = None,
    ):
        """
        Initialize Docker backend.

        Args:
            docker: Docker client executable
            store: Optional persistent snapshot index
            platform: Optional ``--platform`` for pulls and runs (e.g., 'linux/amd64')
            runner: subprocess.run compatible callable
            build_variables: Extra variables for every ``docker run``
        """
        super().__init__(store=store, build_variables=build_variables)
        self.docker = docker
        self.platform = platform
        self.runner = runner
        self._releases: Dict[str, str] = {}

    def _docker(
        self, args: List[str], input: Optional[str] = None
    ) -> subprocess.CompletedProcess:
        result = self.runner(
            [self.docker, *args],
            input=input,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise CommandFailedError(
                ["docker", *args], result.returncode, result.stdout + result.stderr
            )
        return result

    def _create(self, image: str) -> str:
        name = f"crosskit-{uuid.uuid4().hex[:12]}"
        self._docker(["create", "--name", name, image])
        return name

    def _remove(self, container: str):
        try:
            self._docker(["rm", "-f", container])
        except CommandFailedError as e:
            logger.warning(f"Failed to remove container {container}: {e}")

    def _commit(self, container: str, changes: Optional[List[str]] = None) -> str:
        args = ["commit"]
        for change in changes or []:
            args.extend(["--change", change])
        args.append(container)
        return self._docker(args).stdout.strip()

    # ------------------------------------------------------------------
    # ExecutionBackend hooks
    # ------------------------------------------------------------------

    def _from_base(self, image: str) -> str:
        pull = ["pull", image]
        if self.platform:
            pull[1:1] = ["--platform", self.platform]
        self._docker(pull)
        inspect = self._docker(["image", "inspect", "--format", "{{.Id}}", image])
        return inspect.stdout.strip()

    def _is_available(self, handle: str) -> bool:
        result = self.runner(
            [self.docker, "image", "inspect", "--format", "{{.Id}}", handle],
            capture_output=True,
            text=True,
        )
        return result.returncode == 0

    def _apply(
        self, handle: str, mutation: Mutation, before: Environment
    ) -> Tuple[str, str]:
        if mutation.kind == MutationKind.EXEC:
            return self._run(handle, mutation.args, before)
        if mutation.kind in (MutationKind.DIRECTORY, MutationKind.FILE):
            return self._copy_in(handle, mutation), ""
        # ENV and WORKDIR are tracked by the Environment and applied at run time
        return handle, ""

    def _run(
        self, handle: str, command: Tuple[str, ...], before: Environment
    ) -> Tuple[str, str]:
        container = f"crosskit-{uuid.uuid4().hex[:12]}"
        args = ["run", "--name", container, "--workdir", before.workdir]
        if self.platform:
            args.extend(["--platform", self.platform])
        variables = {**self.build_variables, **before.variables}
        for key, value in sorted(variables.items()):
            args.extend(["--env", f"{key}={value}"])
        args.append(handle)
        args.extend(command)

        result = self.runner(
            [self.docker, *args], capture_output=True, text=True
        )
        output = result.stdout + result.stderr
        try:
            if result.returncode != 0:
                raise CommandFailedError(command, result.returncode, output)
            return self._commit(container), result.stdout
        finally:
            self._remove(container)

    def _stage(self, artifact: Artifact, staging: Path) -> Path:
        """Copy an artifact's payload to the host and return its local path."""
        if artifact.is_external:
            return artifact.host_path

        container = self._create(self._source_handle(artifact))
        try:
            payload = staging / "payload"
            self._docker(["cp", f"{container}:{artifact.path}", str(payload)])
            return payload
        finally:
            self._remove(container)

    def _copy_in(self, handle: str, mutation: Mutation) -> str:
        destination = mutation.args[0]
        staging = Path(tempfile.mkdtemp(prefix="crosskit_"))
        try:
            payload = self._stage(mutation.source, staging)

            # Mirror the destination under a scratch root and merge at "/"
            root = staging / "root"
            target = root / destination.lstrip("/")
            target.parent.mkdir(parents=True, exist_ok=True)
            if mutation.kind == MutationKind.DIRECTORY:
                shutil.copytree(payload, target, symlinks=True, dirs_exist_ok=True)
            else:
                shutil.copy2(payload, target)

            container = self._create(handle)
            try:
                self._docker(["cp", f"{root}/.", f"{container}:/"])
                return self._commit(container)
            finally:
                self._remove(container)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def _export(
        self, handle: str, env: Environment, source: str, destination: Path
    ) -> Path:
        container = self._create(handle)
        try:
            self._docker(["cp", f"{container}:{source}", str(destination)])
        finally:
            self._remove(container)
        logger.debug(f"Exported {source} to {destination}")
        return destination

    def _release_image(self, handle: str, env: Environment) -> str:
        """
        Image with the environment's variables and workdir baked in.

        Committed once per environment fingerprint and recorded in the
        snapshot store, so every tag of one environment, and every later
        push of it, points at the same image.
        """
        key = f"release:{env.fingerprint}"
        with self._node_lock(key):
            image = self._releases.get(key)
            if image is None and self.store is not None:
                entry = self.store.get(key)
                if entry is not None and self._is_available(entry["handle"]):
                    image = entry["handle"]
            if image is not None:
                self._releases[key] = image
                return image

            changes = [
                f"ENV {name}={json.dumps(value)}"
                for name, value in sorted(env.variables.items())
            ]
            changes.append(f"WORKDIR {env.workdir}")

            container = self._create(handle)
            try:
                image = self._commit(container, changes)
            finally:
                self._remove(container)

            self._releases[key] = image
            if self.store is not None:
                self.store.put(key, image)
            logger.debug(f"Committed release image {image} for {env.fingerprint[:12]}")
            return image

    def _publish(
        self, handle: str, env: Environment, reference: str, credentials
    ) -> str:
        if credentials is not None:
            self._docker(
                [
                    "login",
                    credentials.registry,
                    "--username",
                    credentials.username,
                    "--password-stdin",
                ],
                input=credentials.password,
            )

        image = self._release_image(handle, env)
        self._docker(["tag", image, reference])
        self._docker(["push", reference])

        repository = reference.rsplit(":", 1)[0]
        digests = self._docker(
            ["image", "inspect", "--format", "{{json .RepoDigests}}", reference]
        ).stdout
        for digest in json.loads(digests or "[]"):
            if digest.startswith(f"{repository}@"):
                return digest.split("@", 1)[1]
        return image
