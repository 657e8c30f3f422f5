# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Container topologies used by the scenarios.

Three shapes are built on top of :class:`DockerManager`:

- a single instance, including the "creation must fail" variant that
  runs the container in the foreground under a bounded wait;
- a primary/replica cluster where every replica is told the primary's
  address at creation time, with an operation that kills the primary
  and re-points the surviving replicas at its replacement;
- an s2i build variant of the image under test.

Everything created here is registered with the :class:`ResourceTracker`
before the corresponding ``docker`` command runs, so a half-created
container is still cleaned up.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from config import HarnessConfig
from docker_manager import DockerManager
from errors import ContainerGoneError, DockerError, DockerTimeoutError
from resources import CONTAINER, FILE, IMAGE, VOLUME, ManagedResource, ResourceTracker
from s2i import S2IBuilder

logger = logging.getLogger(__name__)

PGDATA = "/var/lib/pgsql/data"

PRIMARY_COMMAND = ["run-postgresql-master"]
REPLICA_COMMAND = ["run-postgresql-slave"]

_NAME_SANITIZE_RE = re.compile(r"[^a-z0-9_.-]+")


# ---------------------------------------------------------------------------
# Container handle
# ---------------------------------------------------------------------------


class ContainerHandle:
    """A logical container name bound to its runtime ID and address.

    The IP is resolved lazily on first use and cached, but every address
    lookup first asks the runtime whether the container is still
    running.  A container that was stopped, killed or removed, through
    the handle or behind its back, makes the lookup raise
    :class:`ContainerGoneError` instead of returning stale data.  After
    removal through the handle the ID itself is no longer available.
    """

    def __init__(
        self,
        docker: DockerManager,
        tracker: ResourceTracker,
        *,
        name: str,
        cid: str,
        resource: ManagedResource,
        cidfile: Path | None = None,
        env: dict[str, str] | None = None,
        volumes: dict[str, str] | None = None,
        command: list[str] | None = None,
        image: str = "",
    ) -> None:
        self.docker = docker
        self.tracker = tracker
        self.name = name
        self.cidfile = cidfile
        self.env = dict(env or {})
        self.volumes = dict(volumes or {})
        self.command = list(command or [])
        self.image = image
        self._cid = cid
        self._resource = resource
        self._address: str | None = None
        self._running = True
        self._removed = False

    def __repr__(self) -> str:
        if self._removed:
            state = "removed"
        else:
            state = "running" if self._running else "stopped"
        return f"ContainerHandle(name={self.name!r}, cid={self._cid[:12]!r}, {state})"

    @property
    def cid(self) -> str:
        """Runtime container ID; unavailable once the container is removed."""
        if self._removed:
            raise ContainerGoneError(f"Container {self.name} has been removed")
        return self._cid

    @property
    def address(self) -> str:
        """Network address of the running container.

        Raises
        ------
        ContainerGoneError
            If the container was stopped or removed, is not running
            according to the runtime, or has no address.
        """
        if self._removed or not self._running:
            raise ContainerGoneError(
                f"Container {self.name} is not running; its address is unavailable"
            )
        # The state is checked on every access, only the IP is cached
        try:
            state = self.docker.container_state(self._cid)
        except DockerError as exc:
            self._address = None
            raise ContainerGoneError(
                f"Container {self.name} cannot be inspected: {exc}"
            ) from exc
        if state != "running":
            self._address = None
            raise ContainerGoneError(
                f"Container {self.name} is {state}; its address is unavailable"
            )
        if self._address is None:
            ip = self.docker.container_ip(self._cid)
            if not ip:
                raise ContainerGoneError(f"Container {self.name} has no IP address")
            self._address = ip
            logger.debug("Container %s has address %s", self.name, ip)
        return self._address

    @property
    def is_running(self) -> bool:
        """Return *True* if the runtime reports the container as running."""
        if self._removed or not self._running:
            return False
        try:
            return self.docker.container_state(self._cid) == "running"
        except DockerError:
            return False

    def logs(self, tail: int = 100) -> str:
        return self.docker.container_logs(self.cid, tail=tail)

    def exit_code(self) -> int:
        return self.docker.container_exit_code(self.cid)

    def stop(self, timeout: int = 30) -> None:
        self._mark_stopped()
        self.docker.stop(self.cid, timeout=timeout)

    def kill(self) -> None:
        self._mark_stopped()
        self.docker.kill(self.cid)

    def remove(self) -> None:
        """Force-remove the container and forget it in the tracker."""
        cid = self.cid
        self._mark_stopped()
        self._removed = True
        self.docker.remove(cid, force=True)
        self.tracker.discard(self._resource)

    def _mark_stopped(self) -> None:
        self._running = False
        self._address = None


# ---------------------------------------------------------------------------
# Cluster topology
# ---------------------------------------------------------------------------


@dataclass
class ClusterTopology:
    """A primary plus ordered replicas sharing replication credentials."""

    name: str
    primary: ContainerHandle
    replicas: list[ContainerHandle] = field(default_factory=list)
    common_env: dict[str, str] = field(default_factory=dict)

    @property
    def members(self) -> list[ContainerHandle]:
        return [self.primary, *self.replicas]

    def replica_addresses(self) -> list[str]:
        """Resolve every replica address, failing on the first that cannot be."""
        return [replica.address for replica in self.replicas]


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class TopologyBuilder:
    """Create containers of the image under test and track them."""

    def __init__(
        self,
        config: HarnessConfig,
        docker: DockerManager,
        tracker: ResourceTracker,
        *,
        s2i: S2IBuilder | None = None,
    ) -> None:
        self.config = config
        self.docker = docker
        self.tracker = tracker
        self.s2i = s2i or S2IBuilder()
        self._cid_dir: Path | None = None

    # ------------------------------------------------------------------
    # Single instances
    # ------------------------------------------------------------------

    def create_instance(
        self,
        name: str,
        *,
        env: dict[str, str] | None = None,
        volumes: dict[str, str] | None = None,
        extra_args: list[str] | None = None,
        command: list[str] | None = None,
        image: str | None = None,
    ) -> ContainerHandle:
        """Start a detached container and return its handle.

        Raises
        ------
        DockerError
            If the container could not be created.
        """
        image = image or self.config.image_name
        container_name = self.unique_name(name)
        cidfile = self._cidfile_for(container_name)

        resource = self.tracker.register(CONTAINER, container_name)
        self.tracker.register(FILE, str(cidfile))

        cid = self.docker.run_container(
            image,
            container_name,
            env=env,
            volumes=volumes,
            cidfile=str(cidfile),
            extra_args=[*self.config.docker_args, *(extra_args or [])],
            command=command,
        )
        return ContainerHandle(
            self.docker,
            self.tracker,
            name=container_name,
            cid=cid,
            resource=resource,
            cidfile=cidfile,
            env=env,
            volumes=volumes,
            command=command,
            image=image,
        )

    def assert_creation_fails(
        self,
        env: dict[str, str] | None = None,
        *,
        extra_args: list[str] | None = None,
        timeout: float | None = None,
        image: str | None = None,
    ) -> bool:
        """Return *True* if a container with *env* exits non-zero in time.

        The container runs in the foreground with ``--rm``.  If it is
        still running after *timeout* seconds (``CREATION_TIMEOUT`` by
        default) the client is killed, the container force-removed, and
        the result is *False*: it did not fail fast enough.  A zero exit
        code also yields *False*.
        """
        timeout = timeout if timeout is not None else self.config.creation_timeout
        container_name = self.unique_name("creation")
        resource = self.tracker.register(CONTAINER, container_name)

        try:
            result = self.docker.run_ephemeral(
                image or self.config.image_name,
                name=container_name,
                env=env,
                extra_args=[*self.config.docker_args, *(extra_args or [])],
                timeout=timeout,
            )
        except DockerTimeoutError:
            logger.warning(
                "Container creation with %s did not exit within %ss",
                _describe_env(env),
                timeout,
            )
            try:
                self.docker.remove(container_name, force=True)
                self.tracker.discard(resource)
            except DockerError as exc:
                logger.warning(
                    "Could not remove hung container %s: %s", container_name, exc
                )
            return False

        # --rm already removed it
        self.tracker.discard(resource)

        if result.returncode == 0:
            logger.error(
                "Container creation with %s unexpectedly succeeded",
                _describe_env(env),
            )
            return False

        logger.info(
            "Container creation with %s failed as expected (exit %d)",
            _describe_env(env),
            result.returncode,
        )
        return True

    def create_volume(self, name: str) -> str:
        """Create a named volume that is removed on release."""
        volume = self.unique_name(name)
        self.tracker.register(VOLUME, volume)
        return self.docker.create_volume(volume)

    # ------------------------------------------------------------------
    # Clusters
    # ------------------------------------------------------------------

    def create_primary(
        self,
        name: str,
        common_env: dict[str, str],
        *,
        volumes: dict[str, str] | None = None,
    ) -> ContainerHandle:
        return self.create_instance(
            f"{name}-primary",
            env=common_env,
            volumes=volumes,
            command=PRIMARY_COMMAND,
        )

    def add_replica(
        self,
        name: str,
        primary_address: str,
        common_env: dict[str, str],
        *,
        volumes: dict[str, str] | None = None,
    ) -> ContainerHandle:
        env = {**common_env, "POSTGRESQL_MASTER_IP": primary_address}
        return self.create_instance(
            f"{name}-replica",
            env=env,
            volumes=volumes,
            command=REPLICA_COMMAND,
        )

    def create_cluster(
        self,
        name: str,
        replica_count: int,
        common_env: dict[str, str],
        *,
        primary_volumes: dict[str, str] | None = None,
        before_replicas: Callable[[ContainerHandle], None] | None = None,
    ) -> ClusterTopology:
        """Start a primary and *replica_count* replicas pointed at it.

        *before_replicas* is called with the primary handle once it is
        started, typically to wait for it to accept connections.
        """
        primary = self.create_primary(name, common_env, volumes=primary_volumes)
        if before_replicas is not None:
            before_replicas(primary)

        primary_address = primary.address
        replicas = [
            self.add_replica(name, primary_address, common_env)
            for _ in range(replica_count)
        ]
        logger.info(
            "Cluster %s: primary %s (%s), %d replica(s)",
            name,
            primary.name,
            primary_address,
            len(replicas),
        )
        return ClusterTopology(
            name=name,
            primary=primary,
            replicas=replicas,
            common_env=dict(common_env),
        )

    def replace_primary(
        self,
        cluster: ClusterTopology,
        *,
        before_replicas: Callable[[ContainerHandle], None] | None = None,
    ) -> ClusterTopology:
        """Kill the primary, start a new one and re-point live replicas.

        The new primary reuses the old primary's mounts so the data
        survives.  Replicas that are still running are recreated with
        ``POSTGRESQL_MASTER_IP`` set to the new address; dead ones are
        dropped.
        """
        old = cluster.primary
        logger.info("Killing primary %s", old.name)
        old.kill()
        old.remove()

        primary = self.create_primary(
            cluster.name, cluster.common_env, volumes=old.volumes
        )
        if before_replicas is not None:
            before_replicas(primary)
        primary_address = primary.address

        replicas: list[ContainerHandle] = []
        for replica in cluster.replicas:
            alive = replica.is_running
            replica.remove()
            if not alive:
                logger.warning("Replica %s was not running; dropping it", replica.name)
                continue
            replicas.append(
                self.add_replica(
                    cluster.name,
                    primary_address,
                    cluster.common_env,
                    volumes=replica.volumes,
                )
            )

        logger.info(
            "Cluster %s: new primary %s (%s), %d replica(s) re-pointed",
            cluster.name,
            primary.name,
            primary_address,
            len(replicas),
        )
        return ClusterTopology(
            name=cluster.name,
            primary=primary,
            replicas=replicas,
            common_env=cluster.common_env,
        )

    # ------------------------------------------------------------------
    # Build variants
    # ------------------------------------------------------------------

    def build_variant(self, source_dir: Path, tag: str | None = None) -> str:
        """Build an s2i image from *source_dir* on top of the image under test.

        Raises
        ------
        BuildError
            If the build fails.
        """
        tag = tag or f"{self.config.image_name}-testapp-{uuid.uuid4().hex[:8]}"
        self.tracker.register(IMAGE, tag)
        return self.s2i.build(source_dir, self.config.image_name, tag)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def unique_name(self, name: str) -> str:
        """Return ``pg-test-<name>-<random>``, safe as a container name."""
        slug = _NAME_SANITIZE_RE.sub("-", name.lower()).strip("-") or "c"
        return f"pg-test-{slug}-{uuid.uuid4().hex[:8]}"

    def _cidfile_for(self, container_name: str) -> Path:
        # Scoped cleanup may have removed an earlier directory
        if self._cid_dir is None or not self._cid_dir.is_dir():
            self._cid_dir = self.tracker.mkdtemp("pg-tests-cid-")
        return self._cid_dir / container_name


def _describe_env(env: dict[str, str] | None) -> str:
    """Render env names for logs without leaking values."""
    if not env:
        return "no environment"
    return ", ".join(sorted(env))
