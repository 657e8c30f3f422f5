# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Bookkeeping and guaranteed cleanup of everything a test run creates.

Every container, volume, image, temporary file and directory the
harness creates is registered with a :class:`ResourceTracker` the
moment it exists.  :meth:`ResourceTracker.guard` wraps the whole run so
that :meth:`ResourceTracker.release_all` happens on every exit path:
normal completion, an exception escaping the runner, ``SIGINT`` or
``SIGTERM``.

Usage::

    tracker = ResourceTracker(docker)
    with tracker.guard():
        cid = docker.run_container(...)
        tracker.register(CONTAINER, cid)
        ...
"""

from __future__ import annotations

import atexit
import contextlib
import logging
import shutil
import signal
import tempfile
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from docker_manager import DockerManager
from errors import DockerError

logger = logging.getLogger(__name__)

CONTAINER = "container"
IMAGE = "image"
VOLUME = "volume"
FILE = "file"
DIRECTORY = "directory"

# Containers go first: volumes and images cannot be removed while a
# container still references them, and cidfiles live in directories.
RELEASE_ORDER = (CONTAINER, IMAGE, VOLUME, FILE, DIRECTORY)

# Kinds left in place when the operator asks to keep containers around
_KEPT_KINDS = (CONTAINER, VOLUME, IMAGE)

_GUARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@dataclass(frozen=True)
class ManagedResource:
    """One externally visible artifact created during a test run."""

    kind: str
    identifier: str
    created_at: float = field(default_factory=time.time)


class ResourceTracker:
    """Registry of managed resources with an idempotent release pass."""

    def __init__(self, docker: DockerManager, *, keep: bool = False) -> None:
        self.docker = docker
        self.keep = keep
        self.release_count = 0
        self._resources: list[ManagedResource] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, kind: str, identifier: str) -> ManagedResource:
        """Record *identifier* for cleanup.  Never fails."""
        resource = ManagedResource(kind=kind, identifier=identifier)
        self._resources.append(resource)
        logger.debug("Registered %s %s", kind, identifier)
        return resource

    def discard(self, resource: ManagedResource) -> None:
        """Forget *resource* after the caller released it explicitly."""
        with contextlib.suppress(ValueError):
            self._resources.remove(resource)

    def mkdtemp(self, prefix: str) -> Path:
        """Create a temporary directory that is removed on release."""
        path = Path(tempfile.mkdtemp(prefix=prefix))
        self.register(DIRECTORY, str(path))
        return path

    @property
    def resources(self) -> list[ManagedResource]:
        """Return a copy of the currently registered resources."""
        return list(self._resources)

    def __len__(self) -> int:
        return len(self._resources)

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def release_all(self) -> int:
        """Attempt to release every registered resource.

        Resources are released in :data:`RELEASE_ORDER`, newest first
        within each kind.  A failure is logged as a warning and the pass
        continues.  Each resource leaves the registry once its release
        has been attempted, so calling this again is a no-op.

        Returns
        -------
        int
            Number of resources whose release failed.
        """
        self.release_count += 1
        if not self._resources:
            logger.debug("Nothing to release")
            return 0

        pending = list(self._resources)
        logger.info("Releasing %d resource(s)…", len(pending))
        return self._release(pending)

    @contextlib.contextmanager
    def scope(self) -> Iterator[ResourceTracker]:
        """Release what is registered inside the ``with`` block on exit.

        Used by the runner so that each scenario tears down its own
        containers before the next one starts.  If the scoped release is
        interrupted (a second signal, for instance) the resources not yet
        attempted stay registered for the final :meth:`release_all`.
        """
        before = {id(resource) for resource in self._resources}
        try:
            yield self
        finally:
            scoped = [r for r in self._resources if id(r) not in before]
            if scoped:
                self._release(scoped)

    @contextlib.contextmanager
    def guard(self) -> Iterator[ResourceTracker]:
        """Guarantee :meth:`release_all` on every exit path.

        ``SIGINT`` and ``SIGTERM`` are converted into :class:`SystemExit`
        with the conventional ``128 + signum`` status so that ``finally``
        blocks run.  An :mod:`atexit` hook covers interpreter shutdown
        paths that bypass the ``with`` block.
        """
        previous: dict[int, Any] = {}

        def _on_signal(signum: int, _frame: Any) -> None:
            logger.warning("Received %s, cleaning up…", signal.Signals(signum).name)
            raise SystemExit(128 + signum)

        for sig in _GUARDED_SIGNALS:
            previous[sig] = signal.signal(sig, _on_signal)
        atexit.register(self.release_all)

        try:
            yield self
        finally:
            # A second interrupt must not abort the cleanup pass itself
            for sig in _GUARDED_SIGNALS:
                signal.signal(sig, signal.SIG_IGN)
            try:
                self.release_all()
            finally:
                atexit.unregister(self.release_all)
                for sig, handler in previous.items():
                    signal.signal(sig, handler)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _release(self, resources: list[ManagedResource]) -> int:
        failures = 0
        for kind in RELEASE_ORDER:
            for resource in reversed(resources):
                if resource.kind != kind:
                    continue
                if self.keep and kind in _KEPT_KINDS:
                    logger.info("Keeping %s %s (--keep)", kind, resource.identifier)
                    self.discard(resource)
                    continue
                try:
                    self._release_one(resource)
                except (DockerError, OSError) as exc:
                    failures += 1
                    logger.warning(
                        "Failed to release %s %s: %s",
                        resource.kind,
                        resource.identifier,
                        exc,
                    )
                # Not reached when a signal interrupts the attempt
                self.discard(resource)
        return failures

    def _release_one(self, resource: ManagedResource) -> None:
        if resource.kind == CONTAINER:
            self.docker.remove(resource.identifier, force=True)
        elif resource.kind == IMAGE:
            self.docker.remove_image(resource.identifier)
        elif resource.kind == VOLUME:
            self.docker.remove_volume(resource.identifier)
        elif resource.kind == FILE:
            Path(resource.identifier).unlink(missing_ok=True)
        elif resource.kind == DIRECTORY:
            path = Path(resource.identifier)
            if path.exists():
                shutil.rmtree(path)
        else:
            logger.warning("Unknown resource kind %r, skipping", resource.kind)
            return
        logger.debug("Released %s %s", resource.kind, resource.identifier)
