# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Configuration parsing and validation for the test harness.

The harness reads its environment exactly once at startup and threads
the resulting :class:`HarnessConfig` through the runner, the topology
builder and the database client.  Nothing else in the library consults
``os.environ`` for test behaviour.

Usage::

    from config import HarnessConfig

    config = HarnessConfig.from_environment()
    problems = config.validate()
"""

from __future__ import annotations

import logging
import os
import re
import shlex
from dataclasses import dataclass, field, replace
from pathlib import Path

from errors import ConfigError

logger = logging.getLogger(__name__)

# Operating system families the image is published for
KNOWN_OS_FAMILIES = ("rhel8", "rhel9", "rhel10", "c9s", "c10s", "fedora")

DEFAULT_CREATION_TIMEOUT = 60
DEFAULT_POLL_ATTEMPTS = 30
DEFAULT_POLL_DELAY = 1.0
DEFAULT_S2I_SOURCE_DIR = "test-app"

_VERSION_RE = re.compile(r"^\d+(\.\d+)?$")


@dataclass(frozen=True)
class HarnessConfig:
    """Global configuration for one harness invocation."""

    # Image under test
    image_name: str = ""
    version: str = ""
    os_family: str = ""

    # Selection and behaviour
    tests: tuple[str, ...] = ()
    fail_fast: bool = False
    keep: bool = False
    debug: bool = False

    # Timing
    creation_timeout: int = DEFAULT_CREATION_TIMEOUT
    poll_attempts: int = DEFAULT_POLL_ATTEMPTS
    poll_delay: float = DEFAULT_POLL_DELAY

    # Extra ``docker run`` arguments applied to every created container
    docker_args: tuple[str, ...] = field(default_factory=tuple)

    # Optional inputs for individual scenarios
    upgrade_from_image: str = ""
    s2i_source_dir: str = DEFAULT_S2I_SOURCE_DIR

    # ------------------------------------------------------------------
    # Derived properties
    # ------------------------------------------------------------------

    @property
    def s2i_source_path(self) -> Path:
        """Return the s2i application directory as a :class:`Path`."""
        return Path(self.s2i_source_dir)

    @property
    def major_version(self) -> int:
        """Return the integer major version (``"16"`` → ``16``)."""
        return int(self.version.split(".", 1)[0])

    def with_overrides(self, **changes: object) -> HarnessConfig:
        """Return a copy with CLI overrides applied."""
        return replace(self, **changes)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_environment(cls) -> HarnessConfig:
        """Parse configuration from environment variables."""
        env = os.environ.get

        return cls(
            image_name=env("IMAGE_NAME", "").strip(),
            version=env("VERSION", "").strip(),
            os_family=env("OS", "").strip(),
            tests=parse_test_list(env("TESTS", "")),
            fail_fast=_str_to_bool(env("FAIL_FAST", "false")),
            keep=_str_to_bool(env("KEEP", "false")),
            debug=_str_to_bool(env("DEBUG", "false")),
            creation_timeout=_parse_int(
                "CREATION_TIMEOUT",
                env("CREATION_TIMEOUT", ""),
                DEFAULT_CREATION_TIMEOUT,
            ),
            poll_attempts=_parse_int(
                "POLL_ATTEMPTS", env("POLL_ATTEMPTS", ""), DEFAULT_POLL_ATTEMPTS
            ),
            poll_delay=_parse_float(
                "POLL_DELAY", env("POLL_DELAY", ""), DEFAULT_POLL_DELAY
            ),
            docker_args=tuple(shlex.split(env("DOCKER_ARGS", ""))),
            upgrade_from_image=env("UPGRADE_FROM_IMAGE", "").strip(),
            s2i_source_dir=env("S2I_SOURCE_DIR", DEFAULT_S2I_SOURCE_DIR),
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> list[str]:
        """Return a list of validation error messages (empty if valid).

        Any message is fatal: the harness refuses to start containers
        with an incomplete configuration.
        """
        errors: list[str] = []

        if not self.image_name:
            errors.append("IMAGE_NAME must be set to the image under test")
        if not self.version:
            errors.append("VERSION must be set (e.g. '16')")
        elif not _VERSION_RE.match(self.version):
            errors.append(f"VERSION must look like '16' or '9.6': got '{self.version}'")
        if not self.os_family:
            errors.append("OS must be set (e.g. 'rhel9')")
        elif self.os_family not in KNOWN_OS_FAMILIES:
            logger.warning(
                "OS '%s' is not one of %s; continuing anyway",
                self.os_family,
                ", ".join(KNOWN_OS_FAMILIES),
            )

        if self.creation_timeout < 1:
            errors.append(
                f"CREATION_TIMEOUT must be a positive number of seconds: "
                f"got {self.creation_timeout}"
            )
        if self.poll_attempts < 1:
            errors.append(f"POLL_ATTEMPTS must be at least 1: got {self.poll_attempts}")
        if self.poll_delay < 0:
            errors.append(f"POLL_DELAY must not be negative: got {self.poll_delay}")

        return errors


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def parse_test_list(raw: str) -> tuple[str, ...]:
    """Split a ``TESTS`` value on commas and whitespace.

    ``"general, replication upgrade"`` → ``("general", "replication", "upgrade")``.
    Duplicates are dropped, first occurrence wins.
    """
    names: list[str] = []
    for name in re.split(r"[,\s]+", raw.strip()):
        if name and name not in names:
            names.append(name)
    return tuple(names)


def _str_to_bool(value: str) -> bool:
    """Convert a string to bool (``"true"`` → True, anything else → False)."""
    return value.strip().lower() == "true"


def _parse_int(name: str, raw: str, default: int) -> int:
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer: got '{raw}'") from exc


def _parse_float(name: str, raw: str, default: float) -> float:
    if not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number: got '{raw}'") from exc
