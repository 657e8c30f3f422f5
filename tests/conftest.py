# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Shared pytest fixtures for the harness tests."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

# ---------------------------------------------------------------------------
# Environment helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove harness-specific environment variables.

    This prevents host environment from leaking into tests.
    """
    env_vars = [
        "IMAGE_NAME",
        "VERSION",
        "OS",
        "TESTS",
        "FAIL_FAST",
        "KEEP",
        "DEBUG",
        "CREATION_TIMEOUT",
        "POLL_ATTEMPTS",
        "POLL_DELAY",
        "DOCKER_ARGS",
        "UPGRADE_FROM_IMAGE",
        "S2I_SOURCE_DIR",
        "GITHUB_STEP_SUMMARY",
        "GITHUB_ACTIONS",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


# ---------------------------------------------------------------------------
# Docker mock helpers
# ---------------------------------------------------------------------------


def make_completed_process(
    stdout: str = "",
    stderr: str = "",
    returncode: int = 0,
) -> subprocess.CompletedProcess[str]:
    """Create a mock subprocess.CompletedProcess."""
    return subprocess.CompletedProcess(
        args=["docker"],
        returncode=returncode,
        stdout=stdout,
        stderr=stderr,
    )


@pytest.fixture()
def mock_subprocess_run():
    """Patch subprocess.run and return the mock.

    The default return value is a successful command with empty
    stdout/stderr.  Tests can override ``mock.return_value`` or use
    ``mock.side_effect`` for sequences of calls.
    """
    with patch("subprocess.run") as mock:
        mock.return_value = make_completed_process()
        yield mock


@pytest.fixture()
def mock_docker(mock_subprocess_run):
    """Create a DockerManager with subprocess.run patched.

    Returns a tuple of (docker_manager, subprocess_mock) so that tests
    can both use the manager and inspect the calls.
    """
    from docker_manager import DockerManager

    docker = DockerManager()
    return docker, mock_subprocess_run


@pytest.fixture()
def fake_docker() -> MagicMock:
    """A DockerManager stand-in with every method mocked."""
    from docker_manager import DockerManager

    docker = MagicMock(spec=DockerManager)
    docker.container_state.return_value = "running"
    docker.container_ip.return_value = "172.17.0.2"
    docker.run_container.side_effect = lambda image, name, **_kw: f"cid-{name}"
    return docker


@pytest.fixture()
def harness_config():
    """A valid HarnessConfig with fast polling."""
    from config import HarnessConfig

    return HarnessConfig(
        image_name="quay.io/sclorg/postgresql-16-c9s",
        version="16",
        os_family="c9s",
        creation_timeout=5,
        poll_attempts=3,
        poll_delay=0.0,
    )


@pytest.fixture()
def tracker(fake_docker):
    from resources import ResourceTracker

    return ResourceTracker(fake_docker)


@pytest.fixture()
def builder(harness_config, fake_docker, tracker):
    """TopologyBuilder wired to mocks, with s2i mocked out."""
    from s2i import S2IBuilder
    from topology import TopologyBuilder

    s2i = MagicMock(spec=S2IBuilder)
    s2i.build.side_effect = lambda source, base, tag, **_kw: tag
    return TopologyBuilder(harness_config, fake_docker, tracker, s2i=s2i)
