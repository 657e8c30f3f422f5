# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Readiness, connection and login-admission checks with bounded retries.

Every check polls through :func:`polling.poll_condition` and, on
exhaustion, dumps the tail of the container's logs before raising, so a
failed scenario always carries the server's own explanation.

Usage::

    from health_check import wait_for_ready, wait_for_connection

    wait_for_ready(docker, handle)
    wait_for_connection(client, handle, user="user", password="pass", database="db")
"""

from __future__ import annotations

import logging

from docker_manager import DockerManager
from errors import DockerError, PollExhausted, ScenarioFailure
from pg_client import PG_PORT, PgClient
from polling import CONNECTION, READINESS, PollCondition, poll_condition
from topology import ContainerHandle

logger = logging.getLogger(__name__)


def is_ready(docker: DockerManager, handle: ContainerHandle) -> bool:
    """Return *True* if ``pg_isready`` over TCP succeeds inside the container.

    The image's initialisation phase runs a temporary server that only
    listens on the local socket, so asking ``127.0.0.1`` reports ready
    only once the real server is up.
    """
    result = docker.exec_cmd(
        handle.cid,
        ["pg_isready", "-h", "127.0.0.1", "-p", str(PG_PORT)],
        check=False,
        timeout=15,
    )
    return result.returncode == 0


def dump_logs(handle: ContainerHandle, tail: int = 50) -> None:
    """Log the last *tail* lines of *handle*'s logs at ERROR level."""
    try:
        logs = handle.logs(tail=tail)
    except DockerError as exc:
        logger.error("  (could not retrieve logs of %s: %s)", handle.name, exc)
        return
    logger.error("  Last log lines of %s:", handle.name)
    for line in logs.splitlines()[-tail:]:
        logger.error("    %s", line.rstrip())


def wait_for_ready(
    docker: DockerManager,
    handle: ContainerHandle,
    condition: PollCondition = READINESS,
) -> None:
    """Wait until the server in *handle* accepts TCP connections.

    Raises
    ------
    PollExhausted
        If the server never became ready.
    """
    description = f"readiness of {handle.name}"
    logger.info("Waiting for %s to accept connections…", handle.name)
    if poll_condition(
        lambda: is_ready(docker, handle), condition, description=description
    ):
        logger.info("%s is ready ✅", handle.name)
        return
    dump_logs(handle)
    raise PollExhausted(
        f"{handle.name} did not become ready within "
        f"{condition.max_attempts} attempts",
        description=description,
        attempts=condition.max_attempts,
    )


def wait_for_connection(
    client: PgClient,
    handle: ContainerHandle,
    *,
    user: str,
    password: str,
    database: str = "postgres",
    condition: PollCondition = CONNECTION,
) -> None:
    """Wait until ``SELECT 1`` as *user* succeeds over the network.

    Raises
    ------
    PollExhausted
        If no connection succeeded within the attempt budget.
    """
    address = handle.address
    description = f"connection to {user}@{address}/{database}"
    logger.info("Testing PostgreSQL connection to %s…", address)
    if poll_condition(
        lambda: client.login_succeeds(
            address, user=user, password=password, database=database
        ),
        condition,
        description=description,
    ):
        logger.info("Connection as %s succeeded ✅", user)
        return
    dump_logs(handle)
    raise PollExhausted(
        f"Could not connect as {user} to {handle.name}",
        description=description,
        attempts=condition.max_attempts,
    )


def assert_login_access(
    client: PgClient,
    handle: ContainerHandle,
    *,
    user: str,
    password: str,
    expected: bool,
    database: str = "postgres",
    condition: PollCondition = CONNECTION,
) -> None:
    """Assert that logging in as *user* with *password* is allowed or denied.

    The login result is polled until it matches *expected*, since a
    freshly started server may still be applying its configuration.

    Raises
    ------
    ScenarioFailure
        If the result never matched *expected*.
    """
    address = handle.address
    wanted = "accepted" if expected else "denied"
    description = f"login as {user} to be {wanted} on {handle.name}"
    if poll_condition(
        lambda: client.login_succeeds(
            address, user=user, password=password, database=database
        )
        is expected,
        condition,
        description=description,
    ):
        logger.info("Login as %s(%s) %s ✅", user, _mask(password), wanted)
        return
    dump_logs(handle, tail=20)
    raise ScenarioFailure(
        f"Login as {user}({_mask(password)}) to {database} was not {wanted}"
    )


def _mask(password: str) -> str:
    return "*" * len(password) if password else "<empty>"
