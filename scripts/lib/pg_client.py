# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Run ``psql`` against containers of the image under test.

Remote queries use a throw-away ``--rm`` container of the same image
so that the client version always matches the server, and connect over
the container network with a ``postgresql://`` URI.  The password is
injected through ``PGPASSWORD`` and never appears in the argument list.
Administrative queries run inside the server container over the local
socket, where the image trusts the ``postgres`` user.
"""

from __future__ import annotations

import logging
import subprocess

from docker_manager import DockerManager
from errors import ScenarioFailure

logger = logging.getLogger(__name__)

PG_PORT = 5432


def connection_uri(user: str, address: str, database: str, port: int = PG_PORT) -> str:
    """Return ``postgresql://user@address:port/database``."""
    return f"postgresql://{user}@{address}:{port}/{database}"


class PgClient:
    """``psql`` invocations for one image."""

    def __init__(
        self,
        docker: DockerManager,
        image: str,
        *,
        extra_args: list[str] | tuple[str, ...] = (),
        timeout: float = 60,
    ) -> None:
        self.docker = docker
        self.image = image
        # Same network options as the servers so their addresses are reachable
        self.extra_args = list(extra_args)
        self.timeout = timeout

    def query(
        self,
        address: str,
        sql: str,
        *,
        user: str,
        password: str,
        database: str = "postgres",
    ) -> subprocess.CompletedProcess[str]:
        """Run *sql* remotely and return the completed ``psql`` process.

        ``-At`` gives unaligned, tuples-only output so that single values
        can be compared directly.  ``ON_ERROR_STOP`` turns SQL errors into
        a non-zero exit code.
        """
        logger.debug("psql %s@%s/%s: %s", user, address, database, sql)
        return self.docker.run_ephemeral(
            self.image,
            env={"PGPASSWORD": password, "PGCONNECT_TIMEOUT": "5"},
            extra_args=self.extra_args,
            command=[
                "psql",
                connection_uri(user, address, database),
                "-v",
                "ON_ERROR_STOP=1",
                "-At",
                "-c",
                sql,
            ],
            timeout=self.timeout,
        )

    def query_value(
        self,
        address: str,
        sql: str,
        *,
        user: str,
        password: str,
        database: str = "postgres",
    ) -> str:
        """Return the stripped output of *sql*, failing the scenario on error."""
        result = self.query(
            address, sql, user=user, password=password, database=database
        )
        if result.returncode != 0:
            raise ScenarioFailure(
                f"Query {sql!r} as {user}@{address}/{database} failed "
                f"(exit {result.returncode}): {result.stderr.strip()}"
            )
        return result.stdout.strip()

    def login_succeeds(
        self,
        address: str,
        *,
        user: str,
        password: str,
        database: str = "postgres",
    ) -> bool:
        """Return *True* if ``SELECT 1`` succeeds with these credentials."""
        result = self.query(
            address, "SELECT 1;", user=user, password=password, database=database
        )
        return result.returncode == 0 and result.stdout.strip() == "1"

    def admin_query(self, cid: str, sql: str, *, database: str = "postgres") -> str:
        """Run *sql* as ``postgres`` inside the server container."""
        result = self.docker.exec_cmd(
            cid,
            ["psql", "-d", database, "-v", "ON_ERROR_STOP=1", "-At", "-c", sql],
            check=False,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            raise ScenarioFailure(
                f"Admin query {sql!r} in {cid[:12]} failed "
                f"(exit {result.returncode}): {result.stderr.strip()}"
            )
        return result.stdout.strip()
