# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Replication checks for primary/replica clusters.

Two conditions are polled:

- **replica visibility**: the primary's ``pg_stat_replication`` view
  lists the address of every replica;
- **value propagation**: a row written on the primary becomes readable
  on each replica.

Replica addresses are resolved once, before polling starts.  A replica
that cannot be resolved is a hard error, not something to retry.
"""

from __future__ import annotations

import logging
import re

from errors import PollExhausted, ScenarioFailure
from health_check import dump_logs
from pg_client import PgClient
from polling import REPLICATION, PollCondition, poll_condition
from topology import ClusterTopology, ContainerHandle

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")


def streaming_clients(client: PgClient, primary: ContainerHandle) -> set[str]:
    """Return the client addresses in the primary's ``pg_stat_replication``."""
    output = client.admin_query(
        primary.cid, "SELECT client_addr FROM pg_stat_replication;"
    )
    return {line.strip() for line in output.splitlines() if line.strip()}


def wait_for_replicas(
    client: PgClient,
    cluster: ClusterTopology,
    condition: PollCondition = REPLICATION,
) -> None:
    """Wait until every replica shows up in the primary's replication view.

    Raises
    ------
    ContainerGoneError
        If a replica address cannot be resolved.
    PollExhausted
        If some replica never appeared.
    """
    expected = set(cluster.replica_addresses())
    primary = cluster.primary
    description = f"replicas {sorted(expected)} attached to {primary.name}"
    logger.info("Waiting for %d replica(s) to attach to %s…", len(expected), primary.name)

    seen: set[str] = set()

    def _all_attached() -> bool:
        nonlocal seen
        seen = streaming_clients(client, primary)
        return expected <= seen

    if poll_condition(_all_attached, condition, description=description):
        logger.info("All replicas attached ✅")
        return

    logger.error("Missing replicas: %s", ", ".join(sorted(expected - seen)))
    dump_logs(primary)
    for replica in cluster.replicas:
        dump_logs(replica, tail=20)
    raise PollExhausted(
        f"Replicas {sorted(expected - seen)} never appeared in "
        f"pg_stat_replication of {primary.name}",
        description=description,
        attempts=condition.max_attempts,
    )


def write_value(
    client: PgClient, primary: ContainerHandle, table: str, value: str
) -> None:
    """Create *table* if needed and insert *value* on the primary."""
    _check_identifier(table)
    client.admin_query(
        primary.cid,
        f"CREATE TABLE IF NOT EXISTS {table} (a TEXT); "
        f"INSERT INTO {table} VALUES ({_literal(value)});",
    )
    logger.info("Wrote %r into %s on %s", value, table, primary.name)


def value_visible(
    client: PgClient, replica: ContainerHandle, table: str, value: str
) -> bool:
    """Return *True* if *value* is readable from *table* on *replica*."""
    _check_identifier(table)
    output = client.admin_query(replica.cid, f"SELECT a FROM {table};")
    return value in output.splitlines()


def wait_for_value(
    client: PgClient,
    cluster: ClusterTopology,
    table: str,
    value: str,
    condition: PollCondition = REPLICATION,
) -> None:
    """Wait until *value* is visible on every replica of *cluster*.

    Raises
    ------
    PollExhausted
        If some replica never returned the value.
    """
    for replica in cluster.replicas:
        description = f"{table}={value!r} on {replica.name}"
        if poll_condition(
            lambda r=replica: value_visible(client, r, table, value),
            condition,
            description=description,
        ):
            logger.info("Value %r visible on %s ✅", value, replica.name)
            continue
        dump_logs(replica)
        raise PollExhausted(
            f"Value {value!r} in {table} never reached {replica.name}",
            description=description,
            attempts=condition.max_attempts,
        )


def _check_identifier(name: str) -> None:
    if not _IDENTIFIER_RE.match(name):
        raise ScenarioFailure(f"Refusing to use {name!r} as a table name")


def _literal(value: str) -> str:
    """Quote *value* as an SQL string literal."""
    return "'" + value.replace("'", "''") + "'"
