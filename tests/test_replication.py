# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Tests for the replication module."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from errors import ContainerGoneError, PollExhausted, ScenarioFailure
from pg_client import PgClient
from polling import PollCondition
from replication import (
    streaming_clients,
    value_visible,
    wait_for_replicas,
    wait_for_value,
    write_value,
)

_FAST = PollCondition(max_attempts=3, delay=0)

_ENV = {"POSTGRESQL_MASTER_USER": "master", "POSTGRESQL_MASTER_PASSWORD": "master"}


@pytest.fixture()
def client() -> MagicMock:
    return MagicMock(spec=PgClient)


@pytest.fixture()
def cluster(builder, fake_docker):
    fake_docker.container_ip.side_effect = ["10.0.0.1", "10.0.0.2", "10.0.0.3"]
    return builder.create_cluster("repl", 2, _ENV)


class TestStreamingClients:
    def test_parses_addresses(self, client, cluster) -> None:
        client.admin_query.return_value = "10.0.0.2\n10.0.0.3\n"

        assert streaming_clients(client, cluster.primary) == {"10.0.0.2", "10.0.0.3"}
        client.admin_query.assert_called_once_with(
            cluster.primary.cid, "SELECT client_addr FROM pg_stat_replication;"
        )

    def test_empty(self, client, cluster) -> None:
        client.admin_query.return_value = ""
        assert streaming_clients(client, cluster.primary) == set()


class TestWaitForReplicas:
    def test_all_attached_after_retry(self, client, cluster) -> None:
        client.admin_query.side_effect = ["10.0.0.2", "10.0.0.2\n10.0.0.3"]
        wait_for_replicas(client, cluster, _FAST)
        assert client.admin_query.call_count == 2

    def test_extra_clients_are_fine(self, client, cluster) -> None:
        client.admin_query.return_value = "10.0.0.2\n10.0.0.3\n10.0.0.99"
        wait_for_replicas(client, cluster, _FAST)

    def test_missing_replica_exhausts(self, client, cluster, fake_docker, caplog) -> None:
        client.admin_query.return_value = "10.0.0.2"
        fake_docker.container_logs.return_value = ""

        with pytest.raises(PollExhausted, match="10.0.0.3"):
            wait_for_replicas(client, cluster, _FAST)
        assert client.admin_query.call_count == 3
        assert "Missing replicas: 10.0.0.3" in caplog.text

    def test_unresolvable_replica_is_hard_error(self, client, cluster, fake_docker) -> None:
        fake_docker.container_state.return_value = "exited"

        with pytest.raises(ContainerGoneError):
            wait_for_replicas(client, cluster, _FAST)
        client.admin_query.assert_not_called()


class TestValues:
    def test_write_value(self, client, cluster) -> None:
        write_value(client, cluster.primary, "t1", "it's")

        sql = client.admin_query.call_args.args[1]
        assert "CREATE TABLE IF NOT EXISTS t1 (a TEXT);" in sql
        assert "INSERT INTO t1 VALUES ('it''s');" in sql

    def test_bad_table_name(self, client, cluster) -> None:
        with pytest.raises(ScenarioFailure):
            write_value(client, cluster.primary, "t1; DROP TABLE x", "v")
        client.admin_query.assert_not_called()

    def test_value_visible(self, client, cluster) -> None:
        client.admin_query.return_value = "a\nb"
        assert value_visible(client, cluster.replicas[0], "t1", "b") is True
        assert value_visible(client, cluster.replicas[0], "t1", "c") is False

    def test_wait_for_value_checks_every_replica(self, client, cluster) -> None:
        client.admin_query.side_effect = ["", "v1", "v1"]
        wait_for_value(client, cluster, "t1", "v1", _FAST)

        cids = [c.args[0] for c in client.admin_query.call_args_list]
        assert cids == [
            cluster.replicas[0].cid,
            cluster.replicas[0].cid,
            cluster.replicas[1].cid,
        ]

    def test_removed_replica_fails_at_once(self, client, cluster) -> None:
        cluster.replicas[0].remove()

        with pytest.raises(ContainerGoneError):
            wait_for_value(client, cluster, "t1", "v1", _FAST)
        client.admin_query.assert_not_called()

    def test_wait_for_value_exhausts(self, client, cluster, fake_docker) -> None:
        client.admin_query.return_value = ""
        fake_docker.container_logs.return_value = ""

        with pytest.raises(PollExhausted, match="never reached"):
            wait_for_value(client, cluster, "t1", "v1", _FAST)
