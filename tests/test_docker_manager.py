# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Tests for the docker_manager module."""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest
from docker_manager import DockerManager
from errors import DockerError, DockerTimeoutError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _cp(
    stdout: str = "",
    stderr: str = "",
    returncode: int = 0,
) -> subprocess.CompletedProcess[str]:
    """Create a CompletedProcess for use as a mock return value."""
    return subprocess.CompletedProcess(
        args=["docker"],
        returncode=returncode,
        stdout=stdout,
        stderr=stderr,
    )


# ---------------------------------------------------------------------------
# run_cmd
# ---------------------------------------------------------------------------


class TestRunCmd:
    """Tests for DockerManager.run_cmd."""

    def test_success(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="ok\n")) as mock:
            dm = DockerManager()
            result = dm.run_cmd(["ps", "-q"])

        assert result.stdout == "ok\n"
        mock.assert_called_once()
        cmd = mock.call_args[0][0]
        assert cmd == ["docker", "ps", "-q"]

    def test_custom_executable(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            DockerManager(executable="podman").run_cmd(["ps"])

        assert mock.call_args[0][0] == ["podman", "ps"]

    def test_nonzero_exit_raises(self) -> None:
        with patch(
            "subprocess.run",
            return_value=_cp(returncode=1, stderr="not found"),
        ):
            dm = DockerManager()
            with pytest.raises(DockerError, match="failed.*exit 1"):
                dm.run_cmd(["inspect", "missing"])

    def test_nonzero_exit_check_false(self) -> None:
        with patch(
            "subprocess.run",
            return_value=_cp(returncode=1, stderr="not found"),
        ):
            dm = DockerManager()
            result = dm.run_cmd(["inspect", "missing"], check=False)
            assert result.returncode == 1

    def test_timeout_raises_timeout_error(self) -> None:
        with patch(
            "subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="docker", timeout=5),
        ):
            dm = DockerManager()
            with pytest.raises(DockerTimeoutError, match="timed out"):
                dm.run_cmd(["logs", "cid"], timeout=5)

    def test_timeout_error_is_docker_error(self) -> None:
        assert issubclass(DockerTimeoutError, DockerError)

    def test_docker_not_found_raises(self) -> None:
        with patch(
            "subprocess.run",
            side_effect=FileNotFoundError("docker not found"),
        ):
            dm = DockerManager()
            with pytest.raises(DockerError, match="not found"):
                dm.run_cmd(["ps"])

    def test_arguments_are_never_shell_joined(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            DockerManager().run_cmd(["exec", "cid", "psql", "-c", "SELECT 'a; rm -rf /';"])

        cmd = mock.call_args[0][0]
        assert cmd[-1] == "SELECT 'a; rm -rf /';"
        assert "shell" not in mock.call_args[1]

    def test_input_data_forwarded(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            dm = DockerManager()
            dm.run_cmd(["exec", "-i", "cid", "psql"], input_data="SELECT 1;")

        _, kwargs = mock.call_args
        assert kwargs["input"] == "SELECT 1;"

    def test_timeout_forwarded(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            dm = DockerManager()
            dm.run_cmd(["ps"], timeout=42)

        _, kwargs = mock.call_args
        assert kwargs["timeout"] == 42


# ---------------------------------------------------------------------------
# Docker error details
# ---------------------------------------------------------------------------


class TestDockerError:
    """Tests for DockerError exception attributes."""

    def test_attributes(self) -> None:
        err = DockerError("msg", returncode=127, stderr="oops")
        assert err.returncode == 127
        assert err.stderr == "oops"
        assert "oops" in str(err)

    def test_str_without_stderr(self) -> None:
        err = DockerError("just a message")
        assert str(err) == "just a message"


# ---------------------------------------------------------------------------
# Images and volumes
# ---------------------------------------------------------------------------


class TestImagesAndVolumes:
    def test_image_exists_true(self) -> None:
        with patch("subprocess.run", return_value=_cp()):
            assert DockerManager().image_exists("pg:16") is True

    def test_image_exists_false(self) -> None:
        with patch("subprocess.run", return_value=_cp(returncode=1)):
            assert DockerManager().image_exists("missing:16") is False

    def test_pull_image(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            DockerManager().pull_image("quay.io/sclorg/postgresql-15-c9s")

        assert mock.call_args[0][0] == ["docker", "pull", "quay.io/sclorg/postgresql-15-c9s"]

    def test_remove_image(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            DockerManager().remove_image("pg-testapp")

        assert mock.call_args[0][0] == ["docker", "rmi", "-f", "pg-testapp"]

    def test_remove_image_failure_raises(self) -> None:
        with patch("subprocess.run", return_value=_cp(returncode=1, stderr="in use")):
            with pytest.raises(DockerError):
                DockerManager().remove_image("pg-testapp")

    def test_create_volume_returns_name(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="pgdata\n")) as mock:
            assert DockerManager().create_volume("pgdata") == "pgdata"

        assert mock.call_args[0][0] == ["docker", "volume", "create", "pgdata"]

    def test_remove_volume(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            DockerManager().remove_volume("pgdata")

        assert mock.call_args[0][0] == ["docker", "volume", "rm", "-f", "pgdata"]


# ---------------------------------------------------------------------------
# Container lifecycle
# ---------------------------------------------------------------------------


class TestContainerLifecycle:
    """Tests for run_container, run_ephemeral, stop, kill, remove, wait."""

    def test_run_container_basic(self) -> None:
        with patch(
            "subprocess.run",
            return_value=_cp(stdout="abc123def456\n"),
        ) as mock:
            dm = DockerManager()
            cid = dm.run_container("img:v1", "my-container")

        assert cid == "abc123def456"
        cmd = mock.call_args[0][0]
        assert cmd[:5] == ["docker", "run", "-d", "--name", "my-container"]
        assert cmd[-1] == "img:v1"

    def test_run_container_with_volumes_env_and_cidfile(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="cid\n")) as mock:
            DockerManager().run_container(
                "img",
                "c",
                volumes={"pgdata": "/var/lib/pgsql/data:Z"},
                env={"POSTGRESQL_ADMIN_PASSWORD": "r00t"},
                cidfile="/tmp/cids/c",
            )

        cmd = mock.call_args[0][0]
        assert cmd[cmd.index("--cidfile") + 1] == "/tmp/cids/c"
        assert cmd[cmd.index("-v") + 1] == "pgdata:/var/lib/pgsql/data:Z"
        assert cmd[cmd.index("-e") + 1] == "POSTGRESQL_ADMIN_PASSWORD=r00t"

    def test_run_container_extra_args_before_image_command_after(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="cid\n")) as mock:
            DockerManager().run_container(
                "img",
                "c",
                extra_args=["--network", "pgnet"],
                command=["run-postgresql-master"],
            )

        cmd = mock.call_args[0][0]
        assert cmd[-2:] == ["img", "run-postgresql-master"]
        assert cmd.index("--network") < cmd.index("img")

    def test_run_container_failure_raises(self) -> None:
        with patch("subprocess.run", return_value=_cp(returncode=125, stderr="conflict")):
            with pytest.raises(DockerError, match="exit 125"):
                DockerManager().run_container("img", "c")

    def test_run_ephemeral_does_not_check(self) -> None:
        with patch("subprocess.run", return_value=_cp(returncode=1, stderr="bad env")) as mock:
            result = DockerManager().run_ephemeral(
                "img", name="pg-test-creation", env={"POSTGRESQL_USER": "user"}
            )

        assert result.returncode == 1
        cmd = mock.call_args[0][0]
        assert cmd[:5] == ["docker", "run", "--rm", "--name", "pg-test-creation"]
        assert "-d" not in cmd

    def test_run_ephemeral_timeout(self) -> None:
        with patch(
            "subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="docker", timeout=1),
        ):
            with pytest.raises(DockerTimeoutError):
                DockerManager().run_ephemeral("img", timeout=1)

    def test_stop(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            DockerManager().stop("abc123", timeout=15)

        cmd = mock.call_args[0][0]
        assert cmd == ["docker", "stop", "--time", "15", "abc123"]

    def test_kill(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            DockerManager().kill("abc123")

        assert mock.call_args[0][0] == ["docker", "kill", "abc123"]

    def test_remove_force(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            DockerManager().remove("abc123", force=True)

        assert mock.call_args[0][0] == ["docker", "rm", "-f", "abc123"]

    def test_remove_failure_propagates(self) -> None:
        with patch("subprocess.run", return_value=_cp(returncode=1, stderr="daemon down")):
            with pytest.raises(DockerError):
                DockerManager().remove("abc123")


# ---------------------------------------------------------------------------
# Inspection
# ---------------------------------------------------------------------------


class TestContainerInspection:
    def test_inspect_with_format(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="running\n")) as mock:
            result = DockerManager().inspect("abc123", "{{.State.Status}}")

        assert result == "running"
        assert mock.call_args[0][0] == ["docker", "inspect", "-f", "{{.State.Status}}", "abc123"]

    def test_inspect_missing_container_raises(self) -> None:
        with patch(
            "subprocess.run",
            return_value=_cp(returncode=1, stderr="No such container"),
        ):
            with pytest.raises(DockerError):
                DockerManager().inspect("missing")

    def test_container_ip(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="172.17.0.5\n")):
            assert DockerManager().container_ip("abc") == "172.17.0.5"

    def test_container_exit_code(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="0\n")):
            assert DockerManager().container_exit_code("abc") == 0

    def test_container_exit_code_garbled(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="<no value>\n")):
            with pytest.raises(DockerError, match="non-integer"):
                DockerManager().container_exit_code("abc")


# ---------------------------------------------------------------------------
# Logs and exec
# ---------------------------------------------------------------------------


class TestLogsAndExec:
    def test_container_logs_merges_streams(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="out\n", stderr="err\n")) as mock:
            logs = DockerManager().container_logs("abc", tail=20)

        assert logs == "out\nerr\n"
        assert mock.call_args[0][0] == ["docker", "logs", "--tail", "20", "abc"]

    def test_exec_cmd_argument_list(self) -> None:
        with patch("subprocess.run", return_value=_cp(stdout="1\n")) as mock:
            result = DockerManager().exec_cmd(
                "abc", ["psql", "-At", "-c", "SELECT 1;"], env={"PGUSER": "postgres"}
            )

        assert result.stdout == "1\n"
        assert mock.call_args[0][0] == [
            "docker", "exec", "-e", "PGUSER=postgres", "abc", "psql", "-At", "-c", "SELECT 1;",
        ]

    def test_exec_cmd_with_input_is_interactive(self) -> None:
        with patch("subprocess.run", return_value=_cp()) as mock:
            DockerManager().exec_cmd("abc", ["psql"], input_data="SELECT 1;")

        assert mock.call_args[0][0][:3] == ["docker", "exec", "-i"]

    def test_exec_cmd_check_false(self) -> None:
        with patch("subprocess.run", return_value=_cp(returncode=2)):
            result = DockerManager().exec_cmd("abc", ["pg_isready"], check=False)

        assert result.returncode == 2
