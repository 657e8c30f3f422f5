# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Thin wrapper around the Docker CLI via :mod:`subprocess`.

All container runtime interaction in the harness goes through this
single module, providing:

- Structured error handling via :class:`DockerError`
- Bounded waits with :class:`DockerTimeoutError`
- Debug logging of every command
- Argument lists only; nothing is ever passed through a shell

Usage::

    from docker_manager import DockerManager

    docker = DockerManager()
    cid = docker.run_container(
        image="quay.io/sclorg/postgresql-16-c9s",
        name="pg-general-1",
        env={"POSTGRESQL_ADMIN_PASSWORD": "secret"},
        cidfile="/tmp/pg-tests.x/general-1",
    )
    ip = docker.container_ip(cid)
    docker.remove(cid, force=True)
"""

from __future__ import annotations

import logging
import shlex
import subprocess

from errors import DockerError, DockerTimeoutError

logger = logging.getLogger(__name__)


class DockerManager:
    """Thin wrapper around the Docker CLI.

    Every public method translates its arguments into a ``docker …``
    command, runs it via :func:`subprocess.run`, and either returns the
    result or raises :class:`DockerError` with full diagnostic context.
    A non-zero exit code is only an error where the caller asks for it:
    many scenarios expect commands to fail.
    """

    def __init__(self, executable: str = "docker") -> None:
        self.executable = executable

    # ------------------------------------------------------------------
    # Low-level command execution
    # ------------------------------------------------------------------

    def run_cmd(
        self,
        args: list[str],
        timeout: float = 60,
        check: bool = True,
        input_data: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run an arbitrary ``docker <args…>`` command.

        Parameters
        ----------
        args:
            Arguments *after* the ``docker`` prefix.
        timeout:
            Maximum wall-clock seconds before the process is killed.
        check:
            If *True* (the default), raise :class:`DockerError` when the
            process exits with a non-zero return code.
        input_data:
            Optional string piped to the process's standard input.

        Raises
        ------
        DockerError
            If *check* is True and the process exited non-zero, or the
            executable is missing.
        DockerTimeoutError
            If the process did not complete within *timeout* seconds.
        """
        cmd = [self.executable, *args]
        logger.debug("Running: %s", shlex.join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input_data,
            )
        except subprocess.TimeoutExpired as exc:
            raise DockerTimeoutError(
                f"docker {args[0]} timed out after {timeout}s",
                returncode=-1,
                stderr=str(exc),
            ) from exc
        except FileNotFoundError as exc:
            raise DockerError(
                "docker executable not found – is Docker installed?",
                returncode=-1,
                stderr=str(exc),
            ) from exc

        if check and result.returncode != 0:
            raise DockerError(
                f"docker {args[0]} failed (exit {result.returncode}): "
                f"{result.stderr.strip()}",
                returncode=result.returncode,
                stderr=result.stderr,
            )

        logger.debug(
            "docker %s exited %d (stdout=%d bytes, stderr=%d bytes)",
            args[0],
            result.returncode,
            len(result.stdout),
            len(result.stderr),
        )
        return result

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def image_exists(self, image: str) -> bool:
        """Return *True* if *image* exists locally."""
        result = self.run_cmd(["image", "inspect", image], check=False, timeout=30)
        return result.returncode == 0

    def pull_image(self, image: str, timeout: int = 300) -> None:
        """Pull an image from a registry."""
        logger.info("Pulling image %s …", image)
        self.run_cmd(["pull", image], timeout=timeout)

    def remove_image(self, image: str) -> None:
        """Remove a local image, raising :class:`DockerError` on failure."""
        self.run_cmd(["rmi", "-f", image], timeout=60)
        logger.info("Image %s removed", image)

    # ------------------------------------------------------------------
    # Volumes
    # ------------------------------------------------------------------

    def create_volume(self, name: str) -> str:
        """Create a named volume and return its name."""
        result = self.run_cmd(["volume", "create", name], timeout=30)
        return result.stdout.strip() or name

    def remove_volume(self, name: str) -> None:
        """Remove a named volume, raising :class:`DockerError` on failure."""
        self.run_cmd(["volume", "rm", "-f", name], timeout=30)

    # ------------------------------------------------------------------
    # Container lifecycle
    # ------------------------------------------------------------------

    def run_container(
        self,
        image: str,
        name: str,
        *,
        volumes: dict[str, str] | None = None,
        env: dict[str, str] | None = None,
        cidfile: str | None = None,
        extra_args: list[str] | None = None,
        command: list[str] | None = None,
        timeout: float = 60,
    ) -> str:
        """Start a detached container and return its ID.

        Parameters
        ----------
        image:
            Image to run.
        name:
            Container name (``--name``).
        volumes:
            Source→container-path mounts (``-v source:path``).  The
            source may be a host directory or a named volume; options
            such as ``:Z`` belong on the container path.
        env:
            Environment variables (``-e KEY=VALUE``).
        cidfile:
            If given, the runtime writes the container ID to this file.
        extra_args:
            Additional raw arguments inserted before the image name.
        command:
            Optional command (and arguments) passed to the entrypoint.
        timeout:
            Maximum seconds to wait for ``docker run`` itself.
        """
        args: list[str] = ["run", "-d", "--name", name]
        if cidfile:
            args.extend(["--cidfile", cidfile])
        args.extend(_mount_args(volumes))
        args.extend(_env_args(env))
        if extra_args:
            args.extend(extra_args)
        args.append(image)
        if command:
            args.extend(command)

        result = self.run_cmd(args, timeout=timeout)
        cid = result.stdout.strip()
        logger.info(
            "Container %s started: %s",
            name,
            cid[:12] if cid else "(no id)",
        )
        return cid

    def run_ephemeral(
        self,
        image: str,
        *,
        name: str | None = None,
        volumes: dict[str, str] | None = None,
        env: dict[str, str] | None = None,
        extra_args: list[str] | None = None,
        command: list[str] | None = None,
        timeout: float = 120,
    ) -> subprocess.CompletedProcess[str]:
        """Run a foreground ``--rm`` container and return the completed process.

        The exit code is *not* checked; callers decide what it means.

        Raises
        ------
        DockerTimeoutError
            If the container did not exit within *timeout* seconds.  The
            ``docker run`` client is killed; the container itself may
            still exist, which is why callers that care pass a *name*.
        """
        args: list[str] = ["run", "--rm"]
        if name:
            args.extend(["--name", name])
        args.extend(_mount_args(volumes))
        args.extend(_env_args(env))
        if extra_args:
            args.extend(extra_args)
        args.append(image)
        if command:
            args.extend(command)

        return self.run_cmd(args, timeout=timeout, check=False)

    def stop(self, cid: str, timeout: int = 30) -> None:
        """Stop a running container (SIGTERM, then SIGKILL after *timeout*)."""
        logger.info("Stopping container %s …", cid[:12])
        self.run_cmd(
            ["stop", "--time", str(timeout), cid],
            timeout=timeout + 10,
        )

    def kill(self, cid: str) -> None:
        """Send SIGKILL to a container."""
        self.run_cmd(["kill", cid], timeout=15)

    def remove(self, cid: str, force: bool = False) -> None:
        """Remove a container, raising :class:`DockerError` on failure.

        Parameters
        ----------
        cid:
            Container ID or name.
        force:
            If *True*, pass ``-f`` to remove even if running.
        """
        args = ["rm"]
        if force:
            args.append("-f")
        args.append(cid)
        self.run_cmd(args, timeout=30)
        logger.info("Container %s removed", cid[:12])

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def inspect(self, cid: str, format_str: str = "") -> str:
        """Run ``docker inspect`` and return the (formatted) output.

        Raises
        ------
        DockerError
            If the container does not exist.
        """
        args = ["inspect"]
        if format_str:
            args.extend(["-f", format_str])
        args.append(cid)
        result = self.run_cmd(args, timeout=15)
        return result.stdout.strip()

    def container_state(self, cid: str) -> str:
        """Return the container state (e.g. ``"running"``, ``"exited"``)."""
        return self.inspect(cid, "{{.State.Status}}")

    def container_ip(self, cid: str) -> str:
        """Return the first IP address of a container (empty if none)."""
        return self.inspect(
            cid, "{{range .NetworkSettings.Networks}}{{.IPAddress}}{{end}}"
        )

    def container_exit_code(self, cid: str) -> int:
        """Return the recorded exit code of a (stopped) container."""
        return _parse_int(self.inspect(cid, "{{.State.ExitCode}}"))

    # ------------------------------------------------------------------
    # Logs and exec
    # ------------------------------------------------------------------

    def container_logs(self, cid: str, tail: int = 500) -> str:
        """Return the last *tail* lines of container logs.

        Both stdout and stderr streams are captured and merged.
        """
        result = self.run_cmd(["logs", "--tail", str(tail), cid], timeout=30)
        # The server writes most of its log output to stderr
        return result.stdout + result.stderr

    def exec_cmd(
        self,
        cid: str,
        command: list[str],
        *,
        env: dict[str, str] | None = None,
        timeout: float = 30,
        check: bool = True,
        input_data: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Execute *command* inside a running container.

        Parameters
        ----------
        cid:
            Container ID or name.
        command:
            Argument list executed directly (no shell).
        env:
            Extra environment for the exec'd process.
        timeout:
            Maximum seconds to wait.
        check:
            If *True*, raise :class:`DockerError` on non-zero exit.
        """
        args: list[str] = ["exec"]
        if input_data is not None:
            args.append("-i")
        args.extend(_env_args(env))
        args.append(cid)
        args.extend(command)
        return self.run_cmd(args, timeout=timeout, check=check, input_data=input_data)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _mount_args(volumes: dict[str, str] | None) -> list[str]:
    args: list[str] = []
    for source, target in (volumes or {}).items():
        args.extend(["-v", f"{source}:{target}"])
    return args


def _env_args(env: dict[str, str] | None) -> list[str]:
    args: list[str] = []
    for key, value in (env or {}).items():
        args.extend(["-e", f"{key}={value}"])
    return args


def _parse_int(raw: str) -> int:
    """Parse the integer the CLI printed, raising :class:`DockerError` if garbled."""
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise DockerError(f"Unexpected non-integer docker output: {raw!r}") from exc
