# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Domain-specific exception hierarchy for the PostgreSQL image tests.

All exceptions raised by the harness library modules inherit from
:class:`HarnessError`.  The scenario runner catches everything at the
scenario boundary and converts it into an outcome; the CLI entry point
only ever sees configuration problems.
"""

from __future__ import annotations


class HarnessError(Exception):
    """Base exception for all harness errors."""


class DockerError(HarnessError):
    """A Docker CLI command failed.

    Attributes:
        returncode: Exit code returned by the Docker process.
        stderr: Standard error output captured from the process.
    """

    def __init__(self, message: str, returncode: int = 1, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr:
            return f"{base}\nstderr: {self.stderr.strip()}"
        return base


class DockerTimeoutError(DockerError):
    """A Docker CLI command did not finish within its bounded wait."""


class BuildError(HarnessError):
    """An image could not be produced by the source-to-image build."""


class ConfigError(HarnessError):
    """Invalid or missing configuration."""


class ContainerGoneError(HarnessError):
    """A container handle was used after its container stopped or was removed."""


class PollExhausted(HarnessError):
    """A polled condition never became true within its attempt budget.

    Attributes:
        description: What was being waited for.
        attempts: Number of evaluations made before giving up.
    """

    def __init__(self, message: str, description: str = "", attempts: int = 0) -> None:
        super().__init__(message)
        self.description = description
        self.attempts = attempts


class ScenarioFailure(HarnessError):
    """An assertion inside a scenario did not hold."""


class ScenarioSkipped(HarnessError):
    """A scenario cannot run in the current configuration."""
