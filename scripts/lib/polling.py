# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Bounded retry of a predicate with a fixed delay.

Server start-up, login admission and replication are all asynchronous,
so every check that waits on the image goes through :func:`poll`: the
predicate is evaluated at most ``max_attempts`` times with ``delay``
seconds between evaluations, and exhaustion is reported instead of
hanging.

Usage::

    from polling import PollCondition, poll, poll_condition

    ready = poll(lambda: is_ready(docker, handle), 30, 1.0,
                 description="pg_isready on pg-general-1")
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from errors import ContainerGoneError, HarnessError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollCondition:
    """Attempt budget for one polling call."""

    max_attempts: int = 30
    delay: float = 1.0

    @property
    def max_wait(self) -> float:
        """Upper bound on the seconds spent sleeping for this condition."""
        return self.max_attempts * self.delay


# Defaults used across the scenarios
READINESS = PollCondition(max_attempts=30, delay=1.0)
CONNECTION = PollCondition(max_attempts=20, delay=2.0)
REPLICATION = PollCondition(max_attempts=30, delay=1.0)


def poll(
    predicate: Callable[[], bool],
    max_attempts: int,
    delay: float,
    *,
    description: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Evaluate *predicate* until it returns true or attempts run out.

    Parameters
    ----------
    predicate:
        Zero-argument callable.  A :class:`HarnessError` raised from it
        (for instance a transient :class:`DockerError`) counts as a
        false evaluation.  :class:`ContainerGoneError` and any other
        exception propagate at once.
    max_attempts:
        Maximum number of evaluations; must be at least 1.
    delay:
        Seconds slept between two evaluations.  There is no sleep after
        the last one.
    description:
        What is being waited for, used in log messages.
    sleep:
        Injectable sleep function.

    Returns
    -------
    bool
        *True* on the first true evaluation, *False* after
        *max_attempts* false ones.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    if delay < 0:
        raise ValueError(f"delay must not be negative, got {delay}")

    label = description or getattr(predicate, "__name__", "condition")

    for attempt in range(1, max_attempts + 1):
        try:
            if predicate():
                logger.debug("%s: true after %d attempt(s)", label, attempt)
                return True
        except ContainerGoneError:
            raise
        except HarnessError as exc:
            logger.debug("%s: attempt %d raised %s", label, attempt, exc)

        if attempt < max_attempts:
            logger.debug("%s: attempt %d/%d false", label, attempt, max_attempts)
            sleep(delay)

    logger.warning("Giving up on %s after %d attempt(s)", label, max_attempts)
    return False


def poll_condition(
    predicate: Callable[[], bool],
    condition: PollCondition,
    *,
    description: str = "",
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Run :func:`poll` with the budget carried by *condition*."""
    return poll(
        predicate,
        condition.max_attempts,
        condition.delay,
        description=description,
        sleep=sleep,
    )
