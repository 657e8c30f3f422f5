# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Tests for the polling module."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from errors import ContainerGoneError, DockerError
from polling import PollCondition, poll, poll_condition


class _Counter:
    """Predicate returning scripted results and counting evaluations."""

    def __init__(self, *results: bool) -> None:
        self.results = list(results)
        self.calls = 0

    def __call__(self) -> bool:
        self.calls += 1
        return self.results.pop(0) if self.results else False


class TestPoll:
    @pytest.mark.parametrize("attempts", [1, 2, 5, 30])
    def test_always_false_evaluates_exactly_n_times(self, attempts: int) -> None:
        predicate = _Counter()
        sleep = MagicMock()

        assert poll(predicate, attempts, 1.0, sleep=sleep) is False
        assert predicate.calls == attempts
        assert sleep.call_count == attempts - 1

    def test_always_true_evaluates_once(self) -> None:
        predicate = MagicMock(return_value=True)
        sleep = MagicMock()

        assert poll(predicate, 30, 1.0, sleep=sleep) is True
        predicate.assert_called_once()
        sleep.assert_not_called()

    def test_true_on_third_attempt(self) -> None:
        predicate = _Counter(False, False, True)
        sleep = MagicMock()

        assert poll(predicate, 10, 2.5, sleep=sleep) is True
        assert predicate.calls == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2.5, 2.5]

    def test_harness_error_counts_as_false(self) -> None:
        calls = []

        def predicate() -> bool:
            calls.append(1)
            if len(calls) < 2:
                raise DockerError("container not up yet")
            return True

        assert poll(predicate, 5, 0, sleep=MagicMock()) is True
        assert len(calls) == 2

    def test_container_gone_is_not_retried(self) -> None:
        predicate = MagicMock(side_effect=ContainerGoneError("pg-test-a was removed"))
        sleep = MagicMock()

        with pytest.raises(ContainerGoneError):
            poll(predicate, 30, 1.0, sleep=sleep)
        predicate.assert_called_once()
        sleep.assert_not_called()

    def test_other_exceptions_propagate(self) -> None:
        def predicate() -> bool:
            raise KeyError("bug")

        with pytest.raises(KeyError):
            poll(predicate, 5, 0, sleep=MagicMock())

    def test_exhaustion_is_logged(self, caplog) -> None:
        poll(lambda: False, 2, 0, description="replica visibility", sleep=MagicMock())
        assert "Giving up on replica visibility after 2 attempt(s)" in caplog.text

    @pytest.mark.parametrize(("attempts", "delay"), [(0, 1.0), (-1, 1.0), (3, -0.1)])
    def test_invalid_bounds(self, attempts: int, delay: float) -> None:
        with pytest.raises(ValueError):
            poll(lambda: True, attempts, delay)


class TestPollCondition:
    def test_defaults(self) -> None:
        condition = PollCondition()
        assert condition.max_attempts == 30
        assert condition.delay == 1.0
        assert condition.max_wait == 30.0

    def test_frozen(self) -> None:
        condition = PollCondition()
        with pytest.raises(AttributeError):
            condition.delay = 5  # pyright: ignore[reportAttributeAccessIssue]

    def test_poll_condition_uses_budget(self) -> None:
        predicate = _Counter()
        sleep = MagicMock()

        assert poll_condition(predicate, PollCondition(4, 0.25), sleep=sleep) is False
        assert predicate.calls == 4
        sleep.assert_called_with(0.25)
