# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Scenario registry, sequential runner and run report.

A scenario is a named function taking a :class:`ScenarioContext`.  It
signals a failed assertion by raising :class:`ScenarioFailure` (usually
through :func:`expect`) and opts out by raising
:class:`ScenarioSkipped`.  The runner executes scenarios strictly in
registration order, one at a time, converts every exception into an
outcome at the scenario boundary, and optionally stops after the first
failure.

Usage::

    registry = ScenarioRegistry()

    @registry.register("general", "basic login and query checks")
    def general(ctx: ScenarioContext) -> None:
        ...

    runner = ScenarioRunner(registry, make_context, fail_fast=False)
    report = runner.run(["general"])
    report.print_summary()
    sys.exit(report.exit_code)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from config import HarnessConfig
from docker_manager import DockerManager
from errors import ConfigError, HarnessError, ScenarioFailure, ScenarioSkipped
from logging_utils import log_group
from pg_client import PgClient
from polling import PollCondition
from resources import ResourceTracker
from topology import TopologyBuilder

logger = logging.getLogger(__name__)

PENDING = "pending"
RUNNING = "running"
PASSED = "passed"
FAILED = "failed"
SKIPPED = "skipped"

TERMINAL_OUTCOMES = (PASSED, FAILED, SKIPPED)

_ICONS = {PASSED: "✅", FAILED: "❌", SKIPPED: "⏭️", PENDING: "⏸️", RUNNING: "⏳"}


def expect(condition: bool, message: str) -> None:
    """Raise :class:`ScenarioFailure` with *message* unless *condition* holds."""
    if not condition:
        raise ScenarioFailure(message)


# ---------------------------------------------------------------------------
# Scenario context
# ---------------------------------------------------------------------------


@dataclass
class ScenarioContext:
    """Everything a scenario function may use; nothing is shared implicitly."""

    config: HarnessConfig
    docker: DockerManager
    tracker: ResourceTracker
    builder: TopologyBuilder
    client: PgClient
    scenario: str = ""

    @property
    def poll(self) -> PollCondition:
        """Attempt budget configured by ``POLL_ATTEMPTS`` / ``POLL_DELAY``."""
        return PollCondition(
            max_attempts=self.config.poll_attempts,
            delay=self.config.poll_delay,
        )


ScenarioFunc = Callable[[ScenarioContext], None]


# ---------------------------------------------------------------------------
# Scenario
# ---------------------------------------------------------------------------


@dataclass
class Scenario:
    """A named unit of work and its recorded outcome."""

    name: str
    func: ScenarioFunc
    description: str = ""
    ordinal: int = 0
    outcome: str = PENDING
    error: str = ""
    elapsed: float = 0.0

    @property
    def finished(self) -> bool:
        return self.outcome in TERMINAL_OUTCOMES

    def transition(self, outcome: str, error: str = "") -> None:
        """Move to *outcome*; terminal outcomes cannot change again."""
        if self.finished:
            raise HarnessError(
                f"Scenario {self.name} already {self.outcome}; cannot become {outcome}"
            )
        self.outcome = outcome
        self.error = error

    def __str__(self) -> str:
        icon = _ICONS.get(self.outcome, "?")
        timing = f" ({self.elapsed:.1f}s)" if self.elapsed else ""
        msg = f": {self.error}" if self.error else ""
        return f"{icon} {self.name}: {self.outcome}{timing}{msg}"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ScenarioRegistry:
    """Ordered collection of scenario definitions."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[ScenarioFunc, str]] = {}

    def register(
        self, name: str, description: str = ""
    ) -> Callable[[ScenarioFunc], ScenarioFunc]:
        """Decorator adding the function as scenario *name*."""

        def _decorator(func: ScenarioFunc) -> ScenarioFunc:
            summary = (func.__doc__ or "").strip().split("\n")[0]
            self.add(name, func, description or summary)
            return func

        return _decorator

    def add(self, name: str, func: ScenarioFunc, description: str = "") -> None:
        if name in self._entries:
            raise ConfigError(f"Scenario {name!r} is already registered")
        self._entries[name] = (func, description)

    @property
    def names(self) -> list[str]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def select(self, names: Iterable[str] = ()) -> list[Scenario]:
        """Return fresh :class:`Scenario` objects in registration order.

        An empty *names* selects everything.

        Raises
        ------
        ConfigError
            If a requested name is not registered.
        """
        wanted = list(names)
        unknown = [n for n in wanted if n not in self._entries]
        if unknown:
            raise ConfigError(
                f"Unknown scenario(s): {', '.join(unknown)} "
                f"(available: {', '.join(self._entries)})"
            )

        selected = [
            name for name in self._entries if not wanted or name in wanted
        ]
        return [
            Scenario(
                name=name,
                func=self._entries[name][0],
                description=self._entries[name][1],
                ordinal=index,
            )
            for index, name in enumerate(selected, start=1)
        ]


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class RunReport:
    """Outcomes of one run, in execution order."""

    scenarios: list[Scenario] = field(default_factory=list)

    def count(self, outcome: str) -> int:
        return sum(1 for s in self.scenarios if s.outcome == outcome)

    @property
    def passed(self) -> bool:
        """True if no scenario failed and none was left unexecuted.

        A skipped scenario counts as passed.
        """
        return all(s.outcome in (PASSED, SKIPPED) for s in self.scenarios)

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    @property
    def total_elapsed(self) -> float:
        return sum(s.elapsed for s in self.scenarios)

    def print_summary(self) -> None:
        """Log every scenario outcome followed by a single verdict line."""
        logger.info("")
        logger.info("=" * 60)
        logger.info("FINAL SUMMARY")
        logger.info("=" * 60)
        for scenario in self.scenarios:
            if scenario.outcome == PENDING:
                logger.info("%s %s: not run", _ICONS[PENDING], scenario.name)
            else:
                logger.info("%s", scenario)
        logger.info("-" * 60)
        logger.info(
            "Scenarios: %d passed, %d failed, %d skipped, %d not run (%.0fs)",
            self.count(PASSED),
            self.count(FAILED),
            self.count(SKIPPED),
            self.count(PENDING),
            self.total_elapsed,
        )
        logger.info("-" * 60)
        if self.passed:
            logger.info("✅ ALL TESTS PASSED")
        else:
            logger.info("❌ SOME TESTS FAILED")


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


class ScenarioRunner:
    """Execute selected scenarios sequentially and collect a :class:`RunReport`."""

    def __init__(
        self,
        registry: ScenarioRegistry,
        context_factory: Callable[[Scenario], ScenarioContext],
        *,
        tracker: ResourceTracker | None = None,
        fail_fast: bool = False,
    ) -> None:
        self.registry = registry
        self.context_factory = context_factory
        self.tracker = tracker
        self.fail_fast = fail_fast

    def run(self, names: Iterable[str] = ()) -> RunReport:
        """Run the scenarios selected by *names* (all when empty)."""
        report = RunReport(scenarios=self.registry.select(names))
        logger.info(
            "Scenarios to run: %s",
            ", ".join(s.name for s in report.scenarios) or "(none)",
        )

        for scenario in report.scenarios:
            self.run_one(scenario)
            if scenario.outcome == FAILED and self.fail_fast:
                remaining = [s.name for s in report.scenarios if s.outcome == PENDING]
                if remaining:
                    logger.warning(
                        "Fail-fast: not running %s", ", ".join(remaining)
                    )
                break

        return report

    def run_one(self, scenario: Scenario) -> None:
        """Execute *scenario* and record its outcome.  Never raises."""
        with log_group(f"[{scenario.ordinal}] Scenario: {scenario.name}"):
            if scenario.description:
                logger.info("%s", scenario.description)
            scenario.transition(RUNNING)
            start = time.monotonic()
            outcome, error = PASSED, ""
            try:
                if self.tracker is not None:
                    with self.tracker.scope():
                        scenario.func(self.context_factory(scenario))
                else:
                    scenario.func(self.context_factory(scenario))
            except ScenarioSkipped as exc:
                outcome, error = SKIPPED, str(exc)
                logger.info("Skipped: %s", exc)
            except ScenarioFailure as exc:
                outcome, error = FAILED, str(exc)
                logger.error("Assertion failed: %s", exc)
            except HarnessError as exc:
                outcome, error = FAILED, f"{type(exc).__name__}: {exc}"
                logger.error("%s", error)
            except Exception as exc:
                outcome, error = FAILED, f"Unexpected error: {exc}"
                logger.exception("%s", error)
            scenario.elapsed = time.monotonic() - start
            scenario.transition(outcome, error)
            logger.info("%s", scenario)
