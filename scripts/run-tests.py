#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Integration tests for a PostgreSQL container image.

Runs the registered scenarios against ``$IMAGE_NAME`` one after the
other, prints a summary, and exits 0 only if every scenario passed.
Every container, volume, image and temporary file created along the
way is removed on exit, including on Ctrl-C or ``SIGTERM``.

Usage::

    # Run everything
    IMAGE_NAME=quay.io/sclorg/postgresql-16-c9s VERSION=16 OS=c9s \\
        python scripts/run-tests.py

    # Run a subset, stop at the first failure
    TESTS="general replication" FAIL_FAST=true python scripts/run-tests.py

    # List available scenarios
    python scripts/run-tests.py --list

Environment Variables
---------------------
IMAGE_NAME / VERSION / OS
    Image under test, its PostgreSQL major version and OS family.
    All three are required.
TESTS
    Comma or space separated scenario names (default: all).
FAIL_FAST
    ``"true"`` to stop after the first failed scenario.
CREATION_TIMEOUT
    Seconds a container may take to fail during creation checks (60).
POLL_ATTEMPTS / POLL_DELAY
    Attempt budget for readiness and replication polling (30 / 1.0).
DOCKER_ARGS
    Extra arguments for every ``docker run``.
UPGRADE_FROM_IMAGE
    Previous major version image for the upgrade scenario.
S2I_SOURCE_DIR
    Application directory for the s2i scenario (``test-app``).
KEEP
    ``"true"`` to leave containers, volumes and images in place.
DEBUG
    ``"true"`` for verbose output.
"""

from __future__ import annotations

import argparse
import logging
import sys
import textwrap
from pathlib import Path

# ---------------------------------------------------------------------------
# Path setup – ensure ``scripts/lib`` is importable
# ---------------------------------------------------------------------------
SCRIPT_DIR = Path(__file__).parent.resolve()
LIB_DIR = SCRIPT_DIR / "lib"
sys.path.insert(0, str(LIB_DIR))

from config import HarnessConfig, parse_test_list  # noqa: E402
from docker_manager import DockerManager  # noqa: E402
from errors import ConfigError, HarnessError  # noqa: E402
from logging_utils import setup_logging  # noqa: E402
from outputs import write_report_summary  # noqa: E402
from pg_client import PgClient  # noqa: E402
from resources import ResourceTracker  # noqa: E402
from scenarios import (  # noqa: E402
    Scenario,
    ScenarioContext,
    ScenarioRegistry,
    ScenarioRunner,
)
from suite import REGISTRY  # noqa: E402
from topology import TopologyBuilder  # noqa: E402

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Integration tests for a PostgreSQL container image.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              %(prog)s                              # run all scenarios
              %(prog)s --tests general              # run a single scenario
              %(prog)s --tests general,replication  # run several
              %(prog)s --list                       # list scenarios
              %(prog)s --fail-fast                  # stop at first failure
        """),
    )
    parser.add_argument(
        "--tests",
        "-t",
        help="Comma-separated scenario names to run (overrides $TESTS).",
    )
    parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List available scenarios and exit.",
    )
    parser.add_argument(
        "--fail-fast",
        "-x",
        action="store_true",
        help="Stop after the first failed scenario (overrides $FAIL_FAST).",
    )
    parser.add_argument(
        "--keep",
        "-k",
        action="store_true",
        help="Keep containers, volumes and images for inspection.",
    )
    return parser.parse_args(argv)


def list_scenarios(registry: ScenarioRegistry) -> None:
    print("\nAvailable scenarios:\n")
    for scenario in registry.select():
        print(f"  {scenario.name:20s} {scenario.description}")
    print()


def run(
    config: HarnessConfig,
    *,
    registry: ScenarioRegistry = REGISTRY,
    docker: DockerManager | None = None,
) -> int:
    """Validate *config*, run the selected scenarios and return the exit code.

    Returns
    -------
    int
        0 if every scenario passed, 1 if any failed or the configuration
        is incomplete.
    """
    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error("%s", problem)
        logger.error("Configuration incomplete; no scenario was run")
        return 1

    # Surfaces unknown names before any container is created
    registry.select(config.tests)

    logger.info("Test configuration:")
    logger.info("  Image:            %s", config.image_name)
    logger.info("  Version:          %s", config.version)
    logger.info("  OS:               %s", config.os_family)
    logger.info("  Tests:            %s", ", ".join(config.tests) or "(all)")
    logger.info("  Fail fast:        %s", config.fail_fast)
    logger.info("  Creation timeout: %ds", config.creation_timeout)
    logger.info("")

    docker = docker or DockerManager()
    tracker = ResourceTracker(docker, keep=config.keep)
    builder = TopologyBuilder(config, docker, tracker)
    client = PgClient(docker, config.image_name, extra_args=config.docker_args)

    def _context(scenario: Scenario) -> ScenarioContext:
        return ScenarioContext(
            config=config,
            docker=docker,
            tracker=tracker,
            builder=builder,
            client=client,
            scenario=scenario.name,
        )

    runner = ScenarioRunner(
        registry,
        _context,
        tracker=tracker,
        fail_fast=config.fail_fast,
    )

    with tracker.guard():
        report = runner.run(config.tests)

    report.print_summary()
    write_report_summary(report, config)
    return report.exit_code


def main(argv: list[str] | None = None) -> int:
    """Entry point with structured error handling."""
    args = parse_args(argv)

    if args.list:
        list_scenarios(REGISTRY)
        return 0

    try:
        config = HarnessConfig.from_environment()
    except ConfigError as exc:
        setup_logging()
        logger.error("%s", exc)
        return 1

    overrides: dict[str, object] = {}
    if args.tests:
        overrides["tests"] = parse_test_list(args.tests)
    if args.fail_fast:
        overrides["fail_fast"] = True
    if args.keep:
        overrides["keep"] = True
    # Relative application paths may be given from the repository root
    repo_relative = SCRIPT_DIR.parent / config.s2i_source_dir
    if not config.s2i_source_path.exists() and repo_relative.is_dir():
        overrides["s2i_source_dir"] = str(repo_relative)
    if overrides:
        config = config.with_overrides(**overrides)

    setup_logging(debug=config.debug)

    try:
        return run(config)
    except HarnessError as exc:
        logger.error(str(exc))
        print(f"::error::{exc}", file=sys.stderr)
        return 1
    except Exception as exc:
        logger.exception("Unexpected error: %s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
