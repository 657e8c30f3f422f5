# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""GitHub Actions step summary for a harness run.

When ``$GITHUB_STEP_SUMMARY`` is set, the final report is appended as a
Markdown table so the outcome of every scenario is visible on the
workflow run page.  Locally the calls are no-ops.
"""

from __future__ import annotations

import logging
import os

from config import HarnessConfig
from scenarios import PENDING, RunReport

logger = logging.getLogger(__name__)

_STATUS_TEXT = {
    "passed": "✅ passed",
    "failed": "❌ failed",
    "skipped": "⏭️ skipped",
    PENDING: "⏸️ not run",
}


def write_summary(markdown: str) -> None:
    """Append *markdown* content to ``$GITHUB_STEP_SUMMARY``.

    A trailing newline is ensured so that consecutive calls don't run
    together.  If the environment variable is unset the call is silently
    ignored.
    """
    summary_file = os.environ.get("GITHUB_STEP_SUMMARY")
    if not summary_file:
        logger.debug("GITHUB_STEP_SUMMARY not set; skipping %d chars", len(markdown))
        return

    try:
        with open(summary_file, "a", encoding="utf-8") as fh:
            fh.write(markdown)
            if not markdown.endswith("\n"):
                fh.write("\n")
        logger.debug("Wrote %d chars to step summary", len(markdown))
    except OSError as exc:
        logger.warning("Failed to write to GITHUB_STEP_SUMMARY: %s", exc)


def render_report(report: RunReport, config: HarnessConfig) -> str:
    """Render *report* as a Markdown section with one row per scenario."""
    verdict = "✅ all passed" if report.passed else "❌ failures"
    lines = [
        f"### PostgreSQL {config.version} ({config.os_family}): {verdict}",
        "",
        f"Image: `{config.image_name}`",
        "",
        "| # | Scenario | Result | Time | Details |",
        "|---|----------|--------|------|---------|",
    ]
    for scenario in report.scenarios:
        status = _STATUS_TEXT.get(scenario.outcome, scenario.outcome)
        timing = f"{scenario.elapsed:.0f}s" if scenario.elapsed else ""
        details = scenario.error.replace("|", "\\|").replace("\n", " ")
        lines.append(
            f"| {scenario.ordinal} | {scenario.name} | {status} | {timing} | {details} |"
        )
    lines.append("")
    return "\n".join(lines)


def write_report_summary(report: RunReport, config: HarnessConfig) -> None:
    """Append the rendered *report* to the step summary."""
    write_summary(render_report(report, config))
