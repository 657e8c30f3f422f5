# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Logging setup for the harness.

:func:`setup_logging` installs a single stderr handler on the root
logger.  Under GitHub Actions, warnings and errors are also emitted as
workflow annotations so failed scenarios show up inline in the run.

The docker command lines logged at ``DEBUG`` level carry the
credentials the scenarios pass to the containers; every record goes
through :func:`redact` before it is written.
"""

from __future__ import annotations

import contextlib
import logging
import os
import re
import sys
from collections.abc import Iterator
from typing import TextIO

MASK = "***"

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ANNOTATIONS = {
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}

# shlex.join quotes a whole "NAME=value" token when the value needs it
_QUOTED_SECRET_RE = re.compile(r"'([A-Z_]*PASSWORD)=[^']*'")
_SECRET_RE = re.compile(r"\b([A-Z_]*PASSWORD)=[^\s']+")


def in_github_actions() -> bool:
    return os.environ.get("GITHUB_ACTIONS") == "true"


def redact(text: str) -> str:
    """Mask the value of every ``*PASSWORD=value`` assignment in *text*.

    Covers ``POSTGRESQL_PASSWORD``, ``POSTGRESQL_ADMIN_PASSWORD``,
    ``POSTGRESQL_MASTER_PASSWORD``, ``PGPASSWORD`` and the like.
    """
    text = _QUOTED_SECRET_RE.sub(rf"'\1={MASK}'", text)
    return _SECRET_RE.sub(rf"\1={MASK}", text)


class _RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


class _HarnessFormatter(logging.Formatter):
    """Timestamped log lines, optionally preceded by a workflow annotation."""

    def __init__(self, annotate: bool = False) -> None:
        super().__init__(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
        self.annotate = annotate

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        command = _ANNOTATIONS.get(record.levelno) if self.annotate else None
        if command is None:
            return formatted
        # An annotation holds one line, the full record follows it
        summary = (record.getMessage().splitlines() or [""])[0]
        return f"::{command}::{summary}\n{formatted}"


def setup_logging(
    debug: bool | None = None, *, stream: TextIO | None = None
) -> logging.Handler:
    """Configure the root logger and return the installed handler.

    Parameters
    ----------
    debug:
        Force ``DEBUG`` (*True*) or ``INFO`` (*False*).  When *None*,
        the ``DEBUG`` environment variable decides.
    stream:
        Where to write; standard error by default.

    Calling it again replaces the handler installed previously.
    """
    if debug is None:
        debug = os.environ.get("DEBUG", "false").lower() == "true"

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(_HarnessFormatter(annotate=in_github_actions()))
    handler.addFilter(_RedactingFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.addHandler(handler)
    return handler


@contextlib.contextmanager
def log_group(title: str, stream: TextIO | None = None) -> Iterator[None]:
    """Bracket the output of the enclosed block under *title*.

    Under GitHub Actions the block becomes a collapsible group; locally
    the title is printed as a ruled header.

    Usage::

        with log_group("[5] Scenario: replication"):
            logger.info("primary started")
    """
    out = stream or sys.stderr
    if not in_github_actions():
        rule = "=" * 60
        print(f"\n{rule}\n  {title}\n{rule}", file=out, flush=True)
        yield
        return

    print(f"::group::{title}", file=out, flush=True)
    try:
        yield
    finally:
        print("::endgroup::", file=out, flush=True)
