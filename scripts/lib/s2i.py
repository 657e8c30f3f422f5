# SPDX-License-Identifier: Apache-2.0
# SPDX-FileCopyrightText: 2025 The Linux Foundation

"""Wrapper around the ``s2i`` (source-to-image) build tool.

The image under test supports being used as an s2i builder: an
application directory carrying ``postgresql-cfg/``, ``postgresql-init/``
or ``postgresql-pre-start/`` hooks is layered on top of it.  The harness
only ever consumes the resulting image tag.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from errors import BuildError

logger = logging.getLogger(__name__)


class S2IBuilder:
    """Run ``s2i build <source> <builder> <tag>``."""

    def __init__(self, executable: str = "s2i") -> None:
        self.executable = executable

    def build(
        self,
        source_dir: Path,
        builder_image: str,
        tag: str,
        *,
        pull_policy: str = "never",
        timeout: int = 600,
    ) -> str:
        """Build *tag* from *source_dir* using *builder_image*.

        Returns
        -------
        str
            The tag of the produced image.

        Raises
        ------
        BuildError
            If the source directory is missing, the tool is not
            installed, the build fails, or it exceeds *timeout*.
        """
        if not source_dir.is_dir():
            raise BuildError(f"s2i source directory not found: {source_dir}")

        cmd = [
            self.executable,
            "build",
            f"--pull-policy={pull_policy}",
            str(source_dir),
            builder_image,
            tag,
        ]
        logger.info("Building s2i image %s from %s …", tag, source_dir)
        logger.debug("Running: %s", shlex.join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise BuildError(f"s2i build of {tag} timed out after {timeout}s") from exc
        except FileNotFoundError as exc:
            raise BuildError("s2i executable not found – is it installed?") from exc

        if result.returncode != 0:
            raise BuildError(
                f"s2i build of {tag} failed (exit {result.returncode}): "
                f"{result.stderr.strip()}"
            )

        logger.info("Image %s built ✅", tag)
        return tag
