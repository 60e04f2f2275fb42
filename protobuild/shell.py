"""
Thin wrapper around ``subprocess.run`` used for every external command.

Each call carries an explicit timeout so that a hung ``protoc``, ``make``
or ``sudo`` surfaces as :class:`~protobuild.errors.CommandTimeout`
instead of blocking the build forever.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional, Sequence

from protobuild.errors import CommandTimeout

logger = logging.getLogger(__name__)


def run_command(
    cmd: Sequence[str],
    cwd: Optional[Path] = None,
    timeout: float = 120,
    capture: bool = True,
    input: Optional[str] = None,
) -> subprocess.CompletedProcess:
    """
    Run *cmd* and return the completed process.

    Parameters
    ----------
    cmd:
        Program and arguments.
    cwd:
        Working directory for the command.
    timeout:
        Seconds to wait before giving up.
    capture:
        Capture stdout/stderr as text.  When ``False`` the output streams
        straight to the console (used for ``configure`` and ``make``).
    input:
        Text fed to the command's stdin.

    Raises
    ------
    CommandTimeout
        If the command does not finish within *timeout* seconds.
    OSError
        If the program cannot be started (e.g. not on ``PATH``).
    """
    cmd = [str(part) for part in cmd]
    logger.debug("Running %s (cwd=%s)", " ".join(cmd), cwd or ".")
    try:
        return subprocess.run(
            cmd,
            cwd=str(cwd) if cwd else None,
            capture_output=capture,
            text=True,
            input=input,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise CommandTimeout(cmd, timeout) from None
