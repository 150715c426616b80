"""Async subprocess runner for installed reconnaissance binaries."""

from __future__ import annotations

import asyncio
import logging
import shutil
from typing import Optional

from ..core.errors import ToolTransportFailure

logger = logging.getLogger(__name__)

STDERR_TAIL = 2000


async def run_command(tool: str, argv: list[str], stdin: Optional[str] = None) -> str:
    """Run ``argv`` and return its stdout.

    Raises ``ToolTransportFailure`` when the binary is missing or exits
    non-zero. When the awaiting task is cancelled (for example by a timeout
    around this call) the child process is killed before re-raising.
    """
    binary = argv[0]
    if shutil.which(binary) is None:
        raise ToolTransportFailure(tool, f"{binary} is not installed")

    logger.debug("Spawning %s", " ".join(argv))
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ToolTransportFailure(tool, f"Failed to start {binary}: {e}") from e

    try:
        stdout, stderr = await proc.communicate(stdin.encode("utf-8") if stdin is not None else None)
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        tail = stderr.decode("utf-8", errors="replace")[-STDERR_TAIL:].strip()
        raise ToolTransportFailure(tool, f"Tool {tool} exited with code {proc.returncode}: {tail}")
    return stdout.decode("utf-8", errors="replace")
