"""Async subprocess runner shared by the command-line tool clients."""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from core.errors import ConversionError, ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class ToolOutput:
    returncode: int
    stdout: str
    stderr: str


def find_executable(name: str, explicit: Optional[str] = None) -> str:
    """Locate a tool on PATH or next to the running interpreter (venv)."""
    if explicit:
        return explicit
    found = shutil.which(name)
    if found:
        return found
    candidate = Path(sys.executable).parent / (f"{name}.exe" if sys.platform == "win32" else name)
    if candidate.exists():
        return str(candidate)
    raise ConversionError(ErrorKind.CONFIGURATION, f"{name} not found. Please install it.")


async def run_tool(cmd: list[str], timeout: float) -> ToolOutput:
    """Run ``cmd`` and capture output.

    Raises ``ConversionError`` with ``TIMEOUT`` when the deadline passes and
    ``CONFIGURATION`` when the executable cannot be started. A non-zero exit
    status is returned, not raised, so callers can classify stderr.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise ConversionError(ErrorKind.CONFIGURATION, f"Executable not found: {Path(cmd[0]).name}")

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ConversionError(ErrorKind.TIMEOUT, f"{Path(cmd[0]).name} timed out after {timeout:.0f}s")

    return ToolOutput(
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
