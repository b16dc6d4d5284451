"""
Shell command runner used by ``SchedulerManager.exec`` tasks.
"""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

ProcessRunner = Callable[[str], Awaitable["ProcessResult"]]


@dataclass(frozen=True)
class ProcessResult:
    exit_code: int
    stdout: str
    stderr: str
    success: bool
    error: Optional[str] = None


def run_command(
    command: str,
    timeout: Optional[int] = None,
    working_dir: Optional[Path] = None,
    env_overrides: Optional[Dict[str, str]] = None,
) -> ProcessResult:
    env = os.environ.copy()
    if env_overrides:
        env.update({k: v for k, v in env_overrides.items() if v is not None})
    try:
        result = subprocess.run(
            command,
            shell=True,
            cwd=str(working_dir) if working_dir else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
            env=env,
        )
        return ProcessResult(
            exit_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            success=result.returncode == 0,
        )
    except subprocess.TimeoutExpired:
        return ProcessResult(
            exit_code=-1,
            stdout="",
            stderr=f"Timed out after {timeout} seconds.",
            success=False,
            error="timeout",
        )
    except OSError as exc:
        return ProcessResult(
            exit_code=-2,
            stdout="",
            stderr=str(exc),
            success=False,
            error="exception",
        )


async def run(command: str, timeout: Optional[int] = None) -> ProcessResult:
    """Run ``command`` through the shell without blocking the event loop."""
    logger.info("Running command: %s", command)
    return await asyncio.to_thread(run_command, command, timeout)
