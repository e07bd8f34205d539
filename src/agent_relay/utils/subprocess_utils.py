"""Async subprocess execution with a hard wall-clock timeout."""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class CommandTimeoutError(asyncio.TimeoutError):
    """The command ran past its timeout and was killed."""

    def __init__(self, cmd: str, timeout: float):
        self.cmd = cmd
        self.timeout = timeout
        super().__init__(f"Command timed out after {timeout:g}s: {cmd}")


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(
    cmd: List[str],
    *,
    cwd: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    stdin_data: Optional[str] = None,
) -> CommandResult:
    """
    Run a command and collect its output.

    Args:
        cmd: Argument vector; never passed through a shell
        cwd: Working directory
        env: Full environment for the child (not merged with ours)
        timeout: Seconds before the child is SIGKILLed
        stdin_data: Text written to stdin, which is then closed

    Returns:
        CommandResult with decoded stdout/stderr

    Raises:
        CommandTimeoutError: If timeout exceeded (child already killed)
        OSError: If the executable cannot be started
    """
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
        env=env,
    )

    stdin_bytes = stdin_data.encode() if stdin_data is not None else None
    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input=stdin_bytes),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning(f"{cmd[0]} timed out after {timeout}s, killing process")
        process.kill()
        await process.wait()
        raise CommandTimeoutError(cmd[0], timeout)

    return CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
