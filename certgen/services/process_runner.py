"""
Subprocess runner for external tools (FFmpeg, FFprobe).

Commands run through subprocess.run in the default thread pool so the event
loop stays free for other requests.
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ProcessResult:
    """Outcome of a finished (or killed) process."""

    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    def diagnostics(self, limit: int = 2000) -> str:
        """Tail of stderr (falling back to stdout) for error reports."""
        output = self.stderr or self.stdout
        if not output:
            return "Unknown error"
        return output.decode("utf-8", errors="replace")[-limit:].strip()


class ProcessRunner:
    """Runs commands to completion and captures their output."""

    async def run(self, cmd: list[str], timeout: Optional[float] = None) -> ProcessResult:
        """
        Run a command asynchronously.

        Args:
            cmd: Program and arguments (no shell)
            timeout: Seconds before the process is killed

        Returns:
            ProcessResult; timed_out is set when the deadline passed

        Raises:
            FileNotFoundError: If the program does not exist
        """
        logger.debug(f"Running: {' '.join(cmd[:10])}...")

        loop = asyncio.get_event_loop()
        try:
            result = await loop.run_in_executor(
                None,
                lambda: subprocess.run(cmd, capture_output=True, timeout=timeout),
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run has already killed and reaped the child
            logger.warning(f"Process timed out after {timeout}s: {cmd[0]}")
            return ProcessResult(
                returncode=-1,
                stdout=e.stdout or b"",
                stderr=e.stderr or b"",
                timed_out=True,
            )

        return ProcessResult(
            returncode=result.returncode,
            stdout=result.stdout or b"",
            stderr=result.stderr or b"",
        )
