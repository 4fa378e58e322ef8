"""Runs agent CLIs as subprocesses with output captured to a log file."""

import asyncio
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class RunResult:
    """Outcome of one agent process."""

    exit_code: int
    log_path: Path


class IAgentRunner(Protocol):
    """Runs a command to completion, bounded by a timeout."""

    async def run(
        self,
        command: str,
        args: list[str],
        env: dict[str, str],
        timeout: float,
    ) -> RunResult:
        """Run the command. Raises TimeoutError if it does not finish in time."""
        ...


class SubprocessRunner:
    """Spawns the agent process, writing stdout and stderr to one log file.

    The orchestrator reads agent output from the log file only. Cancelling the
    awaiting task kills the process.
    """

    def __init__(self, log_dir: Path, kill_grace: float = 5.0):
        self._log_dir = Path(log_dir)
        self._kill_grace = kill_grace

    async def run(
        self,
        command: str,
        args: list[str],
        env: dict[str, str],
        timeout: float,
    ) -> RunResult:
        self._log_dir.mkdir(parents=True, exist_ok=True)
        log_path = self._log_dir / f"{uuid.uuid4().hex}.log"

        with open(log_path, "wb") as log_file:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=log_file,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
            )
            logger.info("Started %s (pid %s), log %s", command, process.pid, log_path)

            try:
                exit_code = await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("%s (pid %s) timed out after %ss", command, process.pid, timeout)
                await self._terminate(process)
                raise TimeoutError(f"{command} timed out after {timeout}s")
            except asyncio.CancelledError:
                logger.info("Killing %s (pid %s): run cancelled", command, process.pid)
                await self._terminate(process)
                raise

        return RunResult(exit_code=exit_code, log_path=log_path)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=self._kill_grace)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
