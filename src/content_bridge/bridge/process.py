"""WorkerProcess - handle on the tool worker child process."""

import asyncio
import logging
from collections.abc import Mapping, Sequence

from ..config import MAX_FRAME_BYTES

logger = logging.getLogger(__name__)

# Stream buffer limit; large work item listings arrive as one line
STREAM_LIMIT = MAX_FRAME_BYTES

DEFAULT_TERMINATE_GRACE = 5.0


class WorkerProcess:
    """A spawned worker with piped stdin, stdout and stderr."""

    def __init__(self, process: asyncio.subprocess.Process, argv: Sequence[str]):
        if process.stdin is None or process.stdout is None or process.stderr is None:
            raise ValueError("Worker process must be started with piped stdio")
        self.process = process
        self.argv = list(argv)
        self.stdin: asyncio.StreamWriter = process.stdin
        self.stdout: asyncio.StreamReader = process.stdout
        self.stderr: asyncio.StreamReader = process.stderr

    @classmethod
    async def spawn(
        cls,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> "WorkerProcess":
        """Start the worker.

        Raises:
            OSError: If the executable cannot be started
        """
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env) if env is not None else None,
            cwd=cwd,
            limit=STREAM_LIMIT,
        )
        logger.info(f"Spawned worker (PID {process.pid}): {' '.join(argv)}")
        return cls(process, argv)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> int | None:
        return self.process.returncode

    async def wait(self) -> int:
        return await self.process.wait()

    async def terminate(self, grace: float = DEFAULT_TERMINATE_GRACE) -> int | None:
        """Stop the worker via SIGTERM, force-killing it after ``grace`` seconds.

        Returns:
            The exit code, or None if it could not be collected
        """
        if self.returncode is not None:
            return self.returncode

        try:
            self.process.terminate()
        except ProcessLookupError:
            return await self.wait()

        try:
            return await asyncio.wait_for(self.wait(), grace)
        except asyncio.TimeoutError:
            logger.warning(f"Worker (PID {self.pid}) ignored SIGTERM, killing")

        try:
            self.process.kill()
        except ProcessLookupError:
            pass
        return await self.wait()
