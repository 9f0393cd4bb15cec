"""Process-group spawning, waiting and termination for agent tool children."""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


def kill_process_group(pid: int, sig: int) -> bool:
    """Send signal to the process group led by pid.

    Children are spawned with start_new_session=True, so the group id equals
    the leader's pid and stays valid while any grandchild is still alive,
    even after the leader itself was reaped.

    Returns False when the group is already gone.
    """
    try:
        os.killpg(pid, sig)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        logger.debug(f"Not permitted to signal process group {pid}")
        return False


class ProcessGroupCleanup:
    """Owns one spawned child for the span spawn -> wait().

    A background watcher waits on either the cancel event or process exit.
    Only cancellation escalates: SIGTERM to the whole group, a short grace
    window, then SIGKILL. wait() may be called any number of times; the
    child is reaped once and every caller gets the same return code.
    """

    GRACE_PERIOD = 0.1

    def __init__(self, process: asyncio.subprocess.Process, cancel: asyncio.Event):
        self._process = process
        self._cancel = cancel
        self._exited = asyncio.Event()
        self._wait_task: Optional[asyncio.Future] = None
        self.terminated = False
        self._watcher = asyncio.ensure_future(self._watch())

    @property
    def pid(self) -> int:
        return self._process.pid

    async def _watch(self) -> None:
        cancelled = asyncio.ensure_future(self._cancel.wait())
        exited = asyncio.ensure_future(self._exited.wait())
        try:
            done, _ = await asyncio.wait(
                {cancelled, exited}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancelled.cancel()
            exited.cancel()

        if cancelled in done and not self._exited.is_set():
            await self._terminate_group()

    async def _terminate_group(self) -> None:
        self.terminated = True
        pid = self._process.pid
        logger.debug(f"Cancellation requested, sending SIGTERM to process group {pid}")
        if not kill_process_group(pid, signal.SIGTERM):
            return
        await asyncio.sleep(self.GRACE_PERIOD)
        if kill_process_group(pid, signal.SIGKILL):
            logger.debug(f"Sent SIGKILL to process group {pid}")

    async def _wait_once(self) -> int:
        try:
            returncode = await self._process.wait()
        finally:
            self._exited.set()
        # let an in-flight escalation finish so grandchildren are gone too
        await self._watcher
        return returncode

    async def wait(self) -> int:
        """Block until the child exits and return its exit code."""
        if self._wait_task is None:
            self._wait_task = asyncio.ensure_future(self._wait_once())
        return await asyncio.shield(self._wait_task)


@dataclass
class RunningProcess:
    """Streams and wait handle of a spawned child."""
    pid: int
    stdout: asyncio.StreamReader
    stderr: Optional[asyncio.StreamReader]
    wait: Callable[[], Awaitable[int]]


class ProcessRunner:
    """Spawns children in their own process group.

    Executors depend on this seam rather than on asyncio directly so tests
    can substitute in-memory streams.
    """

    async def start(
        self,
        cmd: List[str],
        cancel: asyncio.Event,
        env: Optional[Dict[str, str]] = None,
        merge_stderr: bool = False,
        cwd: Optional[str] = None,
    ) -> RunningProcess:
        """Spawn cmd; raises OSError when the binary cannot be launched."""
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
            env=env,
            cwd=cwd,
            start_new_session=True,
        )
        cleanup = ProcessGroupCleanup(process, cancel)
        logger.debug(f"Started {cmd[0]} (pid {process.pid})")
        return RunningProcess(
            pid=process.pid,
            stdout=process.stdout,
            stderr=None if merge_stderr else process.stderr,
            wait=cleanup.wait,
        )
