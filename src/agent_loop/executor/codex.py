"""Secondary reviewer executor: codex CLI in exec mode."""

import asyncio
import logging
from typing import Optional, Sequence

from ..utils.process_utils import ProcessRunner
from .base import (
    ExecutionCancelledError,
    Executor,
    ExecutorError,
    OutputHandler,
    Result,
    apply_error_patterns,
)
from .stream_parsers import parse_filtered_stream, read_all

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "codex"
DEFAULT_MODEL = "gpt-5.2-codex"
DEFAULT_REASONING_EFFORT = "xhigh"
DEFAULT_TIMEOUT_MS = 3600000
DEFAULT_SANDBOX = "read-only"


class CodexExecutor(Executor):
    """Runs codex exec with separate stdout and stderr.

    stderr carries progress noise and is filtered for live display only.
    stdout holds the findings and becomes the result output unfiltered.
    """

    HELP_CMD = "codex /status"

    def __init__(
        self,
        command: str = DEFAULT_COMMAND,
        model: str = DEFAULT_MODEL,
        reasoning_effort: str = DEFAULT_REASONING_EFFORT,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        sandbox: str = DEFAULT_SANDBOX,
        project_doc: Optional[str] = None,
        error_patterns: Sequence[str] = (),
        on_output: Optional[OutputHandler] = None,
        process_runner: Optional[ProcessRunner] = None,
        work_dir: Optional[str] = None,
    ):
        self.command = command or DEFAULT_COMMAND
        self.model = model or DEFAULT_MODEL
        self.reasoning_effort = reasoning_effort or DEFAULT_REASONING_EFFORT
        self.timeout_ms = timeout_ms if timeout_ms > 0 else DEFAULT_TIMEOUT_MS
        self.sandbox = sandbox or DEFAULT_SANDBOX
        self.project_doc = project_doc
        self.error_patterns = list(error_patterns)
        self.on_output = on_output
        self.process_runner = process_runner or ProcessRunner()
        self.work_dir = work_dir

    def build_command(self, prompt: str) -> list:
        cmd = [
            self.command,
            "exec",
            "-c", f'model="{self.model}"',
            "-c", f"model_reasoning_effort={self.reasoning_effort}",
            "-c", f"stream_idle_timeout_ms={self.timeout_ms}",
            "-c", f'sandbox="{self.sandbox}"',
        ]
        if self.project_doc:
            cmd.extend(["-c", f'project_doc="{self.project_doc}"'])
        cmd.append(prompt)
        return cmd

    async def run(self, cancel: asyncio.Event, prompt: str) -> Result:
        if cancel.is_set():
            return Result(error=ExecutionCancelledError("cancelled before codex started"))

        logger.debug(f"Starting codex: model={self.model}, sandbox={self.sandbox}")

        try:
            proc = await self.process_runner.start(
                self.build_command(prompt), cancel, cwd=self.work_dir
            )
        except OSError as e:
            error = ExecutorError(f"start {self.command}: {e}")
            error.__cause__ = e
            return Result(error=error)

        stdout, stderr, returncode = await asyncio.gather(
            read_all(proc.stdout),
            parse_filtered_stream(proc.stderr, self.on_output),
            proc.wait(),
        )

        if cancel.is_set():
            return Result(
                stdout.output,
                stdout.signal,
                ExecutionCancelledError("codex execution cancelled"),
            )

        error: Optional[Exception] = None
        if stderr.error is not None:
            error = ExecutorError(f"read stderr: {stderr.error}")
            error.__cause__ = stderr.error
        elif stdout.error is not None:
            error = ExecutorError(f"read stdout: {stdout.error}")
            error.__cause__ = stdout.error
        elif returncode != 0:
            error = ExecutorError(f"codex exited with code {returncode}")

        result = Result(stdout.output, stdout.signal, error)
        return apply_error_patterns(result, self.error_patterns, self.HELP_CMD)
