"""Primary agent executor: claude CLI with stream-json output."""

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
    filter_env,
    split_args,
)
from .stream_parsers import parse_structured_stream

logger = logging.getLogger(__name__)

# Stripped from the child's environment so the CLI authenticates with its own
# account instead of billing an API key that happens to be exported.
_SENSITIVE_ENV_VARS = frozenset({"ANTHROPIC_API_KEY"})

DEFAULT_COMMAND = "claude"
DEFAULT_ARGS = "--dangerously-skip-permissions --output-format stream-json --verbose"


class ClaudeExecutor(Executor):
    """Runs the claude CLI and assembles text from its event stream.

    stdout and stderr are merged; non-JSON lines (warnings, CLI errors) are
    kept in the output rather than dropped.
    """

    HELP_CMD = "claude /usage"

    def __init__(
        self,
        command: str = DEFAULT_COMMAND,
        args: Optional[str] = None,
        error_patterns: Sequence[str] = (),
        on_output: Optional[OutputHandler] = None,
        process_runner: Optional[ProcessRunner] = None,
        work_dir: Optional[str] = None,
    ):
        self.command = command or DEFAULT_COMMAND
        self.args = DEFAULT_ARGS if args is None else args
        self.error_patterns = list(error_patterns)
        self.on_output = on_output
        self.process_runner = process_runner or ProcessRunner()
        self.work_dir = work_dir

    def build_command(self, prompt: str) -> list:
        return [self.command, *split_args(self.args), "-p", prompt]

    async def run(self, cancel: asyncio.Event, prompt: str) -> Result:
        if cancel.is_set():
            return Result(error=ExecutionCancelledError("cancelled before claude started"))

        cmd = self.build_command(prompt)
        try:
            proc = await self.process_runner.start(
                cmd,
                cancel,
                env=filter_env(_SENSITIVE_ENV_VARS),
                merge_stderr=True,
                cwd=self.work_dir,
            )
        except OSError as e:
            error = ExecutorError(f"start {self.command}: {e}")
            error.__cause__ = e
            return Result(error=error)

        parsed, returncode = await asyncio.gather(
            parse_structured_stream(proc.stdout, self.on_output),
            proc.wait(),
        )

        if cancel.is_set():
            return Result(
                parsed.output,
                parsed.signal,
                ExecutionCancelledError("claude execution cancelled"),
            )

        error: Optional[Exception] = None
        if parsed.error is not None:
            error = ExecutorError(f"stream read: {parsed.error}")
            error.__cause__ = parsed.error
        elif returncode != 0:
            if not parsed.output:
                error = ExecutorError(f"claude exited with code {returncode}")
            else:
                logger.debug(f"claude exited with code {returncode}, keeping partial output")

        result = Result(parsed.output, parsed.signal, error)
        return apply_error_patterns(result, self.error_patterns, self.HELP_CMD)
