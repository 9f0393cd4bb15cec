"""Custom review script executor."""

import asyncio
import logging
import os
import tempfile
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
from .stream_parsers import parse_plain_stream

logger = logging.getLogger(__name__)

TEMP_FILE_PREFIX = "agent-loop-custom-prompt-"


class CustomExecutor(Executor):
    """Runs a user-supplied review script.

    The prompt is written to a temp file whose path is the script's only
    argument. Combined stdout/stderr is relayed line by line.
    """

    def __init__(
        self,
        script: str = "",
        error_patterns: Sequence[str] = (),
        on_output: Optional[OutputHandler] = None,
        process_runner: Optional[ProcessRunner] = None,
        work_dir: Optional[str] = None,
    ):
        self.script = script
        self.error_patterns = list(error_patterns)
        self.on_output = on_output
        self.process_runner = process_runner or ProcessRunner()
        self.work_dir = work_dir

    @property
    def help_cmd(self) -> str:
        return f"{self.script} --help"

    def _write_prompt_file(self, prompt: str) -> str:
        with tempfile.NamedTemporaryFile(
            mode="w",
            prefix=TEMP_FILE_PREFIX,
            suffix=".txt",
            delete=False,
            encoding="utf-8",
        ) as f:
            path = f.name
            try:
                f.write(prompt)
            except OSError:
                f.close()
                os.remove(path)
                raise
        return path

    async def run(self, cancel: asyncio.Event, prompt: str) -> Result:
        if not self.script:
            return Result(error=ExecutorError("custom review script not configured"))
        if cancel.is_set():
            return Result(error=ExecutionCancelledError("cancelled before custom script started"))

        try:
            prompt_path = self._write_prompt_file(prompt)
        except OSError as e:
            error = ExecutorError(f"write prompt file: {e}")
            error.__cause__ = e
            return Result(error=error)

        try:
            return await self._run_script(cancel, prompt_path)
        finally:
            try:
                os.remove(prompt_path)
            except FileNotFoundError:
                pass

    async def _run_script(self, cancel: asyncio.Event, prompt_path: str) -> Result:
        logger.debug(f"Running custom review script {self.script} with prompt file {prompt_path}")
        try:
            proc = await self.process_runner.start(
                [self.script, prompt_path], cancel, merge_stderr=True, cwd=self.work_dir
            )
        except OSError as e:
            error = ExecutorError(f"start custom script {self.script}: {e}")
            error.__cause__ = e
            return Result(error=error)

        parsed, returncode = await asyncio.gather(
            parse_plain_stream(proc.stdout, self.on_output),
            proc.wait(),
        )

        if cancel.is_set():
            return Result(
                parsed.output,
                parsed.signal,
                ExecutionCancelledError("custom script execution cancelled"),
            )

        error: Optional[Exception] = None
        if parsed.error is not None:
            error = ExecutorError(f"read output: {parsed.error}")
            error.__cause__ = parsed.error
        elif returncode != 0:
            error = ExecutorError(f"custom script exited with code {returncode}")

        result = Result(parsed.output, parsed.signal, error)
        return apply_error_patterns(result, self.error_patterns, self.help_cmd)
