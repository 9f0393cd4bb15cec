"""Tests for ClaudeExecutor."""

import asyncio
import json
from unittest.mock import patch

import pytest

from agent_loop.core.signals import SIGNAL_COMPLETED
from agent_loop.executor.base import ExecutionCancelledError, ExecutorError, PatternMatchError
from agent_loop.executor.claude import DEFAULT_ARGS, ClaudeExecutor
from tests.unit.fakes import FakeProcessRunner


def _stream(*texts: str) -> bytes:
    return "".join(
        json.dumps({"type": "content_block_delta", "delta": {"type": "text_delta", "text": t}}) + "\n"
        for t in texts
    ).encode()


class TestBuildCommand:
    """Tests for command construction."""

    def test_default_args_and_prompt_last(self):
        executor = ClaudeExecutor(process_runner=FakeProcessRunner())
        cmd = executor.build_command("do the thing")

        assert cmd[0] == "claude"
        assert cmd[1:-2] == DEFAULT_ARGS.split()
        assert cmd[-2:] == ["-p", "do the thing"]

    def test_custom_command_and_quoted_args(self):
        executor = ClaudeExecutor(command="/opt/claude", args='--model opus --append "two words"')
        cmd = executor.build_command("p")

        assert cmd == ["/opt/claude", "--model", "opus", "--append", "two words", "-p", "p"]

    def test_empty_args(self):
        assert ClaudeExecutor(args="").build_command("p") == ["claude", "-p", "p"]


class TestClaudeExecutorRun:
    """Tests for ClaudeExecutor.run."""

    @pytest.mark.asyncio
    async def test_success_with_signal(self):
        runner = FakeProcessRunner(stdout=_stream("all done ", SIGNAL_COMPLETED))
        seen = []
        executor = ClaudeExecutor(on_output=seen.append, process_runner=runner)

        result = await executor.run(asyncio.Event(), "prompt")

        assert result.ok
        assert result.output == f"all done {SIGNAL_COMPLETED}"
        assert result.signal == SIGNAL_COMPLETED
        assert seen == ["all done ", SIGNAL_COMPLETED]
        assert runner.calls[0]["merge_stderr"] is True

    @pytest.mark.asyncio
    async def test_api_key_removed_from_child_env(self):
        runner = FakeProcessRunner(stdout=_stream("ok"))
        executor = ClaudeExecutor(process_runner=runner)

        with patch.dict("os.environ", {"ANTHROPIC_API_KEY": "secret", "KEEP_ME": "1"}):
            await executor.run(asyncio.Event(), "prompt")

        env = runner.calls[0]["env"]
        assert "ANTHROPIC_API_KEY" not in env
        assert env["KEEP_ME"] == "1"

    @pytest.mark.asyncio
    async def test_work_dir_passed(self):
        runner = FakeProcessRunner(stdout=_stream("ok"))
        await ClaudeExecutor(process_runner=runner, work_dir="/repo").run(asyncio.Event(), "p")

        assert runner.calls[0]["cwd"] == "/repo"

    @pytest.mark.asyncio
    async def test_start_failure(self):
        runner = FakeProcessRunner(start_error=FileNotFoundError("no such file: claude"))

        result = await ClaudeExecutor(process_runner=runner).run(asyncio.Event(), "p")

        assert isinstance(result.error, ExecutorError)
        assert "start claude" in str(result.error)
        assert result.output == ""

    @pytest.mark.asyncio
    async def test_nonzero_exit_without_output_is_error(self):
        runner = FakeProcessRunner(returncode=1)

        result = await ClaudeExecutor(process_runner=runner).run(asyncio.Event(), "p")

        assert isinstance(result.error, ExecutorError)
        assert "exited with code 1" in str(result.error)

    @pytest.mark.asyncio
    async def test_nonzero_exit_with_output_keeps_result(self):
        runner = FakeProcessRunner(stdout=_stream("partial work"), returncode=1)

        result = await ClaudeExecutor(process_runner=runner).run(asyncio.Event(), "p")

        assert result.ok
        assert result.output == "partial work"

    @pytest.mark.asyncio
    async def test_already_cancelled_does_not_start(self):
        runner = FakeProcessRunner(stdout=_stream("x"))
        cancel = asyncio.Event()
        cancel.set()

        result = await ClaudeExecutor(process_runner=runner).run(cancel, "p")

        assert isinstance(result.error, ExecutionCancelledError)
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_cancel_during_run_keeps_partial_output(self):
        def cancel_on_start(cmd, cancel):
            cancel.set()

        runner = FakeProcessRunner(stdout=_stream("partial"), on_start=cancel_on_start)

        result = await ClaudeExecutor(process_runner=runner).run(asyncio.Event(), "p")

        assert isinstance(result.error, ExecutionCancelledError)
        assert result.output == "partial"

    @pytest.mark.asyncio
    async def test_cancel_wins_over_error_pattern(self):
        def cancel_on_start(cmd, cancel):
            cancel.set()

        runner = FakeProcessRunner(stdout=_stream("API Error: 500"), on_start=cancel_on_start)
        executor = ClaudeExecutor(error_patterns=["API Error:"], process_runner=runner)

        result = await executor.run(asyncio.Event(), "p")

        assert isinstance(result.error, ExecutionCancelledError)

    @pytest.mark.asyncio
    async def test_error_pattern_match(self):
        runner = FakeProcessRunner(stdout=_stream("You've hit your limit · resets 5pm"))
        executor = ClaudeExecutor(
            error_patterns=["  you've HIT your limit  "], process_runner=runner
        )

        result = await executor.run(asyncio.Event(), "p")

        assert isinstance(result.error, PatternMatchError)
        assert result.error.pattern == "you've HIT your limit"
        assert result.error.help_cmd == "claude /usage"
        assert result.output.startswith("You've hit your limit")

    @pytest.mark.asyncio
    async def test_malformed_events_do_not_escape_run(self):
        """Known event types with odd field shapes are relayed, not raised."""
        raw = [
            '{"type":"content_block_delta","delta":"oops"}',
            '{"type":"assistant","message":"hello"}',
            '{"type":"message_stop","message":["x"]}',
        ]
        data = ("\n".join(raw) + "\n").encode() + _stream(SIGNAL_COMPLETED)
        runner = FakeProcessRunner(stdout=data)

        result = await ClaudeExecutor(process_runner=runner).run(asyncio.Event(), "p")

        assert result.ok
        assert result.output == "".join(line + "\n" for line in raw) + SIGNAL_COMPLETED
        assert result.signal == SIGNAL_COMPLETED
