"""Phase state machine driving agent tools through a run.

Iterations run strictly one after another; each tool call sees the
filesystem and git state left by the previous one. A single cancel event
threads through the whole run.
"""

import asyncio
import logging
from typing import Optional

from ..executor import (
    ClaudeExecutor,
    CodexExecutor,
    CustomExecutor,
    ExecutionCancelledError,
    Executor,
    PatternMatchError,
    Result,
)
from ..utils.process_utils import ProcessRunner
from ..utils.rich_logging import PhaseLogger
from ..utils.subprocess_utils import check_command_exists
from .config import Mode, RunnerConfig
from .interfaces import DraftAction, InputCollector, RunLogger
from .phases import Phase, Section
from .plan import has_uncompleted_tasks
from .prompts import PromptBuilder, summarize_findings
from .signals import (
    SIGNAL_COMPLETED,
    SIGNAL_FAILED,
    SignalAbsentError,
    SignalPayloadError,
    is_external_review_done,
    is_plan_ready,
    is_review_done,
    parse_plan_draft_payload,
    parse_question_payload,
)

logger = logging.getLogger(__name__)


class RunnerError(Exception):
    """A phase failed and the run cannot continue."""


class UserRejectedPlanError(RunnerError):
    """The user rejected the plan draft."""

    def __init__(self):
        super().__init__("user rejected plan")


class Runner:
    """Runs the phases selected by the configured mode.

    run() returns normally on success. Phase failures raise RunnerError;
    PatternMatchError and ExecutionCancelledError propagate as themselves.
    """

    def __init__(
        self,
        config: RunnerConfig,
        log: RunLogger,
        claude: Executor,
        reviewer: Optional[Executor] = None,
        input_collector: Optional[InputCollector] = None,
        external_tool: Optional[str] = None,
    ):
        self.config = config
        self.log = log
        self.claude = claude
        self.reviewer = reviewer
        self.input_collector = input_collector
        self.external_tool = external_tool or config.external_review_tool
        if self.reviewer is None:
            self.external_tool = "none"
        self.iteration_delay = config.iteration_delay_ms / 1000
        self.task_retry_count = config.task_retry_count
        self.prompts = PromptBuilder(config, on_message=log.print)
        self.phase: Optional[Phase] = None
        self.diag = PhaseLogger(logger)

    @classmethod
    def create(
        cls,
        config: RunnerConfig,
        log: RunLogger,
        input_collector: Optional[InputCollector] = None,
        process_runner: Optional[ProcessRunner] = None,
    ) -> "Runner":
        """Build a runner with executors configured from config.app_config.

        The codex reviewer is disabled with a warning when its binary is not
        on PATH.
        """
        app = config.app_config
        claude = ClaudeExecutor(
            command=app.claude.command,
            args=app.claude.args,
            error_patterns=app.claude.error_patterns,
            on_output=log.print_aligned,
            process_runner=process_runner,
            work_dir=config.work_dir,
        )

        tool = config.external_review_tool
        reviewer: Optional[Executor] = None
        if tool == "codex":
            if not app.codex.enabled:
                tool = "none"
            elif not check_command_exists(app.codex.command):
                log.warn(f"codex not found ({app.codex.command}), disabling codex review phase")
                tool = "none"
            else:
                reviewer = CodexExecutor(
                    command=app.codex.command,
                    model=app.codex.model,
                    reasoning_effort=app.codex.reasoning_effort,
                    timeout_ms=app.codex.timeout_ms,
                    sandbox=app.codex.sandbox,
                    project_doc=app.codex.project_doc,
                    error_patterns=app.codex.error_patterns,
                    on_output=log.print_aligned,
                    process_runner=process_runner,
                    work_dir=config.work_dir,
                )
        elif tool == "custom":
            reviewer = CustomExecutor(
                script=app.custom_review.script,
                error_patterns=app.custom_review.error_patterns,
                on_output=log.print_aligned,
                process_runner=process_runner,
                work_dir=config.work_dir,
            )

        return cls(config, log, claude, reviewer, input_collector, external_tool=tool)

    def _set_phase(self, phase: Phase) -> None:
        previous, self.phase = self.phase, phase
        self.diag.set_phase(phase)
        self.log.set_phase(phase)
        if phase != previous:
            self.diag.debug(f"Phase change: {previous.value if previous else None} -> {phase.value}")

    async def _sleep(self, cancel: asyncio.Event) -> None:
        """Pause between iterations; returns early when cancelled."""
        if self.iteration_delay <= 0:
            return
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.iteration_delay)
        except asyncio.TimeoutError:
            pass

    @staticmethod
    def _check_cancelled(cancel: asyncio.Event, where: str) -> None:
        if cancel.is_set():
            raise ExecutionCancelledError(f"{where}: cancelled")

    def _raise_for_result(self, result: Result, tool: str) -> None:
        if result.ok:
            return
        error = result.error
        if isinstance(error, ExecutionCancelledError):
            raise error
        if isinstance(error, PatternMatchError):
            self.log.print(f"error: detected {error.pattern!r} in {tool} output")
            self.log.print(f"run '{error.help_cmd}' for more information")
            raise error
        raise RunnerError(f"{tool} execution: {error}") from error

    async def run(self, cancel: asyncio.Event) -> None:
        mode = self.config.mode
        self.diag.debug(f"Starting run: mode={mode.value}, external={self.external_tool}")
        if mode == Mode.FULL:
            await self._run_full(cancel)
        elif mode == Mode.REVIEW:
            await self._run_review_only(cancel)
        elif mode == Mode.EXTERNAL_REVIEW_ONLY:
            await self._run_external_review_only(cancel)
        elif mode == Mode.TASKS_ONLY:
            await self._run_tasks_only(cancel)
        elif mode == Mode.PLAN:
            await self._run_plan_creation(cancel)
        else:
            raise RunnerError(f"unknown mode: {mode}")

    async def _run_full(self, cancel: asyncio.Event) -> None:
        if not self.config.plan_file:
            raise RunnerError("plan file required for full mode")

        await self._task_stage(cancel)
        await self._review_pipeline(cancel)
        self.log.print("all phases completed successfully")

    async def _run_review_only(self, cancel: asyncio.Event) -> None:
        await self._review_pipeline(cancel)
        self.log.print("review phases completed successfully")

    async def _run_external_review_only(self, cancel: asyncio.Event) -> None:
        await self._external_stage(cancel)
        await self._post_review_stage(cancel)
        self.log.print("external review phases completed successfully")

    async def _run_tasks_only(self, cancel: asyncio.Event) -> None:
        if not self.config.plan_file:
            raise RunnerError("plan file required for tasks-only mode")

        await self._task_stage(cancel)
        self.log.print("task execution completed successfully")

    async def _task_stage(self, cancel: asyncio.Event) -> None:
        self._set_phase(Phase.TASK)
        self.log.print_raw("starting task execution phase\n")
        await self.run_task_phase(cancel)

    async def _review_pipeline(self, cancel: asyncio.Event) -> None:
        """review-first -> review loop -> external loop -> review loop -> finalize."""
        self._set_phase(Phase.REVIEW)
        self.log.print_section(Section.generic("claude review 0: all findings"))
        await self.run_first_review(cancel)
        await self.run_review_loop(cancel)
        await self._external_stage(cancel)
        await self._post_review_stage(cancel)

    async def _external_stage(self, cancel: asyncio.Event) -> None:
        if self.external_tool == "none" or self.reviewer is None:
            self.log.print("external review disabled, skipping...")
            return
        self._set_phase(Phase.CUSTOM if self.external_tool == "custom" else Phase.CODEX)
        self.log.print_section(Section.generic(f"{self.external_tool} external review"))
        await self.run_external_review_loop(cancel)

    async def _post_review_stage(self, cancel: asyncio.Event) -> None:
        self._set_phase(Phase.REVIEW)
        await self.run_review_loop(cancel)
        await self.run_finalize(cancel)

    async def run_task_phase(self, cancel: asyncio.Event) -> None:
        """Resend the task prompt until the plan is done.

        The tool re-reads the plan file itself, so the prompt never changes.
        A completion claim is only trusted once the plan has no unchecked
        items left.
        """
        prompt = self.prompts.task_prompt()
        retries = 0

        for i in range(1, self.config.max_iterations + 1):
            self._check_cancelled(cancel, "task phase")
            self.log.print_section(Section.task_iteration(i))

            result = await self.claude.run(cancel, prompt)
            self._raise_for_result(result, "claude")

            if result.signal == SIGNAL_COMPLETED:
                if has_uncompleted_tasks(self.config.plan_file):
                    self.log.print(
                        "warning: completion signal received but plan still has [ ] items, continuing..."
                    )
                    continue
                self.log.print_raw("\nall tasks completed, starting code review...\n")
                return

            if result.signal == SIGNAL_FAILED:
                if retries < self.task_retry_count:
                    self.log.print("task failed, retrying...")
                    retries += 1
                    await self._sleep(cancel)
                    continue
                raise RunnerError("task execution failed after retry (FAILED signal received)")

            retries = 0
            await self._sleep(cancel)

        raise RunnerError(
            f"max iterations ({self.config.max_iterations}) reached without completion"
        )

    async def run_first_review(self, cancel: asyncio.Event) -> None:
        """Single pass addressing all findings."""
        self._check_cancelled(cancel, "first review")
        result = await self.claude.run(cancel, self.prompts.review_first_prompt())
        self._raise_for_result(result, "claude")

        if result.signal == SIGNAL_FAILED:
            raise RunnerError("review failed (FAILED signal received)")
        if not is_review_done(result.signal):
            self.log.print("warning: first review pass did not complete cleanly, continuing...")

    async def run_review_loop(self, cancel: asyncio.Event) -> None:
        """Critical/major review passes until the agent reports nothing left."""
        max_iterations = max(3, self.config.max_iterations // 10)

        for i in range(1, max_iterations + 1):
            self._check_cancelled(cancel, "review")
            self.log.print_section(Section.claude_review(i, ": critical/major"))

            result = await self.claude.run(cancel, self.prompts.review_second_prompt())
            self._raise_for_result(result, "claude")

            if result.signal == SIGNAL_FAILED:
                raise RunnerError("review failed (FAILED signal received)")
            if is_review_done(result.signal):
                self.log.print("claude review complete - no more findings")
                return

            self.log.print("issues fixed, running another review iteration...")
            await self._sleep(cancel)

        self.log.print("max claude review iterations reached, continuing...")

    def _show_findings(self, tool: str, output: str) -> None:
        summary = summarize_findings(output)
        if not summary:
            return
        self.log.print(f"{tool} findings:")
        for line in summary.splitlines():
            if line.strip():
                self.log.print_aligned("  " + line)

    async def run_external_review_loop(self, cancel: asyncio.Event) -> None:
        """Alternate reviewer findings and primary-agent evaluation.

        The agent's previous answer is handed to the next reviewer call so
        the reviewer can accept fixes or push back.
        """
        tool = self.external_tool
        if tool == "none" or self.reviewer is None:
            self.log.print("external review disabled, skipping...")
            return

        review_phase = Phase.CUSTOM if tool == "custom" else Phase.CODEX
        max_iterations = max(3, self.config.max_iterations // 5)
        previous_response = ""

        for i in range(1, max_iterations + 1):
            self._check_cancelled(cancel, "external review")
            if tool == "custom":
                self.log.print_section(Section.custom_iteration(i))
            else:
                self.log.print_section(Section.codex_iteration(i))

            review = await self.reviewer.run(
                cancel, self.prompts.external_review_prompt(tool, i == 1, previous_response)
            )
            self._raise_for_result(review, tool)

            if not review.output:
                self.log.print(f"{tool} review returned no output, skipping...")
                return

            self._show_findings(tool, review.output)

            self._set_phase(Phase.CLAUDE_EVAL)
            self.log.print_section(Section.claude_eval(tool))
            evaluation = await self.claude.run(
                cancel, self.prompts.external_eval_prompt(tool, review.output)
            )
            self._set_phase(review_phase)
            self._raise_for_result(evaluation, "claude")

            previous_response = evaluation.output

            if is_external_review_done(evaluation.signal):
                self.log.print(f"{tool} review complete - no more findings")
                return

            await self._sleep(cancel)

        self.log.print(f"max {tool} iterations reached, continuing to next phase...")

    async def run_finalize(self, cancel: asyncio.Event) -> None:
        """Optional best-effort step. Only cancellation propagates."""
        if not self.config.finalize_enabled:
            return

        self._set_phase(Phase.FINALIZE)
        self.log.print_section(Section.generic("finalize step"))
        self._check_cancelled(cancel, "finalize step")

        result = await self.claude.run(cancel, self.prompts.finalize_prompt())
        error = result.error
        if isinstance(error, ExecutionCancelledError):
            raise error
        if isinstance(error, PatternMatchError):
            self.log.print(f"finalize step: detected {error.pattern!r} in claude output")
            self.log.print(f"run '{error.help_cmd}' for more information")
            return
        if not result.ok:
            self.log.print(f"finalize step failed: {error}")
            return

        if result.signal == SIGNAL_FAILED:
            self.log.print("finalize step reported failure (non-blocking)")
            return
        self.log.print("finalize step completed")

    async def _run_plan_creation(self, cancel: asyncio.Event) -> None:
        """Interactive plan drafting with questions and draft reviews."""
        if not self.config.plan_description:
            raise RunnerError("plan description required for plan mode")
        if self.input_collector is None:
            raise RunnerError("input collector required for plan mode")

        self._set_phase(Phase.PLAN)
        self.log.print_raw("starting interactive plan creation\n")
        self.log.print(f"plan request: {self.config.plan_description}")

        max_iterations = max(5, self.config.max_iterations // 5)
        revision_feedback = ""

        for i in range(1, max_iterations + 1):
            self._check_cancelled(cancel, "plan creation")
            self.log.print_section(Section.plan_iteration(i))

            prompt = self.prompts.plan_prompt(revision_feedback)
            revision_feedback = ""

            result = await self.claude.run(cancel, prompt)
            self._raise_for_result(result, "claude")

            if result.signal == SIGNAL_FAILED:
                raise RunnerError("plan creation failed (FAILED signal received)")
            if is_plan_ready(result.signal):
                self.log.print("plan creation completed")
                return

            handled, revision_feedback = await self._handle_plan_draft(cancel, result.output)
            if not handled:
                await self._handle_plan_question(cancel, result.output)

            await self._sleep(cancel)

        raise RunnerError(f"max plan iterations ({max_iterations}) reached without completion")

    async def _handle_plan_draft(self, cancel: asyncio.Event, output: str):
        """Returns (handled, revision feedback)."""
        try:
            plan_content = parse_plan_draft_payload(output)
        except SignalAbsentError:
            return False, ""
        except SignalPayloadError as e:
            self.log.print(f"warning: {e}")
            return False, ""

        self.log.print("plan draft ready for review")
        action, feedback = await self.input_collector.ask_draft_review(
            cancel, "Review the plan draft", plan_content
        )
        self.log.log_draft_review(action, feedback)

        if action == DraftAction.ACCEPT:
            self.log.print("draft accepted, continuing to write plan file...")
            return True, ""
        if action == DraftAction.REVISE:
            self.log.print("revision requested, re-running with feedback...")
            return True, feedback
        self.log.print("plan rejected by user")
        raise UserRejectedPlanError()

    async def _handle_plan_question(self, cancel: asyncio.Event, output: str) -> bool:
        try:
            question = parse_question_payload(output)
        except SignalAbsentError:
            return False
        except SignalPayloadError as e:
            self.log.print(f"warning: {e}")
            return False

        self.log.log_question(question.question, question.options)
        answer = await self.input_collector.ask_question(
            cancel, question.question, question.options
        )
        self.log.log_answer(answer)
        return True
