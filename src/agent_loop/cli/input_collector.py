"""Terminal prompts answering plan-mode questions and draft reviews."""

import asyncio
import threading
from typing import Callable, List, Tuple, TypeVar

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from ..core.interfaces import DraftAction, InputCollector
from ..executor.base import ExecutionCancelledError

T = TypeVar("T")

OTHER_OPTION = "Other (type your own answer)"

DRAFT_CHOICES = {
    "a": DraftAction.ACCEPT,
    "r": DraftAction.REVISE,
    "x": DraftAction.REJECT,
}


def _run_in_daemon_thread(func: Callable[[], T]) -> "asyncio.Future[T]":
    """Run func in a daemon thread and resolve a future on the running loop.

    The thread is never joined, so an abandoned prompt does not keep
    asyncio.run() from returning.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def resolve(setter, value):
        if not future.done():
            setter(value)

    def worker():
        try:
            value = func()
        except Exception as e:
            outcome = (future.set_exception, e)
        else:
            outcome = (future.set_result, value)
        try:
            loop.call_soon_threadsafe(resolve, *outcome)
        except RuntimeError:
            # loop already closed, the prompt was abandoned
            pass

    threading.Thread(target=worker, name="agent-loop-input", daemon=True).start()
    return future


class TerminalInputCollector(InputCollector):
    """Asks on the controlling terminal.

    click prompts block, so each one runs in a daemon thread and races the
    cancel event. A cancelled prompt leaves its thread waiting on stdin.
    """

    def __init__(self, console: Console = None):
        self.console = console or Console()

    async def _prompt(self, cancel: asyncio.Event, func: Callable[[], T]) -> T:
        if cancel.is_set():
            raise ExecutionCancelledError("input: cancelled")

        answer_task = _run_in_daemon_thread(func)
        cancel_task = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait(
                {answer_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            cancel_task.cancel()

        if not answer_task.done():
            answer_task.cancel()
            raise ExecutionCancelledError("input: cancelled")
        # click.Abort (Ctrl+D / Ctrl+C inside the prompt) propagates from here
        return answer_task.result()

    def _select(self, question: str, options: List[str]) -> str:
        self.console.print()
        self.console.print(Text(question, style="bold"))
        choices = list(options) + [OTHER_OPTION]
        for i, option in enumerate(choices, 1):
            self.console.print(f"  {i}. ", end="")
            self.console.print(option, markup=False)

        index = click.prompt("Select", type=click.IntRange(1, len(choices)))
        if index == len(choices):
            return click.prompt("Your answer", type=str).strip()
        return choices[index - 1]

    async def ask_question(
        self, cancel: asyncio.Event, question: str, options: List[str]
    ) -> str:
        return await self._prompt(cancel, lambda: self._select(question, options))

    def _review_draft(self, question: str, plan_content: str) -> Tuple[DraftAction, str]:
        self.console.print()
        self.console.print(Panel(Markdown(plan_content), title="Plan draft"))
        self.console.print(Text(question, style="bold"))
        self.console.print("  a = accept, r = revise, x = reject")

        choice = click.prompt(
            "Decision",
            type=click.Choice(list(DRAFT_CHOICES), case_sensitive=False),
            default="a",
        )
        action = DRAFT_CHOICES[choice.lower()]
        feedback = ""
        if action == DraftAction.REVISE:
            feedback = click.prompt("What should change?", type=str).strip()
        return action, feedback

    async def ask_draft_review(
        self, cancel: asyncio.Event, question: str, plan_content: str
    ) -> Tuple[DraftAction, str]:
        return await self._prompt(cancel, lambda: self._review_draft(question, plan_content))
