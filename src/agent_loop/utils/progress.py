"""Progress log: a plain-text file plus phase-coloured terminal output."""

import os
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, TextIO

from rich.console import Console
from rich.text import Text

from ..core.config import Mode
from ..core.interfaces import DraftAction, RunLogger
from ..core.phases import Phase, Section

TIMESTAMP_FORMAT = "%y-%m-%d %H:%M:%S"
HEADER_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
RULE = "-" * 60
SIGNAL_PREFIX = "<<<TOOL:"

PHASE_STYLES = {
    Phase.TASK: "green",
    Phase.REVIEW: "cyan",
    Phase.CODEX: "magenta",
    Phase.CLAUDE_EVAL: "#64c8ff",
    Phase.CUSTOM: "magenta",
    Phase.PLAN: "grey70",
    Phase.FINALIZE: "green",
}
TIMESTAMP_STYLE = "grey54"
WARN_STYLE = "yellow"
ERROR_STYLE = "red"
SIGNAL_STYLE = "bold #ff6464"


def progress_filename(plan_file: Optional[str], mode: Mode) -> str:
    """progress-<plan stem>[-review|-codex].txt, or progress[-...].txt without a plan."""
    suffix = {
        Mode.REVIEW: "-review",
        Mode.EXTERNAL_REVIEW_ONLY: "-codex",
        Mode.PLAN: "-plan",
    }.get(mode, "")
    if plan_file:
        stem = Path(plan_file).name
        if stem.endswith(".md"):
            stem = stem[:-3]
        return f"progress-{stem}{suffix}.txt"
    return f"progress{suffix}.txt"


def format_elapsed(seconds: float) -> str:
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _is_list_item(line: str) -> bool:
    if line.startswith(("- ", "* ")):
        return True
    digits = len(line) - len(line.lstrip("0123456789"))
    return 0 < digits and line[digits:digits + 2] == ". "


class ProgressLogger(RunLogger):
    """Writes every message both to the progress file and the console.

    The file gets plain text; the console gets the current phase's colour.
    """

    def __init__(
        self,
        progress_path: Optional[Path],
        plan_file: Optional[str] = None,
        mode: Mode = Mode.FULL,
        branch: str = "",
        console: Optional[Console] = None,
        no_color: bool = False,
    ):
        self.console = console or Console(no_color=no_color, highlight=False)
        self._file: Optional[TextIO] = None
        self._path = ""
        self._phase = Phase.TASK
        self._started = time.monotonic()

        if progress_path is not None:
            progress_path = Path(progress_path)
            if progress_path.parent != Path("."):
                progress_path.parent.mkdir(parents=True, exist_ok=True)
            self._file = open(progress_path, "w", encoding="utf-8")
            self._path = str(progress_path)
            self._write_header(plan_file, mode, branch)

    def _write_header(self, plan_file: Optional[str], mode: Mode, branch: str) -> None:
        self._write_file("# agent-loop Progress Log\n")
        self._write_file(f"Plan: {plan_file or '(no plan - review only)'}\n")
        self._write_file(f"Branch: {branch}\n")
        self._write_file(f"Mode: {mode.value}\n")
        self._write_file(f"Started: {datetime.now().strftime(HEADER_TIME_FORMAT)}\n")
        self._write_file(f"{RULE}\n\n")

    @property
    def path(self) -> str:
        return self._path

    @property
    def phase(self) -> Phase:
        return self._phase

    def set_phase(self, phase: Phase) -> None:
        self._phase = phase

    def _write_file(self, text: str) -> None:
        if self._file is not None:
            self._file.write(text)
            self._file.flush()

    def _timestamp(self) -> str:
        return datetime.now().strftime(TIMESTAMP_FORMAT)

    def _emit(self, body: str, style: Optional[str], file_body: Optional[str] = None) -> None:
        timestamp = self._timestamp()
        self._write_file(f"[{timestamp}] {file_body if file_body is not None else body}\n")
        line = Text(f"[{timestamp}]", style=TIMESTAMP_STYLE)
        line.append(" ")
        line.append(body, style=style)
        self.console.print(line)

    def print(self, message: str) -> None:
        self._emit(message, PHASE_STYLES.get(self._phase))

    def print_raw(self, text: str) -> None:
        self._write_file(text)
        self.console.print(Text(text), end="")

    def print_section(self, section: Section) -> None:
        header = f"\n--- {section.label} ---\n"
        self._write_file(header)
        self.console.print(Text(header, style=WARN_STYLE), end="")

    def print_aligned(self, text: str) -> None:
        """Timestamp each non-empty line; sentinel lines are highlighted."""
        text = text.rstrip("\n")
        if not text:
            return
        phase_style = PHASE_STYLES.get(self._phase)
        for line in text.split("\n"):
            if not line:
                continue
            if not line[:1].isspace() and _is_list_item(line):
                line = "  " + line
            style = SIGNAL_STYLE if SIGNAL_PREFIX in line else phase_style
            self._emit(line, style)

    def warn(self, message: str) -> None:
        self._emit(f"WARN: {message}", WARN_STYLE)

    def error(self, message: str) -> None:
        self._emit(f"ERROR: {message}", ERROR_STYLE)

    def log_question(self, question: str, options: List[str]) -> None:
        self.print(f"QUESTION: {question}")
        self.print(f"OPTIONS: {', '.join(options)}")

    def log_answer(self, answer: str) -> None:
        self.print(f"ANSWER: {answer}")

    def log_draft_review(self, action: DraftAction, feedback: str) -> None:
        value = action.value if isinstance(action, DraftAction) else str(action)
        self.print(f"DRAFT REVIEW: {value}")
        if feedback:
            self.print(f"FEEDBACK: {feedback}")

    def elapsed(self) -> str:
        return format_elapsed(time.monotonic() - self._started)

    def close(self) -> None:
        """Write the footer and close the file. Safe to call twice."""
        if self._file is None:
            return
        self._write_file(f"\n{RULE}\n")
        self._write_file(
            f"Completed: {datetime.now().strftime(HEADER_TIME_FORMAT)} ({self.elapsed()})\n"
        )
        self._file.close()
        self._file = None

    def __enter__(self) -> "ProgressLogger":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def default_progress_path(plan_file: Optional[str], mode: Mode, directory: Optional[str] = None) -> Path:
    return Path(directory or os.curdir) / progress_filename(plan_file, mode)
