"""Tests for the progress log writer."""

import io
import re

import pytest
from rich.console import Console

from agent_loop.core.config import Mode
from agent_loop.core.interfaces import DraftAction
from agent_loop.core.phases import Phase, Section
from agent_loop.utils.progress import (
    ProgressLogger,
    default_progress_path,
    format_elapsed,
    progress_filename,
)

LINE_PREFIX = re.compile(r"^\[\d{2}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] ")


@pytest.fixture
def console_buffer():
    return io.StringIO()


@pytest.fixture
def make_logger(tmp_path, console_buffer):
    def factory(**kwargs):
        console = Console(file=console_buffer, force_terminal=False, width=200)
        values = dict(
            progress_path=tmp_path / "progress-plan.txt",
            plan_file="docs/plans/plan.md",
            mode=Mode.FULL,
            branch="feature-x",
            console=console,
        )
        values.update(kwargs)
        return ProgressLogger(**values)
    return factory


def _body_lines(path):
    """Lines after the header rule, timestamps removed."""
    text = path.read_text()
    body = text.split("-" * 60 + "\n\n", 1)[1]
    return [LINE_PREFIX.sub("", line) for line in body.splitlines()]


class TestProgressFilename:
    """Tests for progress file naming."""

    @pytest.mark.parametrize("plan,mode,expected", [
        ("docs/plans/add-auth.md", Mode.FULL, "progress-add-auth.txt"),
        ("docs/plans/add-auth.md", Mode.TASKS_ONLY, "progress-add-auth.txt"),
        ("docs/plans/add-auth.md", Mode.REVIEW, "progress-add-auth-review.txt"),
        ("docs/plans/add-auth.md", Mode.EXTERNAL_REVIEW_ONLY, "progress-add-auth-codex.txt"),
        ("notes.txt", Mode.FULL, "progress-notes.txt.txt"),
        (None, Mode.REVIEW, "progress-review.txt"),
        (None, Mode.EXTERNAL_REVIEW_ONLY, "progress-codex.txt"),
        (None, Mode.PLAN, "progress-plan.txt"),
        (None, Mode.FULL, "progress.txt"),
    ])
    def test_names(self, plan, mode, expected):
        assert progress_filename(plan, mode) == expected

    def test_default_path_in_directory(self, tmp_path):
        path = default_progress_path("p.md", Mode.FULL, str(tmp_path))
        assert path == tmp_path / "progress-p.txt"


class TestFormatElapsed:
    """Tests for elapsed time formatting."""

    def test_formats(self):
        assert format_elapsed(5.7) == "5s"
        assert format_elapsed(65) == "1m 5s"
        assert format_elapsed(3725) == "1h 2m"


class TestProgressLogger:
    """Tests for ProgressLogger output."""

    def test_header(self, make_logger, tmp_path):
        log = make_logger()
        log.close()

        text = (tmp_path / "progress-plan.txt").read_text()
        assert text.startswith("# agent-loop Progress Log\n")
        assert "Plan: docs/plans/plan.md\n" in text
        assert "Branch: feature-x\n" in text
        assert "Mode: full\n" in text
        assert re.search(r"Started: \d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\n", text)

    def test_header_without_plan(self, make_logger, tmp_path):
        make_logger(plan_file=None, mode=Mode.REVIEW).close()

        text = (tmp_path / "progress-plan.txt").read_text()
        assert "Plan: (no plan - review only)\n" in text
        assert "Mode: review\n" in text

    def test_print_is_timestamped(self, make_logger, tmp_path):
        log = make_logger()
        log.print("hello")
        log.close()

        text = (tmp_path / "progress-plan.txt").read_text()
        assert re.search(r"\n\[\d{2}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] hello\n", text)

    def test_section_raw_warn_error(self, make_logger, tmp_path):
        log = make_logger()
        log.print_section(Section.task_iteration(2))
        log.print_raw("raw text\n")
        log.warn("careful")
        log.error("broken")
        log.close()

        path = tmp_path / "progress-plan.txt"
        text = path.read_text()
        assert "\n--- task iteration 2 ---\n" in text
        assert "raw text\n" in text
        lines = _body_lines(path)
        assert "WARN: careful" in lines
        assert "ERROR: broken" in lines

    def test_print_aligned(self, make_logger, tmp_path):
        log = make_logger()
        log.print_aligned("first\n\n- item\n1. numbered\n  already indented\n<<<TOOL:REVIEW_DONE>>>\n\n")
        log.print_aligned("\n\n")
        log.close()

        lines = [l for l in _body_lines(tmp_path / "progress-plan.txt") if l]
        assert lines[:5] == [
            "first",
            "  - item",
            "  1. numbered",
            "  already indented",
            "<<<TOOL:REVIEW_DONE>>>",
        ]

    def test_question_answer_and_draft(self, make_logger, tmp_path):
        log = make_logger(mode=Mode.PLAN)
        log.log_question("Which DB?", ["sqlite", "postgres"])
        log.log_answer("sqlite")
        log.log_draft_review(DraftAction.REVISE, "smaller tasks")
        log.close()

        lines = _body_lines(tmp_path / "progress-plan.txt")
        assert "QUESTION: Which DB?" in lines
        assert "OPTIONS: sqlite, postgres" in lines
        assert "ANSWER: sqlite" in lines
        assert "DRAFT REVIEW: revise" in lines
        assert "FEEDBACK: smaller tasks" in lines

    def test_footer_and_double_close(self, make_logger, tmp_path):
        log = make_logger()
        log.close()
        log.close()

        text = (tmp_path / "progress-plan.txt").read_text()
        assert re.search(r"\n-{60}\nCompleted: .+ \(\d+s\)\n$", text)
        assert text.count("Completed:") == 1

    def test_console_gets_text_without_markup_parsing(self, make_logger, console_buffer):
        log = make_logger()
        log.print("[bold]not markup[/bold]")
        log.close()

        assert "[bold]not markup[/bold]" in console_buffer.getvalue()

    def test_phase_tracking(self, make_logger):
        log = make_logger()
        assert log.phase == Phase.TASK

        log.set_phase(Phase.CODEX)

        assert log.phase == Phase.CODEX
        log.close()

    def test_console_only(self, console_buffer):
        log = ProgressLogger(None, console=Console(file=console_buffer, width=200))
        log.print("only console")
        log.close()

        assert log.path == ""
        assert "only console" in console_buffer.getvalue()

    def test_path_and_parent_creation(self, make_logger, tmp_path):
        target = tmp_path / "logs" / "nested" / "progress.txt"
        with make_logger(progress_path=target) as log:
            assert log.path == str(target)
        assert target.exists()
