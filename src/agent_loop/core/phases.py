"""Execution phases and section headers shared by the runner and loggers."""

from dataclasses import dataclass
from enum import Enum


class Phase(str, Enum):
    """Pipeline stage, used to colour progress output."""
    TASK = "task"
    REVIEW = "review"
    CODEX = "codex"
    CLAUDE_EVAL = "claude-eval"
    CUSTOM = "custom"
    PLAN = "plan"
    FINALIZE = "finalize"


class SectionType(str, Enum):
    """Semantic kind of a section header."""
    GENERIC = "generic"
    TASK_ITERATION = "task_iteration"
    CLAUDE_REVIEW = "claude_review"
    CODEX_ITERATION = "codex_iteration"
    CLAUDE_EVAL = "claude_eval"
    PLAN_ITERATION = "plan_iteration"
    CUSTOM_ITERATION = "custom_iteration"


@dataclass(frozen=True)
class Section:
    """A section header in the progress log.

    Iterated sections carry iteration > 0; generic and evaluation sections
    carry 0. Use the constructors below rather than building one directly.
    """
    type: SectionType
    label: str
    iteration: int = 0

    @classmethod
    def task_iteration(cls, iteration: int) -> "Section":
        return cls(SectionType.TASK_ITERATION, f"task iteration {iteration}", iteration)

    @classmethod
    def claude_review(cls, iteration: int, suffix: str = "") -> "Section":
        return cls(SectionType.CLAUDE_REVIEW, f"claude review {iteration}{suffix}", iteration)

    @classmethod
    def codex_iteration(cls, iteration: int) -> "Section":
        return cls(SectionType.CODEX_ITERATION, f"codex iteration {iteration}", iteration)

    @classmethod
    def custom_iteration(cls, iteration: int) -> "Section":
        return cls(
            SectionType.CUSTOM_ITERATION, f"custom review iteration {iteration}", iteration
        )

    @classmethod
    def claude_eval(cls, tool_name: str = "codex") -> "Section":
        return cls(SectionType.CLAUDE_EVAL, f"claude evaluating {tool_name} findings")

    @classmethod
    def plan_iteration(cls, iteration: int) -> "Section":
        return cls(SectionType.PLAN_ITERATION, f"plan iteration {iteration}", iteration)

    @classmethod
    def generic(cls, label: str) -> "Section":
        return cls(SectionType.GENERIC, label)
