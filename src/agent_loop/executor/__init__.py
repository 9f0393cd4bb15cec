"""Executors that run agent tools as subprocesses."""

from .base import (
    ExecutionCancelledError,
    Executor,
    ExecutorError,
    PatternMatchError,
    Result,
    check_error_patterns,
)
from .claude import ClaudeExecutor
from .codex import CodexExecutor
from .custom import CustomExecutor

__all__ = [
    "ClaudeExecutor",
    "CodexExecutor",
    "CustomExecutor",
    "ExecutionCancelledError",
    "Executor",
    "ExecutorError",
    "PatternMatchError",
    "Result",
    "check_error_patterns",
]
