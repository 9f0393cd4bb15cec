"""Shared executor contract, result type and error taxonomy."""

import asyncio
import logging
import os
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

OutputHandler = Callable[[str], None]


class ExecutorError(Exception):
    """Tool could not be launched, its output could not be read, or it failed."""


class ExecutionCancelledError(ExecutorError):
    """The run was cancelled while (or before) the tool was running."""


class PatternMatchError(ExecutorError):
    """A configured trigger phrase appeared in otherwise successful output.

    Carries the matched phrase and a command the user can run to learn more
    (e.g. a usage or status command of the tool).
    """

    def __init__(self, pattern: str, help_cmd: str):
        self.pattern = pattern
        self.help_cmd = help_cmd
        super().__init__(f'detected error pattern: "{pattern}"')


@dataclass(frozen=True)
class Result:
    """Outcome of one executor call."""
    output: str = ""
    signal: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Executor(ABC):
    """Runs an agent tool once for a given prompt.

    Tool failures are reported through Result.error, never raised.
    """

    @abstractmethod
    async def run(self, cancel: asyncio.Event, prompt: str) -> Result:
        """Run the tool with prompt and return its output and signal."""
        pass


def check_error_patterns(output: str, patterns: Iterable[str]) -> Optional[str]:
    """Return the first configured pattern found in output (case-insensitive)."""
    if not output:
        return None
    lowered = output.lower()
    for pattern in patterns:
        trimmed = pattern.strip()
        if trimmed and trimmed.lower() in lowered:
            return trimmed
    return None


def apply_error_patterns(result: Result, patterns: Iterable[str], help_cmd: str) -> Result:
    """Replace the result's error when a trigger phrase is found.

    Output and signal are preserved.
    """
    matched = check_error_patterns(result.output, patterns)
    if matched is None:
        return result
    logger.debug(f"Output matched error pattern {matched!r}")
    return replace(result, error=PatternMatchError(matched, help_cmd))


def split_args(args: str) -> List[str]:
    """Split a configured argument string with shell-like quoting."""
    if not args or not args.strip():
        return []
    return shlex.split(args)


def filter_env(drop: Iterable[str], base: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Copy of the environment without the named variables (exact key match)."""
    env = dict(os.environ if base is None else base)
    for key in drop:
        env.pop(key, None)
    return env
