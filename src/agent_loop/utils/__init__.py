"""Shared utility functions."""

from .process_utils import ProcessGroupCleanup, ProcessRunner, kill_process_group
from .subprocess_utils import SubprocessError, check_command_exists, detect_default_branch

__all__ = [
    "ProcessGroupCleanup",
    "ProcessRunner",
    "kill_process_group",
    "SubprocessError",
    "check_command_exists",
    "detect_default_branch",
]
