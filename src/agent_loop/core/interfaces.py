"""Collaborator interfaces consumed by the runner."""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Tuple

from .phases import Phase, Section


class DraftAction(str, Enum):
    """Human decision on a plan draft."""
    ACCEPT = "accept"
    REVISE = "revise"
    REJECT = "reject"


class RunLogger(ABC):
    """Phase-tagged progress output for one run."""

    @abstractmethod
    def set_phase(self, phase: Phase) -> None:
        """Tag subsequent output with phase."""

    @abstractmethod
    def print(self, message: str) -> None:
        """Write a timestamped message."""

    @abstractmethod
    def print_raw(self, text: str) -> None:
        """Write text without timestamp or newline handling."""

    @abstractmethod
    def print_section(self, section: Section) -> None:
        """Write a section header."""

    @abstractmethod
    def print_aligned(self, text: str) -> None:
        """Write streamed tool output, one timestamp per line."""

    @abstractmethod
    def warn(self, message: str) -> None:
        pass

    @abstractmethod
    def error(self, message: str) -> None:
        pass

    @abstractmethod
    def log_question(self, question: str, options: List[str]) -> None:
        pass

    @abstractmethod
    def log_answer(self, answer: str) -> None:
        pass

    @abstractmethod
    def log_draft_review(self, action: DraftAction, feedback: str) -> None:
        pass

    @property
    @abstractmethod
    def path(self) -> str:
        """Path of the progress file, empty when not writing one."""


class InputCollector(ABC):
    """Source of human answers during plan creation."""

    @abstractmethod
    async def ask_question(
        self, cancel: asyncio.Event, question: str, options: List[str]
    ) -> str:
        """Return the selected option."""

    @abstractmethod
    async def ask_draft_review(
        self, cancel: asyncio.Event, question: str, plan_content: str
    ) -> Tuple[DraftAction, str]:
        """Return the decision on a draft and, for revise, the feedback text."""
