"""Sentinel markers emitted by agent tools and payload extraction.

Tools are prompted to echo these markers verbatim. A marker either stands
alone (e.g. ``<<<TOOL:ALL_TASKS_DONE>>>``) or opens a bounded block that is
closed by ``<<<TOOL:END>>>`` and carries a payload.

Known limitation: block extraction stops at the first closing marker, so a
payload that itself contains ``<<<TOOL:END>>>`` is cut short. No escaping
scheme exists for that case.
"""

import json
from dataclasses import dataclass, field
from typing import List, Optional

SIGNAL_COMPLETED = "<<<TOOL:ALL_TASKS_DONE>>>"
SIGNAL_FAILED = "<<<TOOL:TASK_FAILED>>>"
SIGNAL_REVIEW_DONE = "<<<TOOL:REVIEW_DONE>>>"
SIGNAL_EXTERNAL_REVIEW_DONE = "<<<TOOL:EXTERNAL_REVIEW_DONE>>>"
SIGNAL_QUESTION = "<<<TOOL:QUESTION>>>"
SIGNAL_PLAN_READY = "<<<TOOL:PLAN_READY>>>"
SIGNAL_PLAN_DRAFT = "<<<TOOL:PLAN_DRAFT>>>"
SIGNAL_END = "<<<TOOL:END>>>"

# Checked in this order; position in the text does not matter.
SIGNAL_PRIORITY = (
    SIGNAL_COMPLETED,
    SIGNAL_FAILED,
    SIGNAL_REVIEW_DONE,
    SIGNAL_EXTERNAL_REVIEW_DONE,
    SIGNAL_QUESTION,
    SIGNAL_PLAN_READY,
    SIGNAL_PLAN_DRAFT,
)


class SignalPayloadError(ValueError):
    """Base class for payload extraction failures."""


class SignalAbsentError(SignalPayloadError):
    """The opening marker is not in the text. Expected and frequent."""


class MalformedSignalError(SignalPayloadError):
    """The block is present but its content cannot be used."""


@dataclass
class QuestionPayload:
    """A clarifying question the agent wants a human to answer."""
    question: str
    options: List[str] = field(default_factory=list)
    context: str = ""


def detect_signal(text: str) -> Optional[str]:
    """Return the highest-priority sentinel present in text, or None."""
    if not text:
        return None
    for signal in SIGNAL_PRIORITY:
        if signal in text:
            return signal
    return None


def is_review_done(signal: Optional[str]) -> bool:
    return signal == SIGNAL_REVIEW_DONE


def is_external_review_done(signal: Optional[str]) -> bool:
    return signal == SIGNAL_EXTERNAL_REVIEW_DONE


def is_plan_ready(signal: Optional[str]) -> bool:
    return signal == SIGNAL_PLAN_READY


def _extract_block(text: str, opening: str) -> str:
    """Return the stripped text between opening and the next END marker."""
    start = text.find(opening) if text else -1
    if start == -1:
        raise SignalAbsentError(f"no {opening} block in output")

    body_start = start + len(opening)
    end = text.find(SIGNAL_END, body_start)
    if end == -1:
        raise MalformedSignalError(f"{opening} block is missing END marker")

    return text[body_start:end].strip()


def parse_question_payload(text: str) -> QuestionPayload:
    """Extract the question block from agent output.

    Raises:
        SignalAbsentError: the question marker is not present
        MalformedSignalError: the block is unterminated, empty, not valid JSON,
            or lacks a non-empty question or options list
    """
    body = _extract_block(text, SIGNAL_QUESTION)
    if not body:
        raise MalformedSignalError("empty JSON payload in question block")

    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise MalformedSignalError(f"invalid JSON in question block: {e}") from e

    if not isinstance(data, dict):
        raise MalformedSignalError("invalid JSON in question block: expected an object")

    question = data.get("question")
    if not isinstance(question, str) or not question:
        raise MalformedSignalError("missing question field in question block")

    options = data.get("options")
    if (
        not isinstance(options, list)
        or not options
        or not all(isinstance(opt, str) for opt in options)
    ):
        raise MalformedSignalError("missing or empty options field in question block")

    context = data.get("context") or ""
    if not isinstance(context, str):
        context = str(context)

    return QuestionPayload(question=question, options=list(options), context=context)


def parse_plan_draft_payload(text: str) -> str:
    """Extract the markdown plan draft from agent output.

    Raises:
        SignalAbsentError: the draft marker is not present
        MalformedSignalError: the block is unterminated or empty
    """
    body = _extract_block(text, SIGNAL_PLAN_DRAFT)
    if not body:
        raise MalformedSignalError("empty plan draft content")
    return body
