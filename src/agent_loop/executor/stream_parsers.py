"""Line-oriented parsers for agent tool output streams.

Three variants share one result shape:

- parse_structured_stream: JSON event lines (one event per line)
- parse_filtered_stream: noisy progress output, reduced to a readable summary
- parse_plain_stream: every line relayed as-is

Parsers read until EOF. Cancellation reaches them through process-group
termination, which closes the pipes.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Tuple

from ..core.signals import detect_signal
from .base import OutputHandler

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024

SEPARATOR = "--------"
DETAIL_SECTION_MARKER = "Full review comments:"


@dataclass
class StreamParseResult:
    """Accumulated output of one stream.

    error is set only for a genuine read failure, never for end of stream.
    """
    output: str = ""
    signal: Optional[str] = None
    error: Optional[Exception] = None


async def iter_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """Yield decoded lines without a length limit.

    Reads fixed-size chunks instead of using readline(), which raises on
    lines longer than the reader's limit. A final line without a trailing
    newline is still yielded.
    """
    buffer = bytearray()
    search_from = 0
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            if buffer:
                yield buffer.decode(errors="replace").rstrip("\r")
            return
        buffer.extend(chunk)
        while True:
            newline = buffer.find(b"\n", search_from)
            if newline == -1:
                search_from = len(buffer)
                break
            line = bytes(buffer[:newline])
            del buffer[:newline + 1]
            search_from = 0
            yield line.decode(errors="replace").rstrip("\r")


def _emit(on_output: Optional[OutputHandler], text: str) -> None:
    if on_output is not None:
        on_output(text)


def extract_event_text(event: dict) -> Optional[str]:
    """Return the human-readable text carried by one stream-json event.

    Returns None when a known event type has fields of the wrong shape, so
    the caller can relay the raw line instead.
    """
    event_type = event.get("type")

    if event_type == "content_block_delta":
        delta = event.get("delta") or {}
        if not isinstance(delta, dict):
            return None
        if delta.get("type") == "text_delta":
            text = delta.get("text") or ""
            return text if isinstance(text, str) else None

    elif event_type in ("assistant", "message_stop"):
        message = event.get("message") or {}
        if not isinstance(message, dict):
            return None
        content = message.get("content") or []
        if not isinstance(content, list):
            return None
        texts = [
            block.get("text")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ]
        texts = [text for text in texts if isinstance(text, str)]
        if event_type == "message_stop":
            return texts[0] if texts else ""
        return "".join(texts)

    elif event_type == "result":
        # A plain-string result repeats the assembled assistant text, only
        # the nested form carries anything new.
        result = event.get("result")
        if isinstance(result, dict):
            output = result.get("output") or ""
            return output if isinstance(output, str) else None
        if result is not None and not isinstance(result, str):
            return None

    else:
        logger.debug(f"Unknown stream-json event type: {event_type}")

    return ""


async def parse_structured_stream(
    stream: asyncio.StreamReader,
    on_output: Optional[OutputHandler] = None,
) -> StreamParseResult:
    """Parse --output-format stream-json output.

    Lines that are not a JSON object, or known events with fields of the
    wrong shape, are relayed verbatim with a newline. Valid events of
    unknown type contribute nothing. Signals are detected on the joined
    output, so a marker split across deltas is still found.
    """
    chunks = []
    try:
        async for line in iter_lines(stream):
            if not line:
                continue

            try:
                event = json.loads(line)
            except (json.JSONDecodeError, ValueError):
                event = None

            if not isinstance(event, dict):
                # Not an event, CLI version mismatch or plain output
                chunks.append(line + "\n")
                _emit(on_output, line + "\n")
                continue

            text = extract_event_text(event)
            if text is None:
                logger.debug(f"Malformed stream-json event, relaying raw line: {line[:200]}")
                text = line + "\n"
            if not text:
                continue
            chunks.append(text)
            _emit(on_output, text)
    except OSError as e:
        output = "".join(chunks)
        return StreamParseResult(output, detect_signal(output), e)

    output = "".join(chunks)
    return StreamParseResult(output, detect_signal(output))


def strip_bold(text: str) -> str:
    """Remove markdown bold markers around closed **spans**."""
    result = text
    while True:
        start = result.find("**")
        if start == -1:
            break
        end = result.find("**", start + 2)
        if end == -1:
            break
        result = result[:start] + result[start + 2:end] + result[end + 2:]
    return result


@dataclass
class FilterState:
    """Position of the noise filter within the stream."""
    header_count: int = 0
    in_detail_section: bool = False
    last_shown: Optional[str] = None


def _is_separator(trimmed: str) -> bool:
    return len(trimmed) >= len(SEPARATOR) and set(trimmed) == {"-"}


def should_display(line: str, state: FilterState) -> Tuple[bool, str]:
    """Decide whether a progress line is shown and what text to show.

    Blank lines are never shown. The header sits between the first two
    separators and is shown verbatim; later separators are hidden. Outside
    the header only **bold** summary lines pass, unless the detail section
    has started, after which every line passes. Bold markers are stripped
    outside the header. A line equal to the previously shown line is
    suppressed; separators are exempt.
    """
    trimmed = line.strip()
    if not trimmed:
        return False, ""

    if _is_separator(trimmed):
        state.header_count += 1
        if state.header_count <= 2:
            return True, line
        return False, ""

    if state.header_count == 1 and not state.in_detail_section:
        out = line
    else:
        if trimmed.startswith(DETAIL_SECTION_MARKER):
            state.in_detail_section = True
        if state.in_detail_section:
            out = strip_bold(line)
        elif trimmed.startswith("**"):
            out = strip_bold(trimmed)
        else:
            return False, ""

    if out == state.last_shown:
        return False, ""
    state.last_shown = out
    return True, out


async def parse_filtered_stream(
    stream: asyncio.StreamReader,
    on_output: Optional[OutputHandler] = None,
) -> StreamParseResult:
    """Relay a filtered view of a noisy stream; output holds only shown lines."""
    state = FilterState()
    shown = []
    try:
        async for line in iter_lines(stream):
            ok, out = should_display(line, state)
            if ok:
                shown.append(out)
                _emit(on_output, out + "\n")
    except OSError as e:
        return StreamParseResult("\n".join(shown), None, e)
    return StreamParseResult("\n".join(shown))


async def parse_plain_stream(
    stream: asyncio.StreamReader,
    on_output: Optional[OutputHandler] = None,
) -> StreamParseResult:
    """Relay every line, detecting sentinels line by line."""
    chunks = []
    signal = None
    try:
        async for line in iter_lines(stream):
            chunks.append(line + "\n")
            _emit(on_output, line + "\n")
            detected = detect_signal(line)
            if detected:
                signal = detected
    except OSError as e:
        return StreamParseResult("".join(chunks), signal, e)
    return StreamParseResult("".join(chunks), signal)


async def read_all(stream: asyncio.StreamReader) -> StreamParseResult:
    """Read a stream completely, detecting sentinels in the whole text."""
    data = bytearray()
    try:
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            data.extend(chunk)
    except OSError as e:
        text = data.decode(errors="replace")
        return StreamParseResult(text, detect_signal(text), e)
    text = data.decode(errors="replace")
    return StreamParseResult(text, detect_signal(text))
