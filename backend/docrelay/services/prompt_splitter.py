"""
DocRelay Backend - Prompt/Data Splitter
========================================

What:  Separates a free-form instruction (prompt) from the document payload
       in a raw text envelope.
Why:   Clients mark the prompt in five different ways; all of them must be
       accepted and their precedence must stay predictable.
How:   A finite-state machine walks the envelope line by line. One ordered
       transition table decides, for the current state and line, which
       action fires. The first matching row wins.

States:
    IDLE                 no section open
    IN_PROMPT_BLOCK      between ---PROMPT-START--- and ---PROMPT-END---
    IN_DATA_BLOCK        between ---DATA-START--- and ---DATA-END---
    IN_PROMPT_MULTILINE  after `prompt-multiline:`, until a payload-looking line
    DONE                 payload taken from the remainder of the text

Accepted layouts (highest precedence first):
    1. Block delimiters        ---PROMPT-START--- / ---DATA-START--- ...
    2. Multiline prompt prefix prompt-multiline: <first line> + following lines
    3. Single-line prefix      prompt: <text>
    4. Data prefix             data:<payload...>
    5. Unprefixed payload      a `;` line or a long base64 line starts the payload

Example:
    ---PROMPT-START---
    Summarize
    ---PROMPT-END---
    ---DATA-START---
    H4sIAAAA...
    ---DATA-END---
    → PromptDataPair(prompt="Summarize", payload="H4sIAAAA...")
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, List, Optional, Tuple

from docrelay.models.envelope import DEFAULT_PROMPT, PromptDataPair

logger = logging.getLogger(__name__)

PROMPT_START = "---PROMPT-START---"
PROMPT_END = "---PROMPT-END---"
DATA_START = "---DATA-START---"
DATA_END = "---DATA-END---"

PROMPT_MULTILINE_PREFIX = "prompt-multiline:"
PROMPT_PREFIX = "prompt:"
DATA_PREFIX = "data:"

LONG_LINE_LENGTH = 100
DELIMITED_LINE_LENGTH = 50

_BASE64_LINE = re.compile(r"^[A-Za-z0-9+/=]+$")
_BASE64_RECORD_LINE = re.compile(r"^[A-Za-z0-9+/=;]+$")


class SplitterState(Enum):
    IDLE = "idle"
    IN_PROMPT_BLOCK = "in_prompt_block"
    IN_DATA_BLOCK = "in_data_block"
    IN_PROMPT_MULTILINE = "in_prompt_multiline"
    DONE = "done"


@dataclass
class _SplitContext:
    """Mutable scan state for one envelope; never shared between calls."""

    lines: List[str]
    index: int = 0
    state: SplitterState = SplitterState.IDLE
    prompt: Optional[str] = None
    prompt_lines: List[str] = field(default_factory=list)
    payload: str = ""

    def remainder(self) -> str:
        return "\n".join(self.lines[self.index:]).strip()


# ── Predicates ────────────────────────────────────────────────────────────


def _always(trimmed: str) -> bool:
    return True


def _is(marker: str) -> Callable[[str], bool]:
    return lambda trimmed: trimmed == marker


def _starts_with(prefix: str) -> Callable[[str], bool]:
    return lambda trimmed: trimmed.startswith(prefix)


def _has_delimiter(trimmed: str) -> bool:
    return ";" in trimmed


def _looks_like_unprefixed_payload(trimmed: str) -> bool:
    if not trimmed:
        return False
    return _has_delimiter(trimmed) or (
        len(trimmed) > LONG_LINE_LENGTH and bool(_BASE64_LINE.match(trimmed))
    )


def _ends_multiline_prompt(trimmed: str) -> bool:
    return (
        trimmed.startswith(DATA_PREFIX)
        or (len(trimmed) > LONG_LINE_LENGTH and bool(_BASE64_RECORD_LINE.match(trimmed)))
        or (_has_delimiter(trimmed) and len(trimmed) > DELIMITED_LINE_LENGTH)
    )


# ── Actions ───────────────────────────────────────────────────────────────


def _start_prompt_block(ctx: _SplitContext, line: str, trimmed: str) -> None:
    ctx.state = SplitterState.IN_PROMPT_BLOCK
    ctx.prompt_lines = []


def _end_prompt_block(ctx: _SplitContext, line: str, trimmed: str) -> None:
    ctx.state = SplitterState.IDLE
    ctx.prompt = "\n".join(ctx.prompt_lines).strip()


def _start_data_block(ctx: _SplitContext, line: str, trimmed: str) -> None:
    ctx.state = SplitterState.IN_DATA_BLOCK


def _end_data_block(ctx: _SplitContext, line: str, trimmed: str) -> None:
    ctx.state = SplitterState.IDLE


def _capture_prompt_line(ctx: _SplitContext, line: str, trimmed: str) -> None:
    ctx.prompt_lines.append(line)


def _capture_data_line(ctx: _SplitContext, line: str, trimmed: str) -> None:
    if ctx.payload:
        ctx.payload += "\n"
    ctx.payload += line


def _start_multiline_prompt(ctx: _SplitContext, line: str, trimmed: str) -> None:
    ctx.state = SplitterState.IN_PROMPT_MULTILINE
    ctx.prompt_lines = [trimmed[len(PROMPT_MULTILINE_PREFIX):].strip()]


def _set_single_line_prompt(ctx: _SplitContext, line: str, trimmed: str) -> None:
    ctx.prompt = trimmed[len(PROMPT_PREFIX):].strip()


def _take_remainder(ctx: _SplitContext, line: str, trimmed: str) -> None:
    payload = ctx.remainder()
    if payload.startswith(DATA_PREFIX):
        payload = payload[len(DATA_PREFIX):].strip()
    ctx.payload = payload
    ctx.state = SplitterState.DONE


def _finish_multiline_prompt(ctx: _SplitContext, line: str, trimmed: str) -> None:
    ctx.prompt = "\n".join(ctx.prompt_lines).strip()
    _take_remainder(ctx, line, trimmed)


_IDLE = frozenset({SplitterState.IDLE})
_OPEN = frozenset(
    {
        SplitterState.IDLE,
        SplitterState.IN_PROMPT_BLOCK,
        SplitterState.IN_DATA_BLOCK,
        SplitterState.IN_PROMPT_MULTILINE,
    }
)

Transition = Tuple[FrozenSet[SplitterState], Callable[[str], bool], Callable[[_SplitContext, str, str], None]]

# Ordered: block markers first, then per-state rules. First match wins.
TRANSITIONS: List[Transition] = [
    (_OPEN, _is(PROMPT_START), _start_prompt_block),
    (_OPEN, _is(PROMPT_END), _end_prompt_block),
    (_OPEN, _is(DATA_START), _start_data_block),
    (_OPEN, _is(DATA_END), _end_data_block),
    (frozenset({SplitterState.IN_PROMPT_BLOCK}), _always, _capture_prompt_line),
    (frozenset({SplitterState.IN_DATA_BLOCK}), _always, _capture_data_line),
    (_IDLE, _starts_with(PROMPT_MULTILINE_PREFIX), _start_multiline_prompt),
    (_IDLE, _starts_with(PROMPT_PREFIX), _set_single_line_prompt),
    (_IDLE, _starts_with(DATA_PREFIX), _take_remainder),
    (_IDLE, _looks_like_unprefixed_payload, _take_remainder),
    (frozenset({SplitterState.IN_PROMPT_MULTILINE}), _ends_multiline_prompt, _finish_multiline_prompt),
    (frozenset({SplitterState.IN_PROMPT_MULTILINE}), _always, _capture_prompt_line),
]


def _step(ctx: _SplitContext, line: str) -> None:
    trimmed = line.strip()
    for states, predicate, action in TRANSITIONS:
        if ctx.state in states and predicate(trimmed):
            action(ctx, line, trimmed)
            return


def split_prompt_and_data(raw: str, default_prompt: str = DEFAULT_PROMPT) -> PromptDataPair:
    """
    Split a raw envelope into its prompt and payload.

    Args:
        raw: Request body text.
        default_prompt: Used when no prompt section or prefix is recognized.

    Returns:
        PromptDataPair. `payload` is empty when no data was found; the caller
        decides whether that is fatal.
    """
    ctx = _SplitContext(lines=[line.rstrip("\r") for line in raw.split("\n")])

    while ctx.index < len(ctx.lines) and ctx.state != SplitterState.DONE:
        _step(ctx, ctx.lines[ctx.index])
        ctx.index += 1

    # Input ended while still collecting a multiline prompt
    if ctx.state == SplitterState.IN_PROMPT_MULTILINE:
        ctx.prompt = "\n".join(ctx.prompt_lines).strip()

    prompt = ctx.prompt if ctx.prompt is not None else default_prompt
    logger.debug(
        "Split envelope: final_state=%s prompt=%d chars payload=%d chars",
        ctx.state.value,
        len(prompt),
        len(ctx.payload),
    )
    return PromptDataPair(prompt=prompt, payload=ctx.payload.strip())
