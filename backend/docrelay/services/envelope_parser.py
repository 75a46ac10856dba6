"""
DocRelay Backend - Envelope Parser
===================================

What:  Recovers one `(filename, mimetype, payload)` record from a raw text
       envelope.
Why:   Real clients send both a structured `filename;mimetype;base64data`
       triple (often hard-wrapped by their transport) and a bare base64
       blob. The parser accepts both instead of forcing one convention.
How:   1. Join continuation lines back into logical records
       2. First `;`-record with at least three segments and a payload wins
       3. Otherwise, a long all-base64 body is treated as an untagged PDF
       4. Otherwise NoValidEntryError

Priority:
    A `;`-triple always wins over the bare-blob fallback, even when the same
    text would also qualify as a blob.
"""

import logging
import mimetypes
import re

from docrelay.exceptions import NoValidEntryError
from docrelay.models.envelope import DEFAULT_FILENAME, DEFAULT_MIMETYPE, ParsedEntry

logger = logging.getLogger(__name__)

RECORD_DELIMITER = ";"

# Bare blobs shorter than this are more likely typos than documents
BLOB_MIN_LENGTH = 100

FALLBACK_FILENAME = "document"
FALLBACK_MIMETYPE = "application/octet-stream"

_BASE64_BLOB = re.compile(r"^[A-Za-z0-9+/=]+$")
_WHITESPACE = re.compile(r"\s+")


def join_continuation_lines(raw: str) -> str:
    """
    Rebuild logical records that a transport hard-wrapped across lines.

    A physical line containing `;` starts a new logical record (a newline is
    inserted before it unless it is the first thing accumulated). Every other
    line is a continuation and is glued to the previous one. All lines are
    trimmed before joining.

    Example:
        "a.pdf;application/pdf;H4sI\\nAAAA\\nBBBB" → "a.pdf;application/pdf;H4sIAAAABBBB"
    """
    joined = ""
    for line in raw.split("\n"):
        if RECORD_DELIMITER in line and joined != "":
            joined += "\n"
        joined += line.strip()
    return joined


def _default_mimetype(filename: str) -> str:
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or FALLBACK_MIMETYPE


def _match_record(line: str):
    segments = line.split(RECORD_DELIMITER)
    if len(segments) < 3:
        return None

    # Rejoin the tail so a stray ';' inside the payload does not truncate it
    payload = RECORD_DELIMITER.join(segments[2:]).strip()
    if not payload:
        return None

    filename = segments[0].strip() or FALLBACK_FILENAME
    mimetype = segments[1].strip() or _default_mimetype(filename)
    return ParsedEntry(filename=filename, mimetype=mimetype, payload=payload)


def parse_envelope(raw: str) -> ParsedEntry:
    """
    Parse a raw envelope into a ParsedEntry.

    Args:
        raw: The request body as text. May be empty or malformed.

    Returns:
        The first matching record, trimmed.

    Raises:
        NoValidEntryError: neither a record nor a bare base64 blob was found.
    """
    for line in join_continuation_lines(raw).split("\n"):
        if not line.strip():
            continue
        entry = _match_record(line)
        if entry is not None:
            logger.debug(
                "Matched envelope record: filename=%s mimetype=%s payload=%d chars",
                entry.filename,
                entry.mimetype,
                len(entry.payload),
            )
            return entry

    blob = _WHITESPACE.sub("", raw.strip())
    if len(blob) > BLOB_MIN_LENGTH and _BASE64_BLOB.match(blob):
        logger.debug("No record found, treating %d-char body as bare base64 blob", len(blob))
        return ParsedEntry(
            filename=DEFAULT_FILENAME,
            mimetype=DEFAULT_MIMETYPE,
            payload=blob,
        )

    raise NoValidEntryError(context={"input_length": len(raw)})
