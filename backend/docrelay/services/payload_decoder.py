"""
DocRelay Backend - Payload Decoder (Base64 Normalizer + Gzip Decoder)
======================================================================

What:  Turns the base64 payload string of an envelope into the original
       document bytes.
Why:   Clients hard-wrap, truncate and pad payloads inconsistently; each
       failure mode gets its own error code so the caller knows whether to
       fix formatting or re-send the complete file.
How:   normalize_base64 → decode_base64 → decompress_gzip. All functions are
       pure transforms over their arguments; diagnostics go to the logger.

Failure classification:
    normalize_base64 / decode_base64
        too short, invalid characters (strict), decoder error → MalformedBase64Error
    decompress_gzip
        missing 1f 8b magic                        → InvalidGzipHeaderError
        end of input before end-of-stream marker   → TruncatedGzipStreamError
        CRC mismatch, corrupt deflate data, other  → CorruptGzipStreamError
"""

import binascii
import base64
import gzip
import logging
import re
import zlib

from docrelay.exceptions import (
    CorruptGzipStreamError,
    InvalidGzipHeaderError,
    MalformedBase64Error,
    TruncatedGzipStreamError,
)
from docrelay.models.envelope import MIN_BASE64_LENGTH, Base64Policy

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"

_WHITESPACE = re.compile(r"\s+")
_INVALID_BASE64_CHARS = re.compile(r"[^A-Za-z0-9+/=]")

# How many distinct offending characters are echoed back in error details
_MAX_REPORTED_CHARS = 10


def normalize_base64(
    data: str,
    policy: Base64Policy = Base64Policy.STRICT,
    min_length: int = MIN_BASE64_LENGTH,
) -> str:
    """
    Clean a base64 payload so it can be decoded.

    Steps:
        1. Strip all whitespace (including newlines from hard-wrapped transport)
        2. Characters outside [A-Za-z0-9+/=]: reject (STRICT) or strip (PERMISSIVE)
        3. Pad with '=' to a multiple of 4
        4. Reject results shorter than `min_length`

    Normalizing an already normalized string returns it unchanged.

    Raises:
        MalformedBase64Error: invalid characters under STRICT, or too short.
    """
    original_length = len(data)
    cleaned = _WHITESPACE.sub("", data)

    invalid = _INVALID_BASE64_CHARS.findall(cleaned)
    if invalid:
        distinct = sorted(set(invalid))[:_MAX_REPORTED_CHARS]
        if policy == Base64Policy.STRICT:
            raise MalformedBase64Error(
                message=(
                    f"Base64 data contains {len(invalid)} invalid character(s): "
                    f"{', '.join(repr(c) for c in distinct)}"
                ),
                context={
                    "invalid_count": len(invalid),
                    "invalid_characters": distinct,
                    "policy": policy.value,
                },
            )
        logger.warning(
            "Base64 contains %d invalid characters, stripping them (policy=%s)",
            len(invalid),
            policy.value,
        )
        cleaned = _INVALID_BASE64_CHARS.sub("", cleaned)

    remainder = len(cleaned) % 4
    if remainder:
        padding = 4 - remainder
        logger.debug(
            "Base64 length %d not a multiple of 4, padding with %d '=' characters",
            len(cleaned),
            padding,
        )
        cleaned += "=" * padding

    if len(cleaned) < min_length:
        raise MalformedBase64Error(
            message=(
                f"Base64 data too short ({len(cleaned)} chars) "
                "to be valid compressed data"
            ),
            context={"length": len(cleaned), "min_length": min_length},
        )

    logger.debug(
        "Normalized base64: %d chars in, %d chars out",
        original_length,
        len(cleaned),
    )
    return cleaned


def decode_base64(
    data: str,
    policy: Base64Policy = Base64Policy.STRICT,
    min_length: int = MIN_BASE64_LENGTH,
) -> bytes:
    """
    Normalize and decode a base64 payload.

    Raises:
        MalformedBase64Error: normalization failed or the decoder rejected the
            string (e.g. misplaced padding); the decoder's reason is kept in
            `context["reason"]`.
    """
    normalized = normalize_base64(data, policy=policy, min_length=min_length)
    try:
        decoded = base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedBase64Error(
            message=f"Base64 decoding failed: {e}",
            context={"reason": str(e), "length": len(normalized)},
        )

    logger.debug(
        "Decoded %d bytes, leading bytes %s",
        len(decoded),
        decoded[:4].hex(),
    )
    return decoded


def decompress_gzip(data: bytes) -> bytes:
    """
    Validate the gzip header and inflate.

    No size cap is applied here; the body size guard lives at the HTTP
    boundary.

    Raises:
        InvalidGzipHeaderError: fewer than 2 bytes, or magic is not 1f 8b.
        TruncatedGzipStreamError: input ended mid-member.
        CorruptGzipStreamError: any other inflate failure.
    """
    if len(data) < 2 or data[:2] != GZIP_MAGIC:
        raise InvalidGzipHeaderError(data[:2])

    try:
        decompressed = gzip.decompress(data)
    except EOFError as e:
        # gzip reports a member that stops before its end-of-stream marker
        # as EOFError ("Compressed file ended before ...")
        raise TruncatedGzipStreamError(
            context={"compressed_size": len(data), "reason": str(e)},
        )
    except (OSError, zlib.error) as e:
        raise CorruptGzipStreamError(
            message=f"Gzip decompression error: {e}",
            context={"compressed_size": len(data), "reason": str(e)},
        )

    logger.debug(
        "Decompression successful: %d bytes → %d bytes",
        len(data),
        len(decompressed),
    )
    return decompressed
