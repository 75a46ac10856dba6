"""
DocRelay Backend - Envelope Domain Models
==========================================

What:  Immutable, request-scoped values passed between pipeline stages.
Why:   Each stage hands the next one a small frozen value instead of loose
       tuples, so stage contracts are explicit and nothing is shared between
       requests.
Who:   Produced by the parsers, decoder and collaborators; consumed by
       DocumentPipeline. Never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from docrelay.exceptions import PipelineStage

DEFAULT_PROMPT = "Please analyze this document"
DEFAULT_FILENAME = "document.pdf"
DEFAULT_MIMETYPE = "application/pdf"

# A complete gzip member is at least 20 bytes (10-byte header, empty deflate
# block, 8-byte trailer), i.e. 28 base64 chars. Anything under 24 chars is
# certainly not one, whatever padding was lost in transport.
MIN_BASE64_LENGTH = 24


class Base64Policy(str, Enum):
    """
    How the normalizer treats characters outside the base64 alphabet.

    STRICT:      reject and report the invalid characters (default)
    PERMISSIVE:  strip them and continue (may mask transport corruption)
    """

    STRICT = "strict"
    PERMISSIVE = "permissive"


@dataclass(frozen=True)
class ParsedEntry:
    """One `filename;mimetype;payload` record recovered from an envelope."""

    filename: str
    mimetype: str
    payload: str


@dataclass(frozen=True)
class PromptDataPair:
    """Instruction and payload separated by the prompt/data splitter."""

    prompt: str
    payload: str


@dataclass(frozen=True)
class ExtractedDocument:
    """Plain text recovered from a decompressed document."""

    text: str
    pages: Optional[int] = None


@dataclass(frozen=True)
class CompletionResult:
    """Normalized answer from any LLM provider."""

    provider: str
    model: str
    content: str
    tokens_used: Optional[int] = None


@dataclass(frozen=True)
class ErrorRecord:
    """Fully populated description of a stage failure."""

    code: str
    message: str
    stage: Optional[PipelineStage]
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineConfig:
    """
    Explicit configuration handed to DocumentPipeline at construction.

    Built from Settings by `settings.pipeline_config()` in production and
    constructed directly in tests, so the core never reads process state.
    """

    default_prompt: str = DEFAULT_PROMPT
    base64_policy: Base64Policy = Base64Policy.STRICT
    min_base64_length: int = MIN_BASE64_LENGTH
