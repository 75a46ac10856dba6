"""
DocRelay Backend - Application Package Initializer
===================================================

What:  Document relay service: decodes gzip+base64 documents sent in
       tolerant text or JSON envelopes, extracts their text and forwards it
       with a prompt to an LLM provider.

Architecture Note:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns, body size guard
    ├─────────────────────────────────────┤
    │     DocumentPipeline (Orchestrator) │  ← stage tracking, error envelopes
    ├─────────────────────────────────────┤
    │  Parsers & Decoder  │ Collaborators │  ← pure transforms │ extract, LLM
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
