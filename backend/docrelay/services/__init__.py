# Services package init
"""
DocRelay Backend - Services Layer
==================================

Service Inventory:
    - payload_decoder:   base64 normalization and gzip decoding
    - envelope_parser:   `filename;mimetype;base64` records and bare blobs
    - prompt_splitter:   prompt/data separation (finite-state machine)
    - text_extractor:    PDF, spreadsheet and text extraction
    - llm_base:          LLMService interface, circuit breaker, retry
    - gemini_service / openai_service / anthropic_service: providers
    - providers:         AI_PROVIDER selection
    - response_parser:   optional JSON parsing of AI answers
    - pipeline_service:  DocumentPipeline orchestrating all of the above
"""
