# Routes package init
"""
DocRelay Backend - API Routes Package
======================================

Route Inventory:
    - process.py:    POST /api/v1/process-multiline-enhanced
                     POST /api/v1/process-multiline
                     POST /api/v1/convert-multiline-to-json
    - documents.py:  POST /api/v1/process-document
                     POST /api/v1/validate
    - health.py:     GET  /health
                     GET  /api/v1/status

Routes stay thin: read the request, call DocumentPipeline, return its
envelope with its status code.
"""
