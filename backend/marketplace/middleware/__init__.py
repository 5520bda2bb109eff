# Middleware package init
"""
Specialist Marketplace Backend — Middleware Package
====================================================

Middleware Chain (outermost first):
    Request → [Request ID] → [Access Log] → [GZip] → [CORS] → Route Handler

    Request ID runs first so the access-log line and every log record
    written while handling the request carry the same correlation ID.
"""
