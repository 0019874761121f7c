# Middleware package init
"""
DocDigest Backend: Middleware Package
=======================================

Middleware Chain (outermost first):
    Request → [Request ID] → [Access Log] → [Rate Limit] → [GZip] → [CORS] → Route

    The request ID is assigned before anything logs, so every record of the
    request (including rate-limit rejections) carries it.
"""
