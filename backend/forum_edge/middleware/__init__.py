# Middleware package init
"""
Forum Edge — Middleware Package
=================================

What:  The request-edge pipeline applied to every request.

Middleware Chain (outermost first):
    Request → [Edge Gate] → [Request ID] → [Logging] → [GZip] → Route Handler

    Edge Gate:
        1. Rate limit (may answer 429 and stop here)
        2. Session refresh (wraps everything below it)
        3. Security headers, x-nonce, X-RateLimit-* on the way out
    Request ID: correlation ID for logs, set only for admitted requests
    Logging: access log line with status and duration

Static assets and prefetch requests pass through the gate untouched.
"""
