# Middleware package init
"""
Papir Backend — Middleware Package
===================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Request ID] → [Rate Limit] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID: sets the correlation ID used by every later log line and
       by error envelopes, 429 rejections included
    2. Rate Limit: rejects over-limit /api/ calls before any route work
    3. Logging: records status and duration once the response exists
    4. GZip / CORS: Starlette middleware configured in main.py

Client IP resolution (X-Forwarded-For, then the socket peer) is shared by the
rate limiter, the access log and the audit columns: see client_ip.py.
"""
