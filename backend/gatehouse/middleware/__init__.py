"""
Gatehouse — Middleware Package
================================

What:  Starlette adapters that put the governance engines in front of every route.

Middleware Chain (order matters):
    Request → [Request ID] → [Logging] → [Security Headers] → [Origin Policy]
            → [Rate Limit] → [Failure Boundary] → Route Handler

    1. Request ID first: every later stage and log line can read it
    2. Logging: sees the final status, including 403/429 short-circuits
    3. Security headers: applied to rejections as well as successes
    4. Origin policy: denies before any budget is charged
    5. Rate limit: charges the client on entry
    6. Failure boundary: innermost, so nothing a handler raises escapes it
"""
