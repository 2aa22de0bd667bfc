"""
Papir Backend — Client IP Resolution
=====================================

What:  Best-effort client address for audit columns, rate limiting and access logs.
How:   First entry of X-Forwarded-For (set by the reverse proxy), else the
       socket peer, else "unknown".

    The header is client-controllable when no proxy strips it, so the value
    is recorded for auditing only and never used for authorization.
"""

from starlette.requests import Request

UNKNOWN_IP = "unknown"


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_IP
