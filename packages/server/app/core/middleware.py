"""
HTTP middleware for the ShiftCheck API.

- SecurityHeadersMiddleware: hardening headers for a JSON API. Working state,
  PIN results and session tokens are never cached; signed evidence links keep
  the Cache-Control their route sets, and the interactive docs keep their own
  content policy.
- CSRFMiddleware: double-submit check for browser sessions (manager and
  admin consoles). Kiosk devices authenticate with a bearer token and hold no
  cookies, so they are never checked.
"""

from __future__ import annotations

import secrets

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from app.core.auth import CSRF_COOKIE, SESSION_COOKIE
from app.core.errors import CSRF_REJECTED
from shiftcheck_shared.schemas.common import ErrorDetail

log = structlog.get_logger()

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}
CSRF_HEADER = "X-CSRF-Token"

# Login mints the CSRF cookie, so a browser cannot echo one yet
CSRF_EXEMPT_PATHS = {"/auth/login"}

API_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}
API_CSP = "default-src 'none'; frame-ancestors 'none'"
DOCS_PREFIXES = ("/docs", "/redoc")
HSTS = "max-age=63072000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach API security headers; HSTS only when served over HTTPS."""

    def __init__(self, app: ASGIApp, hsts: bool = True):
        super().__init__(app)
        self.hsts = hsts

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for header, value in API_HEADERS.items():
            response.headers[header] = value
        if not request.url.path.startswith(DOCS_PREFIXES):
            response.headers["Content-Security-Policy"] = API_CSP
        if "cache-control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"
        if self.hsts:
            response.headers["Strict-Transport-Security"] = HSTS
        return response


def needs_csrf_check(request: Request) -> bool:
    """True for state-changing requests that ride on the browser session cookie."""
    if request.method in SAFE_METHODS or request.url.path in CSRF_EXEMPT_PATHS:
        return False
    if request.headers.get("Authorization", "").startswith("Bearer "):
        return False
    return SESSION_COOKIE in request.cookies


class CSRFMiddleware(BaseHTTPMiddleware):
    """Refuse cookie-session writes whose X-CSRF-Token does not echo the CSRF cookie."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if not needs_csrf_check(request):
            return await call_next(request)

        cookie_token = request.cookies.get(CSRF_COOKIE, "")
        header_token = request.headers.get(CSRF_HEADER, "")
        if not cookie_token or not secrets.compare_digest(cookie_token.encode(), header_token.encode()):
            log.warning("csrf.rejected", method=request.method, path=request.url.path)
            detail = ErrorDetail(code=CSRF_REJECTED, message="Invalid or missing CSRF token")
            return JSONResponse(status_code=403, content={"detail": detail.model_dump(exclude_none=True)})

        return await call_next(request)
