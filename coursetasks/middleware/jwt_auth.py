
"""
JWT enforcement middleware for the FastAPI application.

Responsibilities:
  * Normalize the request path (strip a deployment base path) before the
    exemption check.
  * Let the public endpoints (health check, docs, OpenAPI schema) through.
  * Accept a token from the `Authorization` header (Bearer scheme) or the
    `X-Authorization` header.
  * Delegate decoding/validation to `verify_jwt_token` and attach the claims
    to `request.state.auth`.
  * Answer 401 in the standard envelope for missing, malformed or expired
    credentials.

Loading the user and checking roles happens in `coursetasks.middleware.rbac`.
"""

from __future__ import annotations

from typing import Iterable
from urllib.parse import unquote

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request

from ..services.auth_service import verify_jwt_token
from .error_handler import envelope

# Each entry is an exact path, or a prefix when it ends with a slash.
DEFAULT_EXEMPT: tuple[str, ...] = (
    "/health",
    "/docs",
    "/docs/",
    "/redoc",
    "/openapi.json",
    "/favicon.ico",
)


def _is_exempt(path: str, exempt: Iterable[str]) -> bool:
    for p in exempt:
        if p.endswith("/") and path.startswith(p):
            return True
        if path == p:
            return True
    return False


def _unauthorized(message: str = "Not authorized, no token"):
    return envelope(401, message)


class JWTAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, exempt_paths: Iterable[str] = DEFAULT_EXEMPT) -> None:
        super().__init__(app)
        self.exempt_paths = tuple(exempt_paths)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint):
        raw_path = unquote(request.scope.get("path", "") or request.url.path)
        root_prefix = request.scope.get("root_path", "") or request.headers.get(
            "X-Forwarded-Prefix", ""
        )
        path = (
            raw_path[len(root_prefix) :]
            if root_prefix and raw_path.startswith(root_prefix)
            else raw_path
        )

        if request.method == "OPTIONS" or _is_exempt(path, self.exempt_paths):
            return await call_next(request)

        header = request.headers.get("Authorization") or request.headers.get(
            "X-Authorization"
        )
        if not header:
            return _unauthorized()

        header = header.strip()
        if header.lower().startswith("bearer "):
            token = header.split(" ", 1)[1].strip()
        else:
            token = header

        if not token:
            return _unauthorized()

        payload = verify_jwt_token(token)
        if not payload:
            return _unauthorized("Not authorized, token failed")

        request.state.auth = payload
        return await call_next(request)
