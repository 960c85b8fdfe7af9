"""
Custom middleware for API security.
"""

import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import Receive, Scope, Send
from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)

# Browsers cannot set headers on websocket handshakes
WEBSOCKET_KEY_PARAM = "api_key"


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """
    Validates the X-Api-Key header against a shared secret.

    Websocket handshakes may pass the key as the ``api_key`` query parameter
    instead. When api_key is None (not configured), the middleware is
    disabled and all requests pass through.
    """

    def __init__(self, app, api_key: Optional[str] = None, exempt_paths: Optional[set[str]] = None):
        super().__init__(app)
        self._api_key = api_key
        self._exempt_paths = exempt_paths or set()

    def _is_valid(self, provided_key: Optional[str]) -> bool:
        return bool(provided_key) and provided_key == self._api_key

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "websocket" and self._api_key:
            websocket = WebSocket(scope, receive, send)
            provided_key = websocket.headers.get("X-Api-Key") or websocket.query_params.get(WEBSOCKET_KEY_PARAM)
            if not self._is_valid(provided_key):
                logger.warning(f"Rejected websocket to {websocket.url.path}: invalid API key")
                await websocket.close(code=1008)
                return
        await super().__call__(scope, receive, send)

    async def dispatch(self, request: Request, call_next):
        if not self._api_key:
            return await call_next(request)

        # Skip validation for CORS preflight
        if request.method == "OPTIONS":
            return await call_next(request)

        if request.url.path in self._exempt_paths:
            return await call_next(request)

        if not self._is_valid(request.headers.get("X-Api-Key")):
            logger.warning(f"Rejected request to {request.url.path}: invalid API key")
            return JSONResponse(
                status_code=403,
                content={"detail": "Invalid or missing API key"},
            )

        return await call_next(request)
