"""Authentication middleware for internal routes."""

import hmac
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.container import container

logger = logging.getLogger(__name__)

# Path prefixes reserved for engine-to-engine calls
INTERNAL_PREFIXES = (
    "/internal/",
)


class InternalAuthMiddleware(BaseHTTPMiddleware):
    """Require the shared bearer token on internal routes."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if not self._is_internal_path(path):
            return await call_next(request)

        settings = container.settings()
        header = request.headers.get("authorization", "")
        scheme, _, token = header.partition(" ")

        if scheme.lower() != "bearer" or not token:
            return JSONResponse(
                status_code=401,
                content={"detail": "Not authenticated"}
            )

        if not hmac.compare_digest(token.encode(), settings.internal_api_token.encode()):
            logger.warning("Rejected internal call with invalid token: %s", path)
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid token"}
            )

        return await call_next(request)

    def _is_internal_path(self, path: str) -> bool:
        """Check if path is an internal route."""
        for prefix in INTERNAL_PREFIXES:
            if path.startswith(prefix):
                return True

        return False
