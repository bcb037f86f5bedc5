from __future__ import annotations

import hashlib
import time
from typing import Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from widgetgate.core.config import settings
from widgetgate.core.exceptions import RateLimitError
from widgetgate.core.logging import get_structlog_logger
from widgetgate.services.redis import get_redis_client

logger = get_structlog_logger(__name__)


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """
    Fixed-window per-client throttle in Redis.

    Sits in front of the per-key budget enforced by the validator and also
    bounds floods of unknown keys. When Redis is unreachable the request
    passes through; the validator stays the gate.
    """

    def __init__(self, app, requests: Optional[int] = None, period: Optional[int] = None):
        super().__init__(app)
        self.redis = None
        self.limit = requests or settings.throttle_requests
        self.period = period or settings.throttle_period
        self.exempt_prefixes = ("/metrics", "/docs", "/redoc", "/openapi.json", f"{settings.api_prefix}/health")

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or request.url.path.startswith(self.exempt_prefixes):
            return await call_next(request)

        client_id = self._get_client_id(request)
        allowed, remaining, reset_time = await self._check(client_id, request)

        if not allowed:
            retry_after = max(1, reset_time - int(time.time()))
            logger.warning(
                "throttle.exceeded",
                client_id=client_id,
                path=request.url.path,
                retry_after=retry_after,
            )
            error = RateLimitError(
                "Too many requests. Please try again later.",
                retry_after=retry_after,
                details={"limit": self.limit, "period": self.period},
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content=error.to_response(),
                headers=error.headers,
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset"] = str(reset_time)
        return response

    def _get_client_id(self, request: Request) -> str:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            digest = hashlib.sha256(auth_header[7:].encode("utf-8")).hexdigest()[:32]
            return f"token:{digest}"

        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return f"ip:{forwarded_for.split(',')[0].strip()}"

        return f"ip:{request.client.host if request.client else 'unknown'}"

    async def _check(self, client_id: str, request: Request) -> Tuple[bool, int, int]:
        window = int(time.time() // self.period)
        reset_time = (window + 1) * self.period
        key = f"throttle:{client_id}:{window}"

        try:
            if self.redis is None:
                self.redis = await get_redis_client()

            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.period)
                results = await pipe.execute()
            current_count = int(results[0])

        except Exception as e:
            logger.warning("throttle.unavailable", error=str(e), path=request.url.path)
            return True, self.limit, reset_time

        remaining = max(0, self.limit - current_count)
        return current_count <= self.limit, remaining, reset_time
