from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from jose import ExpiredSignatureError, JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware

from widgetgate.core.config import settings
from widgetgate.core.exceptions import AuthenticationError
from widgetgate.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)


def default_exempt_paths(prefix: str = settings.api_prefix) -> List[str]:
    """Public surface: the widget endpoints called from third-party pages."""
    return [
        "/",
        "/metrics",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/widget/v1/embed.js",
        f"{prefix}/health(/.*)?",
        f"{prefix}/widget-validate",
        f"{prefix}/widget-lead-capture",
        f"{prefix}/calculator-types",
    ]


def _unauthorized(code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"success": False, "error": message, "code": code},
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthMiddleware(BaseHTTPMiddleware):
    """Bearer JWT authentication for contractor-facing routes."""

    def __init__(self, app, exempt_paths: Optional[List[str]] = None):
        super().__init__(app)
        self.exempt_paths = exempt_paths or default_exempt_paths()
        self.exempt_patterns = [re.compile(path) for path in self.exempt_paths]

    async def dispatch(self, request: Request, call_next):
        # CORS preflight never carries credentials
        if request.method == "OPTIONS" or self._is_exempt_path(request.url.path):
            return await call_next(request)

        token = self._extract_token(request)
        if not token:
            logger.warning("auth.missing_token", path=request.url.path, method=request.method)
            return _unauthorized("missing_token", "Unauthorized. Please sign in to manage widget keys.")

        try:
            payload = TokenManager.decode(token)
        except ExpiredSignatureError:
            logger.warning("auth.expired_token", path=request.url.path)
            return _unauthorized("expired_token", "Token has expired")
        except JWTError as e:
            logger.warning("auth.invalid_token", error=str(e), path=request.url.path)
            return _unauthorized("invalid_token", "Invalid authentication token")

        try:
            contractor_id = uuid.UUID(str(payload.get("sub")))
        except ValueError:
            logger.warning("auth.invalid_subject", path=request.url.path)
            return _unauthorized("invalid_token", "Invalid authentication token")

        request.state.contractor = {
            "id": contractor_id,
            "email": payload.get("email"),
        }
        logger.debug("auth.authenticated", contractor_id=str(contractor_id), path=request.url.path)

        return await call_next(request)

    def _is_exempt_path(self, path: str) -> bool:
        return any(pattern.fullmatch(path) for pattern in self.exempt_patterns)

    def _extract_token(self, request: Request) -> Optional[str]:
        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return None

        parts = auth_header.split()
        if len(parts) != 2:
            return None

        scheme, token = parts
        if scheme.lower() != "bearer":
            return None

        return token


class TokenManager:
    """Manager for JWT token operations."""

    @staticmethod
    def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))

        to_encode.update({
            "exp": expire,
            "iat": now,
            "jti": str(uuid.uuid4()),
            "type": "access",
        })

        return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

    @staticmethod
    def create_contractor_token(contractor_id: uuid.UUID, email: Optional[str] = None,
                                expires_delta: Optional[timedelta] = None) -> str:
        data: Dict = {"sub": str(contractor_id)}
        if email:
            data["email"] = email
        return TokenManager.create_access_token(data, expires_delta)

    @staticmethod
    def decode(token: str) -> Dict:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"verify_aud": False, "require_exp": True},
        )


async def get_current_contractor(request: Request) -> uuid.UUID:
    """Route dependency: id of the authenticated contractor."""
    contractor = getattr(request.state, "contractor", None)
    if not contractor:
        raise AuthenticationError("Unauthorized. Please sign in to manage widget keys.")
    return contractor["id"]
