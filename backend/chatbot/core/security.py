"""Session token validation.

Identities are issued by an external auth provider as HS256-signed JWTs
(Supabase-style). The token arrives either as a bearer credential or in the
session cookie; the backend only verifies it and reads ``sub``/``email``.
Users are never stored locally.
"""

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from chatbot.config import settings
from chatbot.core.exceptions import UnauthenticatedError
from chatbot.schemas.user import UserIdentity

logger = structlog.get_logger()


def decode_session_token(token: str) -> dict:
    """Decode and validate a session token issued by the auth provider."""
    try:
        return jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience or None,
            options={"verify_aud": bool(settings.auth_jwt_audience)},
        )
    except JWTError as e:
        logger.info("session_token_rejected", error=str(e))
        raise UnauthenticatedError() from e


# ── Auth Dependencies ─────────────────────────────
security_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security_scheme),
) -> UserIdentity:
    """FastAPI dependency: resolve the caller from the bearer token or session cookie."""
    token = credentials.credentials if credentials else request.cookies.get(settings.session_cookie_name)
    if not token:
        raise UnauthenticatedError()

    payload = decode_session_token(token)

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthenticatedError()

    return UserIdentity(id=str(user_id), email=payload.get("email", "") or "")
