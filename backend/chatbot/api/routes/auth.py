"""Authentication API routes.

Sign-in, sign-up and token refresh are handled by the auth provider;
the backend only validates the session token it issues.
"""

from fastapi import APIRouter, Depends

from chatbot.api.deps import get_current_user
from chatbot.schemas.user import UserIdentity

router = APIRouter()


@router.get("/me", response_model=UserIdentity)
async def auth_me(user: UserIdentity = Depends(get_current_user)):
    """Return the identity carried by the caller's session token."""
    return user
