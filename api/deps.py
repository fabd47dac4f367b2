"""
WEBCORE - FastAPI Dependencies

Access to the application context and the authentication chain from
route handlers.
"""
from typing import Optional

from fastapi import Depends, Request

from core.context import AppContext
from core.errors import AuthError, WebcoreError
from libraries.auth import AuthN, User


def get_context(request: Request) -> AppContext:
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise WebcoreError("Application context is not started")
    return context


async def authenticate(
    request: Request,
    context: AppContext = Depends(get_context),
) -> Optional[User]:
    """
    Run the authentication chain when authentication is enabled.

    Returns None for public paths and when authentication is disabled.
    """
    auth = context.config.auth
    if not auth.enabled:
        return None

    authn = context.libraries.require(f"authn:{auth.type}", AuthN)
    return await authn(request)


async def require_user(user: Optional[User] = Depends(authenticate)) -> User:
    if user is None:
        raise AuthError("Authentication required")
    return user
