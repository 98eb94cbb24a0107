"""FastAPI dependency injection for authentication.

Endpoints declare ``caller: Caller = Depends(get_current_caller)`` to
require a bearer credential. The guest sentinel is accepted and resolves
to an anonymous USER caller, so room endpoints work from public join
links.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from src.fitcoach.core.identity import Caller
from src.fitcoach.core.security import resolve_caller


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


async def get_current_caller(request: Request) -> Caller:
    """Resolve the caller from the Authorization header.

    Raises:
        HTTPException(401): If no credential is sent or the token is invalid.
    """
    token = _bearer_token(request)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return resolve_caller(token)


async def get_registered_caller(caller: Caller = Depends(get_current_caller)) -> Caller:
    """Like get_current_caller, but rejects the guest identity.

    Raises:
        HTTPException(401): For guest callers.
    """
    if caller.is_guest:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return caller


# Alias for cleaner endpoint signatures
require_auth = Depends(get_current_caller)
