"""Authentication API endpoints.

Provides signup, login and current-account info. Signup always creates a
USER (client) account; trainer (ADMIN) accounts are seeded with
scripts/create_admin.py.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.fitcoach.api.deps import get_registered_caller
from src.fitcoach.core.identity import Caller, Role
from src.fitcoach.core.security import create_access_token, hash_password, verify_password
from src.fitcoach.schemas.auth import (
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserRecord,
    UserResponse,
)
from src.fitcoach.services.accounts import AccountRepository, EmailAlreadyRegistered

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _get_accounts(request: Request) -> AccountRepository:
    """Retrieve AccountRepository from app.state, 503 if not available."""
    accounts = getattr(request.app.state, "account_repository", None)
    if accounts is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Account repository not initialized",
        )
    return accounts


def _user_response(user: UserRecord) -> UserResponse:
    return UserResponse(
        id=str(user.id),
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        name=user.full_name,
        role=user.role,
    )


def _issue_token(user: UserRecord) -> TokenResponse:
    token_data = {
        "sub": str(user.id),
        "email": user.email,
        "name": user.full_name,
        "role": user.role,
    }
    return TokenResponse(
        access_token=create_access_token(token_data),
        user=_user_response(user),
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, request: Request):
    """Create a client account and log it in."""
    accounts = _get_accounts(request)
    try:
        user = await accounts.create(
            first_name=body.first_name.strip(),
            last_name=body.last_name.strip(),
            email=body.email,
            hashed_password=hash_password(body.password),
            role=Role.USER,
        )
    except EmailAlreadyRegistered:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="An account with this email already exists",
        )
    return _issue_token(user)


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request):
    """Authenticate with email and password and return an access token."""
    accounts = _get_accounts(request)
    user = await accounts.get_by_email(body.email)

    if not user or not verify_password(body.password, user.hashed_password):
        logger.info("auth.login_failed", email=body.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    logger.info("auth.login_succeeded", user_id=user.id, role=user.role)
    return _issue_token(user)


@router.get("/me", response_model=UserResponse)
async def get_me(caller: Caller = Depends(get_registered_caller)):
    """Return current account info from JWT claims."""
    return UserResponse(
        id=caller.id,
        email=caller.email,
        name=caller.name,
        role=caller.role.value,
    )
