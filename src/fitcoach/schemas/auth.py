"""Pydantic schemas for authentication API endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class RegisterRequest(BaseModel):
    """Request schema for self-service signup. New accounts are always USER."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=6, description="User password")


class LoginRequest(BaseModel):
    """Request schema for user login."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")


class UserRecord(BaseModel):
    """Stored account as returned by the account repository."""

    id: int
    first_name: str
    last_name: str
    email: str
    hashed_password: str
    role: str = "USER"
    created_at: datetime | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class UserResponse(BaseModel):
    """Response schema for account info."""

    id: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    name: str | None = None
    role: str


class TokenResponse(BaseModel):
    """Response schema with an access token and the account it belongs to."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse
