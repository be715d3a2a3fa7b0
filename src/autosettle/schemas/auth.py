"""Pydantic schemas for authentication API endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class SignupRequest(BaseModel):
    """Request schema for registering a new user."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=8, description="User password")
    name: str | None = Field(default=None, max_length=200)


class LoginRequest(BaseModel):
    """Request schema for user login."""

    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=1, description="User password")


class TokenResponse(BaseModel):
    """Response schema with access and refresh tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenRefreshRequest(BaseModel):
    """Request schema to refresh an access token."""

    refresh_token: str = Field(..., description="Valid refresh token")


class UserResponse(BaseModel):
    """Response schema for current user info."""

    id: str
    email: str
    name: str | None = None
    created_at: datetime | None = None
