"""Pydantic schemas for Necessity Reminder.

This module defines request and response schemas for API validation.
Request bodies use the camelCase keys the web frontend sends.
IMPORTANT: Pydantic automatically parses ISO datetime strings to datetime objects.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional

from clock import ensure_utc
from database import CategoryEnum


class SignupRequest(BaseModel):
    """Schema for registering a new user."""

    full_name: str = Field(..., alias="fullName", min_length=1, max_length=255)
    email: str = Field(
        ...,
        pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$',
        max_length=255,
        examples=["jane@example.com"]
    )
    password: str = Field(..., min_length=6, max_length=72)

    class Config:
        populate_by_name = True


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserResponse(BaseModel):
    user_id: int
    full_name: str
    email: str

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    message: str
    token: str
    user: UserResponse


class ReminderCreate(BaseModel):
    """Schema for creating a new reminder.

    Pydantic automatically validates and parses:
    - ISO datetime strings to datetime objects (naive values are taken as UTC)
    - Category against the fixed set
    """

    title: str = Field(
        ...,
        min_length=1,
        max_length=255,
        examples=["Take vitamins", "Team Meeting"]
    )

    category: str = Field(
        ...,
        pattern="^(medicine|workout|meeting|other)$",
        description="Category: medicine, workout, meeting or other"
    )

    reminder_time: datetime = Field(
        ...,
        alias="reminderTime",
        description="When the reminder is due (ISO 8601 format)",
        examples=["2025-10-26T15:00:00Z", "2025-10-26T15:00:00+05:30"]
    )

    notes: Optional[str] = Field(None, description="Optional notes")

    class Config:
        populate_by_name = True


class ReminderResponse(BaseModel):
    """Schema for reminder responses.

    Datetimes are always returned with an explicit UTC offset.
    """

    reminder_id: int
    user_id: int
    title: str
    category: CategoryEnum
    reminder_time: datetime
    notes: Optional[str] = None
    is_notified: bool
    is_completed: bool
    created_at: datetime

    @field_validator("reminder_time", "created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        # SQLite hands back naive datetimes; everything is stored as UTC
        return ensure_utc(value)

    class Config:
        """Pydantic configuration"""
        from_attributes = True  # Enable ORM mode for SQLAlchemy models
