"""Pydantic models for locations and request/response schemas."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from nearhand.db_models import TaskCategory, TaskPriority


class Location(BaseModel):
    """A device reading or a saved profile location."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None
    captured_at: datetime | None = None

    def same_point(self, other: Location | None) -> bool:
        return other is not None and self.lat == other.lat and self.lng == other.lng


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200, description="Display name")


class RegisterResponse(BaseModel):
    profile_id: str
    api_key: str
    message: str = "Welcome to Nearhand! SAVE YOUR API KEY, it cannot be recovered."


class ProfileResponse(BaseModel):
    id: str
    name: str
    location: Location | None = None


_TAG_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_-]*$")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=10_000)
    category: TaskCategory = TaskCategory.other
    tags: list[str] | None = Field(default=None, description="Optional free-form tags")
    priority: TaskPriority = TaskPriority.medium
    budget: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    currency: str | None = Field(default=None, description="ISO 4217 code, e.g. EUR")
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str | None = Field(default=None, max_length=500)
    city: str | None = Field(default=None, max_length=200)
    postal_code: str | None = Field(default=None, max_length=20)
    country: str | None = Field(default=None, max_length=100)
    deadline: datetime | None = None
    estimated_duration: str | None = Field(default=None, max_length=100)
    is_urgent: bool = False
    is_featured: bool = False

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        if len(v) > 10:
            raise ValueError("Maximum 10 tags allowed")
        for tag in v:
            if len(tag) > 50:
                raise ValueError(f"Tag too long (max 50 chars): {tag[:50]}...")
            if not _TAG_RE.match(tag):
                raise ValueError(
                    f"Invalid tag '{tag}': must be alphanumeric with hyphens/underscores"
                )
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.upper()
        if not _CURRENCY_RE.match(v):
            raise ValueError("Currency must be a three-letter ISO code")
        return v


class RelocateRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class ApplyRequest(BaseModel):
    message: str | None = Field(default=None, max_length=5000)
    proposed_budget: Decimal | None = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    proposed_duration: str | None = Field(default=None, max_length=100)


class LocationSaveRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: str | None = Field(default=None, max_length=500)
    city: str | None = Field(default=None, max_length=200)
    postal_code: str | None = Field(default=None, max_length=20)
    country: str | None = Field(default=None, max_length=100)


class ReportedPositionRequest(BaseModel):
    """What the client's device reported: a fix, or the reason it has none."""

    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)
    error: str | None = Field(
        default=None, description="permission_denied | position_unavailable | timeout"
    )


class ErrorResponse(BaseModel):
    error: str
    code: str | None = None
