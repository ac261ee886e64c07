"""SQLModel table definitions for Nearhand."""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class TaskStatus(str, enum.Enum):
    open = "open"
    assigned = "assigned"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    expired = "expired"


class TaskPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    urgent = "urgent"


class TaskCategory(str, enum.Enum):
    cleaning = "cleaning"
    gardening = "gardening"
    moving = "moving"
    handyman = "handyman"
    delivery = "delivery"
    shopping = "shopping"
    petcare = "petcare"
    childcare = "childcare"
    tutoring = "tutoring"
    tech = "tech"
    other = "other"


class ApplicationStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"
    withdrawn = "withdrawn"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Profile(SQLModel, table=True):
    __tablename__ = "profiles"

    id: str = Field(primary_key=True)
    name: str
    key_hash: str
    key_fingerprint: str = Field(index=True)
    latitude: float | None = None
    longitude: float | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None
    location_updated_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)


class Task(SQLModel, table=True):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_status_created_at", "status", "created_at"),
        Index("ix_tasks_status_lat_lng", "status", "latitude", "longitude"),
    )

    id: str = Field(primary_key=True)
    author_id: str = Field(foreign_key="profiles.id", index=True)
    helper_id: str | None = Field(default=None, foreign_key="profiles.id", index=True)
    title: str
    description: str
    category: TaskCategory = Field(default=TaskCategory.other, index=True)
    tags: str | None = None  # JSON-encoded list
    priority: TaskPriority = Field(default=TaskPriority.medium)
    budget: Decimal = Field(max_digits=10, decimal_places=2)
    currency: str = Field(default="EUR")
    status: TaskStatus = Field(default=TaskStatus.open, index=True)
    latitude: float
    longitude: float
    address: str | None = None  # reverse-geocoded cache
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None
    deadline: datetime | None = Field(default=None, index=True)
    estimated_duration: str | None = None
    is_urgent: bool = Field(default=False)
    is_featured: bool = Field(default=False)
    application_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)
    assigned_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None


class Application(SQLModel, table=True):
    __tablename__ = "applications"
    __table_args__ = (
        Index("ix_applications_task_helper", "task_id", "helper_id", unique=True),
        Index("ix_applications_task_created_at", "task_id", "created_at"),
    )

    id: str = Field(primary_key=True)
    task_id: str = Field(foreign_key="tasks.id")
    helper_id: str = Field(foreign_key="profiles.id", index=True)
    message: str | None = None
    proposed_budget: Decimal | None = Field(default=None, max_digits=10, decimal_places=2)
    proposed_duration: str | None = None
    status: ApplicationStatus = Field(default=ApplicationStatus.pending, index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    decided_at: datetime | None = None
