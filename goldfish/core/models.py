"""
Core DB models: unified tasks, per-user profile (credentials), per-course notes.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import Column, String, DateTime, Text, JSON, UniqueConstraint, Index

from goldfish.core.db import Base


class Source(str, Enum):
    """Machine key of a task's origin; part of its identity."""
    CANVAS = "canvas"
    GOOGLE_CLASSROOM = "google-classroom"
    USTEP = "ustep"
    MANUAL = "manual"


class Platform(str, Enum):
    """Display label used for grouping and filtering."""
    CANVAS = "Canvas"
    GOOGLE_CLASSROOM = "Google Classroom"
    PORTAL = "USTeP"
    MANUAL = "Manual"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    OVERDUE = "overdue"


def _utc_now() -> datetime:
    """UTC now as naive datetime for DateTime(timezone=False) columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware or naive (assumed UTC) datetime for storage."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _new_id() -> str:
    return uuid.uuid4().hex


class TaskRecord(Base):
    """One task in a user's collection. (user_id, source, source_id) is unique; manual tasks have no source_id."""
    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("user_id", "source", "source_id", name="uq_tasks_user_source_key"),
        Index("ix_tasks_user_status", "user_id", "status"),
    )

    id = Column(String(32), primary_key=True, default=_new_id)
    user_id = Column(String(128), nullable=False, index=True)
    title = Column(String(512), nullable=False)
    platform = Column(String(64), nullable=False)
    source = Column(String(64), nullable=False)
    source_id = Column(String(255), nullable=True)
    course_name = Column(String(255), nullable=True)
    course_code = Column(String(255), nullable=True)
    due_date = Column(DateTime(timezone=False), nullable=True)  # null = undated
    status = Column(String(32), nullable=False, default=TaskStatus.PENDING.value)
    original_link = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)


class UserProfile(Base):
    """Per-user profile holding one nullable token per source.
    credential_states maps source -> "valid" | "invalid"; "invalid" with a null token is a tombstone."""
    __tablename__ = "user_profiles"

    user_id = Column(String(128), primary_key=True)
    canvas_token = Column(Text, nullable=True)
    google_access_token = Column(Text, nullable=True)
    ustep_token = Column(Text, nullable=True)
    credential_states = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, onupdate=_utc_now, nullable=False)


class NoteRecord(Base):
    """Free-form notes, one per user per course."""
    __tablename__ = "notes"

    user_id = Column(String(128), primary_key=True)
    course_id = Column(String(255), primary_key=True)
    course_name = Column(String(255), nullable=True)
    content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=_utc_now, nullable=False)
