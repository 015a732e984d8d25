"""
Pydantic request/response models for the JSON API. Field names are camelCase on the wire.
ORM rows serialize via from_attributes.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel

from goldfish.core.models import Source, TaskStatus


def serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize datetime to ISO string (UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


class ApiModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class TaskResponse(ApiModel):
    """Pydantic view of TaskRecord."""

    id: str
    user_id: str
    title: str
    platform: str
    source: str
    source_id: Optional[str] = None
    course_name: Optional[str] = None
    course_code: Optional[str] = None
    due_date: Optional[datetime] = None
    status: str
    original_link: Optional[str] = None
    description: Optional[str] = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("due_date", "created_at", "updated_at")
    def _serialize_dates(self, dt: Optional[datetime]) -> Optional[str]:
        return serialize_datetime(dt)


class CourseFolderResponse(ApiModel):
    course_name: str
    tasks: List[TaskResponse]


class ManualTaskRequest(ApiModel):
    title: str
    course_name: Optional[str] = None
    due_date: Optional[datetime] = None
    description: str = ""
    original_link: Optional[str] = None


class StatusUpdateRequest(ApiModel):
    status: TaskStatus


class BulkDeleteRequest(ApiModel):
    ids: List[str]


class BulkDeleteResponse(ApiModel):
    deleted: int


class SyncRequest(ApiModel):
    sources: Optional[List[Source]] = None
    interactive: bool = False


class SourceResultResponse(ApiModel):
    source: str
    outcome: str
    fetched: int
    message: Optional[str] = None


class SyncResponse(ApiModel):
    fetched: int
    inserted: int
    already_present: int
    duplicates: int
    failed: int
    by_source: Dict[str, int]
    sources: List[SourceResultResponse]
    message: str


class CredentialStatusResponse(ApiModel):
    source: str
    state: str
    needs_credential: bool


class TokenRequest(ApiModel):
    token: str


class LoginRequest(ApiModel):
    username: Optional[str] = None
    password: Optional[str] = None


class NoteRequest(ApiModel):
    content: str
    course_name: Optional[str] = None


class NoteResponse(ApiModel):
    course_id: str
    course_name: Optional[str] = None
    content: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("created_at", "updated_at")
    def _serialize_dates(self, dt: Optional[datetime]) -> Optional[str]:
        return serialize_datetime(dt)
