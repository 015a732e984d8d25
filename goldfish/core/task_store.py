"""
Service layer for a user's task collection: inserts from sync, manual tasks,
status edits, deletes, the list views, notes, and change notification.
Listeners are called after commit, from whatever thread did the write.
"""
import logging
import threading
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, select

from goldfish.core.db import session_scope
from goldfish.core.errors import TaskNotFoundError
from goldfish.core.models import (
    NoteRecord,
    Platform,
    Source,
    TaskRecord,
    TaskStatus,
    _utc_now,
    to_naive_utc,
)

logger = logging.getLogger(__name__)

# kind: "inserted" | "updated" | "deleted"
TaskChange = namedtuple("TaskChange", ["user_id", "kind", "task_ids"])

ARCHIVE_RANGES = {
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "semester": timedelta(days=120),
    "all": None,
}

UNCATEGORIZED = "Uncategorized"

_listeners: Dict[str, List[Callable[[TaskChange], None]]] = {}
_listeners_lock = threading.Lock()


def subscribe(user_id: str, callback: Callable[[TaskChange], None]) -> Callable[[], None]:
    """Register a change listener for one user's tasks. Returns an unsubscribe function."""
    with _listeners_lock:
        _listeners.setdefault(user_id, []).append(callback)

    def unsubscribe() -> None:
        with _listeners_lock:
            callbacks = _listeners.get(user_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                _listeners.pop(user_id, None)

    return unsubscribe


def _notify(user_id: str, kind: str, task_ids: Iterable[str]) -> None:
    task_ids = list(task_ids)
    if not task_ids:
        return
    change = TaskChange(user_id, kind, task_ids)
    with _listeners_lock:
        callbacks = list(_listeners.get(user_id, []))
    for callback in callbacks:
        try:
            callback(change)
        except Exception as e:
            logger.error(f"Task change listener failed for {user_id}: {e}", exc_info=True)


def _source_value(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _record_from_candidate(user_id: str, candidate, now: datetime) -> TaskRecord:
    source = _source_value(candidate.source)
    return TaskRecord(
        user_id=user_id,
        title=candidate.title,
        platform=_source_value(candidate.platform),
        source=source,
        source_id=None if source == Source.MANUAL.value else str(candidate.source_id),
        course_name=candidate.course_name,
        course_code=candidate.course_code,
        due_date=to_naive_utc(candidate.due_date),
        status=_source_value(candidate.status or TaskStatus.PENDING),
        original_link=candidate.original_link,
        description=candidate.description or "",
        created_at=now,
        updated_at=now,
    )


def get_source_keys(user_id: str) -> Set[Tuple[str, str]]:
    """(source, source_id) of every synced task the user has. Manual tasks have no key."""
    with session_scope() as session:
        rows = session.execute(
            select(TaskRecord.source, TaskRecord.source_id).where(
                TaskRecord.user_id == user_id,
                TaskRecord.source_id.is_not(None),
            )
        ).all()
    return {(source, source_id) for source, source_id in rows}


def insert_candidates(user_id: str, candidates: List[Any]) -> List[str]:
    """Insert all candidates in one transaction. All or nothing; returns new task ids."""
    if not candidates:
        return []
    now = _utc_now()
    records = [_record_from_candidate(user_id, c, now) for c in candidates]
    with session_scope() as session:
        session.add_all(records)
        session.flush()
        ids = [r.id for r in records]
    _notify(user_id, "inserted", ids)
    return ids


def insert_candidate(user_id: str, candidate) -> str:
    """Insert a single candidate in its own transaction."""
    return insert_candidates(user_id, [candidate])[0]


def create_manual_task(
    user_id: str,
    title: str,
    course_name: Optional[str] = None,
    due_date: Optional[datetime] = None,
    description: str = "",
    original_link: Optional[str] = None,
) -> TaskRecord:
    """User-created task. Manual tasks sit outside the (source, source_id) identity scheme."""
    now = _utc_now()
    record = TaskRecord(
        user_id=user_id,
        title=title,
        platform=Platform.MANUAL.value,
        source=Source.MANUAL.value,
        source_id=None,
        course_name=course_name or UNCATEGORIZED,
        due_date=to_naive_utc(due_date),
        status=TaskStatus.PENDING.value,
        original_link=original_link,
        description=description or "",
        created_at=now,
        updated_at=now,
    )
    with session_scope() as session:
        session.add(record)
    _notify(user_id, "inserted", [record.id])
    return record


def get_task(user_id: str, task_id: str) -> TaskRecord:
    with session_scope() as session:
        record = session.execute(
            select(TaskRecord).where(TaskRecord.user_id == user_id, TaskRecord.id == task_id)
        ).scalars().first()
    if record is None:
        raise TaskNotFoundError(f"Task {task_id} not found")
    return record


def update_task_status(user_id: str, task_id: str, status: TaskStatus) -> TaskRecord:
    """The only way a stored task's status changes. Last write wins."""
    status = TaskStatus(status)
    with session_scope() as session:
        record = session.execute(
            select(TaskRecord).where(TaskRecord.user_id == user_id, TaskRecord.id == task_id)
        ).scalars().first()
        if record is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        record.status = status.value
        record.updated_at = _utc_now()
    _notify(user_id, "updated", [task_id])
    return record


def delete_task(user_id: str, task_id: str) -> None:
    with session_scope() as session:
        result = session.execute(
            delete(TaskRecord).where(TaskRecord.user_id == user_id, TaskRecord.id == task_id)
        )
        if result.rowcount == 0:
            raise TaskNotFoundError(f"Task {task_id} not found")
    _notify(user_id, "deleted", [task_id])


def delete_tasks(user_id: str, task_ids: List[str]) -> int:
    """Bulk delete in one transaction. Unknown ids are ignored; returns the number deleted."""
    if not task_ids:
        return 0
    with session_scope() as session:
        existing = session.execute(
            select(TaskRecord.id).where(TaskRecord.user_id == user_id, TaskRecord.id.in_(task_ids))
        ).scalars().all()
        if existing:
            session.execute(
                delete(TaskRecord).where(TaskRecord.user_id == user_id, TaskRecord.id.in_(existing))
            )
    _notify(user_id, "deleted", existing)
    return len(existing)


def list_tasks(
    user_id: str,
    status: Optional[TaskStatus] = None,
    platform: Optional[str] = None,
) -> List[TaskRecord]:
    """All tasks of a user, newest first, optionally filtered by status and platform."""
    stmt = select(TaskRecord).where(TaskRecord.user_id == user_id)
    if status is not None:
        stmt = stmt.where(TaskRecord.status == TaskStatus(status).value)
    if platform:
        stmt = stmt.where(TaskRecord.platform == platform)
    stmt = stmt.order_by(TaskRecord.created_at.desc())
    with session_scope() as session:
        return list(session.execute(stmt).scalars().all())


def list_current_tasks(user_id: str, platform: Optional[str] = None) -> List[TaskRecord]:
    """Pending tasks by due date; undated ones last."""
    stmt = select(TaskRecord).where(
        TaskRecord.user_id == user_id,
        TaskRecord.status == TaskStatus.PENDING.value,
    )
    if platform:
        stmt = stmt.where(TaskRecord.platform == platform)
    stmt = stmt.order_by(TaskRecord.due_date.asc().nulls_last(), TaskRecord.title)
    with session_scope() as session:
        return list(session.execute(stmt).scalars().all())


def list_archived_tasks(user_id: str, range_name: str = "all", now: Optional[datetime] = None) -> List[TaskRecord]:
    """Completed tasks, most recently updated first. range_name: week | month | semester | all."""
    if range_name not in ARCHIVE_RANGES:
        raise ValueError(f"Unknown archive range: {range_name}")
    stmt = select(TaskRecord).where(
        TaskRecord.user_id == user_id,
        TaskRecord.status == TaskStatus.COMPLETED.value,
    )
    window = ARCHIVE_RANGES[range_name]
    if window is not None:
        now = to_naive_utc(now) or _utc_now()
        stmt = stmt.where(TaskRecord.updated_at >= now - window)
    stmt = stmt.order_by(TaskRecord.updated_at.desc())
    with session_scope() as session:
        return list(session.execute(stmt).scalars().all())


def group_by_course(user_id: str) -> Dict[str, List[TaskRecord]]:
    """Pending tasks grouped by course name, courses sorted alphabetically."""
    groups: Dict[str, List[TaskRecord]] = {}
    for task in list_current_tasks(user_id):
        groups.setdefault(task.course_name or UNCATEGORIZED, []).append(task)
    return {name: groups[name] for name in sorted(groups)}


def get_note(user_id: str, course_id: str) -> Optional[NoteRecord]:
    with session_scope() as session:
        return session.execute(
            select(NoteRecord).where(NoteRecord.user_id == user_id, NoteRecord.course_id == course_id)
        ).scalars().first()


def save_note(user_id: str, course_id: str, content: str, course_name: Optional[str] = None) -> NoteRecord:
    """Create or update the note for a course; created_at is kept on update."""
    now = _utc_now()
    with session_scope() as session:
        note = session.execute(
            select(NoteRecord).where(NoteRecord.user_id == user_id, NoteRecord.course_id == course_id)
        ).scalars().first()
        if note:
            note.content = content
            if course_name:
                note.course_name = course_name
            note.updated_at = now
        else:
            note = NoteRecord(
                user_id=user_id,
                course_id=course_id,
                course_name=course_name or "Untitled",
                content=content,
                created_at=now,
                updated_at=now,
            )
            session.add(note)
    return note
