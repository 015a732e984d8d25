"""
Tests for the task store views, edits, deletes, notes and change notification.
"""
from datetime import datetime, timedelta, timezone

import pytest
from conftest import make_candidate

from goldfish.core import task_store
from goldfish.core.db import session_scope
from goldfish.core.errors import TaskNotFoundError
from goldfish.core.models import Source, TaskRecord, TaskStatus


def _due(days: int) -> datetime:
    return datetime(2025, 3, 1, tzinfo=timezone.utc) + timedelta(days=days)


class TestViews:
    def test_current_tasks_sorted_by_due_with_undated_last(self):
        task_store.insert_candidates("u1", [
            make_candidate(Source.CANVAS, 1, title="later", due_date=_due(5)),
            make_candidate(Source.CANVAS, 2, title="undated"),
            make_candidate(Source.CANVAS, 3, title="sooner", due_date=_due(1)),
            make_candidate(Source.CANVAS, 4, title="done", status=TaskStatus.COMPLETED),
        ])
        titles = [t.title for t in task_store.list_current_tasks("u1")]
        assert titles == ["sooner", "later", "undated"]

    def test_filter_by_status_and_platform(self):
        task_store.insert_candidates("u1", [
            make_candidate(Source.CANVAS, 1),
            make_candidate(Source.USTEP, 2, status=TaskStatus.OVERDUE),
        ])
        overdue = task_store.list_tasks("u1", status=TaskStatus.OVERDUE)
        assert [t.source for t in overdue] == ["ustep"]
        assert [t.platform for t in task_store.list_tasks("u1", platform="Canvas")] == ["Canvas"]

    def test_archive_ranges(self):
        ids = task_store.insert_candidates("u1", [make_candidate(Source.CANVAS, 1), make_candidate(Source.CANVAS, 2)])
        for task_id in ids:
            task_store.update_task_status("u1", task_id, TaskStatus.COMPLETED)
        # Push the first completion 10 days into the past
        with session_scope() as session:
            session.get(TaskRecord, ids[0]).updated_at = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=10)

        assert [t.id for t in task_store.list_archived_tasks("u1", "week")] == [ids[1]]
        assert len(task_store.list_archived_tasks("u1", "month")) == 2
        assert len(task_store.list_archived_tasks("u1", "all")) == 2

    def test_unknown_archive_range(self):
        with pytest.raises(ValueError):
            task_store.list_archived_tasks("u1", "decade")

    def test_group_by_course(self):
        task_store.insert_candidates("u1", [
            make_candidate(Source.CANVAS, 1, course_name="Physics"),
            make_candidate(Source.CANVAS, 2, course_name="Algebra"),
            make_candidate(Source.CANVAS, 3, course_name="Physics"),
        ])
        groups = task_store.group_by_course("u1")
        assert list(groups) == ["Algebra", "Physics"]
        assert len(groups["Physics"]) == 2


class TestEdits:
    def test_manual_task_has_no_source_id(self):
        task = task_store.create_manual_task("u1", "Read chapter 3")
        assert task.source == "manual"
        assert task.source_id is None
        assert task.course_name == task_store.UNCATEGORIZED
        assert task_store.get_source_keys("u1") == set()

    def test_update_status(self):
        task_id = task_store.insert_candidate("u1", make_candidate(Source.CANVAS, 1))
        updated = task_store.update_task_status("u1", task_id, TaskStatus.COMPLETED)
        assert updated.status == "completed"
        assert task_store.get_task("u1", task_id).status == "completed"

    def test_update_other_users_task_is_not_found(self):
        task_id = task_store.insert_candidate("u1", make_candidate(Source.CANVAS, 1))
        with pytest.raises(TaskNotFoundError):
            task_store.update_task_status("u2", task_id, TaskStatus.COMPLETED)

    def test_delete_and_bulk_delete(self):
        ids = task_store.insert_candidates("u1", [make_candidate(Source.CANVAS, i) for i in range(3)])
        task_store.delete_task("u1", ids[0])
        with pytest.raises(TaskNotFoundError):
            task_store.delete_task("u1", ids[0])
        assert task_store.delete_tasks("u1", ids[1:] + ["missing"]) == 2
        assert task_store.list_tasks("u1") == []

    def test_deleted_synced_task_frees_its_key(self):
        task_id = task_store.insert_candidate("u1", make_candidate(Source.CANVAS, 1))
        task_store.delete_task("u1", task_id)
        assert ("canvas", "1") not in task_store.get_source_keys("u1")


class TestNotifications:
    def test_listeners_receive_changes(self):
        changes = []
        unsubscribe = task_store.subscribe("u1", changes.append)
        task_id = task_store.insert_candidate("u1", make_candidate(Source.CANVAS, 1))
        task_store.update_task_status("u1", task_id, TaskStatus.COMPLETED)
        task_store.insert_candidate("u2", make_candidate(Source.CANVAS, 1))
        unsubscribe()
        task_store.delete_task("u1", task_id)

        assert [(c.kind, c.task_ids) for c in changes] == [("inserted", [task_id]), ("updated", [task_id])]

    def test_failing_listener_does_not_break_writes(self):
        def broken(change):
            raise RuntimeError("listener bug")

        task_store.subscribe("u1", broken)
        task_store.insert_candidate("u1", make_candidate(Source.CANVAS, 1))
        assert len(task_store.list_tasks("u1")) == 1


class TestNotes:
    def test_save_and_update_note(self):
        assert task_store.get_note("u1", "c1") is None
        first = task_store.save_note("u1", "c1", "midterm on friday", course_name="Physics")
        second = task_store.save_note("u1", "c1", "midterm moved")
        assert second.content == "midterm moved"
        assert second.course_name == "Physics"
        assert second.created_at == first.created_at
        assert task_store.get_note("u1", "c1").content == "midterm moved"
