"""
Tests for the merge engine: identity by (source, source_id), idempotence,
first-seen-wins and status preservation.
"""
from unittest.mock import patch

from conftest import make_candidate

from goldfish.core import task_store
from goldfish.core.merge import merge_candidates, plan_merge
from goldfish.core.models import Source, TaskStatus


class TestPlanMerge:
    def test_existing_keys_are_skipped(self):
        candidates = [make_candidate(Source.CANVAS, 5), make_candidate(Source.CANVAS, 9)]
        plan = plan_merge(candidates, {("canvas", "5")})
        assert [c.source_id for c in plan.new] == ["9"]
        assert plan.already_present == 1
        assert plan.duplicates == 0

    def test_first_seen_wins_within_batch(self):
        first = make_candidate(Source.USTEP, 1, title="first")
        second = make_candidate(Source.USTEP, 1, title="second")
        plan = plan_merge([first, second], set())
        assert plan.new == [first]
        assert plan.duplicates == 1

    def test_same_id_different_source_is_distinct(self):
        plan = plan_merge([make_candidate(Source.CANVAS, 7), make_candidate(Source.USTEP, 7)], set())
        assert len(plan.new) == 2

    def test_manual_candidates_are_always_new(self):
        manual = [make_candidate(Source.MANUAL, None), make_candidate(Source.MANUAL, None)]
        plan = plan_merge(manual, set())
        assert len(plan.new) == 2


class TestMergeCandidates:
    def test_inserts_only_new_and_keeps_user_status(self):
        """Stored canvas/5 is completed; re-fetching it must not reset it."""
        existing_id = task_store.insert_candidate("u1", make_candidate(Source.CANVAS, 5))
        task_store.update_task_status("u1", existing_id, TaskStatus.COMPLETED)

        result = merge_candidates("u1", [make_candidate(Source.CANVAS, 5), make_candidate(Source.CANVAS, 9)])

        assert result.inserted == 1
        assert result.already_present == 1
        assert result.by_source == {"canvas": 1}
        assert result.by_status == {"pending": 1}
        tasks = {t.source_id: t for t in task_store.list_tasks("u1")}
        assert set(tasks) == {"5", "9"}
        assert tasks["5"].status == "completed"
        assert tasks["9"].status == "pending"

    def test_second_run_inserts_nothing(self):
        batch = [make_candidate(Source.CANVAS, 1), make_candidate(Source.GOOGLE_CLASSROOM, "cw-1")]
        assert merge_candidates("u1", batch).inserted == 2

        again = merge_candidates("u1", batch)
        assert again.inserted == 0
        assert again.already_present == 2
        assert len(task_store.list_tasks("u1")) == 2

    def test_users_are_isolated(self):
        merge_candidates("u1", [make_candidate(Source.CANVAS, 1)])
        result = merge_candidates("u2", [make_candidate(Source.CANVAS, 1)])
        assert result.inserted == 1

    def test_empty_batch(self):
        result = merge_candidates("u1", [])
        assert result.fetched == 0
        assert result.inserted == 0
        assert task_store.list_tasks("u1") == []

    def test_batch_failure_falls_back_to_single_inserts(self):
        good = make_candidate(Source.CANVAS, 1)
        bad = make_candidate(Source.CANVAS, 2)
        real_batch = task_store.insert_candidates

        def flaky_insert(user_id, candidate):
            if candidate.source_id == "2":
                raise RuntimeError("disk full")
            return real_batch(user_id, [candidate])[0]

        with patch.object(task_store, "insert_candidates", side_effect=RuntimeError("batch failed")), \
                patch.object(task_store, "insert_candidate", side_effect=flaky_insert):
            result = merge_candidates("u1", [good, bad])

        assert result.inserted == 1
        assert result.failed == 1
        assert [t.source_id for t in task_store.list_tasks("u1")] == ["1"]
