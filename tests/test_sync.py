"""
Tests for the sync orchestrator: per-source isolation, credential handling,
interactive waits and the busy guard.
"""
import asyncio

import pytest
from conftest import FakeAdapter, FakeResponse, FakeSession, make_candidate

from goldfish.clients.canvas_client import CanvasClient
from goldfish.core import task_store
from goldfish.core.credentials import CredentialState, CredentialStore
from goldfish.core.errors import AuthError, UpstreamError
from goldfish.core.models import Source, TaskStatus
from goldfish.core.sync import SyncOrchestrator, SyncOutcome
from goldfish.sources import CanvasAdapter


def _outcomes(report):
    return {r.source: r.outcome for r in report.results}


class TestSync:
    @pytest.mark.asyncio
    async def test_missing_canvas_token_raises_flag_and_inserts_nothing(self):
        store = CredentialStore()
        orchestrator = SyncOrchestrator(store, [FakeAdapter(Source.CANVAS, [make_candidate(Source.CANVAS, 1)])])

        report = await orchestrator.sync("u1")

        assert _outcomes(report) == {Source.CANVAS: SyncOutcome.NEEDS_CREDENTIAL}
        assert store.needs_credential("u1", Source.CANVAS)
        assert report.inserted == 0
        assert task_store.list_tasks("u1") == []
        # A missing token is not a rejected one: no tombstone
        assert store.state("u1", Source.CANVAS) == CredentialState.ABSENT

    @pytest.mark.asyncio
    async def test_server_canvas_token_never_syncs_into_another_user(self):
        base = "https://canvas.example.edu"
        session = FakeSession({
            f"{base}/api/v1/courses": FakeResponse([{"id": 1, "name": "Owner course"}]),
            f"{base}/api/v1/courses/1/assignments": FakeResponse([{"id": 10, "name": "Owner homework"}]),
        })
        client = CanvasClient(base, fallback_token="server-owner-token", session=session)
        store = CredentialStore()

        report = await SyncOrchestrator(store, [CanvasAdapter(client)]).sync("other-user")

        assert _outcomes(report) == {Source.CANVAS: SyncOutcome.NEEDS_CREDENTIAL}
        assert report.inserted == 0
        assert task_store.list_tasks("other-user") == []
        assert store.needs_credential("other-user", Source.CANVAS)
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_one_failing_source_does_not_block_others(self):
        store = CredentialStore()
        for source in (Source.CANVAS, Source.GOOGLE_CLASSROOM, Source.USTEP):
            store.save("u1", source, f"{source.value}-token")
        adapters = [
            FakeAdapter(Source.CANVAS, [make_candidate(Source.CANVAS, 1)]),
            FakeAdapter(Source.GOOGLE_CLASSROOM, error=UpstreamError("google-classroom", "503 from Google")),
            FakeAdapter(Source.USTEP, [make_candidate(Source.USTEP, 7, status=TaskStatus.OVERDUE)]),
        ]
        report = await SyncOrchestrator(store, adapters).sync("u1")

        assert _outcomes(report) == {
            Source.CANVAS: SyncOutcome.OK,
            Source.GOOGLE_CLASSROOM: SyncOutcome.ERROR,
            Source.USTEP: SyncOutcome.OK,
        }
        assert report.inserted == 2
        assert "Failed to fetch assignments" in report.summary()
        assert adapters[0].calls == ["canvas-token"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self):
        store = CredentialStore()
        store.save("u1", Source.USTEP, "tok")
        adapter = FakeAdapter(Source.USTEP, error=KeyError("duedate"))
        report = await SyncOrchestrator(store, [adapter]).sync("u1")
        assert _outcomes(report) == {Source.USTEP: SyncOutcome.ERROR}

    @pytest.mark.asyncio
    async def test_rejected_token_is_invalidated(self):
        store = CredentialStore()
        store.save("u1", Source.CANVAS, "expired")
        adapter = FakeAdapter(Source.CANVAS, error=AuthError("canvas", "Invalid access token"))

        report = await SyncOrchestrator(store, [adapter]).sync("u1")

        assert _outcomes(report) == {Source.CANVAS: SyncOutcome.NEEDS_CREDENTIAL}
        assert store.state("u1", Source.CANVAS) == CredentialState.INVALID
        assert CredentialStore().load("u1", Source.CANVAS) is None

    @pytest.mark.asyncio
    async def test_rejected_token_does_not_block_other_sources(self):
        store = CredentialStore()
        store.save("u1", Source.CANVAS, "expired")
        store.save("u1", Source.USTEP, "ustep-token")
        adapters = [
            FakeAdapter(Source.CANVAS, error=AuthError("canvas", "Invalid access token")),
            FakeAdapter(Source.USTEP, [make_candidate(Source.USTEP, 1), make_candidate(Source.USTEP, 2)]),
        ]

        report = await SyncOrchestrator(store, adapters).sync("u1")

        assert _outcomes(report) == {
            Source.CANVAS: SyncOutcome.NEEDS_CREDENTIAL,
            Source.USTEP: SyncOutcome.OK,
        }
        assert report.inserted == 2
        assert sorted(t.source_id for t in task_store.list_tasks("u1")) == ["1", "2"]
        assert store.state("u1", Source.CANVAS) == CredentialState.INVALID
        assert store.needs_credential("u1", Source.CANVAS)
        assert not store.needs_credential("u1", Source.USTEP)
        assert "canvas: sign-in required." in report.summary()

    @pytest.mark.asyncio
    async def test_resync_preserves_user_status(self):
        store = CredentialStore()
        store.save("u1", Source.CANVAS, "tok")
        adapter = FakeAdapter(Source.CANVAS, [make_candidate(Source.CANVAS, 5)])
        orchestrator = SyncOrchestrator(store, [adapter])

        await orchestrator.sync("u1")
        task = task_store.list_tasks("u1")[0]
        task_store.update_task_status("u1", task.id, TaskStatus.COMPLETED)

        adapter.candidates = [make_candidate(Source.CANVAS, 5), make_candidate(Source.CANVAS, 9)]
        report = await orchestrator.sync("u1")

        assert report.inserted == 1
        assert report.already_present == 1
        assert task_store.get_task("u1", task.id).status == "completed"

    @pytest.mark.asyncio
    async def test_summary_counts_only_new_tasks(self):
        store = CredentialStore()
        store.save("u1", Source.CANVAS, "tok")
        adapter = FakeAdapter(Source.CANVAS, [make_candidate(Source.CANVAS, 1, status=TaskStatus.OVERDUE)])
        orchestrator = SyncOrchestrator(store, [adapter])
        await orchestrator.sync("u1")

        adapter.candidates = [
            make_candidate(Source.CANVAS, 1, status=TaskStatus.OVERDUE),
            make_candidate(Source.CANVAS, 2),
            make_candidate(Source.CANVAS, 3, status=TaskStatus.COMPLETED),
        ]
        report = await orchestrator.sync("u1")

        assert report.inserted == 2
        assert report.status_counts() == {"pending": 1, "completed": 1, "overdue": 0}
        assert report.summary().startswith("Synced 2 new task(s): 1 pending, 1 completed, 0 overdue.")

    @pytest.mark.asyncio
    async def test_source_selection(self):
        store = CredentialStore()
        store.save("u1", Source.USTEP, "tok")
        canvas = FakeAdapter(Source.CANVAS)
        ustep = FakeAdapter(Source.USTEP, [make_candidate(Source.USTEP, 1)])
        report = await SyncOrchestrator(store, [canvas, ustep]).sync("u1", sources=["ustep"])

        assert canvas.calls == []
        assert _outcomes(report) == {Source.USTEP: SyncOutcome.OK}

    @pytest.mark.asyncio
    async def test_unknown_source_rejected(self):
        orchestrator = SyncOrchestrator(CredentialStore(), [FakeAdapter(Source.CANVAS)])
        with pytest.raises(ValueError):
            await orchestrator.sync("u1", sources=["ustep"])


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_overlapping_sync_for_same_source_is_busy(self):
        store = CredentialStore()
        store.save("u1", Source.CANVAS, "tok")
        release = asyncio.Event()

        class SlowAdapter(FakeAdapter):
            async def fetch_assignments(self, credential):
                await release.wait()
                return [make_candidate(Source.CANVAS, 1)]

        orchestrator = SyncOrchestrator(store, [SlowAdapter(Source.CANVAS)])
        first = asyncio.create_task(orchestrator.sync("u1"))
        await asyncio.sleep(0.05)

        second = await orchestrator.sync("u1")
        release.set()
        first_report = await first

        assert _outcomes(second) == {Source.CANVAS: SyncOutcome.BUSY}
        assert first_report.inserted == 1
        assert len(task_store.list_tasks("u1")) == 1

    @pytest.mark.asyncio
    async def test_interactive_sync_waits_for_credential(self):
        store = CredentialStore()
        adapter = FakeAdapter(Source.USTEP, [make_candidate(Source.USTEP, 3)])
        orchestrator = SyncOrchestrator(store, [adapter], credential_timeout=5)

        sync_task = asyncio.create_task(orchestrator.sync("u1", interactive=True))
        for _ in range(100):
            if store.needs_credential("u1", Source.USTEP):
                break
            await asyncio.sleep(0.01)
        assert store.needs_credential("u1", Source.USTEP)

        await asyncio.to_thread(store.save, "u1", Source.USTEP, "entered-by-user")
        report = await sync_task

        assert adapter.calls == ["entered-by-user"]
        assert report.inserted == 1

    @pytest.mark.asyncio
    async def test_interactive_sync_dismissed(self):
        store = CredentialStore()
        orchestrator = SyncOrchestrator(store, [FakeAdapter(Source.CANVAS)], credential_timeout=5)

        sync_task = asyncio.create_task(orchestrator.sync("u1", interactive=True))
        for _ in range(100):
            if store.needs_credential("u1", Source.CANVAS):
                break
            await asyncio.sleep(0.01)
        store.dismiss_request("u1", Source.CANVAS)
        report = await sync_task

        assert _outcomes(report) == {Source.CANVAS: SyncOutcome.NEEDS_CREDENTIAL}
