"""
Per-user routes mounted at /api/users/{user_id}: tasks, sync, credentials, notes, events.
"""
import asyncio
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from fastapi.responses import StreamingResponse

from goldfish.api.schemas import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    CourseFolderResponse,
    CredentialStatusResponse,
    LoginRequest,
    ManualTaskRequest,
    NoteRequest,
    NoteResponse,
    SourceResultResponse,
    StatusUpdateRequest,
    SyncRequest,
    SyncResponse,
    TaskResponse,
    TokenRequest,
)
from goldfish.core import task_store
from goldfish.core.credentials import TOKEN_FIELDS
from goldfish.core.errors import AuthError
from goldfish.core.models import Source, TaskStatus

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15


def _tasks(records) -> List[TaskResponse]:
    return [TaskResponse.model_validate(r) for r in records]


async def event_stream(request, user_id: str, credentials, keepalive: float = KEEPALIVE_SECONDS):
    """Server-sent events: task changes and needs-credential flags for one user."""
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def push(event: dict) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, event)

    def on_task_change(change) -> None:
        push({"type": "tasks", "kind": change.kind, "taskIds": change.task_ids})

    def on_credential_flag(flag_user: str, source: Source, needed: bool) -> None:
        if flag_user == user_id:
            push({"type": "credential", "source": source.value, "needsCredential": needed})

    unsubscribe_tasks = task_store.subscribe(user_id, on_task_change)
    unsubscribe_credentials = credentials.subscribe(on_credential_flag)
    logger.info(f"Event stream opened for {user_id}")
    try:
        while not await request.is_disconnected():
            try:
                event = await asyncio.wait_for(queue.get(), keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield f"data: {json.dumps(event)}\n\n"
    finally:
        unsubscribe_tasks()
        unsubscribe_credentials()
        logger.info(f"Event stream closed for {user_id}")


def get_router(goldfish_app) -> APIRouter:
    router = APIRouter(tags=["Users"])
    credentials = goldfish_app.credentials
    orchestrator = goldfish_app.orchestrator

    # Tasks

    @router.get("/tasks", response_model=List[TaskResponse])
    def list_tasks(user_id: str, status: Optional[TaskStatus] = None, platform: Optional[str] = None):
        return _tasks(task_store.list_tasks(user_id, status=status, platform=platform))

    @router.get("/tasks/current", response_model=List[TaskResponse])
    def current_tasks(user_id: str, platform: Optional[str] = None):
        """Pending tasks, soonest due first."""
        return _tasks(task_store.list_current_tasks(user_id, platform=platform))

    @router.get("/tasks/archive", response_model=List[TaskResponse])
    def archived_tasks(user_id: str, range_name: str = Query("all", alias="range")):
        """Completed tasks. ?range=week|month|semester|all"""
        return _tasks(task_store.list_archived_tasks(user_id, range_name))

    @router.get("/tasks/folders", response_model=List[CourseFolderResponse])
    def course_folders(user_id: str):
        groups = task_store.group_by_course(user_id)
        return [CourseFolderResponse(course_name=name, tasks=_tasks(tasks)) for name, tasks in groups.items()]

    @router.post("/tasks", response_model=TaskResponse, status_code=201)
    def create_task(user_id: str, body: ManualTaskRequest):
        record = task_store.create_manual_task(
            user_id,
            body.title,
            course_name=body.course_name,
            due_date=body.due_date,
            description=body.description,
            original_link=body.original_link,
        )
        return TaskResponse.model_validate(record)

    @router.patch("/tasks/{task_id}", response_model=TaskResponse)
    def update_status(user_id: str, task_id: str, body: StatusUpdateRequest):
        return TaskResponse.model_validate(task_store.update_task_status(user_id, task_id, body.status))

    @router.delete("/tasks/{task_id}", status_code=204)
    def delete_task(user_id: str, task_id: str):
        task_store.delete_task(user_id, task_id)

    @router.post("/tasks/delete", response_model=BulkDeleteResponse)
    def delete_tasks(user_id: str, body: BulkDeleteRequest):
        return BulkDeleteResponse(deleted=task_store.delete_tasks(user_id, body.ids))

    # Sync

    @router.post("/sync", response_model=SyncResponse)
    async def sync(user_id: str, body: Optional[SyncRequest] = None):
        body = body or SyncRequest()
        report = await orchestrator.sync(user_id, sources=body.sources, interactive=body.interactive)
        merge = report.merge
        return SyncResponse(
            fetched=merge.fetched,
            inserted=merge.inserted,
            already_present=merge.already_present,
            duplicates=merge.duplicates,
            failed=merge.failed,
            by_source=merge.by_source or {},
            sources=[
                SourceResultResponse(
                    source=r.source.value,
                    outcome=r.outcome.value,
                    fetched=r.fetched,
                    message=r.message,
                )
                for r in report.results
            ],
            message=report.summary(),
        )

    # Credentials

    @router.get("/credentials", response_model=List[CredentialStatusResponse])
    def credential_status(user_id: str):
        return [
            CredentialStatusResponse(
                source=source.value,
                state=credentials.state(user_id, source).value,
                needs_credential=credentials.needs_credential(user_id, source),
            )
            for source in TOKEN_FIELDS
        ]

    @router.post("/credentials/ustep/login", response_model=CredentialStatusResponse)
    async def ustep_login(user_id: str, body: LoginRequest):
        if not body.username or not body.password:
            raise ValueError("Username and password are required")
        try:
            token = await asyncio.to_thread(goldfish_app.ustep_client.login, body.username, body.password)
        except AuthError as e:
            raise AuthError(Source.USTEP.value, e.message, summary="Login failed")
        await asyncio.to_thread(credentials.save, user_id, Source.USTEP, token)
        return CredentialStatusResponse(source=Source.USTEP.value, state="valid", needs_credential=False)

    @router.put("/credentials/{source}", response_model=CredentialStatusResponse)
    def save_credential(user_id: str, source: Source, body: TokenRequest):
        credentials.save(user_id, source, body.token)
        return CredentialStatusResponse(source=source.value, state="valid", needs_credential=False)

    @router.delete("/credentials/{source}", response_model=CredentialStatusResponse)
    def invalidate_credential(user_id: str, source: Source):
        credentials.invalidate(user_id, source)
        return CredentialStatusResponse(source=source.value, state="invalid", needs_credential=True)

    @router.post("/credentials/{source}/dismiss", status_code=204)
    def dismiss_credential_prompt(user_id: str, source: Source):
        credentials.dismiss_request(user_id, source)

    # Notes

    @router.get("/notes/{course_id}", response_model=NoteResponse)
    def get_note(user_id: str, course_id: str):
        note = task_store.get_note(user_id, course_id)
        if note is None:
            return NoteResponse(course_id=course_id)
        return NoteResponse.model_validate(note)

    @router.put("/notes/{course_id}", response_model=NoteResponse)
    def save_note(user_id: str, course_id: str, body: NoteRequest):
        return NoteResponse.model_validate(
            task_store.save_note(user_id, course_id, body.content, course_name=body.course_name)
        )

    # Events

    @router.get("/events")
    async def events(user_id: str, request: Request):
        return StreamingResponse(event_stream(request, user_id, credentials), media_type="text/event-stream")

    return router
