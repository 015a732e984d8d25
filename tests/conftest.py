"""
Shared fixtures: a throwaway SQLite database per test, fake HTTP sessions and fake adapters.
"""
from typing import Any, Dict, List, Optional

import pytest

from goldfish.core import task_store
from goldfish.core.db import close_db, init_db
from goldfish.core.errors import AuthError
from goldfish.core.models import Platform, Source, TaskStatus
from goldfish.sources.base import SourceAdapter, TaskCandidate


@pytest.fixture(autouse=True)
def db(tmp_path):
    """Fresh database for every test."""
    close_db()
    init_db(db_url=f"sqlite:///{tmp_path / 'test.db'}")
    yield
    close_db()
    task_store._listeners.clear()


class FakeResponse:
    """Just enough of requests.Response for the clients."""

    def __init__(self, data: Any = None, status_code: int = 200, links: Optional[Dict] = None, text: str = ""):
        self._data = data
        self.status_code = status_code
        self.links = links or {}
        self.text = text

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self._data is None:
            raise ValueError("No JSON body")
        return self._data


class FakeSession:
    """Records GETs; answers by URL, or by a callable(url, params)."""

    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls: List[Dict[str, Any]] = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "params": params, "timeout": timeout})
        if callable(self.routes):
            return self.routes(url, params)
        response = self.routes[url]
        if isinstance(response, Exception):
            raise response
        return response


class FakeAdapter(SourceAdapter):
    """Returns fixed candidates, or raises. Records the credential it was called with."""

    def __init__(self, source: Source, candidates=None, error: Optional[Exception] = None, require_token: bool = True):
        super().__init__()
        self.source = source
        self.platform = {
            Source.CANVAS: Platform.CANVAS,
            Source.GOOGLE_CLASSROOM: Platform.GOOGLE_CLASSROOM,
            Source.USTEP: Platform.PORTAL,
        }[source]
        self.candidates = candidates or []
        self.error = error
        self.require_token = require_token
        self.calls: List[Optional[str]] = []

    async def fetch_assignments(self, credential):
        self.calls.append(credential)
        if self.require_token and not credential:
            raise AuthError(self.source.value)
        if self.error is not None:
            raise self.error
        return list(self.candidates)


def make_candidate(source: Source, source_id: Any, title: str = None, status: TaskStatus = TaskStatus.PENDING, **kwargs):
    platform = {
        Source.CANVAS: Platform.CANVAS,
        Source.GOOGLE_CLASSROOM: Platform.GOOGLE_CLASSROOM,
        Source.USTEP: Platform.PORTAL,
        Source.MANUAL: Platform.MANUAL,
    }[source]
    return TaskCandidate(
        title=title or f"{source.value} task {source_id}",
        platform=platform,
        source=source,
        source_id=None if source_id is None else str(source_id),
        course_name=kwargs.pop("course_name", "Course"),
        status=status,
        **kwargs,
    )
