"""
USTeP portal adapter. Overdue is decided only by comparing the due timestamp with now;
the portal adapter never looks up submissions, so it never yields completed.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from goldfish.clients.ustep_client import UstepClient
from goldfish.core.models import Platform, Source, TaskStatus
from .base import SourceAdapter, TaskCandidate, html_excerpt

DESCRIPTION_LIMIT = 200


def epoch_to_datetime(value: Any) -> Optional[datetime]:
    """Moodle due timestamp (seconds, 0 = none) -> aware UTC datetime."""
    try:
        seconds = int(value or 0)
    except (TypeError, ValueError):
        return None
    if seconds <= 0:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class UstepAdapter(SourceAdapter):
    source = Source.USTEP
    platform = Platform.PORTAL

    def __init__(
        self,
        client: UstepClient,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(logger)
        self.client = client
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def fetch_assignments(self, credential: Optional[str]) -> List[TaskCandidate]:
        assignments = await asyncio.to_thread(self.client.fetch_assignments, credential)
        now = self.clock()
        return [self.to_candidate(a, now) for a in assignments if a.get("id") is not None]

    def to_candidate(self, assignment: Dict[str, Any], now: datetime) -> TaskCandidate:
        due = epoch_to_datetime(assignment.get("duedate"))
        status = TaskStatus.OVERDUE if due is not None and due < now else TaskStatus.PENDING
        return TaskCandidate(
            title=assignment.get("name") or "Untitled assignment",
            platform=self.platform,
            source=self.source,
            source_id=str(assignment["id"]),
            course_name=assignment.get("course_name") or assignment.get("course_code") or "USTeP Course",
            course_code=assignment.get("course_code"),
            due_date=due,
            status=status,
            original_link=self.client.assignment_link(assignment.get("cmid")),
            description=html_excerpt(assignment.get("intro"), DESCRIPTION_LIMIT),
        )
