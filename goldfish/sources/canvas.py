"""
Canvas adapter. Two-level fan-out (courses -> assignments) through CanvasClient.
Canvas does not expose submission state on this endpoint, so every candidate starts pending.
"""
import logging
from typing import Any, Dict, List, Optional

from goldfish.clients.canvas_client import CanvasClient, parse_canvas_datetime
from goldfish.core.models import Platform, Source, TaskStatus
from .base import SourceAdapter, TaskCandidate, html_excerpt

MODE_ALL = "all"
MODE_UPCOMING = "upcoming"
DESCRIPTION_LIMIT = 200


class CanvasAdapter(SourceAdapter):
    source = Source.CANVAS
    platform = Platform.CANVAS

    def __init__(self, client: CanvasClient, mode: str = MODE_ALL, logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        if mode not in (MODE_ALL, MODE_UPCOMING):
            raise ValueError(f"Unknown Canvas mode: {mode}")
        self.client = client
        self.mode = mode

    async def fetch_assignments(self, credential: Optional[str]) -> List[TaskCandidate]:
        # Undated assignments (roll call etc.) are still actionable, so "all" is the default mode
        if self.mode == MODE_UPCOMING:
            assignments = await self.client.fetch_upcoming_assignments(credential)
        else:
            assignments = await self.client.fetch_all_assignments(credential)
        candidates = [self.to_candidate(a) for a in assignments if a.get("id") is not None]
        self.logger.info(f"Canvas: fetched {len(candidates)} assignment(s)")
        return candidates

    def to_candidate(self, assignment: Dict[str, Any]) -> TaskCandidate:
        return TaskCandidate(
            title=assignment.get("name") or "Untitled assignment",
            platform=self.platform,
            source=self.source,
            source_id=str(assignment["id"]),
            course_name=assignment.get("course_name") or assignment.get("course_code") or "Unknown Course",
            course_code=assignment.get("course_code"),
            due_date=parse_canvas_datetime(assignment.get("due_at")),
            status=TaskStatus.PENDING,
            original_link=assignment.get("html_url"),
            description=html_excerpt(assignment.get("description"), DESCRIPTION_LIMIT),
        )
