"""
Google Classroom adapter: course -> coursework -> own submission, all concurrent.
Submission lookups are enrichment only; when one fails the item stays pending.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from goldfish.clients.classroom_client import ClassroomClient, ClassroomSession, parse_due_date
from goldfish.core.errors import AuthError, GoldfishError, PartialItemError
from goldfish.core.models import Platform, Source, TaskStatus
from .base import SourceAdapter, TaskCandidate, html_excerpt

DESCRIPTION_LIMIT = 150
SUBMITTED_STATES = frozenset({"TURNED_IN", "RETURNED"})


def submission_status(submission: Optional[Dict[str, Any]]) -> TaskStatus:
    """Turned in / returned -> completed; late -> overdue; anything else -> pending."""
    if not submission:
        return TaskStatus.PENDING
    if submission.get("state") in SUBMITTED_STATES:
        return TaskStatus.COMPLETED
    if submission.get("late"):
        return TaskStatus.OVERDUE
    return TaskStatus.PENDING


class ClassroomAdapter(SourceAdapter):
    source = Source.GOOGLE_CLASSROOM
    platform = Platform.GOOGLE_CLASSROOM

    def __init__(self, client: ClassroomClient, logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        self.client = client

    async def fetch_assignments(self, credential: Optional[str]) -> List[TaskCandidate]:
        session = await asyncio.to_thread(self.client.open, credential)
        courses = await asyncio.to_thread(self.client.list_courses, session)
        self.logger.info(f"Classroom: found {len(courses)} course(s)")

        per_course = await asyncio.gather(*(self._course_candidates(session, c) for c in courses if c.get("id")))
        candidates = [candidate for chunk in per_course for candidate in chunk]

        completed = sum(1 for c in candidates if c.status == TaskStatus.COMPLETED)
        self.logger.info(
            f"Classroom: fetched {len(candidates)} assignment(s) "
            f"({len(candidates) - completed} open, {completed} completed)"
        )
        return candidates

    async def _course_candidates(self, session: ClassroomSession, course: Dict[str, Any]) -> List[TaskCandidate]:
        try:
            work_list = await asyncio.to_thread(self.client.list_coursework, session, course["id"])
        except AuthError:
            raise
        except GoldfishError as e:
            self.logger.error(f"Error fetching coursework for {course.get('name')}: {e.message}")
            return []
        work_list = [work for work in work_list if work.get("id")]
        return list(await asyncio.gather(*(self._work_candidate(session, course, work) for work in work_list)))

    async def _work_candidate(self, session: ClassroomSession, course: Dict[str, Any], work: Dict[str, Any]) -> TaskCandidate:
        status = TaskStatus.PENDING
        try:
            submission = await self._submission(session, course["id"], work["id"])
            status = submission_status(submission)
        except PartialItemError as e:
            self.logger.debug(f"Submission lookup failed for {work.get('id')}: {e.message}")

        return TaskCandidate(
            title=work.get("title") or "Untitled assignment",
            platform=self.platform,
            source=self.source,
            source_id=str(work["id"]),
            course_name=course.get("name") or "Unknown Course",
            course_code=course.get("section"),
            due_date=parse_due_date(work.get("dueDate"), work.get("dueTime")),
            status=status,
            original_link=work.get("alternateLink"),
            description=html_excerpt(work.get("description"), DESCRIPTION_LIMIT, ellipsis="..."),
        )

    async def _submission(self, session: ClassroomSession, course_id: str, work_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(self.client.get_own_submission, session, course_id, work_id)
        except Exception as e:
            raise PartialItemError(str(e)) from e
