"""
Google Classroom API client for one student's access token.
Lists active courses, coursework and the student's own submissions.
The access token is injected per session; nothing is stored on the client.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from goldfish.core.errors import AuthError, UpstreamError
from goldfish.core.models import Source

SOURCE = Source.GOOGLE_CLASSROOM.value

SCOPES = [
    "https://www.googleapis.com/auth/classroom.courses.readonly",
    "https://www.googleapis.com/auth/classroom.coursework.me.readonly",
    "https://www.googleapis.com/auth/classroom.student-submissions.me.readonly",
]


def parse_due_date(due_date: Optional[Dict], due_time: Optional[Dict]) -> Optional[datetime]:
    """Convert Classroom dueDate/dueTime to an aware UTC datetime.
    No dueTime means end of day (23:59); fields missing inside dueTime are zero, as the API omits them."""
    if not due_date:
        return None
    try:
        y = due_date.get("year")
        m = due_date.get("month")
        d = due_date.get("day")
        if y is None or m is None or d is None:
            return None
        if due_time is None:
            hour, minute = 23, 59
        else:
            hour, minute = due_time.get("hours", 0), due_time.get("minutes", 0)
        return datetime(y, m, d, hour, minute, tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def http_status(error: HttpError) -> Optional[int]:
    status = getattr(getattr(error, "resp", None), "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


class ClassroomSession:
    """Service bound to one access token. Each request gets its own HTTP transport,
    so requests can run concurrently in worker threads."""

    def __init__(self, access_token: str, timeout: Optional[float] = None):
        self.credentials = Credentials(token=access_token, scopes=SCOPES)
        self.timeout = timeout
        self.service = build("classroom", "v1", credentials=self.credentials, cache_discovery=False)

    def execute(self, request) -> Dict[str, Any]:
        http = AuthorizedHttp(self.credentials, http=httplib2.Http(timeout=self.timeout))
        return request.execute(http=http)


class ClassroomClient:
    """Blocking Classroom calls. Concurrency is the caller's business."""

    def __init__(
        self,
        course_page_size: int = 20,
        coursework_page_size: int = 100,
        timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.course_page_size = course_page_size
        self.coursework_page_size = coursework_page_size
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def open(self, access_token: Optional[str]) -> ClassroomSession:
        if not access_token:
            raise AuthError(SOURCE, "No Google access token")
        return ClassroomSession(access_token, timeout=self.timeout)

    def _raise(self, error: HttpError, what: str, auth_statuses=(401,)) -> None:
        status = http_status(error)
        message = f"{what} failed: {error}"
        if status in auth_statuses:
            raise AuthError(SOURCE, message, status_code=status)
        raise UpstreamError(SOURCE, message, status_code=status)

    def _paginate(self, session: ClassroomSession, make_request, key: str, what: str, auth_statuses=(401,)) -> List[Dict]:
        items: List[Dict] = []
        page_token = None
        while True:
            try:
                response = session.execute(make_request(page_token))
            except HttpError as e:
                self._raise(e, what, auth_statuses)
            items.extend(response.get(key, []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return items

    def list_courses(self, session: ClassroomSession) -> List[Dict[str, Any]]:
        """Active courses of the student. 401/403 here mean the token or its scopes are not usable."""
        courses = session.service.courses()
        return self._paginate(
            session,
            lambda page_token: courses.list(
                studentId="me",
                courseStates=["ACTIVE"],
                pageSize=self.course_page_size,
                pageToken=page_token,
            ),
            "courses",
            "courses.list",
            auth_statuses=(401, 403),
        )

    def list_coursework(self, session: ClassroomSession, course_id: str) -> List[Dict[str, Any]]:
        coursework = session.service.courses().courseWork()
        return self._paginate(
            session,
            lambda page_token: coursework.list(
                courseId=course_id,
                pageSize=self.coursework_page_size,
                pageToken=page_token,
            ),
            "courseWork",
            f"courseWork.list({course_id})",
        )

    def get_own_submission(self, session: ClassroomSession, course_id: str, coursework_id: str) -> Optional[Dict[str, Any]]:
        """The student's submission for one coursework item, or None."""
        request = (
            session.service.courses()
            .courseWork()
            .studentSubmissions()
            .list(courseId=course_id, courseWorkId=coursework_id, userId="me")
        )
        try:
            response = session.execute(request)
        except HttpError as e:
            self._raise(e, f"studentSubmissions.list({coursework_id})")
        submissions = response.get("studentSubmissions", [])
        return submissions[0] if submissions else None
