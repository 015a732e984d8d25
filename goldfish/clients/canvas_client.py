"""
Canvas REST client (/api/v1). Lists active courses, per-course assignments and the profile.
The token is passed per call and never defaulted. The server-side fallback token is only
handed out through proxy_token() for the proxy routes; syncs use the user's own token.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests
from dateutil import parser as dateutil_parser

from goldfish.clients.http import get_json
from goldfish.core.errors import AuthError, UpstreamError
from goldfish.core.models import Source

SOURCE = Source.CANVAS.value
PER_PAGE = 100
UPCOMING_DAYS = 30


def parse_canvas_datetime(value: Optional[str]) -> Optional[datetime]:
    """Canvas ISO-8601 timestamp -> aware UTC datetime. None when missing or unparseable."""
    if not value:
        return None
    try:
        dt = dateutil_parser.isoparse(value)
    except (ValueError, TypeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class CanvasClient:
    """One Canvas instance. Methods are blocking except the fetch_* fan-outs."""

    def __init__(
        self,
        base_url: Optional[str],
        fallback_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.fallback_token = fallback_token
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def proxy_token(self, token: Optional[str]) -> Optional[str]:
        """Bearer token for a proxied request: the caller's own, else the server fallback."""
        return token or self.fallback_token

    def _headers(self, token: Optional[str]) -> Dict[str, str]:
        if not token:
            raise AuthError(SOURCE, "No Canvas API token provided")
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _get(self, endpoint: str, token: Optional[str], params: Optional[dict] = None) -> Any:
        """GET {base}/api/v1{endpoint}; list responses are followed through Link rel=next pages."""
        if not self.base_url:
            raise UpstreamError(SOURCE, "Canvas base URL is not configured")
        headers = self._headers(token)
        url = f"{self.base_url}/api/v1{endpoint}"
        response = get_json(self.session, url, SOURCE, headers=headers, params=params, timeout=self.timeout)
        data = response.json()
        if not isinstance(data, list):
            return data

        items = list(data)
        next_url = (response.links or {}).get("next", {}).get("url")
        while next_url:
            response = get_json(self.session, next_url, SOURCE, headers=headers, timeout=self.timeout)
            items.extend(response.json())
            next_url = (response.links or {}).get("next", {}).get("url")
        return items

    def list_courses(self, token: Optional[str]) -> List[Dict[str, Any]]:
        return self._get("/courses", token, params={"enrollment_state": "active", "per_page": PER_PAGE})

    def list_course_assignments(self, course_id: Any, token: Optional[str]) -> List[Dict[str, Any]]:
        return self._get(f"/courses/{course_id}/assignments", token, params={"per_page": PER_PAGE})

    def get_profile(self, token: Optional[str]) -> Dict[str, Any]:
        return self._get("/users/self/profile", token)

    async def _course_assignments(self, course: Dict[str, Any], token: Optional[str]) -> List[Dict[str, Any]]:
        """Assignments of one course stamped with its name/code. Failures other than 401 skip the course."""
        try:
            assignments = await asyncio.to_thread(self.list_course_assignments, course.get("id"), token)
        except AuthError:
            raise
        except UpstreamError as e:
            self.logger.error(f"Error fetching assignments for course {course.get('id')}: {e.message}")
            return []
        return [
            {**assignment, "course_name": course.get("name"), "course_code": course.get("course_code")}
            for assignment in assignments
        ]

    async def fetch_all_assignments(self, token: Optional[str]) -> List[Dict[str, Any]]:
        """All assignments across active courses, dated or not. Courses are fetched concurrently."""
        courses = await asyncio.to_thread(self.list_courses, token)
        per_course = await asyncio.gather(*(self._course_assignments(c, token) for c in courses))
        return [assignment for chunk in per_course for assignment in chunk]

    async def fetch_upcoming_assignments(
        self,
        token: Optional[str],
        days: int = UPCOMING_DAYS,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Assignments due between now and now + days, sorted by due date."""
        now = now or datetime.now(timezone.utc)
        horizon = now + timedelta(days=days)
        upcoming = []
        for assignment in await self.fetch_all_assignments(token):
            due = parse_canvas_datetime(assignment.get("due_at"))
            if due is not None and now <= due <= horizon:
                upcoming.append((due, assignment))
        upcoming.sort(key=lambda pair: pair[0])
        return [assignment for _, assignment in upcoming]
