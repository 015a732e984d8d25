"""
USTeP (Moodle) web-service client. Token login, and the 3-step assignment lookup:
site info (current user id) -> enrolled courses -> assignments for those courses.
Moodle reports most errors in HTTP 200 bodies, so every call checks for exception/errorcode.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from goldfish.clients.http import get_json
from goldfish.core.config import DEFAULT_USTEP_URL
from goldfish.core.errors import AuthError, UpstreamError
from goldfish.core.models import Source

SOURCE = Source.USTEP.value
REST_ENDPOINT = "/webservice/rest/server.php"
TOKEN_ENDPOINT = "/login/token.php"

# Moodle error codes meaning the token (or login) itself is no good
AUTH_ERROR_CODES = frozenset({"invalidtoken", "invalidlogin", "requireloginerror", "usernotfullysetup"})


class UstepClient:
    def __init__(
        self,
        base_url: str = DEFAULT_USTEP_URL,
        service: str = "moodle_mobile_app",
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service = service
        self.session = session or requests.Session()
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    def assignment_link(self, cmid: Any) -> Optional[str]:
        if not cmid:
            return None
        return f"{self.base_url}/mod/assign/view.php?id={cmid}"

    def login(self, username: str, password: str) -> str:
        """Exchange username/password for a web-service token. Bad credentials raise AuthError."""
        response = get_json(
            self.session,
            f"{self.base_url}{TOKEN_ENDPOINT}",
            SOURCE,
            params={"username": username, "password": password, "service": self.service},
            timeout=self.timeout,
        )
        data = response.json()
        if data.get("error") or not data.get("token"):
            raise AuthError(SOURCE, data.get("error") or "Login failed", summary="Login failed")
        return data["token"]

    def call(self, token: Optional[str], wsfunction: str, **params: Any) -> Any:
        """Invoke one web-service function and unwrap Moodle's in-body errors."""
        if not token:
            raise AuthError(SOURCE, "Missing authorization token")
        query = {"moodlewsrestformat": "json", "wstoken": token, "wsfunction": wsfunction}
        query.update(params)
        response = get_json(
            self.session,
            f"{self.base_url}{REST_ENDPOINT}",
            SOURCE,
            params=query,
            timeout=self.timeout,
        )
        data = response.json()
        if isinstance(data, dict) and (data.get("exception") or data.get("errorcode")):
            message = data.get("message") or data.get("errorcode")
            if data.get("errorcode") in AUTH_ERROR_CODES:
                raise AuthError(SOURCE, message)
            raise UpstreamError(SOURCE, message)
        return data

    def site_info(self, token: Optional[str]) -> Dict[str, Any]:
        return self.call(token, "core_webservice_get_site_info")

    def users_courses(self, token: Optional[str], user_id: Any) -> List[Dict[str, Any]]:
        return self.call(token, "core_enrol_get_users_courses", userid=user_id)

    def course_assignments(self, token: Optional[str], course_ids: List[Any]) -> Dict[str, Any]:
        # Moodle array params: courseids[0]=1&courseids[1]=2
        params = {f"courseids[{i}]": course_id for i, course_id in enumerate(course_ids)}
        return self.call(token, "mod_assign_get_assignments", **params)

    def fetch_assignments(self, token: Optional[str]) -> List[Dict[str, Any]]:
        """Flat list of the user's assignments, each stamped with course_name/course_code."""
        site_info = self.site_info(token)
        courses = self.users_courses(token, site_info.get("userid"))
        if not courses:
            return []
        short_names = {c.get("id"): c.get("shortname") for c in courses}

        data = self.course_assignments(token, [c.get("id") for c in courses])
        results = []
        for course_group in data.get("courses") or []:
            course_name = course_group.get("fullname")
            course_code = short_names.get(course_group.get("id")) or course_group.get("shortname")
            for assignment in course_group.get("assignments") or []:
                results.append({**assignment, "course_name": course_name, "course_code": course_code})
        for warning in data.get("warnings") or []:
            self.logger.warning(f"USTeP warning: {warning.get('message') or warning}")
        self.logger.info(f"USTeP: {len(results)} assignment(s) across {len(courses)} course(s)")
        return results
