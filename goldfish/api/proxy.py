"""
Proxy routes forwarding to Canvas and USTeP. Responses are the upstream JSON.
Errors use the {error, message} envelope with the upstream status (default 500).
"""
import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse

from goldfish.api.schemas import LoginRequest
from goldfish.clients.http import bearer_token
from goldfish.core.errors import AuthError, GoldfishError

logger = logging.getLogger(__name__)


def error_envelope(summary: str, error: GoldfishError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code or 500, content={"error": summary, "message": error.message})


def get_router(goldfish_app) -> APIRouter:
    router = APIRouter(tags=["Proxy"])
    canvas = goldfish_app.canvas_client
    ustep = goldfish_app.ustep_client

    def canvas_token(authorization: Optional[str]) -> Optional[str]:
        return canvas.proxy_token(bearer_token(authorization))

    async def canvas_call(summary: str, func, *args: Any):
        try:
            return await asyncio.to_thread(func, *args)
        except GoldfishError as e:
            logger.error(f"Canvas API Error: {e.message}")
            return error_envelope(summary, e)

    @router.get("/health")
    def health():
        return {"status": "ok", "message": "Proxy server is running"}

    @router.get("/api/canvas/courses")
    async def canvas_courses(authorization: Optional[str] = Header(None)):
        return await canvas_call("Failed to fetch courses", canvas.list_courses, canvas_token(authorization))

    @router.get("/api/canvas/courses/{course_id}/assignments")
    async def canvas_course_assignments(course_id: str, authorization: Optional[str] = Header(None)):
        return await canvas_call(
            "Failed to fetch assignments",
            canvas.list_course_assignments,
            course_id,
            canvas_token(authorization),
        )

    @router.get("/api/canvas/assignments")
    async def canvas_all_assignments(authorization: Optional[str] = Header(None)):
        try:
            return await canvas.fetch_all_assignments(canvas_token(authorization))
        except GoldfishError as e:
            return error_envelope("Failed to fetch all assignments", e)

    @router.get("/api/canvas/assignments/upcoming")
    async def canvas_upcoming_assignments(authorization: Optional[str] = Header(None)):
        try:
            return await canvas.fetch_upcoming_assignments(canvas_token(authorization))
        except GoldfishError as e:
            return error_envelope("Failed to fetch upcoming assignments", e)

    @router.get("/api/canvas/profile")
    async def canvas_profile(authorization: Optional[str] = Header(None)):
        return await canvas_call("Failed to fetch user profile", canvas.get_profile, canvas_token(authorization))

    @router.post("/api/ustep/login")
    async def ustep_login(body: LoginRequest):
        if not body.username or not body.password:
            return JSONResponse(status_code=400, content={"error": "Username and password are required"})
        try:
            token = await asyncio.to_thread(ustep.login, body.username, body.password)
        except AuthError as e:
            return JSONResponse(status_code=401, content={"error": e.message})
        except GoldfishError as e:
            return JSONResponse(status_code=500, content={"error": "Failed to login to UStep", "message": e.message})
        return {"token": token}

    @router.get("/api/ustep/assignments")
    async def ustep_assignments(authorization: Optional[str] = Header(None)):
        token = bearer_token(authorization)
        if not token:
            return JSONResponse(status_code=401, content={"error": "Missing authorization token"})
        try:
            return await asyncio.to_thread(ustep.fetch_assignments, token)
        except GoldfishError as e:
            logger.error(f"UStep API Error: {e.message}")
            return error_envelope("Failed to fetch UStep assignments", e)

    return router
