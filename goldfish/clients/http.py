"""
Shared helpers for upstream HTTP calls: bearer parsing and status -> error mapping.
"""
import logging
from typing import Any, Iterable, Optional

import requests

from goldfish.core.errors import AuthError, UpstreamError

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an 'Authorization: Bearer <token>' header, or None."""
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def error_message(response: requests.Response) -> str:
    """Best-effort human message from an upstream error body."""
    try:
        body = response.json()
    except ValueError:
        return (response.text or "").strip()[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return errors[0].get("message") or str(errors[0])
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message") or str(error)
        return body.get("message") or error or str(body)
    return str(body)


def raise_for_upstream(response: requests.Response, source: str, auth_statuses: Iterable[int] = (401,)) -> None:
    """Raise AuthError / UpstreamError for a non-success response."""
    if response.ok:
        return
    message = error_message(response)
    if response.status_code in auth_statuses:
        raise AuthError(source, message, status_code=response.status_code)
    raise UpstreamError(source, message, status_code=response.status_code)


def get_json(
    session: requests.Session,
    url: str,
    source: str,
    headers: Optional[dict] = None,
    params: Any = None,
    timeout: Optional[float] = None,
) -> requests.Response:
    """GET and check status. Network failures become UpstreamError."""
    try:
        response = session.get(url, headers=headers, params=params, timeout=timeout)
    except requests.exceptions.RequestException as e:
        logger.error(f"Network error calling {source}: {e}")
        raise UpstreamError(source, f"Network error: {e}")
    raise_for_upstream(response, source)
    return response
