"""
Error taxonomy shared by clients, adapters, the sync engine and the API.
Every error carries a short summary (`error`) and a detail message (`message`),
which the API renders as the {error, message} envelope.
"""
from typing import Optional


class GoldfishError(Exception):
    """Base error. status_code is the HTTP status the API should answer with."""

    status_code = 500
    summary = "Internal server error"

    def __init__(self, message: str = "", summary: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message or self.summary)
        self.message = message or self.summary
        if summary is not None:
            self.summary = summary
        if status_code is not None:
            self.status_code = status_code


class ConfigError(GoldfishError):
    summary = "Configuration error"


class AuthError(GoldfishError):
    """Missing or rejected credential. Triggers re-authentication for the source."""

    status_code = 401
    summary = "Authentication required"

    def __init__(self, source: str, message: str = "", **kwargs):
        super().__init__(message or f"No valid credential for {source}", **kwargs)
        self.source = source


class UpstreamError(GoldfishError):
    """Non-auth failure from an external API. Aborts sync for that source only."""

    summary = "Upstream request failed"

    def __init__(self, source: str, message: str = "", status_code: Optional[int] = None, **kwargs):
        super().__init__(message or f"{source} request failed", status_code=status_code or 500, **kwargs)
        self.source = source


class PartialItemError(GoldfishError):
    """Failure enriching one item. Caught inside adapters; the item keeps default fields."""

    summary = "Item enrichment failed"


class CredentialStoreError(GoldfishError):
    summary = "Failed to store credential"


class TaskNotFoundError(GoldfishError):
    status_code = 404
    summary = "Task not found"
