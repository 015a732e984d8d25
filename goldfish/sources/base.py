"""
Base type and interface for assignment sources.
All adapters return List[TaskCandidate]; no dicts.
"""
import logging
from abc import ABC, abstractmethod
from collections import namedtuple
from typing import List, Optional

from bs4 import BeautifulSoup

from goldfish.core.models import Platform, Source, TaskStatus

# One normalized assignment, not yet checked against stored tasks.
TaskCandidate = namedtuple(
    "TaskCandidate",
    [
        "title",
        "platform",      # Platform
        "source",        # Source
        "source_id",     # str, unique within source
        "course_name",
        "course_code",   # str or None
        "due_date",      # aware UTC datetime or None (undated)
        "status",        # TaskStatus
        "original_link", # str or None
        "description",   # plain text excerpt
    ],
    defaults=(None, None, TaskStatus.PENDING, None, ""),
)


def candidate_key(candidate) -> tuple:
    """Durable identity of a task: (source, source_id)."""
    source = candidate.source.value if isinstance(candidate.source, Source) else str(candidate.source)
    return source, str(candidate.source_id)


def html_excerpt(html: Optional[str], limit: int, ellipsis: str = "") -> str:
    """Strip markup and cap length. ellipsis is appended only when text was cut."""
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
    if len(text) > limit:
        return text[:limit] + ellipsis
    return text


class SourceAdapter(ABC):
    """Abstract adapter: fetch one upstream's assignments as TaskCandidates.

    The credential is passed on every call; adapters keep no token state.
    Raise AuthError when the credential is missing or rejected, UpstreamError
    for other failures of the primary listing. Per-item enrichment failures
    must degrade to default fields instead of raising.
    """

    source: Source
    platform: Platform

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def fetch_assignments(self, credential: Optional[str]) -> List[TaskCandidate]:
        """Fetch and normalize assignments. Use TaskCandidate(...), not dicts."""
        pass
