"""
Sync orchestrator: fetch every requested source concurrently, isolate failures per
source, then merge everything that was fetched in one pass.

Per-source outcomes:
- ok: adapter returned candidates
- needs_credential: no usable token; the needs-credential flag is raised
- error: upstream or unexpected failure; other sources are unaffected
- busy: a sync for this user and source is already running
"""
import asyncio
import logging
import threading
from collections import namedtuple
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence

from goldfish.core.credentials import CredentialStore
from goldfish.core.errors import AuthError, CredentialStoreError, UpstreamError
from goldfish.core.merge import MergeResult, merge_candidates
from goldfish.core.models import Source, TaskStatus
from goldfish.sources.base import SourceAdapter, TaskCandidate


class SyncOutcome(str, Enum):
    OK = "ok"
    NEEDS_CREDENTIAL = "needs_credential"
    ERROR = "error"
    BUSY = "busy"


SourceResult = namedtuple("SourceResult", ["source", "outcome", "fetched", "message", "candidates"])


class SyncReport:
    """Result of one sync round: per-source outcomes plus merge counts."""

    def __init__(self, user_id: str, results: List[SourceResult], merge: MergeResult):
        self.user_id = user_id
        self.results = results
        self.merge = merge

    @property
    def fetched(self) -> int:
        return self.merge.fetched

    @property
    def inserted(self) -> int:
        return self.merge.inserted

    @property
    def already_present(self) -> int:
        return self.merge.already_present

    def status_counts(self) -> dict:
        """Inserted tasks per status."""
        inserted = self.merge.by_status or {}
        return {status.value: inserted.get(status.value, 0) for status in TaskStatus}

    def summary(self) -> str:
        """Plain-language summary for the user. No tracebacks."""
        if self.inserted:
            counts = self.status_counts()
            lines = [
                f"Synced {self.inserted} new task(s): "
                f"{counts['pending']} pending, {counts['completed']} completed, {counts['overdue']} overdue."
            ]
        elif self.fetched:
            lines = ["Sync complete. No new tasks found (everything is up to date)."]
        else:
            lines = ["No tasks found to sync."]
        for result in self.results:
            if result.outcome == SyncOutcome.NEEDS_CREDENTIAL:
                lines.append(f"{result.source.value}: sign-in required.")
            elif result.outcome == SyncOutcome.ERROR:
                lines.append(f"{result.source.value}: {result.message}")
            elif result.outcome == SyncOutcome.BUSY:
                lines.append(f"{result.source.value}: a sync is already running.")
        if self.merge.failed:
            lines.append(f"{self.merge.failed} task(s) could not be saved.")
        return " ".join(lines)


class SyncOrchestrator:
    def __init__(
        self,
        credentials: CredentialStore,
        adapters: Sequence[SourceAdapter],
        merge: Callable[[str, List[TaskCandidate]], MergeResult] = merge_candidates,
        credential_timeout: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.credentials = credentials
        self.adapters = list(adapters)
        self.merge = merge
        self.credential_timeout = credential_timeout
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._in_flight = set()
        self._lock = threading.Lock()

    @property
    def sources(self) -> List[Source]:
        return [adapter.source for adapter in self.adapters]

    def _select(self, sources: Optional[Iterable]) -> List[SourceAdapter]:
        if sources is None:
            return list(self.adapters)
        wanted = {Source(s) for s in sources}
        unknown = wanted - set(self.sources)
        if unknown:
            raise ValueError(f"No adapter for: {', '.join(sorted(s.value for s in unknown))}")
        return [a for a in self.adapters if a.source in wanted]

    async def sync(self, user_id: str, sources: Optional[Iterable] = None, interactive: bool = False) -> SyncReport:
        """Run one sync round. Adapter failures never escape; they become per-source outcomes."""
        adapters = self._select(sources)
        self.logger.info(f"Starting sync for {user_id}: {', '.join(a.source.value for a in adapters)}")

        results = list(await asyncio.gather(*(self._fetch_source(user_id, a, interactive) for a in adapters)))

        # Adapter order keeps first-seen-wins deterministic
        candidates = [c for r in results for c in r.candidates]
        merge_result = await asyncio.to_thread(self.merge, user_id, candidates)

        report = SyncReport(user_id, results, merge_result)
        self.logger.info(f"Sync finished for {user_id}: {report.summary()}")
        return report

    async def _fetch_source(self, user_id: str, adapter: SourceAdapter, interactive: bool) -> SourceResult:
        source = adapter.source
        key = (user_id, source)
        with self._lock:
            if key in self._in_flight:
                self.logger.info(f"{source.value} sync already running for {user_id}")
                return SourceResult(source, SyncOutcome.BUSY, 0, "Sync already running", [])
            self._in_flight.add(key)
        try:
            return await self._run_adapter(user_id, adapter, interactive)
        finally:
            with self._lock:
                self._in_flight.discard(key)

    async def _run_adapter(self, user_id: str, adapter: SourceAdapter, interactive: bool) -> SourceResult:
        source = adapter.source
        try:
            token = await asyncio.to_thread(self.credentials.load, user_id, source)
        except Exception as e:
            self.logger.exception(f"Could not load {source.value} credential for {user_id}: {e}")
            return SourceResult(source, SyncOutcome.ERROR, 0, "Could not read stored credential", [])
        if token is None and interactive:
            token = await self.credentials.wait_for_credential(user_id, source, timeout=self.credential_timeout)

        try:
            candidates = await adapter.fetch_assignments(token)
        except AuthError as e:
            if token is None:
                self.logger.info(f"No {source.value} credential for {user_id}; skipping")
            else:
                self.logger.warning(f"{source.value} rejected the credential for {user_id}: {e.message}")
                try:
                    await asyncio.to_thread(self.credentials.invalidate, user_id, source)
                except CredentialStoreError as store_error:
                    self.logger.error(f"Could not invalidate {source.value} credential: {store_error.message}")
            self.credentials.request_credential(user_id, source)
            return SourceResult(source, SyncOutcome.NEEDS_CREDENTIAL, 0, e.message, [])
        except UpstreamError as e:
            self.logger.error(f"{source.value} fetch failed for {user_id}: {e.message}")
            return SourceResult(source, SyncOutcome.ERROR, 0, f"Failed to fetch assignments ({e.message})", [])
        except Exception as e:
            self.logger.exception(f"Unexpected error syncing {source.value} for {user_id}: {e}")
            return SourceResult(source, SyncOutcome.ERROR, 0, "Unexpected error while fetching assignments", [])

        return SourceResult(source, SyncOutcome.OK, len(candidates), None, list(candidates))
